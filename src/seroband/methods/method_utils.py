"""Shared utilities for the band methods."""

import warnings

import numpy as np
import torch
from numpy.typing import NDArray
from torch import Tensor

from ..errors import InvalidCovarianceError


def numpy_to_torch(arr: NDArray | Tensor, device: torch.device | None = None) -> Tensor:
    """Convert numpy array or torch tensor to tensor on specified device.

    Args:
        arr: Input numpy array or torch tensor.
        device: Target device (defaults to CUDA if available).

    Returns:
        PyTorch tensor on the specified device.
    """
    if device is None:
        device = torch.device("cuda" if torch.cuda.is_available() else "cpu")

    if isinstance(arr, Tensor):
        return arr.to(device)

    return torch.from_numpy(np.ascontiguousarray(arr)).to(device)


def torch_to_numpy(tensor: Tensor | NDArray) -> NDArray:
    """Convert tensor or numpy array to numpy array.

    Args:
        tensor: Input PyTorch tensor or numpy array.

    Returns:
        Numpy array with preserved dtype.
    """
    if isinstance(tensor, np.ndarray):
        return tensor

    return tensor.detach().cpu().numpy()


def covariance_root(covariance: NDArray, rtol: float = 1e-6) -> NDArray:
    """Compute a square root ``R`` with ``R @ R.T == covariance``.

    Uses the symmetric eigen-decomposition, so rank-deficient covariance
    matrices (common for penalized splines with identifiability constraints)
    are supported. Negative eigenvalues at rounding level are set to zero
    silently; larger ones within ``rtol`` of the largest eigenvalue are set to
    zero with a ``RuntimeWarning``.

    Args:
        covariance: ``(p, p)`` coefficient covariance matrix.
        rtol: Relative tolerance for negative eigenvalues.

    Returns:
        ``(p, p)`` root matrix ``V @ diag(sqrt(w))``.

    Raises:
        InvalidCovarianceError: If the matrix is not square, not finite, not
            symmetric, or has an eigenvalue below ``-rtol * max|w|``.
    """
    cov = np.asarray(covariance, dtype=np.float64)
    if cov.ndim != 2 or cov.shape[0] != cov.shape[1] or cov.shape[0] == 0:
        raise InvalidCovarianceError(
            f"Covariance must be a non-empty square matrix, got shape {cov.shape}"
        )
    if not np.all(np.isfinite(cov)):
        raise InvalidCovarianceError("Covariance contains non-finite entries")

    scale = np.max(np.abs(cov))
    if not np.allclose(cov, cov.T, rtol=1e-8, atol=1e-12 * scale):
        raise InvalidCovarianceError("Covariance must be symmetric")

    eigenvalues, eigenvectors = np.linalg.eigh(0.5 * (cov + cov.T))

    largest = np.max(np.abs(eigenvalues))
    rounding = cov.shape[0] * np.finfo(np.float64).eps * largest
    smallest = eigenvalues.min()
    if smallest < -rtol * largest:
        raise InvalidCovarianceError(
            f"Covariance is not positive semidefinite (smallest eigenvalue "
            f"{smallest:.3g}, largest {largest:.3g})"
        )
    if smallest < -rounding:
        warnings.warn(
            f"Clipping negative covariance eigenvalue {smallest:.3g} to zero",
            RuntimeWarning,
            stacklevel=3,
        )

    eigenvalues = np.clip(eigenvalues, 0.0, None)
    return eigenvectors * np.sqrt(eigenvalues)
