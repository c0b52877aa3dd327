"""Capability interface for fitted additive models.

The band estimators never talk to a modeling library directly. Anything that
can produce predictions, a linear predictor matrix and a coefficient covariance
at a set of query rows satisfies :class:`FittedModel`.
"""

from collections.abc import Callable, Sequence
from typing import Protocol, runtime_checkable

import numpy as np
import pandas as pd
from numpy.typing import NDArray

from ..errors import SchemaMismatchError

# =============================================================================
# Type Protocols
# =============================================================================


@runtime_checkable
class FittedModel(Protocol):
    """Protocol for a fitted regression model with additive smooth terms.

    Attributes:
        feature_names: Covariate columns the model was fit on. Query frames
            must provide all of them. Band estimation also accepts models
            without this attribute and then skips the column check.
    """

    feature_names: Sequence[str]

    def predict(self, newdata: pd.DataFrame) -> tuple[NDArray, NDArray]:
        """Return ``(fit, se_fit)`` on the linear predictor scale."""
        ...

    def predict_design(self, newdata: pd.DataFrame) -> NDArray:
        """Return the ``(n, p)`` linear predictor matrix at ``newdata``."""
        ...

    def coefficient_covariance(self, unconditional: bool = True) -> NDArray:
        """Return the ``(p, p)`` coefficient covariance matrix."""
        ...


# =============================================================================
# Shared helpers
# =============================================================================


def check_query(
    newdata: pd.DataFrame, feature_names: Sequence[str] | None
) -> pd.DataFrame:
    """Validate that ``newdata`` carries every covariate the model needs.

    Args:
        newdata: Query rows.
        feature_names: Required covariate columns. ``None`` skips the column
            check for models that do not declare their covariates.

    Returns:
        The query restricted to ``feature_names``, in that order, or the
        query unchanged when ``feature_names`` is ``None``.

    Raises:
        SchemaMismatchError: If ``newdata`` is not a DataFrame, is empty, or
            lacks a required column.
    """
    if not isinstance(newdata, pd.DataFrame):
        raise SchemaMismatchError(
            f"Query must be a pandas DataFrame, got {type(newdata).__name__}"
        )
    missing = [name for name in feature_names or () if name not in newdata.columns]
    if missing:
        raise SchemaMismatchError(
            f"Query is missing model covariates {missing}; "
            f"got columns {list(newdata.columns)}"
        )
    if len(newdata) == 0:
        raise SchemaMismatchError("Query must contain at least one row")
    if feature_names is None:
        return newdata
    return newdata.loc[:, list(feature_names)]


def linear_predictor_se(design: NDArray, covariance: NDArray) -> NDArray:
    """Standard error of ``design @ beta`` for ``beta ~ (., covariance)``.

    Computes ``sqrt(diag(X V X'))`` without forming the n x n product.
    """
    variance = np.einsum("ij,jk,ik->i", design, covariance, design)
    # Rounding can leave tiny negatives where the true variance is zero
    return np.sqrt(np.clip(variance, 0.0, None))


# =============================================================================
# Explicit-basis model
# =============================================================================


class LinearBasisModel:
    """Model defined by an explicit basis, coefficients and covariance.

    This is the smallest thing that satisfies :class:`FittedModel`. It is handy
    for parametric fits (polynomials, fixed-knot regression splines) and for
    models whose coefficients were estimated elsewhere.

    Args:
        basis: Function mapping a query frame (restricted to
            ``feature_names``) to its ``(n, p)`` design matrix.
        coefficients: Length-p coefficient vector.
        covariance: ``(p, p)`` covariance used when uncertainty in smoothing
            parameters is accounted for (the "unconditional" covariance).
        feature_names: Covariate columns consumed by ``basis``.
        conditional_covariance: Optional covariance conditional on the
            smoothing parameters. Defaults to ``covariance``.

    Examples:
        >>> import numpy as np
        >>> import pandas as pd
        >>> model = LinearBasisModel(
        ...     basis=lambda df: np.column_stack([np.ones(len(df)), df["age"]]),
        ...     coefficients=np.array([1.0, 0.1]),
        ...     covariance=np.diag([0.01, 0.0001]),
        ...     feature_names=["age"],
        ... )
        >>> fit, se = model.predict(pd.DataFrame({"age": [0.0, 10.0]}))
        >>> fit
        array([1., 2.])
    """

    def __init__(
        self,
        basis: Callable[[pd.DataFrame], NDArray],
        coefficients: NDArray,
        covariance: NDArray,
        feature_names: Sequence[str],
        conditional_covariance: NDArray | None = None,
    ):
        self.basis = basis
        self.coefficients = np.asarray(coefficients, dtype=np.float64)
        self.covariance = np.asarray(covariance, dtype=np.float64)
        self.feature_names = list(feature_names)
        self.conditional_covariance = (
            None
            if conditional_covariance is None
            else np.asarray(conditional_covariance, dtype=np.float64)
        )

        if self.coefficients.ndim != 1:
            raise SchemaMismatchError("coefficients must be a 1-D vector")

    def predict_design(self, newdata: pd.DataFrame) -> NDArray:
        design = np.asarray(
            self.basis(check_query(newdata, self.feature_names)), dtype=np.float64
        )
        if design.ndim == 1:
            design = design[:, None]
        if design.shape != (len(newdata), len(self.coefficients)):
            raise SchemaMismatchError(
                f"Basis produced a {design.shape} matrix, expected "
                f"({len(newdata)}, {len(self.coefficients)})"
            )
        return design

    def predict(self, newdata: pd.DataFrame) -> tuple[NDArray, NDArray]:
        design = self.predict_design(newdata)
        fit = design @ self.coefficients
        se_fit = linear_predictor_se(design, self.coefficient_covariance(True))
        return fit, se_fit

    def coefficient_covariance(self, unconditional: bool = True) -> NDArray:
        if not unconditional and self.conditional_covariance is not None:
            return self.conditional_covariance
        return self.covariance
