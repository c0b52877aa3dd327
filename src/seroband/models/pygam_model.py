"""Adapter exposing fitted pyGAM models through the FittedModel interface."""

import warnings
from collections.abc import Callable, Sequence
from typing import Literal

import numpy as np
import pandas as pd
import scipy.sparse as sp
from numpy.typing import NDArray
from pygam import GAM, LinearGAM, LogisticGAM, s

from ..errors import SchemaMismatchError
from .fitted_model import check_query, linear_predictor_se


class PyGAMModel:
    """Wrap a fitted ``pygam`` GAM.

    Predictions are returned on the linear predictor (link) scale, which is the
    scale on which the coefficient posterior is Gaussian. Use
    :meth:`BandResult.to_response_scale` with :attr:`inverse_link` to map a
    band back to the response scale.

    pyGAM only estimates the covariance of the coefficients conditional on the
    smoothing parameters. Asking for the unconditional covariance therefore
    returns the conditional one and issues a ``UserWarning``; bands built from
    it are slightly too narrow when smoothing parameters are poorly determined.

    Args:
        gam: A fitted pyGAM model.
        feature_names: Query columns, in the order of the GAM's feature indices.

    Raises:
        SchemaMismatchError: If the GAM has not been fitted, or the number of
            feature names disagrees with the number of features it was fit on.
    """

    def __init__(self, gam: GAM, feature_names: Sequence[str]):
        if not hasattr(gam, "coef_") or not hasattr(gam, "statistics_"):
            raise SchemaMismatchError("GAM must be fitted before computing bands")

        self.gam = gam
        self.feature_names = list(feature_names)

        m_features = gam.statistics_.get("m_features")
        if m_features is not None and m_features != len(self.feature_names):
            raise SchemaMismatchError(
                f"GAM was fit on {m_features} features but "
                f"{len(self.feature_names)} feature names were given"
            )

    @property
    def coefficients(self) -> NDArray:
        return np.asarray(self.gam.coef_, dtype=np.float64)

    @property
    def inverse_link(self) -> Callable[[NDArray], NDArray]:
        """Inverse of the GAM's link function, mapping eta to the mean."""
        link, distribution = self.gam.link, self.gam.distribution
        return lambda eta: link.mu(np.asarray(eta, dtype=np.float64), distribution)

    def predict_design(self, newdata: pd.DataFrame) -> NDArray:
        X = check_query(newdata, self.feature_names).to_numpy(dtype=np.float64)
        design = self.gam._modelmat(X)
        if sp.issparse(design):
            design = design.toarray()
        return np.asarray(design, dtype=np.float64)

    def predict(self, newdata: pd.DataFrame) -> tuple[NDArray, NDArray]:
        design = self.predict_design(newdata)
        fit = design @ self.coefficients
        se_fit = linear_predictor_se(design, self._covariance())
        return fit, se_fit

    def coefficient_covariance(self, unconditional: bool = True) -> NDArray:
        if unconditional:
            warnings.warn(
                "pyGAM does not estimate smoothing parameter uncertainty; "
                "using the covariance conditional on the fitted smoothing "
                "parameters.",
                UserWarning,
                stacklevel=2,
            )
        return self._covariance()

    def _covariance(self) -> NDArray:
        return np.asarray(self.gam.statistics_["cov"], dtype=np.float64)


def fit_gam(
    frame: pd.DataFrame,
    response: str,
    covariates: Sequence[str],
    n_splines: int = 20,
    link: Literal["identity", "logit"] = "identity",
    lam: float | None = None,
    gridsearch: bool = False,
) -> PyGAMModel:
    """Fit a GAM with one penalized spline per covariate.

    An identity link fits a ``LinearGAM`` (e.g. log antibody titre against
    age); a logit link fits a ``LogisticGAM`` (e.g. binary serostatus).

    Args:
        frame: Data with ``response`` and ``covariates`` columns.
        response: Response column name.
        covariates: Covariate column names; each gets a smooth term ``s(i)``.
        n_splines: Basis dimension of each smooth.
        link: ``"identity"`` or ``"logit"``.
        lam: Smoothing penalty. Defaults to pyGAM's default.
        gridsearch: Select ``lam`` by GCV/UBRE grid search instead.

    Returns:
        Fitted model wrapped as a :class:`PyGAMModel`.

    Raises:
        SchemaMismatchError: If columns are missing or no covariates are given.
        ValueError: If ``link`` is unknown.
    """
    if not covariates:
        raise SchemaMismatchError("At least one covariate is required")
    X = check_query(frame, covariates).to_numpy(dtype=np.float64)
    if response not in frame.columns:
        raise SchemaMismatchError(f"Response column '{response}' not in frame")
    y = frame[response].to_numpy(dtype=np.float64)

    terms = s(0, n_splines=n_splines)
    for i in range(1, len(covariates)):
        terms += s(i, n_splines=n_splines)

    kwargs = {} if lam is None else {"lam": lam}
    if link == "identity":
        gam = LinearGAM(terms, **kwargs)
    elif link == "logit":
        gam = LogisticGAM(terms, **kwargs)
    else:
        raise ValueError(f"Unknown link: {link}")

    if gridsearch:
        gam.gridsearch(X, y, progress=False)
    else:
        gam.fit(X, y)

    return PyGAMModel(gam, covariates)
