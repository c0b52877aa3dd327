"""Fitted model interface and adapters."""

from .fitted_model import FittedModel, LinearBasisModel, check_query, linear_predictor_se
from .pygam_model import PyGAMModel, fit_gam

__all__ = [
    "FittedModel",
    "LinearBasisModel",
    "PyGAMModel",
    "check_query",
    "fit_gam",
    "linear_predictor_se",
]
