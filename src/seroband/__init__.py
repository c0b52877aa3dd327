"""GAM Confidence Band Analysis for Serology.

This package provides tools for computing pointwise and simultaneous
confidence bands around smooth age-antibody curves fitted with generalized
additive models, and for checking their coverage on synthetic serology data.
"""

from . import datagen, errors, eval, methods, models
from .methods import BandResult, SimultaneousBandEstimator, simultaneous_band
from .models import FittedModel, LinearBasisModel, PyGAMModel, fit_gam

__all__ = [
    "BandResult",
    "FittedModel",
    "LinearBasisModel",
    "PyGAMModel",
    "SimultaneousBandEstimator",
    "datagen",
    "errors",
    "eval",
    "fit_gam",
    "methods",
    "models",
    "simultaneous_band",
]
