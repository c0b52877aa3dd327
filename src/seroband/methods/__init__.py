"""Confidence band methods for fitted additive models."""

from .simultaneous_band import (
    BandResult,
    SimultaneousBandEstimator,
    critical_value,
    pointwise_multiplier,
    simulate_max_abs_deviations,
    simultaneous_band,
)

__all__ = [
    "BandResult",
    "SimultaneousBandEstimator",
    "critical_value",
    "pointwise_multiplier",
    "simulate_max_abs_deviations",
    "simultaneous_band",
]
