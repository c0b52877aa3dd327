"""Coverage evaluation for confidence bands."""

from .eval import (
    BandCoverage,
    CoverageSummary,
    aggregate_coverage,
    critical_value_spread,
    evaluate_band,
    run_coverage_simulation,
    wilson_interval,
)

__all__ = [
    "BandCoverage",
    "CoverageSummary",
    "aggregate_coverage",
    "critical_value_spread",
    "evaluate_band",
    "run_coverage_simulation",
    "wilson_interval",
]
