"""Coverage evaluation for GAM confidence bands.

This module checks pointwise and simultaneous bands against a known true
curve through Monte Carlo simulation. The workflow is:

1. Sampling a data set from a serology DGP
2. Fitting a GAM and computing both bands on a query grid
3. Checking each band against the true curve
4. Aggregating coverage and width across simulations

Key classes:
    BandCoverage: Coverage of one band pair against the true curve.
    CoverageSummary: Aggregated statistics across simulations.

Key functions:
    evaluate_band: Check one band pair against the true curve.
    aggregate_coverage: Aggregate many evaluations.
    run_coverage_simulation: Full sample -> fit -> band -> evaluate loop.
    critical_value_spread: Monte Carlo spread of the critical value.
"""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass

import numpy as np
import pandas as pd
from numpy.typing import NDArray
from scipy import stats
from tqdm import tqdm

from ..datagen.serology import SerologyDGP, age_grid
from ..methods.simultaneous_band import BandResult, SimultaneousBandEstimator, simultaneous_band
from ..models.fitted_model import FittedModel
from ..models.pygam_model import fit_gam

# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class BandCoverage:
    """Coverage of a pointwise/simultaneous band pair against the true curve.

    Attributes:
        covers_simultaneous: Whether the simultaneous band contains the whole
            true curve.
        covers_pointwise: Whether the pointwise band contains the whole true
            curve.
        pointwise_covered: Per-row coverage by the pointwise band.
        simultaneous_covered: Per-row coverage by the simultaneous band.
        max_violation_simultaneous: Largest distance of the truth outside the
            simultaneous band (0 when covered).
        max_violation_pointwise: Same for the pointwise band.
        mean_width_simultaneous: Mean simultaneous band width over the grid.
        mean_width_pointwise: Mean pointwise band width over the grid.
        crit: Critical value used for the simultaneous band.
    """

    covers_simultaneous: bool
    covers_pointwise: bool
    pointwise_covered: np.ndarray
    simultaneous_covered: np.ndarray
    max_violation_simultaneous: float
    max_violation_pointwise: float
    mean_width_simultaneous: float
    mean_width_pointwise: float
    crit: float


@dataclass
class CoverageSummary:
    """Aggregated coverage statistics from many simulations.

    Attributes:
        n_simulations: Number of simulations aggregated.
        confidence: Nominal simultaneous coverage of the bands.
        simultaneous_coverage: Proportion of simultaneous bands covering the
            entire true curve.
        simultaneous_ci: Wilson 95% interval for ``simultaneous_coverage``.
        pointwise_coverage: Proportion of pointwise bands covering the entire
            true curve.
        pointwise_ci: Wilson 95% interval for ``pointwise_coverage``.
        mean_pointwise_rate: Average fraction of grid points covered by the
            pointwise band.
        mean_crit: Average simultaneous critical value.
        std_crit: Standard deviation of the critical value.
        mean_width_simultaneous: Average simultaneous band width.
        mean_width_pointwise: Average pointwise band width.
    """

    n_simulations: int
    confidence: float
    simultaneous_coverage: float
    simultaneous_ci: tuple[float, float]
    pointwise_coverage: float
    pointwise_ci: tuple[float, float]
    mean_pointwise_rate: float
    mean_crit: float
    std_crit: float
    mean_width_simultaneous: float
    mean_width_pointwise: float

    def to_dict(self) -> dict:
        return {
            "n_simulations": self.n_simulations,
            "confidence": self.confidence,
            "simultaneous_coverage": self.simultaneous_coverage,
            "simultaneous_ci": list(self.simultaneous_ci),
            "pointwise_coverage": self.pointwise_coverage,
            "pointwise_ci": list(self.pointwise_ci),
            "mean_pointwise_rate": self.mean_pointwise_rate,
            "mean_crit": self.mean_crit,
            "std_crit": self.std_crit,
            "mean_width_simultaneous": self.mean_width_simultaneous,
            "mean_width_pointwise": self.mean_width_pointwise,
        }


# =============================================================================
# Per-Band Evaluation
# =============================================================================


def evaluate_band(band: BandResult, true_values: NDArray) -> BandCoverage:
    """Evaluate a band pair against the true curve at the same query rows.

    Args:
        band: Result of :func:`simultaneous_band`.
        true_values: True curve at the band's query rows, on the same scale
            as ``band.fit``.

    Returns:
        Coverage metrics for this band pair.

    Examples:
        >>> coverage = evaluate_band(band, dgp.truth_at(query))  # doctest: +SKIP
        >>> coverage.covers_simultaneous
        True
    """
    true_values = np.asarray(true_values, dtype=np.float64)
    if true_values.shape != band.fit.shape:
        raise ValueError(
            f"true_values has shape {true_values.shape}, expected {band.fit.shape}"
        )

    # Small tolerance for boundary comparisons due to floating point
    tolerance = 1e-10

    def _covered(kind):
        above = (true_values - band.upper(kind)) > tolerance
        below = (band.lower(kind) - true_values) > tolerance
        violation = np.maximum(
            np.maximum(true_values - band.upper(kind), band.lower(kind) - true_values),
            0.0,
        )
        return ~(above | below), float(violation.max())

    simultaneous_covered, max_violation_simultaneous = _covered("simultaneous")
    pointwise_covered, max_violation_pointwise = _covered("pointwise")

    return BandCoverage(
        covers_simultaneous=bool(simultaneous_covered.all()),
        covers_pointwise=bool(pointwise_covered.all()),
        pointwise_covered=pointwise_covered,
        simultaneous_covered=simultaneous_covered,
        max_violation_simultaneous=max_violation_simultaneous,
        max_violation_pointwise=max_violation_pointwise,
        mean_width_simultaneous=float(np.mean(band.band_widths("simultaneous"))),
        mean_width_pointwise=float(np.mean(band.band_widths("pointwise"))),
        crit=band.crit,
    )


# =============================================================================
# Aggregation
# =============================================================================


def wilson_interval(rate: float, n: int, level: float = 0.95) -> tuple[float, float]:
    """Wilson score interval for a binomial proportion.

    The interval always contains ``rate``, including at 0 and 1 where
    rounding would otherwise leave the bound a hair off the observed rate.
    """
    z = stats.norm.ppf(1 - (1 - level) / 2)
    denom = 1 + z**2 / n
    center = (rate + z**2 / (2 * n)) / denom
    margin = z * np.sqrt(rate * (1 - rate) / n + z**2 / (4 * n**2)) / denom
    lower = min(max(center - margin, 0.0), rate)
    upper = max(min(center + margin, 1.0), rate)
    return float(lower), float(upper)


def aggregate_coverage(
    results: Iterable[BandCoverage], confidence: float = 0.95
) -> CoverageSummary:
    """Aggregate many :class:`BandCoverage` results.

    Args:
        results: Evaluations from individual simulations.
        confidence: Nominal coverage the bands were built for.

    Returns:
        Coverage rates with Wilson intervals, widths and critical values.

    Raises:
        ValueError: If results is empty.
    """
    results_list: list[BandCoverage] = list(results)
    n_sims = len(results_list)

    if n_sims == 0:
        raise ValueError("No results to aggregate")

    simultaneous = float(np.mean([r.covers_simultaneous for r in results_list]))
    pointwise = float(np.mean([r.covers_pointwise for r in results_list]))
    crits = np.array([r.crit for r in results_list])

    return CoverageSummary(
        n_simulations=n_sims,
        confidence=confidence,
        simultaneous_coverage=simultaneous,
        simultaneous_ci=wilson_interval(simultaneous, n_sims),
        pointwise_coverage=pointwise,
        pointwise_ci=wilson_interval(pointwise, n_sims),
        mean_pointwise_rate=float(
            np.mean([r.pointwise_covered.mean() for r in results_list])
        ),
        mean_crit=float(crits.mean()),
        std_crit=float(crits.std()),
        mean_width_simultaneous=float(
            np.mean([r.mean_width_simultaneous for r in results_list])
        ),
        mean_width_pointwise=float(np.mean([r.mean_width_pointwise for r in results_list])),
    )


# =============================================================================
# Simulation
# =============================================================================


def run_coverage_simulation(
    dgp: SerologyDGP,
    n_obs: int,
    n_sim: int,
    query: pd.DataFrame | None = None,
    estimator: SimultaneousBandEstimator | None = None,
    n_splines: int = 20,
    rng: np.random.Generator | None = None,
    progress: bool = True,
) -> tuple[CoverageSummary, list[BandCoverage]]:
    """Estimate band coverage for a DGP by repeated simulation.

    Each repeat samples ``n_obs`` individuals, fits a GAM of ``response`` on a
    smooth of ``age`` with the DGP's link, computes both bands on ``query``
    and checks them against the true curve on the link scale.

    Args:
        dgp: Data generating process with a known true curve.
        n_obs: Individuals per simulated data set.
        n_sim: Number of simulated data sets.
        query: Age grid. Defaults to 100 ages spanning the DGP's range.
        estimator: Band configuration. Defaults to 1000 replicates at 95%
            using the conditional covariance, which is what pyGAM provides.
        n_splines: Basis dimension of the age smooth.
        rng: Random generator shared by data sampling and band simulation.
        progress: Show a progress bar.

    Returns:
        Tuple of (summary, per-simulation results).
    """
    if rng is None:
        rng = np.random.default_rng()
    if query is None:
        query = age_grid(dgp.age_range, 100)
    if estimator is None:
        estimator = SimultaneousBandEstimator(n_reps=1000, unconditional=False)

    true_values = dgp.truth_at(query)

    results = []
    for _ in tqdm(range(n_sim), desc=dgp.name or "simulations", leave=False, disable=not progress):
        sample = dgp.sample(n_obs, rng)
        model = fit_gam(sample, "response", ["age"], n_splines=n_splines, link=dgp.link)
        band = estimator.estimate(model, query, rng=rng)
        results.append(evaluate_band(band, true_values))

    return aggregate_coverage(results, estimator.confidence), results


def critical_value_spread(
    model: FittedModel,
    query: pd.DataFrame,
    n_reps: int,
    seeds: Sequence[int],
    confidence: float = 0.95,
    **band_kwargs,
) -> NDArray:
    """Critical values of the same band computed under different seeds.

    The spread shrinks as ``n_reps`` grows; it measures the Monte Carlo error
    of ``crit`` for a given model and grid.

    Returns:
        Array of critical values, one per seed.
    """
    return np.array(
        [
            simultaneous_band(
                model, query, n_reps=n_reps, confidence=confidence, rng=seed, **band_kwargs
            ).crit
            for seed in seeds
        ]
    )
