"""
Unit tests for band coverage evaluation.

Critical behaviors tested:
1. A band around the true curve covers it; a shifted truth is flagged
2. Aggregation produces rates with valid Wilson intervals
3. The simulation loop runs end to end on a pyGAM fit
"""

import numpy as np
import pandas as pd
import pytest

from seroband.datagen import age_grid, make_linear_dgp
from seroband.eval import (
    BandCoverage,
    aggregate_coverage,
    critical_value_spread,
    evaluate_band,
    run_coverage_simulation,
    wilson_interval,
)
from seroband.methods import SimultaneousBandEstimator, simultaneous_band
from seroband.models import LinearBasisModel


@pytest.fixture
def model():
    """Straight line in age with known covariance."""
    return LinearBasisModel(
        basis=lambda df: np.column_stack([np.ones(len(df)), df["age"]]),
        coefficients=np.array([1.0, 0.05]),
        covariance=np.array([[0.01, -0.0001], [-0.0001, 0.00001]]),
        feature_names=["age"],
    )


@pytest.fixture
def query():
    return age_grid((0.0, 80.0), 41)


@pytest.fixture
def band(model, query):
    return simultaneous_band(model, query, n_reps=4000, rng=0)


class TestEvaluateBand:
    def test_truth_at_fit_is_covered(self, band):
        coverage = evaluate_band(band, band.fit)

        assert coverage.covers_simultaneous
        assert coverage.covers_pointwise
        assert coverage.max_violation_simultaneous == 0.0
        assert coverage.pointwise_covered.all()
        assert coverage.crit == band.crit

    def test_truth_between_bands(self, band):
        """Truth just outside the pointwise band but inside the simultaneous one."""
        assert band.crit > band.pointwise_z
        multiplier = 0.5 * (band.crit + band.pointwise_z)
        truth = band.fit + multiplier * band.se_fit

        coverage = evaluate_band(band, truth)

        assert coverage.covers_simultaneous
        assert not coverage.covers_pointwise
        assert not coverage.pointwise_covered.any()
        assert coverage.max_violation_pointwise > 0

    def test_shifted_truth_violates(self, band):
        truth = band.fit - 10 * band.se_fit
        coverage = evaluate_band(band, truth)

        assert not coverage.covers_simultaneous
        np.testing.assert_allclose(
            coverage.max_violation_simultaneous,
            np.max((10 - band.crit) * band.se_fit),
        )

    def test_widths(self, band):
        coverage = evaluate_band(band, band.fit)
        assert coverage.mean_width_simultaneous == pytest.approx(
            np.mean(2 * band.crit * band.se_fit)
        )
        assert coverage.mean_width_pointwise == pytest.approx(np.mean(4 * band.se_fit))

    def test_shape_mismatch(self, band):
        with pytest.raises(ValueError, match="shape"):
            evaluate_band(band, np.zeros(3))


class TestAggregation:
    def _coverage(self, simultaneous, pointwise, crit=2.5):
        covered = np.array([True, pointwise])
        return BandCoverage(
            covers_simultaneous=simultaneous,
            covers_pointwise=pointwise,
            pointwise_covered=covered,
            simultaneous_covered=np.array([True, simultaneous]),
            max_violation_simultaneous=0.0,
            max_violation_pointwise=0.0,
            mean_width_simultaneous=2 * crit,
            mean_width_pointwise=4.0,
            crit=crit,
        )

    def test_rates(self):
        results = [
            self._coverage(True, True, 2.4),
            self._coverage(True, False, 2.6),
            self._coverage(False, False, 2.5),
            self._coverage(True, False, 2.5),
        ]
        summary = aggregate_coverage(results, confidence=0.95)

        assert summary.n_simulations == 4
        assert summary.simultaneous_coverage == pytest.approx(0.75)
        assert summary.pointwise_coverage == pytest.approx(0.25)
        assert summary.mean_pointwise_rate == pytest.approx((1.0 + 0.5 * 3) / 4)
        assert summary.mean_crit == pytest.approx(2.5)
        lower, upper = summary.simultaneous_ci
        assert lower < 0.75 < upper

    def test_to_dict_is_json_ready(self):
        summary = aggregate_coverage([self._coverage(True, True)])
        as_dict = summary.to_dict()
        assert as_dict["n_simulations"] == 1
        assert isinstance(as_dict["simultaneous_ci"], list)

    def test_empty(self):
        with pytest.raises(ValueError, match="No results"):
            aggregate_coverage([])

    @pytest.mark.parametrize("rate", [0.0, 0.5, 0.95, 1.0])
    def test_wilson_interval_bounds(self, rate):
        lower, upper = wilson_interval(rate, 100)
        assert 0.0 <= lower <= rate <= upper <= 1.0

    @pytest.mark.parametrize("n", [1, 7, 50, 1000], ids=lambda n: f"n{n}")
    def test_wilson_interval_at_extremes(self, n):
        """All misses or all hits give an interval anchored at 0 or 1."""
        lower, upper = wilson_interval(0.0, n)
        assert lower == 0.0
        assert 0.0 < upper < 1.0

        lower, upper = wilson_interval(1.0, n)
        assert upper == 1.0
        assert 0.0 < lower < 1.0

    def test_no_simulation_covers(self):
        results = [self._coverage(False, False) for _ in range(100)]
        summary = aggregate_coverage(results)

        assert summary.simultaneous_coverage == 0.0
        assert summary.simultaneous_ci[0] == 0.0
        assert summary.simultaneous_ci[1] > 0.0


class TestSimulation:
    def test_run_coverage_simulation(self):
        dgp = make_linear_dgp(intercept=1.0, slope=0.05, noise_sd=0.5)
        estimator = SimultaneousBandEstimator(n_reps=500, unconditional=False)

        summary, results = run_coverage_simulation(
            dgp,
            n_obs=200,
            n_sim=3,
            query=age_grid(dgp.age_range, 20),
            estimator=estimator,
            n_splines=8,
            rng=np.random.default_rng(0),
            progress=False,
        )

        assert summary.n_simulations == 3
        assert len(results) == 3
        assert 0.0 <= summary.simultaneous_coverage <= 1.0
        # A band that covers the whole curve pointwise also covers it simultaneously
        assert summary.simultaneous_coverage >= summary.pointwise_coverage
        assert summary.mean_width_simultaneous > summary.mean_width_pointwise

    def test_critical_value_spread(self, model, query):
        crits = critical_value_spread(model, query, n_reps=2000, seeds=range(5))

        assert crits.shape == (5,)
        assert np.all(crits > 2.0)
        assert np.std(crits) < 0.1

    def test_query_frame_untouched(self, model):
        query = pd.DataFrame({"age": [10.0, 20.0]})
        critical_value_spread(model, query, n_reps=200, seeds=[1])
        assert list(query.columns) == ["age"]
