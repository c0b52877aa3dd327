"""
Unit tests for the fitted model adapters.

Critical behaviors tested:
1. LinearBasisModel predictions and standard errors follow X b and X V X'
2. PyGAMModel reproduces pyGAM's own predictions on the link scale
3. Schema problems (missing columns, unfitted GAMs) raise SchemaMismatchError
4. Bands can be computed end to end from a fitted pyGAM model
"""

import warnings

import numpy as np
import pandas as pd
import pytest
from pygam import LinearGAM, s

from seroband.datagen import age_grid, make_catalytic_dgp, make_titre_waning_dgp
from seroband.errors import SchemaMismatchError
from seroband.methods import simultaneous_band
from seroband.models import (
    FittedModel,
    LinearBasisModel,
    PyGAMModel,
    check_query,
    fit_gam,
    linear_predictor_se,
)


@pytest.fixture
def rng():
    """Fixed RNG for reproducible tests."""
    return np.random.default_rng(42)


@pytest.fixture
def titre_sample(rng):
    """Simulated log titres for 400 individuals."""
    return make_titre_waning_dgp().sample(400, rng)


@pytest.fixture
def titre_model(titre_sample):
    """GAM of log titre on a smooth of age."""
    return fit_gam(titre_sample, "response", ["age"], n_splines=15)


# =============================================================================
# Shared helpers
# =============================================================================


class TestHelpers:
    def test_linear_predictor_se(self):
        design = np.array([[1.0, 0.0], [1.0, 2.0]])
        covariance = np.array([[0.04, 0.01], [0.01, 0.09]])
        expected = np.sqrt(np.diag(design @ covariance @ design.T))
        np.testing.assert_allclose(linear_predictor_se(design, covariance), expected)

    def test_check_query_orders_columns(self):
        frame = pd.DataFrame({"b": [1.0], "a": [2.0], "c": [3.0]})
        checked = check_query(frame, ["a", "b"])
        assert list(checked.columns) == ["a", "b"]

    def test_check_query_rejects_non_frames(self):
        with pytest.raises(SchemaMismatchError, match="DataFrame"):
            check_query(np.zeros((3, 1)), ["age"])


# =============================================================================
# LinearBasisModel
# =============================================================================


class TestLinearBasisModel:
    @pytest.fixture
    def model(self):
        return LinearBasisModel(
            basis=lambda df: np.column_stack([np.ones(len(df)), df["age"], df["age"] ** 2]),
            coefficients=np.array([1.0, 0.5, -0.01]),
            covariance=np.diag([0.04, 0.001, 1e-6]),
            feature_names=["age"],
            conditional_covariance=np.diag([0.02, 0.0005, 5e-7]),
        )

    def test_predict(self, model):
        query = pd.DataFrame({"age": [0.0, 10.0, 20.0]})
        fit, se_fit = model.predict(query)

        np.testing.assert_allclose(fit, [1.0, 5.0, 7.0])
        design = model.predict_design(query)
        np.testing.assert_allclose(
            se_fit, np.sqrt(np.diag(design @ model.covariance @ design.T))
        )

    def test_covariance_selection(self, model):
        np.testing.assert_array_equal(model.coefficient_covariance(True), model.covariance)
        np.testing.assert_array_equal(
            model.coefficient_covariance(False), model.conditional_covariance
        )

    def test_conditional_defaults_to_main_covariance(self):
        model = LinearBasisModel(
            basis=lambda df: df[["age"]].to_numpy(),
            coefficients=[1.0],
            covariance=[[0.5]],
            feature_names=["age"],
        )
        np.testing.assert_array_equal(model.coefficient_covariance(False), [[0.5]])

    def test_one_dimensional_basis(self):
        model = LinearBasisModel(
            basis=lambda df: df["age"].to_numpy(),
            coefficients=[2.0],
            covariance=[[0.25]],
            feature_names=["age"],
        )
        fit, se_fit = model.predict(pd.DataFrame({"age": [1.0, 3.0]}))
        np.testing.assert_allclose(fit, [2.0, 6.0])
        np.testing.assert_allclose(se_fit, [0.5, 1.5])

    def test_basis_shape_mismatch(self, model):
        bad = LinearBasisModel(
            basis=lambda df: np.ones((len(df), 2)),
            coefficients=model.coefficients,
            covariance=model.covariance,
            feature_names=["age"],
        )
        with pytest.raises(SchemaMismatchError, match="Basis produced"):
            bad.predict_design(pd.DataFrame({"age": [1.0]}))

    def test_coefficients_must_be_vector(self):
        with pytest.raises(SchemaMismatchError):
            LinearBasisModel(
                basis=lambda df: df.to_numpy(),
                coefficients=np.ones((2, 2)),
                covariance=np.eye(2),
                feature_names=["age"],
            )

    def test_satisfies_protocol(self, model):
        assert isinstance(model, FittedModel)


# =============================================================================
# PyGAMModel
# =============================================================================


class TestPyGAMModel:
    def test_satisfies_protocol(self, titre_model):
        assert isinstance(titre_model, FittedModel)
        assert titre_model.feature_names == ["age"]

    def test_fit_matches_pygam_predict(self, titre_model):
        query = age_grid((0.0, 80.0), 40)
        fit, se_fit = titre_model.predict(query)

        expected = titre_model.gam.predict(query[["age"]].to_numpy())
        np.testing.assert_allclose(fit, expected, rtol=1e-8, atol=1e-10)
        assert se_fit.shape == (40,)
        assert np.all(se_fit > 0)

    def test_design_matches_coefficients(self, titre_model):
        query = age_grid((0.0, 80.0), 25)
        design = titre_model.predict_design(query)

        assert design.shape == (25, len(titre_model.coefficients))
        assert isinstance(design, np.ndarray)

    def test_unconditional_covariance_warns(self, titre_model):
        with pytest.warns(UserWarning, match="smoothing parameter uncertainty"):
            covariance = titre_model.coefficient_covariance(unconditional=True)

        p = len(titre_model.coefficients)
        assert covariance.shape == (p, p)
        np.testing.assert_allclose(covariance, covariance.T, atol=1e-12)

    def test_conditional_covariance_is_silent(self, titre_model):
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            titre_model.coefficient_covariance(unconditional=False)

    def test_unfitted_gam(self):
        with pytest.raises(SchemaMismatchError, match="fitted"):
            PyGAMModel(LinearGAM(s(0)), ["age"])

    def test_feature_count_mismatch(self, titre_model):
        with pytest.raises(SchemaMismatchError, match="features"):
            PyGAMModel(titre_model.gam, ["age", "sex"])

    def test_missing_query_column(self, titre_model):
        with pytest.raises(SchemaMismatchError, match="missing"):
            titre_model.predict(pd.DataFrame({"years": [1.0, 2.0]}))

    def test_band_from_gam(self, titre_model):
        query = age_grid((0.0, 80.0), 60)
        band = simultaneous_band(
            titre_model, query, n_reps=4000, rng=1, unconditional=False
        )

        assert band.crit > 2.0
        assert np.all(band.lower("simultaneous") <= band.lower("pointwise"))
        assert np.all(band.upper("pointwise") <= band.upper("simultaneous"))

    def test_band_from_gam_unconditional_warns(self, titre_model):
        query = age_grid((0.0, 80.0), 10)
        with pytest.warns(UserWarning):
            simultaneous_band(titre_model, query, n_reps=500, rng=1)


class TestFitGam:
    def test_logistic_gam_for_serostatus(self, rng):
        dgp = make_catalytic_dgp(force_of_infection=0.05)
        sample = dgp.sample(600, rng)
        model = fit_gam(sample, "response", ["age"], n_splines=10, link="logit")

        query = age_grid(dgp.age_range, 30)
        band = simultaneous_band(model, query, n_reps=2000, rng=2, unconditional=False)
        prevalence = band.to_response_scale(model.inverse_link)

        assert np.all((prevalence.lower() >= 0) & (prevalence.upper() <= 1))
        np.testing.assert_allclose(
            prevalence.fit,
            model.gam.predict_mu(query[["age"]].to_numpy()),
            rtol=1e-8,
        )

    def test_multiple_covariates(self, rng):
        frame = pd.DataFrame(
            {
                "age": rng.uniform(0, 80, 300),
                "days_since_infection": rng.uniform(0, 365, 300),
            }
        )
        frame["response"] = np.log1p(frame["age"]) + rng.normal(0, 0.3, 300)
        model = fit_gam(frame, "response", ["age", "days_since_infection"], n_splines=8)

        assert model.feature_names == ["age", "days_since_infection"]
        design = model.predict_design(frame.head(5))
        assert design.shape == (5, len(model.coefficients))

    def test_unknown_link(self, titre_sample):
        with pytest.raises(ValueError, match="Unknown link"):
            fit_gam(titre_sample, "response", ["age"], link="probit")

    def test_no_covariates(self, titre_sample):
        with pytest.raises(SchemaMismatchError):
            fit_gam(titre_sample, "response", [])

    def test_missing_response(self, titre_sample):
        with pytest.raises(SchemaMismatchError, match="Response"):
            fit_gam(titre_sample, "titre", ["age"])
