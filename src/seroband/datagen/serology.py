"""
Data Generating Processes for Age-Serology Curves

Each DGP includes:
- generator: sampling function (n, rng) -> DataFrame with ``age`` and ``response``
- true_curve: expected response on the model's link scale, (age) -> values
- description: what makes this case interesting
"""

from collections.abc import Callable
from dataclasses import dataclass

import numpy as np
import pandas as pd
from scipy.special import expit, logit

# =============================================================================
# Base DGP Class
# =============================================================================


@dataclass
class SerologyDGP:
    """
    Data generating process for an antibody response measured against age.

    Parameters
    ----------
    generator : Callable
        Function with signature (n, rng) -> DataFrame with columns ``age`` and
        ``response``
    true_curve : Callable
        Function with signature (age_array) -> expected response on the link
        scale (identity for titres, logit for serostatus)
    link : str
        Link the matching GAM should use, ``"identity"`` or ``"logit"``
    age_range : tuple[float, float]
        Ages covered by the generator
    name : str
        Human-readable name for this DGP
    description : str
        Description of what makes this DGP interesting
    """

    generator: Callable[[int, np.random.Generator], pd.DataFrame]
    true_curve: Callable[[np.ndarray], np.ndarray]
    link: str = "identity"
    age_range: tuple[float, float] = (0.0, 80.0)
    name: str = ""
    description: str = ""

    def sample(self, n: int, rng: np.random.Generator | None = None) -> pd.DataFrame:
        """Generate a sample of ``n`` individuals from the DGP."""
        if rng is None:
            rng = np.random.default_rng()
        return self.generator(n, rng)

    def truth_at(self, query: pd.DataFrame) -> np.ndarray:
        """True curve at the ``age`` column of ``query``."""
        return self.true_curve(query["age"].to_numpy(dtype=np.float64))


def age_grid(age_range: tuple[float, float] = (0.0, 80.0), n_points: int = 100) -> pd.DataFrame:
    """Evenly spaced ages, as a query frame with a single ``age`` column."""
    return pd.DataFrame({"age": np.linspace(age_range[0], age_range[1], n_points)})


def _uniform_ages(n: int, age_range: tuple[float, float], rng: np.random.Generator) -> np.ndarray:
    return rng.uniform(age_range[0], age_range[1], size=n)


# =============================================================================
# DGP Factories
# =============================================================================


def make_linear_dgp(
    intercept: float = 1.0,
    slope: float = 0.05,
    noise_sd: float = 0.5,
    age_range: tuple[float, float] = (0.0, 80.0),
) -> SerologyDGP:
    """
    Straight-line response with Gaussian noise.

    The simplest case: a smooth with enough flexibility should shrink to the
    line, so the simultaneous band is close to a Working-Hotelling band.
    """

    def true_curve(age):
        return intercept + slope * np.asarray(age, dtype=np.float64)

    def generator(n, rng):
        age = _uniform_ages(n, age_range, rng)
        response = true_curve(age) + rng.normal(0.0, noise_sd, size=n)
        return pd.DataFrame({"age": age, "response": response})

    return SerologyDGP(
        generator=generator,
        true_curve=true_curve,
        link="identity",
        age_range=age_range,
        name=f"linear_b{slope}",
        description="Linear trend in response with age",
    )


def make_titre_waning_dgp(
    baseline: float = 1.0,
    peak: float = 4.0,
    rise_rate: float = 0.3,
    waning_rate: float = 0.02,
    noise_sd: float = 0.8,
    age_range: tuple[float, float] = (0.0, 80.0),
) -> SerologyDGP:
    """
    Log antibody titre that rises through childhood exposure and wanes later.

    Expected log titre::

        baseline + peak * (1 - exp(-rise_rate * age)) * exp(-waning_rate * age)

    Parameters
    ----------
    baseline : float
        Log titre at birth
    peak : float
        Scale of the exposure-driven rise
    rise_rate : float
        Rate of antibody acquisition per year of age
    waning_rate : float
        Rate of decay per year of age
    noise_sd : float
        Standard deviation of the measurement noise on the log scale
    age_range : tuple[float, float]
        Ages sampled uniformly

    Returns
    -------
    SerologyDGP
        Process with an identity link
    """
    if rise_rate <= 0 or waning_rate < 0:
        raise ValueError("rise_rate must be positive and waning_rate non-negative")

    def true_curve(age):
        age = np.asarray(age, dtype=np.float64)
        return baseline + peak * (1.0 - np.exp(-rise_rate * age)) * np.exp(
            -waning_rate * age
        )

    def generator(n, rng):
        age = _uniform_ages(n, age_range, rng)
        response = true_curve(age) + rng.normal(0.0, noise_sd, size=n)
        return pd.DataFrame({"age": age, "response": response})

    return SerologyDGP(
        generator=generator,
        true_curve=true_curve,
        link="identity",
        age_range=age_range,
        name=f"waning_r{rise_rate}_w{waning_rate}",
        description="Hump-shaped log titre: fast childhood rise, slow waning",
    )


def make_catalytic_dgp(
    force_of_infection: float = 0.05,
    age_range: tuple[float, float] = (0.5, 80.0),
) -> SerologyDGP:
    """
    Binary serostatus under the constant-force serocatalytic model.

    Seroprevalence at age ``a`` is ``1 - exp(-force_of_infection * a)``. The
    true curve is returned on the logit scale, which diverges at age 0, so the
    default age range starts at six months.

    Parameters
    ----------
    force_of_infection : float
        Constant annual rate of seroconversion
    age_range : tuple[float, float]
        Ages sampled uniformly

    Returns
    -------
    SerologyDGP
        Process with a logit link
    """
    if force_of_infection <= 0:
        raise ValueError("force_of_infection must be positive")

    eps = 1e-9

    def prevalence(age):
        return 1.0 - np.exp(-force_of_infection * np.asarray(age, dtype=np.float64))

    def true_curve(age):
        return logit(np.clip(prevalence(age), eps, 1.0 - eps))

    def generator(n, rng):
        age = _uniform_ages(n, age_range, rng)
        seropositive = rng.random(n) < prevalence(age)
        return pd.DataFrame({"age": age, "response": seropositive.astype(np.float64)})

    return SerologyDGP(
        generator=generator,
        true_curve=true_curve,
        link="logit",
        age_range=age_range,
        name=f"catalytic_foi{force_of_infection}",
        description="Serocatalytic seroprevalence curve observed through binary status",
    )


def seroprevalence(logit_values: np.ndarray) -> np.ndarray:
    """Map logit-scale curve values to seroprevalence."""
    return expit(logit_values)
