"""Synthetic age-serology data with known true curves."""

from .serology import (
    SerologyDGP,
    age_grid,
    make_catalytic_dgp,
    make_linear_dgp,
    make_titre_waning_dgp,
    seroprevalence,
)

__all__ = [
    "SerologyDGP",
    "age_grid",
    "make_catalytic_dgp",
    "make_linear_dgp",
    "make_titre_waning_dgp",
    "seroprevalence",
]
