"""Exceptions raised by the band estimators and model adapters.

All errors derive from ``ValueError`` so callers that already guard against
invalid numerical input keep working.
"""


class BandError(ValueError):
    """Base class for confidence band failures."""


class InvalidCovarianceError(BandError):
    """Coefficient covariance is not a finite, symmetric PSD matrix."""


class SchemaMismatchError(BandError):
    """Query data does not match what the fitted model expects."""


class InvalidParameterError(BandError):
    """A tuning parameter (n_reps, confidence, ...) is out of range."""


class NumericOverflowError(BandError):
    """Standardization would divide by zero or produce non-finite values."""
