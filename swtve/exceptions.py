"""Custom exception classes for the swtve library."""

class SwtveError(Exception):
    """Base class for all custom exceptions in the swtve library."""
    pass

class SwtveConfigError(SwtveError):
    """Exception raised for errors in configuration."""
    pass

class InvalidDatasetError(SwtveError):
    """Exception raised when required dataset columns are missing or malformed."""
    pass

class UnsupportedDesignError(SwtveError):
    """Exception raised when the trial design violates a structural assumption of a model family.

    The fixed-width spline and step bases, for example, assume exactly seven
    nominal periods.
    """
    pass

class UnsupportedEnforcementError(SwtveError):
    """Exception raised for an unknown or missing monotonicity strategy."""
    pass

class FittingFailedError(SwtveError):
    """Exception raised when an external fitting routine errors or fails to converge."""
    pass

class NonPositiveVarianceError(SwtveError):
    """Exception raised when a propagated variance for the ATE or LTE is not positive."""
    pass
