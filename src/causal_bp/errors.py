"""
Exception hierarchy for the analysis package.
"""


class CausalBPError(Exception):
    """Base exception for analysis errors."""

    pass


class DataError(CausalBPError):
    """Data loading or processing errors."""

    pass


class MissingDataError(DataError):
    """Missing values reached a step that requires complete cases."""

    pass


class PositivityViolationError(CausalBPError):
    """Zero or non-finite exposure densities reached an estimator that needs finite weights."""

    def __init__(self, message: str, n_units: int = 0):
        super().__init__(message)
        self.n_units = n_units


class ModelFitError(CausalBPError):
    """A nuisance or outcome model could not be fit."""

    pass
