"""
Error taxonomy for the report pipeline.

``ReportError`` subclasses are fatal to the report section that raised them
but never to the whole run. Warnings are informational and never block.
"""
# ==================================== EXCEPTIONS ==================================== #

class ReportError(Exception):
    """Base class for errors that abort a single report section."""


class AlignmentError(ReportError):
    """Sample identifiers of two paired structures cannot be reconciled."""


class MissingColumnError(ReportError, KeyError):
    """A required metadata column is absent."""

    def __init__(self, columns, context: str = "metadata"):
        if isinstance(columns, str):
            columns = [columns]
        self.columns = list(columns)
        self.context = context
        super().__init__(f"Missing required column(s) in {context}: {', '.join(self.columns)}")

    def __str__(self) -> str:
        # KeyError quotes its message otherwise
        return self.args[0]


class DegenerateInputError(ReportError):
    """Zero-count sample, zero-variance covariate/response or constant matrix."""


class InputValidationError(ValueError):
    """A data model invariant is violated at construction time."""

# ===================================== WARNINGS ===================================== #

class ConvergenceWarning(UserWarning):
    """Eigendecomposition produced negative eigenvalues."""


class StatisticalAssumptionViolation(UserWarning):
    """Informational note, e.g. a permutation test with very few samples."""
