# ===================================== IMPORTS ====================================== #

# Standard Library Imports
from typing import Optional

# ==================================== EXCEPTIONS ==================================== #

class AnalysisError(Exception):
    """Base class for errors raised by the analysis pipeline."""
    status = "error"


class DimensionMismatch(AnalysisError):
    """Input tables disagree on sample or taxon identity.

    Structural: fatal for the operation that raised it, never truncated away.
    """
    status = "dimension_mismatch"


class InsufficientGroups(AnalysisError):
    """A grouping has fewer than two levels, or one of its levels is empty."""
    status = "insufficient_groups"


class EstimationError(AnalysisError):
    """A statistic cannot be estimated for the given subset."""
    status = "estimation_error"


class NotComputable(AnalysisError):
    """Small-sample outcome that is not a numeric failure (e.g. Shapiro-Wilk on n < 3)."""
    status = "not_computable"

    def __init__(self, message: str, n: Optional[int] = None):
        super().__init__(message)
        self.n = n
