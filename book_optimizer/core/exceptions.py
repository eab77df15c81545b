"""
Domain exceptions for the optimization pipeline.

Services raise these; OptimizationEngine.run converts them into structured
OptimizationError values so nothing escapes the engine's public boundary.
Each exception carries the ErrorCategory used for telemetry and, where one
exists, a hint telling the caller what to try next.
"""

from typing import Optional

from book_optimizer.models.enums import ErrorCategory


HINT_SMALLER_BATCH = "Try a smaller batch or tighter filters"
HINT_INFRASTRUCTURE = "Solver infrastructure unavailable, retry later"


class OptimizationFailure(Exception):
    """Base class for fatal pipeline failures."""

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(self, message: str, hint: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.hint = hint


class DataValidationError(OptimizationFailure):
    """Input snapshot cannot be optimized (e.g. no eligible reps)."""

    category = ErrorCategory.DATA_VALIDATION


class InfeasibleProblemError(OptimizationFailure):
    """Hard constraints contradict each other; no assignment exists."""

    category = ErrorCategory.SOLVER_INFEASIBLE


class LPFormatError(OptimizationFailure):
    """LP text could not be parsed."""

    category = ErrorCategory.DATA_VALIDATION


# =============================================================================
# Solver Errors
# =============================================================================

class SolverError(OptimizationFailure):
    """Base class for failures raised by a solver backend."""

    category = ErrorCategory.UNKNOWN


class SolverInfeasibleError(SolverError):
    category = ErrorCategory.SOLVER_INFEASIBLE


class SolverTimeoutError(SolverError):
    """Time limit reached before any feasible solution was found."""

    category = ErrorCategory.SOLVER_TIMEOUT


class SolverCrashError(SolverError):
    """The solver process failed (memory exhaustion, internal error, HTTP 5xx)."""

    category = ErrorCategory.SOLVER_CRASH


class SolverUnavailableError(SolverError):
    """The backend could not be reached at all."""

    category = ErrorCategory.NETWORK
