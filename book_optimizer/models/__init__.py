"""
Package initialization file for Book Optimizer models.

Re-exports the enumerations and the most used Pydantic schemas so callers
can import them from book_optimizer.models directly:

    from book_optimizer.models import Account, Rep, AssignmentType

The in-memory LP classes stay in book_optimizer.models.lp.
"""

# =============================================================================
# Enums
# =============================================================================

from book_optimizer.models.enums import (
    AssignmentSource,
    AssignmentType,
    BalanceIntensity,
    BalanceMetric,
    ErrorCategory,
    GeoMatch,
    LockType,
    ProgressStage,
    SolverBackend,
    SolverStatus,
    StrategicAssignmentPolicy,
    StrategicFallbackPolicy,
    TeamTier,
)

# =============================================================================
# Schemas
# =============================================================================

from book_optimizer.models.schemas import (
    Account,
    AssignmentProposal,
    AssignmentScores,
    BalanceConfig,
    BuildData,
    LPConfiguration,
    LPMetrics,
    MetricBalanceConfig,
    NormalizedWeights,
    OptimizationError,
    OptimizationResult,
    OptimizationRunRecord,
    Rep,
    RepLoad,
    SolverResponse,
    StabilityLockResult,
)


__all__ = [
    # Enums
    "AssignmentSource",
    "AssignmentType",
    "BalanceIntensity",
    "BalanceMetric",
    "ErrorCategory",
    "GeoMatch",
    "LockType",
    "ProgressStage",
    "SolverBackend",
    "SolverStatus",
    "StrategicAssignmentPolicy",
    "StrategicFallbackPolicy",
    "TeamTier",
    # Schemas
    "Account",
    "AssignmentProposal",
    "AssignmentScores",
    "BalanceConfig",
    "BuildData",
    "LPConfiguration",
    "LPMetrics",
    "MetricBalanceConfig",
    "NormalizedWeights",
    "OptimizationError",
    "OptimizationResult",
    "OptimizationRunRecord",
    "Rep",
    "RepLoad",
    "SolverResponse",
    "StabilityLockResult",
]
