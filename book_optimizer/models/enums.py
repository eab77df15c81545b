"""
Enumeration definitions for the Book Optimizer.

All enums inherit from both `str` and `Enum` so pydantic models serialize
them as plain strings in API responses and JSONB snapshots.
"""

from enum import Enum


class AssignmentType(str, Enum):
    """
    Account-type batch. Each optimization run covers exactly one batch.
    """
    CUSTOMER = "customer"
    PROSPECT = "prospect"


class LockType(str, Enum):
    """
    Stability lock rules, listed in their default priority order.

    - manual_lock: account flagged as excluded from reassignment
    - backfill_migration: owner is leaving; account migrates to the named replacement
    - cre_risk: account carries a customer risk flag
    - renewal_soon: renewal date falls inside the configured window
    - pe_firm: account belongs to a PE firm routed to a dedicated rep
    - recent_change: ownership changed inside the configured window
    """
    MANUAL_LOCK = "manual_lock"
    BACKFILL_MIGRATION = "backfill_migration"
    CRE_RISK = "cre_risk"
    RENEWAL_SOON = "renewal_soon"
    PE_FIRM = "pe_firm"
    RECENT_CHANGE = "recent_change"


class TeamTier(str, Enum):
    """
    Ordered team tiers, low to high. Order is defined by TEAM_TIER_ORDER in
    book_optimizer.services.scoring, not by declaration order.
    """
    SMB = "SMB"
    GROWTH = "Growth"
    MM = "MM"
    ENT = "ENT"


class GeoMatch(str, Enum):
    """
    How an account's territory relates to a rep's region.
    """
    EXACT = "exact"
    SIBLING = "sibling"
    PARENT = "parent"
    GLOBAL = "global"
    UNKNOWN = "unknown"


class BalanceMetric(str, Enum):
    """
    Workload dimensions that can be softly balanced across reps.
    """
    ARR = "arr"
    ATR = "atr"
    PIPELINE = "pipeline"
    TIER_1 = "tier_1"
    TIER_2 = "tier_2"
    TIER_3 = "tier_3"
    TIER_4 = "tier_4"


class BalanceIntensity(str, Enum):
    """
    Global multiplier presets applied to every balance penalty.
    """
    VERY_LIGHT = "very_light"
    LIGHT = "light"
    NORMAL = "normal"
    HEAVY = "heavy"
    VERY_HEAVY = "very_heavy"


class StrategicAssignmentPolicy(str, Enum):
    """
    How strategic accounts are distributed across strategic reps.

    - least_loaded: largest ARR first, each to the rep with the smallest running ARR
    - round_robin: largest ARR first, cycling over reps in id order
    - keep_owner: accounts already owned by a strategic rep stay; the rest go least-loaded
    """
    LEAST_LOADED = "least_loaded"
    ROUND_ROBIN = "round_robin"
    KEEP_OWNER = "keep_owner"


class StrategicFallbackPolicy(str, Enum):
    """
    What happens to strategic accounts when no strategic rep is eligible.

    - fall_through: accounts join the regular pool and a warning is raised
    - fail: the run fails as infeasible
    """
    FALL_THROUGH = "fall_through"
    FAIL = "fail"


class SolverBackend(str, Enum):
    EMBEDDED = "embedded"
    REMOTE = "remote"


class SolverStatus(str, Enum):
    """
    Status values of the solver wire contract.
    """
    OPTIMAL = "Optimal"
    INFEASIBLE = "Infeasible"
    TIME_LIMIT = "TimeLimit"
    ERROR = "Error"


class ErrorCategory(str, Enum):
    """
    Failure taxonomy shared by results and telemetry.
    """
    DATA_VALIDATION = "data_validation"
    SOLVER_INFEASIBLE = "solver_infeasible"
    SOLVER_TIMEOUT = "solver_timeout"
    SOLVER_CRASH = "solver_crash"
    NETWORK = "network"
    UNKNOWN = "unknown"


class ProgressStage(str, Enum):
    """
    Pipeline stages reported on the progress channel.
    """
    LOADING = "loading"
    PREPROCESSING = "preprocessing"
    BUILDING = "building"
    SOLVING = "solving"
    POSTPROCESSING = "postprocessing"
    COMPLETE = "complete"
    ERROR = "error"


class AssignmentSource(str, Enum):
    """
    Which pipeline stage produced a proposal.
    """
    STRATEGIC = "strategic"
    LOCKED = "locked"
    OPTIMIZED = "optimized"
    CASCADED = "cascaded"
