"""
Pydantic models for the Book Optimizer.

This module defines the value objects that flow through one optimization
run: the loaded build snapshot (accounts, reps, configuration), the
intermediate per-pair scores and lock decisions, and the outputs (proposals,
rep loads, metrics, result envelope). It also defines the solver wire
contract shared by the remote solver client and the solver service endpoint,
and the telemetry run record.

All models use Pydantic v2 syntax. Models produced during a run and never
mutated afterwards (lock results, scores) are frozen.
"""

from datetime import date
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

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
# Build Snapshot (Data Loader output)
# =============================================================================


class Account(BaseModel):
    """
    A parent-level account after hierarchy aggregation.

    Revenue figures already include the account's children. Children are
    listed in child_ids and never become decision variables themselves.
    """
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "id": "001A",
                "name": "Acme Corp",
                "arr": 1250000.0,
                "atr": 400000.0,
                "pipeline": 0.0,
                "owner_id": "rep-7",
                "owner_change_date": "2024-03-01",
                "owner_count": 2,
                "is_customer": True,
                "territory": "Boston",
                "employees": 850,
                "renewal_date": "2026-11-15",
                "child_ids": ["001B", "001C"],
            }
        }
    )

    id: str = Field(..., description="Account identifier")
    name: str = Field(default="", description="Display name")
    arr: float = Field(default=0.0, ge=0, description="Aggregated annual recurring revenue")
    atr: float = Field(default=0.0, ge=0, description="Aggregated revenue available to renew")
    pipeline: float = Field(default=0.0, ge=0, description="Aggregated open pipeline value")
    owner_id: Optional[str] = Field(default=None, description="Current owner rep id")
    owner_change_date: Optional[date] = Field(
        default=None,
        description="Date the current owner took over",
    )
    owner_count: Optional[int] = Field(
        default=None,
        ge=0,
        description="Number of distinct owners over the account's lifetime",
    )
    is_customer: bool = Field(default=True, description="Customer (True) or prospect (False)")
    is_strategic: bool = Field(default=False, description="Strategic account flag")
    territory: Optional[str] = Field(default=None, description="Sales territory label")
    region: Optional[str] = Field(default=None, description="Region label, if already mapped")
    employees: Optional[int] = Field(default=None, ge=0, description="Employee count")
    commercial_tier: Optional[str] = Field(default=None, description="Commercial segment label")
    tier: Optional[int] = Field(
        default=None,
        ge=1,
        le=4,
        description="Account tier (1-4) used for tier-count balancing",
    )
    risk_flag: bool = Field(default=False, description="Customer risk flag")
    renewal_date: Optional[date] = Field(default=None, description="Next renewal date")
    pe_firm: Optional[str] = Field(default=None, description="Owning private-equity firm")
    exclude_from_reassignment: bool = Field(
        default=False,
        description="Manual lock: keep with current owner",
    )
    child_ids: List[str] = Field(default_factory=list, description="Child account ids")


class Rep(BaseModel):
    """
    An assignee with capacity.
    """
    id: str = Field(..., description="Rep identifier")
    name: str = Field(default="", description="Display name")
    region: Optional[str] = Field(default=None, description="Region or sub-region label")
    team_tier: Optional[TeamTier] = Field(default=None, description="Team tier the rep sells into")
    is_strategic: bool = Field(default=False, description="Member of the strategic pool")
    is_backfill_source: bool = Field(default=False, description="Rep is leaving; book migrates")
    backfill_target_rep_id: Optional[str] = Field(
        default=None,
        description="Replacement rep receiving a departing rep's book",
    )
    is_active: bool = Field(default=True)
    include_in_assignments: bool = Field(default=True, description="Eligible for new assignments")
    current_load: float = Field(default=0.0, description="Current ARR load, informational")
    pe_firms: List[str] = Field(
        default_factory=list,
        description="PE firms routed to this rep",
    )

    @field_validator("pe_firms", mode="before")
    @classmethod
    def split_pe_firms(cls, value: Any) -> Any:
        # Stored as a comma-separated text column
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        if value is None:
            return []
        return value

    @property
    def is_eligible(self) -> bool:
        return self.is_active and self.include_in_assignments


# =============================================================================
# Per-Build Optimization Configuration
# =============================================================================

ObjectiveName = Literal["continuity", "geography", "team_alignment", "geo_and_continuity"]


class ObjectivesConfig(BaseModel):
    """
    Objective toggles and raw weights for one assignment type.

    When priority_order is set, weights are derived from the order instead of
    the explicit values (see services.weights.derive_weights_from_priorities).
    """
    continuity_enabled: bool = True
    geography_enabled: bool = True
    team_alignment_enabled: bool = True
    continuity_weight: float = Field(default=0.35, ge=0)
    geography_weight: float = Field(default=0.35, ge=0)
    team_alignment_weight: float = Field(default=0.30, ge=0)
    priority_order: Optional[List[ObjectiveName]] = None


class MetricBalanceConfig(BaseModel):
    """
    Soft balance tolerances for one metric.

    variance and buffer are fractions of the per-rep target; buffer must be
    wider than variance. min_value/max_value, when given, replace the buffer
    edges with absolute bounds.
    """
    enabled: bool = True
    penalty: float = Field(default=0.5, ge=0, description="Relative weight of this metric")
    variance: float = Field(default=0.10, gt=0, description="Inner band half-width")
    buffer: float = Field(default=0.40, gt=0, description="Buffer zone half-width")
    min_value: Optional[float] = Field(default=None, ge=0)
    max_value: Optional[float] = Field(default=None, ge=0)

    @field_validator("buffer")
    @classmethod
    def buffer_wider_than_variance(cls, value: float, info) -> float:
        variance = info.data.get("variance")
        if variance is not None and value < variance:
            raise ValueError("buffer must be at least as wide as variance")
        return value


class BalanceConfig(BaseModel):
    arr: MetricBalanceConfig = Field(default_factory=MetricBalanceConfig)
    atr: MetricBalanceConfig = Field(
        default_factory=lambda: MetricBalanceConfig(penalty=0.3, variance=0.15, buffer=0.45)
    )
    pipeline: MetricBalanceConfig = Field(
        default_factory=lambda: MetricBalanceConfig(penalty=0.4, variance=0.15, buffer=0.45)
    )
    tiers: MetricBalanceConfig = Field(
        default_factory=lambda: MetricBalanceConfig(penalty=0.25, variance=0.5, buffer=1.0)
    )
    intensity: BalanceIntensity = BalanceIntensity.NORMAL


DEFAULT_LOCK_PRIORITY: List[LockType] = [
    LockType.MANUAL_LOCK,
    LockType.BACKFILL_MIGRATION,
    LockType.CRE_RISK,
    LockType.RENEWAL_SOON,
    LockType.PE_FIRM,
    LockType.RECENT_CHANGE,
]


class StabilityConfig(BaseModel):
    """
    Stability lock rules. Rules are evaluated in `priority` order and the
    first match wins; rules missing from `enabled_locks` are skipped.
    """
    enabled_locks: List[LockType] = Field(default_factory=lambda: list(DEFAULT_LOCK_PRIORITY))
    priority: List[LockType] = Field(default_factory=lambda: list(DEFAULT_LOCK_PRIORITY))
    renewal_soon_days: int = Field(default=90, ge=0)
    recent_change_days: int = Field(default=90, ge=0)


class ContinuityParams(BaseModel):
    base_continuity: float = 0.10
    tenure_weight: float = 0.35
    tenure_max_days: int = Field(default=730, gt=0)
    stability_weight: float = 0.30
    stability_max_owners: int = Field(default=5, gt=0)
    value_weight: float = 0.25
    value_threshold: float = Field(default=2_000_000, gt=0)


class GeographyParams(BaseModel):
    exact_match_score: float = 1.0
    sibling_score: float = 0.65
    parent_score: float = 0.40
    global_score: float = 0.20
    unknown_territory_score: float = 0.50


class TeamParams(BaseModel):
    exact_match_score: float = 1.0
    one_level_score: float = 0.60
    two_level_score: float = 0.25
    three_level_score: float = 0.05
    reaching_down_penalty: float = 0.15


class SolverParams(BaseModel):
    """Per-build overrides of the process-wide solver settings."""
    timeout_seconds: Optional[float] = Field(default=None, gt=0)
    mip_rel_gap: Optional[float] = Field(default=None, ge=0)


class ConstraintsConfig(BaseModel):
    restrict_to_macro_region: bool = False
    strategic_policy: StrategicAssignmentPolicy = StrategicAssignmentPolicy.LEAST_LOADED
    strategic_fallback: StrategicFallbackPolicy = StrategicFallbackPolicy.FALL_THROUGH


class LPConfiguration(BaseModel):
    """
    Complete per-build optimization configuration.
    """
    customer_objectives: ObjectivesConfig = Field(default_factory=ObjectivesConfig)
    prospect_objectives: ObjectivesConfig = Field(
        default_factory=lambda: ObjectivesConfig(
            continuity_weight=0.20,
            geography_weight=0.45,
            team_alignment_weight=0.35,
        )
    )
    balance: BalanceConfig = Field(default_factory=BalanceConfig)
    stability: StabilityConfig = Field(default_factory=StabilityConfig)
    continuity: ContinuityParams = Field(default_factory=ContinuityParams)
    geography: GeographyParams = Field(default_factory=GeographyParams)
    team: TeamParams = Field(default_factory=TeamParams)
    solver: SolverParams = Field(default_factory=SolverParams)
    constraints: ConstraintsConfig = Field(default_factory=ConstraintsConfig)
    territory_mappings: Dict[str, str] = Field(
        default_factory=dict,
        description="Explicit territory -> sub-region overrides",
    )

    def objectives_for(self, assignment_type: AssignmentType) -> ObjectivesConfig:
        if assignment_type == AssignmentType.CUSTOMER:
            return self.customer_objectives
        return self.prospect_objectives


class BuildData(BaseModel):
    """Snapshot handed from the data loader to the engine."""
    build_id: str
    assignment_type: AssignmentType
    accounts: List[Account] = Field(default_factory=list)
    reps: List[Rep] = Field(default_factory=list)
    config: LPConfiguration = Field(default_factory=LPConfiguration)
    child_names: Dict[str, str] = Field(
        default_factory=dict,
        description="Display names of child accounts, keyed by id",
    )
    child_owners: Dict[str, str] = Field(
        default_factory=dict,
        description="Current owner of each child account that has one, keyed by id",
    )


# =============================================================================
# Pipeline Intermediates
# =============================================================================


class StabilityLockResult(BaseModel):
    """
    Lock decision for one account. target_rep_id is always set when locked.
    """
    model_config = ConfigDict(frozen=True)

    is_locked: bool
    lock_type: Optional[LockType] = None
    target_rep_id: Optional[str] = None
    reason: str = ""


class AssignmentScores(BaseModel):
    """
    Quality scores for one (account, rep) pair.

    team_alignment is None when tier data is missing on either side, so the
    objective can redistribute its weight instead of treating it as zero.
    """
    model_config = ConfigDict(frozen=True)

    continuity: float = Field(..., ge=0, le=1)
    geography: float = Field(..., ge=0, le=1)
    team_alignment: Optional[float] = Field(default=None, ge=0, le=1)
    tie_breaker: float = Field(default=0.0, ge=0)
    geo_match: GeoMatch = GeoMatch.UNKNOWN
    tier_distance: Optional[int] = None


class NormalizedWeights(BaseModel):
    """
    Objective weights, non-negative and summing to 1.0.
    """
    model_config = ConfigDict(frozen=True)

    continuity: float = Field(..., ge=0)
    geography: float = Field(..., ge=0)
    team_alignment: float = Field(..., ge=0)

    def effective_for(self, scores: AssignmentScores) -> "NormalizedWeights":
        """
        Weights to apply to one pair.

        When the pair has no team-alignment score, the team weight is spread
        over continuity and geography in proportion to their own weights.
        """
        if scores.team_alignment is not None:
            return self

        remaining = self.continuity + self.geography
        if remaining <= 0:
            return NormalizedWeights(continuity=0.5, geography=0.5, team_alignment=0.0)

        return NormalizedWeights(
            continuity=self.continuity / remaining,
            geography=self.geography / remaining,
            team_alignment=0.0,
        )


# =============================================================================
# Outputs
# =============================================================================


class AssignmentProposal(BaseModel):
    """
    Final assignment for one account, with its originating scores and rationale.

    Revenue fields are carried so metrics can be derived from the proposal
    list alone.
    """
    account_id: str
    account_name: str = ""
    proposed_rep_id: str
    proposed_rep_name: str = ""
    proposed_rep_region: Optional[str] = None
    current_owner_id: Optional[str] = None
    source: AssignmentSource
    scores: AssignmentScores
    total_score: float = 0.0
    lock_type: Optional[LockType] = None
    rationale: str = ""
    parent_account_id: Optional[str] = None
    arr: float = 0.0
    atr: float = 0.0
    pipeline: float = 0.0
    tier: Optional[int] = None
    is_strategic: bool = False

    @property
    def is_cascaded(self) -> bool:
        return self.source == AssignmentSource.CASCADED


class RepLoad(BaseModel):
    """
    Workload summary for one rep, derived from the final proposals.
    """
    rep_id: str
    rep_name: str = ""
    is_strategic: bool = False
    account_count: int = 0
    arr: float = 0.0
    atr: float = 0.0
    pipeline: float = 0.0
    tier_counts: Dict[int, int] = Field(default_factory=dict)
    targets: Dict[BalanceMetric, float] = Field(default_factory=dict)
    deviation: Dict[BalanceMetric, float] = Field(
        default_factory=dict,
        description="Load minus target per balanced metric",
    )
    deviation_percent: Dict[BalanceMetric, float] = Field(default_factory=dict)
    unresolved_slack: float = Field(
        default=0.0,
        description="Normalized deviation beyond the variance band, summed over metrics",
    )
    outside_buffer: bool = False


class LPMetrics(BaseModel):
    """
    Aggregate success metrics for one run.
    """
    arr_variance_percent: float = 0.0
    atr_variance_percent: float = 0.0
    pipeline_variance_percent: float = 0.0
    max_overload_percent: float = 0.0
    continuity_rate: float = 0.0
    high_value_continuity_rate: float = 0.0
    arr_stayed_percent: float = 0.0
    exact_geo_match_rate: float = 0.0
    sibling_geo_match_rate: float = 0.0
    cross_region_rate: float = 0.0
    exact_tier_match_rate: float = 0.0
    one_level_tier_match_rate: float = 0.0
    unresolved_slack_total: float = 0.0
    reps_outside_buffer: int = 0
    solve_time_ms: float = 0.0
    total_accounts: int = 0
    total_reps: int = 0


class ProblemSize(BaseModel):
    accounts: int = 0
    reps: int = 0
    variables: int = 0
    binary_variables: int = 0
    constraints: int = 0


class OptimizationError(BaseModel):
    category: ErrorCategory
    message: str
    hint: Optional[str] = None


class ProgressEvent(BaseModel):
    stage: ProgressStage
    message: str = ""
    progress: float = Field(default=0.0, ge=0, le=1)


class OptimizationResult(BaseModel):
    """
    Envelope returned by every optimization run, successful or not.

    On failure, proposals are empty and error is populated. Non-fatal
    conditions are listed in warnings in both cases.
    """
    success: bool
    build_id: Optional[str] = None
    assignment_type: AssignmentType
    proposals: List[AssignmentProposal] = Field(default_factory=list)
    rep_loads: List[RepLoad] = Field(default_factory=list)
    metrics: Optional[LPMetrics] = None
    solver_status: Optional[SolverStatus] = None
    solver_backend: Optional[SolverBackend] = None
    objective_value: Optional[float] = None
    problem_size: ProblemSize = Field(default_factory=ProblemSize)
    lock_stats: Dict[LockType, int] = Field(default_factory=dict)
    strategic_account_count: int = 0
    warnings: List[str] = Field(default_factory=list)
    error: Optional[OptimizationError] = None
    solve_time_ms: float = 0.0


# =============================================================================
# Solver Wire Contract
# =============================================================================


class SolverColumn(BaseModel):
    Primal: float = 0.0


class SolverResponse(BaseModel):
    """
    Response of a solver backend. Field names are part of the wire contract.
    """
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "status": "Optimal",
                "objectiveValue": 12.73,
                "columns": {"x0_1": {"Primal": 1.0}, "x1_0": {"Primal": 1.0}},
            }
        }
    )

    status: SolverStatus
    objectiveValue: float = 0.0
    columns: Dict[str, SolverColumn] = Field(default_factory=dict)
    solveTimeMs: Optional[float] = None
    error: Optional[str] = None

    def primal(self, name: str) -> float:
        column = self.columns.get(name)
        return column.Primal if column is not None else 0.0


class SolveRequest(BaseModel):
    """JSON form of a solve request; text/plain bodies carry the LP alone."""
    lp: str = Field(..., min_length=1, description="Complete LP-format problem text")
    timeLimit: Optional[float] = Field(default=None, gt=0, description="Seconds")
    mipRelGap: Optional[float] = Field(default=None, ge=0)


# =============================================================================
# Telemetry
# =============================================================================


class OptimizationRunRecord(BaseModel):
    """
    Run record persisted for later analysis. Opaque to the engine.
    """
    build_id: Optional[str] = None
    assignment_type: AssignmentType
    model_version: str
    weights_snapshot: Dict[str, float] = Field(default_factory=dict)
    config_snapshot: Dict[str, Any] = Field(default_factory=dict)
    problem_size: ProblemSize = Field(default_factory=ProblemSize)
    solver_backend: Optional[SolverBackend] = None
    solver_status: Optional[SolverStatus] = None
    solve_time_ms: float = 0.0
    objective_value: Optional[float] = None
    metrics: Optional[LPMetrics] = None
    warnings: List[str] = Field(default_factory=list)
    error_message: Optional[str] = None
    error_category: Optional[ErrorCategory] = None
    lock_stats: Dict[str, int] = Field(default_factory=dict)


# =============================================================================
# API Models
# =============================================================================


class OptimizeRequest(BaseModel):
    assignment_type: AssignmentType = AssignmentType.CUSTOMER
    as_of: Optional[date] = Field(default=None, description="Reference date for lock windows")
