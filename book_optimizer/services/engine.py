"""
Optimization engine.

Runs the assignment pipeline for one account-type batch:

1. Strategic pool: strategic accounts to strategic reps
2. Stability locks: pinned accounts leave the decision space
3. Scoring: continuity, geography and team scores per eligible pair
4. Problem building: MILP with three-tier soft balance
5. Solving: routed to the embedded or remote solver
6. Post-processing: proposals, rep loads, cascading, metrics
7. Telemetry: run record submitted without waiting

OptimizationEngine.run never raises. Fatal failures come back as an
OptimizationResult with success=False and a categorized OptimizationError.
Progress events are published to an optional ProgressChannel; publishing
never blocks and the result does not depend on whether anyone listens.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import date
from typing import AsyncIterator, Dict, List, Optional

from book_optimizer.core.config import Settings
from book_optimizer.core.exceptions import DataValidationError, OptimizationFailure
from book_optimizer.models.enums import ErrorCategory, LockType, ProgressStage, SolverBackend, SolverStatus
from book_optimizer.models.schemas import (
    BuildData,
    LPMetrics,
    NormalizedWeights,
    OptimizationError,
    OptimizationResult,
    ProblemSize,
    ProgressEvent,
)
from book_optimizer.services.cascade import cascade_to_children
from book_optimizer.services.metrics import calculate_metrics, calculate_rep_loads
from book_optimizer.services.problem_builder import (
    PenaltyWeights,
    active_metrics,
    build_lp_problem,
    compute_targets,
    eligible_reps_by_account,
)
from book_optimizer.services.proposals import build_proposals
from book_optimizer.services.scoring import calculate_scores
from book_optimizer.services.solver_router import SolverRouter, extract_assignments
from book_optimizer.services.stability_locks import identify_locked_accounts
from book_optimizer.services.strategic_pool import assign_strategic_accounts
from book_optimizer.services.telemetry import TelemetryRecorder, build_run_record
from book_optimizer.services.weights import format_weights, normalize_weights


logger = logging.getLogger(__name__)


# =============================================================================
# Progress Channel
# =============================================================================

TERMINAL_STAGES = {ProgressStage.COMPLETE, ProgressStage.ERROR}


class ProgressChannel:
    """
    Bounded progress event queue for one run.

    publish() never blocks: when the queue is full the oldest event is
    dropped. events() yields until a terminal (complete/error) event.
    """

    def __init__(self, maxsize: int = 64):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def publish(self, stage: ProgressStage, message: str = "", progress: float = 0.0) -> None:
        event = ProgressEvent(stage=stage, message=message, progress=progress)
        while True:
            try:
                self._queue.put_nowait(event)
                return
            except asyncio.QueueFull:
                try:
                    self._queue.get_nowait()
                    self.dropped += 1
                except asyncio.QueueEmpty:
                    pass

    async def events(self) -> AsyncIterator[ProgressEvent]:
        while True:
            event = await self._queue.get()
            yield event
            if event.stage in TERMINAL_STAGES:
                return


# =============================================================================
# Engine
# =============================================================================

@dataclass
class _RunContext:
    """State gathered during a run, kept so failures still report it."""
    weights: Optional[NormalizedWeights] = None
    problem_size: ProblemSize = field(default_factory=ProblemSize)
    lock_stats: Dict[LockType, int] = field(default_factory=dict)
    strategic_account_count: int = 0
    solver_backend: Optional[SolverBackend] = None
    solver_status: Optional[SolverStatus] = None
    warnings: List[str] = field(default_factory=list)


class OptimizationEngine:
    """
    Runs the optimization pipeline.

    The solver router and telemetry recorder are injected and owned by the
    caller (normally the FastAPI lifespan); the engine holds no per-run state.
    """

    def __init__(
        self,
        settings: Settings,
        solver_router: SolverRouter,
        telemetry: Optional[TelemetryRecorder] = None,
    ):
        self.settings = settings
        self.solver_router = solver_router
        self.telemetry = telemetry
        self.penalties = PenaltyWeights.from_settings(settings)

    async def run(
        self,
        build_data: BuildData,
        as_of: Optional[date] = None,
        progress: Optional[ProgressChannel] = None,
    ) -> OptimizationResult:
        """
        Optimize one account-type batch.

        Args:
            build_data: Accounts, reps and configuration of the batch.
            as_of: Reference date for lock windows and tenure (default today).
            progress: Optional channel receiving stage events.

        Returns:
            OptimizationResult: Proposals and metrics on success; an error
                and no proposals on failure.
        """
        as_of = as_of or date.today()
        ctx = _RunContext()
        started = time.perf_counter()

        def publish(stage: ProgressStage, message: str, value: float) -> None:
            if progress is not None:
                progress.publish(stage, message, value)

        logger.info(
            f"Starting optimization for build {build_data.build_id} "
            f"({build_data.assignment_type.value}, {len(build_data.accounts)} accounts)"
        )

        try:
            result = await self._run(build_data, as_of, ctx, publish)
        except OptimizationFailure as e:
            logger.error(f"Optimization failed for build {build_data.build_id}: [{e.category.value}] {e.message}")
            result = self._failure(build_data, ctx, OptimizationError(
                category=e.category,
                message=e.message,
                hint=e.hint,
            ))
        except Exception as e:
            logger.exception(f"Unexpected error optimizing build {build_data.build_id}")
            result = self._failure(build_data, ctx, OptimizationError(
                category=ErrorCategory.UNKNOWN,
                message=str(e) or type(e).__name__,
            ))

        elapsed = time.perf_counter() - started
        if result.success:
            publish(ProgressStage.COMPLETE, f"Assigned {len(result.proposals)} accounts", 1.0)
            logger.info(
                f"Optimization complete for build {build_data.build_id}: "
                f"{len(result.proposals)} proposals in {elapsed:.2f}s"
            )
        else:
            publish(ProgressStage.ERROR, result.error.message if result.error else "Optimization failed", 1.0)

        self._record(result, build_data, ctx.weights)
        return result

    async def _run(self, build_data: BuildData, as_of: date, ctx: _RunContext, publish) -> OptimizationResult:
        config = build_data.config
        assignment_type = build_data.assignment_type
        accounts = build_data.accounts
        warnings = ctx.warnings

        if not accounts:
            warnings.append(f"No {assignment_type.value} accounts to assign")
            return OptimizationResult(
                success=True,
                build_id=build_data.build_id,
                assignment_type=assignment_type,
                metrics=LPMetrics(),
                warnings=warnings,
            )

        reps = [rep for rep in build_data.reps if rep.is_eligible]
        if not reps:
            raise DataValidationError(
                f"No eligible reps for {len(accounts)} {assignment_type.value} accounts",
                hint="Mark at least one active rep as included in assignments",
            )

        ctx.weights = normalize_weights(config.objectives_for(assignment_type))
        logger.info(f"Objective weights: {format_weights(ctx.weights)}")

        # Preprocessing
        publish(ProgressStage.PREPROCESSING, "Assigning strategic accounts and locks", 0.1)
        strategic = assign_strategic_accounts(
            accounts,
            reps,
            config.constraints.strategic_policy,
            config.constraints.strategic_fallback,
        )
        warnings.extend(strategic.warnings)
        ctx.strategic_account_count = strategic.strategic_account_count

        regular_reps = strategic.regular_reps
        if strategic.remaining_accounts and not regular_reps:
            raise DataValidationError(
                f"No eligible regular reps for {len(strategic.remaining_accounts)} non-strategic accounts",
                hint="Include at least one non-strategic rep in assignments",
            )

        partition = identify_locked_accounts(
            strategic.remaining_accounts, regular_reps, config.stability, as_of
        )
        ctx.lock_stats = partition.lock_stats
        free_accounts = partition.unlocked

        balanced_accounts = free_accounts + [account for account, _ in partition.locked]
        targets = compute_targets(balanced_accounts, len(regular_reps), active_metrics(config.balance))

        solved: Dict[str, str] = {}
        scores = {}
        solve_time_ms = 0.0
        objective_value = None

        if free_accounts:
            # Scoring and problem construction
            publish(ProgressStage.BUILDING, f"Building problem for {len(free_accounts)} accounts", 0.3)
            eligible = eligible_reps_by_account(
                free_accounts,
                regular_reps,
                config.constraints.restrict_to_macro_region,
                config.territory_mappings,
            )
            scores = calculate_scores(
                free_accounts, eligible, config, as_of, self.settings.tie_breaker_scale
            )
            problem = build_lp_problem(
                free_accounts,
                regular_reps,
                scores,
                ctx.weights,
                config.balance,
                self.penalties,
                fixed_assignments=[(account, lock.target_rep_id) for account, lock in partition.locked],
            )
            ctx.problem_size = ProblemSize(
                accounts=len(free_accounts),
                reps=len(regular_reps),
                variables=problem.num_variables,
                binary_variables=problem.num_binary,
                constraints=problem.num_constraints,
            )

            # Solving
            publish(ProgressStage.SOLVING, f"Solving {problem.num_variables} variables", 0.5)
            outcome = await self.solver_router.solve(problem, config.solver)
            ctx.solver_backend = outcome.backend
            ctx.solver_status = outcome.response.status
            warnings.extend(outcome.warnings)
            solve_time_ms = outcome.solve_time_ms
            objective_value = outcome.response.objectiveValue

            solved, extract_warnings = extract_assignments(problem, outcome.response)
            warnings.extend(extract_warnings)
        else:
            logger.info("Every account is strategic or locked; skipping the solver")

        # Post-processing
        publish(ProgressStage.POSTPROCESSING, "Building proposals and metrics", 0.8)
        proposals = build_proposals(
            strategic.assignments,
            partition.locked,
            solved,
            free_accounts,
            reps,
            scores,
            ctx.weights,
            config,
            as_of,
        )
        rep_loads = calculate_rep_loads(proposals, reps, targets, config.balance)
        proposals = cascade_to_children(proposals, accounts, build_data.child_names, build_data.child_owners)
        metrics = calculate_metrics(proposals, rep_loads, solve_time_ms)

        if metrics.reps_outside_buffer:
            warnings.append(f"{metrics.reps_outside_buffer} reps outside the balance buffer")

        return OptimizationResult(
            success=True,
            build_id=build_data.build_id,
            assignment_type=assignment_type,
            proposals=proposals,
            rep_loads=rep_loads,
            metrics=metrics,
            solver_status=ctx.solver_status,
            solver_backend=ctx.solver_backend,
            objective_value=objective_value,
            problem_size=ctx.problem_size,
            lock_stats=ctx.lock_stats,
            strategic_account_count=ctx.strategic_account_count,
            warnings=warnings,
            solve_time_ms=solve_time_ms,
        )

    def _failure(self, build_data: BuildData, ctx: _RunContext, error: OptimizationError) -> OptimizationResult:
        return OptimizationResult(
            success=False,
            build_id=build_data.build_id,
            assignment_type=build_data.assignment_type,
            solver_status=ctx.solver_status,
            solver_backend=ctx.solver_backend,
            problem_size=ctx.problem_size,
            lock_stats=ctx.lock_stats,
            strategic_account_count=ctx.strategic_account_count,
            warnings=ctx.warnings,
            error=error,
        )

    def _record(
        self,
        result: OptimizationResult,
        build_data: BuildData,
        weights: Optional[NormalizedWeights],
    ) -> None:
        if self.telemetry is None:
            return
        try:
            record = build_run_record(result, build_data.config, weights, self.settings.model_version)
        except Exception as e:
            logger.error(f"Failed to build telemetry record for build {build_data.build_id}: {e}")
            return
        self.telemetry.submit(record)
