"""
Optimization run telemetry.

Every run produces an OptimizationRunRecord. Recording is fire-and-forget:
the engine hands the record to TelemetryRecorder.submit(), which enqueues it
on a bounded asyncio.Queue and returns immediately. A single worker task
drains the queue into the sink (persist_run_record by default). Sink
failures and queue overflow are logged and never reach the caller.

Key Components:
- TelemetryRecorder: bounded queue + worker, start()/close() lifecycle
- persist_run_record(): asyncpg insert into optimization_runs
- build_run_record(): snapshot a result and its configuration
- categorize_error_message(): map free-text failures to ErrorCategory
"""

import asyncio
import json
import logging
from typing import Awaitable, Callable, Optional

from book_optimizer.core.database import execute_command
from book_optimizer.models.enums import ErrorCategory, SolverStatus
from book_optimizer.models.schemas import (
    LPConfiguration,
    NormalizedWeights,
    OptimizationResult,
    OptimizationRunRecord,
)
from book_optimizer.services.problem_builder import INTENSITY_MULTIPLIERS


logger = logging.getLogger(__name__)


TelemetrySink = Callable[[OptimizationRunRecord], Awaitable[None]]


# =============================================================================
# Error Categorization
# =============================================================================

def categorize_error_message(
    message: Optional[str],
    solver_status: Optional[SolverStatus] = None,
) -> Optional[ErrorCategory]:
    """
    Map a solver status and free-text failure message to an ErrorCategory.

    Used for failures that arrive as text (remote service errors, records
    written by other producers) rather than as typed exceptions.

    Returns:
        Optional[ErrorCategory]: None for successful statuses without a message.
    """
    if solver_status == SolverStatus.INFEASIBLE:
        return ErrorCategory.SOLVER_INFEASIBLE
    if solver_status == SolverStatus.TIME_LIMIT and message:
        return ErrorCategory.SOLVER_TIMEOUT

    if not message:
        return ErrorCategory.UNKNOWN if solver_status == SolverStatus.ERROR else None

    lower = message.lower()
    if "wasm" in lower or "memory" in lower:
        return ErrorCategory.SOLVER_CRASH
    if "network" in lower or "fetch" in lower or "unreachable" in lower:
        return ErrorCategory.NETWORK
    if "validation" in lower or "invalid" in lower:
        return ErrorCategory.DATA_VALIDATION
    if "timeout" in lower or "time limit" in lower:
        return ErrorCategory.SOLVER_TIMEOUT
    if "infeasible" in lower:
        return ErrorCategory.SOLVER_INFEASIBLE
    return ErrorCategory.UNKNOWN


# =============================================================================
# Run Records
# =============================================================================

def build_run_record(
    result: OptimizationResult,
    config: LPConfiguration,
    weights: Optional[NormalizedWeights],
    model_version: str,
) -> OptimizationRunRecord:
    """Snapshot a finished run for persistence."""
    balance = config.balance
    config_snapshot = {
        "balance_intensity": balance.intensity.value,
        "intensity_multiplier": INTENSITY_MULTIPLIERS[balance.intensity],
        "balance_penalties": {
            "arr": balance.arr.penalty,
            "atr": balance.atr.penalty,
            "pipeline": balance.pipeline.penalty,
            "tiers": balance.tiers.penalty,
        },
        "stability_priority": [lock.value for lock in config.stability.priority],
        "constraints": config.constraints.model_dump(mode="json"),
    }

    return OptimizationRunRecord(
        build_id=result.build_id,
        assignment_type=result.assignment_type,
        model_version=model_version,
        weights_snapshot=weights.model_dump() if weights else {},
        config_snapshot=config_snapshot,
        problem_size=result.problem_size,
        solver_backend=result.solver_backend,
        solver_status=result.solver_status,
        solve_time_ms=result.solve_time_ms,
        objective_value=result.objective_value,
        metrics=result.metrics,
        warnings=result.warnings,
        error_message=result.error.message if result.error else None,
        error_category=result.error.category if result.error else None,
        lock_stats={lock.value: count for lock, count in result.lock_stats.items()},
    )


async def persist_run_record(record: OptimizationRunRecord) -> None:
    """
    Insert a run record into optimization_runs.

    Raises:
        asyncpg.PostgresError: If the insert fails.
    """
    query = """
        INSERT INTO optimization_runs (
            build_id, assignment_type, model_version,
            weights_snapshot, config_snapshot, problem_size,
            solver_backend, solver_status, solve_time_ms, objective_value,
            metrics, warnings, error_message, error_category, lock_stats,
            created_at
        ) VALUES (
            $1, $2, $3, $4::jsonb, $5::jsonb, $6::jsonb,
            $7, $8, $9, $10, $11::jsonb, $12::jsonb, $13, $14, $15::jsonb,
            NOW()
        )
    """
    data = record.model_dump(mode="json")

    await execute_command(
        query,
        data["build_id"],
        data["assignment_type"],
        data["model_version"],
        json.dumps(data["weights_snapshot"]),
        json.dumps(data["config_snapshot"]),
        json.dumps(data["problem_size"]),
        data["solver_backend"],
        data["solver_status"],
        data["solve_time_ms"],
        data["objective_value"],
        json.dumps(data["metrics"]),
        json.dumps(data["warnings"]),
        data["error_message"],
        data["error_category"],
        json.dumps(data["lock_stats"]),
    )


# =============================================================================
# Recorder
# =============================================================================

class TelemetryRecorder:
    """
    Bounded, non-blocking telemetry queue with a single worker.

    Usage:
        recorder = TelemetryRecorder(queue_size=100)
        await recorder.start()
        recorder.submit(record)   # never blocks, never raises
        await recorder.close()    # drains pending records
    """

    def __init__(
        self,
        sink: Optional[TelemetrySink] = None,
        queue_size: int = 100,
        enabled: bool = True,
    ):
        self.sink = sink or persist_run_record
        self.enabled = enabled
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._worker: Optional[asyncio.Task] = None
        self.dropped = 0

    @property
    def is_running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    async def start(self) -> None:
        if self.enabled and not self.is_running:
            self._worker = asyncio.create_task(self._run(), name="telemetry-worker")
            logger.info("Telemetry recorder started")

    async def close(self) -> None:
        """Drain pending records and stop the worker."""
        if self._worker is None:
            return
        await self._queue.join()
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        logger.info("Telemetry recorder stopped")

    def submit(self, record: OptimizationRunRecord) -> bool:
        """
        Enqueue a record without waiting.

        Returns:
            bool: False if the record was not queued (disabled, not started,
                or queue full).
        """
        if not self.is_running:
            return False
        try:
            self._queue.put_nowait(record)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                f"Telemetry queue full; dropped record for build {record.build_id} "
                f"({self.dropped} dropped so far)"
            )
            return False
        return True

    async def _run(self) -> None:
        while True:
            record = await self._queue.get()
            try:
                await self.sink(record)
            except Exception as e:
                logger.error(f"Failed to record telemetry for build {record.build_id}: {e}")
            finally:
                self._queue.task_done()
