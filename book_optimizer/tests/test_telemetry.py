"""
Test suite for optimization run telemetry.

The tests verify:
1. Free-text failure categorization
2. Run record snapshots of results and configuration
3. persist_run_record writes one row through the asyncpg pool
4. TelemetryRecorder: fire-and-forget submit, sink failures contained,
   bounded queue drops records instead of blocking

Database access is mocked via the mock_database fixture (conftest).
"""

import asyncio
import json
import logging
from unittest.mock import AsyncMock

import pytest

from book_optimizer.models.enums import (
    AssignmentType,
    BalanceIntensity,
    ErrorCategory,
    LockType,
    SolverBackend,
    SolverStatus,
)
from book_optimizer.models.schemas import (
    BalanceConfig,
    LPConfiguration,
    LPMetrics,
    NormalizedWeights,
    OptimizationError,
    OptimizationResult,
    OptimizationRunRecord,
    ProblemSize,
)
from book_optimizer.services.telemetry import (
    TelemetryRecorder,
    build_run_record,
    categorize_error_message,
    persist_run_record,
)


WEIGHTS = NormalizedWeights(continuity=0.35, geography=0.35, team_alignment=0.30)


def make_record(build_id: str = 'build-1') -> OptimizationRunRecord:
    return OptimizationRunRecord(
        build_id=build_id,
        assignment_type=AssignmentType.CUSTOMER,
        model_version='1.0.1',
    )


# =============================================================================
# ERROR CATEGORIZATION
# =============================================================================


class TestCategorizeErrorMessage:
    """Mapping status and message text to an ErrorCategory."""

    @pytest.mark.parametrize(
        'message,expected',
        [
            ('WASM module aborted', ErrorCategory.SOLVER_CRASH),
            ('Out of memory', ErrorCategory.SOLVER_CRASH),
            ('Failed to fetch', ErrorCategory.NETWORK),
            ('Remote solver unreachable', ErrorCategory.NETWORK),
            ('Invalid LP text', ErrorCategory.DATA_VALIDATION),
            ('Request timeout', ErrorCategory.SOLVER_TIMEOUT),
            ('Problem is infeasible', ErrorCategory.SOLVER_INFEASIBLE),
            ('something odd', ErrorCategory.UNKNOWN),
        ],
    )
    def test_message_keywords(self, message: str, expected: ErrorCategory) -> None:
        assert categorize_error_message(message) == expected

    def test_status_takes_precedence(self) -> None:
        assert categorize_error_message('memory', SolverStatus.INFEASIBLE) == ErrorCategory.SOLVER_INFEASIBLE
        assert categorize_error_message('stopped', SolverStatus.TIME_LIMIT) == ErrorCategory.SOLVER_TIMEOUT

    def test_success_has_no_category(self) -> None:
        assert categorize_error_message(None, SolverStatus.OPTIMAL) is None
        assert categorize_error_message(None) is None

    def test_error_status_without_message(self) -> None:
        assert categorize_error_message('', SolverStatus.ERROR) == ErrorCategory.UNKNOWN


# =============================================================================
# RUN RECORDS
# =============================================================================


class TestBuildRunRecord:
    """Snapshotting a result."""

    def test_successful_run(self) -> None:
        config = LPConfiguration(balance=BalanceConfig(intensity=BalanceIntensity.HEAVY))
        result = OptimizationResult(
            success=True,
            build_id='build-1',
            assignment_type=AssignmentType.CUSTOMER,
            metrics=LPMetrics(arr_variance_percent=4.2),
            solver_status=SolverStatus.OPTIMAL,
            solver_backend=SolverBackend.EMBEDDED,
            objective_value=12.5,
            problem_size=ProblemSize(accounts=10, reps=4, variables=208, binary_variables=40, constraints=38),
            lock_stats={LockType.MANUAL_LOCK: 2},
            warnings=['1 reps outside the balance buffer'],
            solve_time_ms=85.0,
        )

        record = build_run_record(result, config, WEIGHTS, '1.0.1')

        assert record.build_id == 'build-1'
        assert record.model_version == '1.0.1'
        assert record.weights_snapshot == {'continuity': 0.35, 'geography': 0.35, 'team_alignment': 0.30}
        assert record.config_snapshot['balance_intensity'] == 'heavy'
        assert record.config_snapshot['intensity_multiplier'] == 10.0
        assert record.config_snapshot['balance_penalties']['arr'] == 0.5
        assert record.config_snapshot['stability_priority'][0] == 'manual_lock'
        assert record.config_snapshot['constraints']['strategic_policy'] == 'least_loaded'
        assert record.lock_stats == {'manual_lock': 2}
        assert record.problem_size.binary_variables == 40
        assert record.metrics.arr_variance_percent == 4.2
        assert record.error_message is None
        assert record.error_category is None

    def test_failed_run(self) -> None:
        result = OptimizationResult(
            success=False,
            build_id='build-2',
            assignment_type=AssignmentType.PROSPECT,
            error=OptimizationError(category=ErrorCategory.SOLVER_TIMEOUT, message='Solver reached its time limit'),
        )

        record = build_run_record(result, LPConfiguration(), None, '1.0.1')

        assert record.weights_snapshot == {}
        assert record.error_message == 'Solver reached its time limit'
        assert record.error_category == ErrorCategory.SOLVER_TIMEOUT
        assert record.metrics is None


class TestPersistRunRecord:
    """asyncpg insert."""

    @pytest.mark.asyncio
    async def test_inserts_one_row(self, mock_database) -> None:
        conn = mock_database.acquire.return_value.__aenter__.return_value
        record = make_record()
        record.lock_stats = {'cre_risk': 3}

        await persist_run_record(record)

        conn.execute.assert_awaited_once()
        args = conn.execute.await_args.args
        assert 'INSERT INTO optimization_runs' in args[0]
        assert args[1] == 'build-1'
        assert args[2] == 'customer'
        assert args[3] == '1.0.1'
        assert json.loads(args[15]) == {'cre_risk': 3}


# =============================================================================
# RECORDER
# =============================================================================


class TestTelemetryRecorder:
    """Queue and worker behaviour."""

    @pytest.mark.asyncio
    async def test_records_reach_sink(self) -> None:
        sink = AsyncMock()
        recorder = TelemetryRecorder(sink=sink, queue_size=10)
        await recorder.start()

        assert recorder.submit(make_record('b1')) is True
        assert recorder.submit(make_record('b2')) is True
        await recorder.close()

        assert [c.args[0].build_id for c in sink.await_args_list] == ['b1', 'b2']
        assert not recorder.is_running

    @pytest.mark.asyncio
    async def test_not_started_rejects_records(self) -> None:
        sink = AsyncMock()
        recorder = TelemetryRecorder(sink=sink)

        assert recorder.submit(make_record()) is False
        sink.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_disabled_recorder_never_starts(self) -> None:
        recorder = TelemetryRecorder(sink=AsyncMock(), enabled=False)
        await recorder.start()

        assert not recorder.is_running
        assert recorder.submit(make_record()) is False
        await recorder.close()

    @pytest.mark.asyncio
    async def test_sink_failure_is_logged_not_raised(self, caplog) -> None:
        sink = AsyncMock(side_effect=[RuntimeError('connection reset'), None])
        recorder = TelemetryRecorder(sink=sink)
        await recorder.start()

        with caplog.at_level(logging.ERROR, logger='book_optimizer.services.telemetry'):
            recorder.submit(make_record('b1'))
            recorder.submit(make_record('b2'))
            await recorder.close()

        assert sink.await_count == 2
        assert 'Failed to record telemetry for build b1' in caplog.text

    @pytest.mark.asyncio
    async def test_full_queue_drops_without_blocking(self) -> None:
        release = asyncio.Event()
        seen = []

        async def slow_sink(record: OptimizationRunRecord) -> None:
            seen.append(record.build_id)
            await release.wait()

        recorder = TelemetryRecorder(sink=slow_sink, queue_size=1)
        await recorder.start()

        assert recorder.submit(make_record('b1')) is True
        # Let the worker take b1 and block in the sink
        await asyncio.sleep(0.01)
        assert recorder.submit(make_record('b2')) is True
        assert recorder.submit(make_record('b3')) is False
        assert recorder.dropped == 1

        release.set()
        await recorder.close()

        assert seen == ['b1', 'b2']
