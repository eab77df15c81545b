"""
Test suite for the optimization engine.

End-to-end runs use a real SolverRouter with the embedded HiGHS backend;
failure paths use a mocked router.

The tests verify:
1. Coverage: exactly one proposal per account, children included
2. Lock fidelity and strategic isolation
3. Cascade consistency and deterministic output
4. Soft balance on a small worked example
5. Failure categorization: run() never raises
6. Progress events and telemetry submission
"""

from datetime import date
from typing import List
from unittest.mock import AsyncMock, Mock

import pytest

from book_optimizer.core.config import Settings
from book_optimizer.core.exceptions import (
    SolverCrashError,
    SolverInfeasibleError,
    SolverTimeoutError,
    SolverUnavailableError,
)
from book_optimizer.models.enums import (
    AssignmentSource,
    AssignmentType,
    ErrorCategory,
    LockType,
    ProgressStage,
    SolverBackend,
    SolverStatus,
)
from book_optimizer.models.schemas import Account, BuildData, Rep
from book_optimizer.services.engine import OptimizationEngine, ProgressChannel
from book_optimizer.services.solver_router import SolverRouter
from book_optimizer.services.telemetry import TelemetryRecorder
from book_optimizer.tests.conftest import make_account, make_rep


def build(accounts: List[Account], reps: List[Rep], **overrides) -> BuildData:
    fields = {
        'build_id': 'build-1',
        'assignment_type': AssignmentType.CUSTOMER,
        'accounts': accounts,
        'reps': reps,
    }
    fields.update(overrides)
    return BuildData(**fields)


def mock_router(**solve_kwargs) -> Mock:
    router = Mock(spec=SolverRouter)
    router.solve = AsyncMock(**solve_kwargs)
    return router


async def run_with_real_solver(settings: Settings, build_data: BuildData, as_of: date, **kwargs):
    async with SolverRouter(settings) as router:
        engine = OptimizationEngine(settings, router, **kwargs)
        return await engine.run(build_data, as_of=as_of)


# =============================================================================
# END-TO-END
# =============================================================================


class TestEndToEnd:
    """Full pipeline on the sample book of business."""

    @pytest.mark.asyncio
    async def test_every_account_assigned_once(
        self, test_settings, sample_accounts, sample_reps, as_of_date
    ) -> None:
        result = await run_with_real_solver(
            test_settings, build(sample_accounts, sample_reps), as_of_date
        )

        assert result.success, result.error
        ids = [p.account_id for p in result.proposals]
        expected = {a.id for a in sample_accounts} | {'acct-03-c1'}
        assert sorted(ids) == sorted(expected)
        assert len(ids) == len(set(ids))
        assert result.solver_backend == SolverBackend.EMBEDDED
        assert result.solver_status == SolverStatus.OPTIMAL
        assert result.error is None

    @pytest.mark.asyncio
    async def test_problem_size_and_stats(
        self, test_settings, sample_accounts, sample_reps, as_of_date
    ) -> None:
        result = await run_with_real_solver(
            test_settings, build(sample_accounts, sample_reps), as_of_date
        )

        # 12 accounts - 1 strategic - 1 locked, over 4 regular reps
        assert result.problem_size.accounts == 10
        assert result.problem_size.reps == 4
        assert result.problem_size.binary_variables == 40
        assert result.lock_stats == {LockType.MANUAL_LOCK: 1}
        assert result.strategic_account_count == 1
        assert result.metrics is not None
        assert result.metrics.total_accounts == 12
        assert len(result.rep_loads) == 5

    @pytest.mark.asyncio
    async def test_locked_account_keeps_owner(
        self, test_settings, sample_accounts, sample_reps, as_of_date
    ) -> None:
        result = await run_with_real_solver(
            test_settings, build(sample_accounts, sample_reps), as_of_date
        )

        locked = next(p for p in result.proposals if p.account_id == 'acct-02')
        assert locked.proposed_rep_id == 'rep-ne'
        assert locked.source == AssignmentSource.LOCKED
        assert locked.lock_type == LockType.MANUAL_LOCK

    @pytest.mark.asyncio
    async def test_strategic_pool_is_isolated(
        self, test_settings, sample_accounts, sample_reps, as_of_date
    ) -> None:
        result = await run_with_real_solver(
            test_settings, build(sample_accounts, sample_reps), as_of_date
        )

        on_strategic_rep = {
            p.account_id for p in result.proposals
            if p.proposed_rep_id == 'rep-strat' and not p.is_cascaded
        }
        assert on_strategic_rep == {'acct-01'}
        strategic = next(p for p in result.proposals if p.account_id == 'acct-01')
        assert strategic.source == AssignmentSource.STRATEGIC

    @pytest.mark.asyncio
    async def test_child_follows_parent(
        self, test_settings, sample_accounts, sample_reps, as_of_date
    ) -> None:
        result = await run_with_real_solver(
            test_settings,
            build(sample_accounts, sample_reps, child_names={'acct-03-c1': 'Subsidiary'}),
            as_of_date,
        )

        by_id = {p.account_id: p for p in result.proposals}
        child = by_id['acct-03-c1']
        assert child.proposed_rep_id == by_id['acct-03'].proposed_rep_id
        assert child.source == AssignmentSource.CASCADED
        assert child.parent_account_id == 'acct-03'
        assert child.account_name == 'Subsidiary'

    @pytest.mark.asyncio
    async def test_identical_inputs_give_identical_output(
        self, test_settings, sample_accounts, sample_reps, as_of_date
    ) -> None:
        first = await run_with_real_solver(
            test_settings, build(sample_accounts, sample_reps), as_of_date
        )
        second = await run_with_real_solver(
            test_settings, build(sample_accounts, sample_reps), as_of_date
        )

        assert [(p.account_id, p.proposed_rep_id) for p in first.proposals] == \
            [(p.account_id, p.proposed_rep_id) for p in second.proposals]

    @pytest.mark.asyncio
    async def test_arr_is_balanced(self, test_settings, as_of_date) -> None:
        accounts = [make_account(f'a{i}', arr=arr) for i, arr in enumerate([100, 200, 300, 400])]
        reps = [make_rep('r1'), make_rep('r2')]

        result = await run_with_real_solver(test_settings, build(accounts, reps), as_of_date)

        assert result.success
        assert sorted(load.arr for load in result.rep_loads) == [500, 500]
        assert result.metrics.arr_variance_percent == pytest.approx(0.0)
        assert result.metrics.reps_outside_buffer == 0


# =============================================================================
# EDGE CASES AND FAILURES
# =============================================================================


class TestEdgeCases:
    """Inputs that skip or fail the solve."""

    @pytest.mark.asyncio
    async def test_no_accounts_is_an_empty_success(self, test_settings) -> None:
        router = mock_router()
        engine = OptimizationEngine(test_settings, router)

        result = await engine.run(build([], [make_rep('r1')]))

        assert result.success
        assert result.proposals == []
        assert result.warnings == ['No customer accounts to assign']
        router.solve.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_eligible_reps_is_a_validation_error(self, test_settings, as_of_date) -> None:
        engine = OptimizationEngine(test_settings, mock_router())
        reps = [make_rep('r1', is_active=False), make_rep('r2', include_in_assignments=False)]

        result = await engine.run(build([make_account('a1')], reps), as_of=as_of_date)

        assert not result.success
        assert result.proposals == []
        assert result.error.category == ErrorCategory.DATA_VALIDATION
        assert result.error.hint

    @pytest.mark.asyncio
    async def test_only_strategic_reps_for_regular_accounts(self, test_settings, as_of_date) -> None:
        engine = OptimizationEngine(test_settings, mock_router())
        reps = [make_rep('rs', is_strategic=True)]

        result = await engine.run(build([make_account('a1')], reps), as_of=as_of_date)

        assert result.error.category == ErrorCategory.DATA_VALIDATION

    @pytest.mark.asyncio
    async def test_all_fixed_skips_solver(self, test_settings, as_of_date) -> None:
        router = mock_router()
        engine = OptimizationEngine(test_settings, router)
        accounts = [
            make_account('s1', is_strategic=True, arr=1_000_000),
            make_account('l1', owner_id='r1', exclude_from_reassignment=True),
        ]
        reps = [make_rep('rs', is_strategic=True), make_rep('r1')]

        result = await engine.run(build(accounts, reps), as_of=as_of_date)

        assert result.success
        router.solve.assert_not_awaited()
        assert result.solver_status is None
        assert {p.account_id: p.proposed_rep_id for p in result.proposals} == {'s1': 'rs', 'l1': 'r1'}

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        'error,category',
        [
            (SolverInfeasibleError('Solver reported the problem infeasible', hint='Relax filters'),
             ErrorCategory.SOLVER_INFEASIBLE),
            (SolverTimeoutError('No solution in time'), ErrorCategory.SOLVER_TIMEOUT),
            (SolverCrashError('Out of memory'), ErrorCategory.SOLVER_CRASH),
            (SolverUnavailableError('Remote solver unreachable'), ErrorCategory.NETWORK),
            (RuntimeError('kaboom'), ErrorCategory.UNKNOWN),
        ],
    )
    async def test_solver_failures_are_categorized(
        self, test_settings, as_of_date, error, category
    ) -> None:
        engine = OptimizationEngine(test_settings, mock_router(side_effect=error))
        accounts = [make_account('a1'), make_account('a2')]

        result = await engine.run(build(accounts, [make_rep('r1'), make_rep('r2')]), as_of=as_of_date)

        assert not result.success
        assert result.proposals == []
        assert result.error.category == category
        assert result.error.message == str(error)
        # Stats gathered before the failure are still reported
        assert result.problem_size.binary_variables == 4


# =============================================================================
# PROGRESS AND TELEMETRY
# =============================================================================


class TestProgressAndTelemetry:
    """Side channels of a run."""

    @pytest.mark.asyncio
    async def test_progress_stages(self, test_settings, as_of_date) -> None:
        channel = ProgressChannel()
        accounts = [make_account('a1'), make_account('a2')]

        async with SolverRouter(test_settings) as router:
            engine = OptimizationEngine(test_settings, router)
            await engine.run(build(accounts, [make_rep('r1'), make_rep('r2')]), as_of=as_of_date, progress=channel)

        stages = [event.stage async for event in channel.events()]
        assert stages == [
            ProgressStage.PREPROCESSING,
            ProgressStage.BUILDING,
            ProgressStage.SOLVING,
            ProgressStage.POSTPROCESSING,
            ProgressStage.COMPLETE,
        ]

    @pytest.mark.asyncio
    async def test_failure_ends_with_error_event(self, test_settings, as_of_date) -> None:
        channel = ProgressChannel()
        engine = OptimizationEngine(test_settings, mock_router(side_effect=SolverCrashError('boom')))

        await engine.run(build([make_account('a1')], [make_rep('r1')]), as_of=as_of_date, progress=channel)

        events = [event async for event in channel.events()]
        assert events[-1].stage == ProgressStage.ERROR
        assert events[-1].message == 'boom'

    @pytest.mark.asyncio
    async def test_full_channel_drops_oldest(self) -> None:
        channel = ProgressChannel(maxsize=2)

        channel.publish(ProgressStage.LOADING)
        channel.publish(ProgressStage.PREPROCESSING)
        channel.publish(ProgressStage.COMPLETE)

        stages = [event.stage async for event in channel.events()]
        assert stages == [ProgressStage.PREPROCESSING, ProgressStage.COMPLETE]
        assert channel.dropped == 1

    @pytest.mark.asyncio
    async def test_telemetry_submitted_for_success_and_failure(self, test_settings, as_of_date) -> None:
        telemetry = Mock(spec=TelemetryRecorder)
        engine = OptimizationEngine(test_settings, mock_router(), telemetry=telemetry)
        accounts = [make_account('l1', owner_id='r1', exclude_from_reassignment=True)]

        await engine.run(build(accounts, [make_rep('r1')]), as_of=as_of_date)
        await engine.run(build(accounts, []), as_of=as_of_date)

        assert telemetry.submit.call_count == 2
        success, failure = (c.args[0] for c in telemetry.submit.call_args_list)
        assert success.build_id == 'build-1'
        assert success.error_category is None
        assert success.weights_snapshot
        assert failure.error_category == ErrorCategory.DATA_VALIDATION
