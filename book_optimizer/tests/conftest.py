"""
Pytest Configuration and Shared Fixtures for Book Optimizer Tests.

This module provides fixtures and configuration for all tests, supporting:
- Async test execution with pytest-asyncio
- Mock database pool fixtures for the loader and telemetry sink
- Account / rep factories and a small realistic book of business
- Test settings that never read the local .env file
- A scripted solver backend for router and engine tests

Dependencies:
- pytest
- pytest-asyncio
"""

from datetime import date, timedelta
from typing import Any, Callable, List, Optional
from unittest.mock import AsyncMock, Mock, patch

import pytest

from book_optimizer.core.config import Settings
from book_optimizer.models.enums import SolverBackend, SolverStatus, TeamTier
from book_optimizer.models.schemas import Account, LPConfiguration, Rep, SolverResponse


# ============================================================
# PYTEST PLUGINS CONFIGURATION
# ============================================================

pytest_plugins: List[str] = ['pytest_asyncio']


# ============================================================
# PYTEST HOOKS
# ============================================================

def pytest_configure(config) -> None:
    """
    Register custom markers.

    - slow: tests that run the real MILP solver on larger problems
    - integration: tests requiring a database or solver service
    """
    config.addinivalue_line(
        'markers',
        'slow: marks tests as slow (deselect with -m "not slow")'
    )
    config.addinivalue_line(
        'markers',
        'integration: marks tests requiring external service connectivity'
    )


# ============================================================
# DATABASE MOCK FIXTURES
# ============================================================

@pytest.fixture
def mock_db_pool() -> AsyncMock:
    """
    Mock asyncpg pool whose acquire() yields a mock connection.

    Usage:
        async def test_loader(mock_db_pool):
            conn = mock_db_pool.acquire.return_value.__aenter__.return_value
            conn.fetch.side_effect = [account_rows, [], rep_rows]
    """
    pool = AsyncMock()

    conn = AsyncMock()
    conn.execute = AsyncMock(return_value='INSERT 0 1')
    conn.fetch = AsyncMock(return_value=[])
    conn.fetchrow = AsyncMock(return_value=None)

    acquire_context = AsyncMock()
    acquire_context.__aenter__ = AsyncMock(return_value=conn)
    acquire_context.__aexit__ = AsyncMock(return_value=None)
    pool.acquire = Mock(return_value=acquire_context)
    pool.close = AsyncMock(return_value=None)

    return pool


@pytest.fixture
def mock_database(mock_db_pool: AsyncMock):
    """
    Patch get_db_pool everywhere it is imported so loader and telemetry
    code receive mock_db_pool.
    """
    get_pool = AsyncMock(return_value=mock_db_pool)
    with patch('book_optimizer.core.database.get_db_pool', new=get_pool), \
            patch('book_optimizer.services.data_loader.get_db_pool', new=get_pool):
        yield mock_db_pool


# ============================================================
# SETTINGS FIXTURE
# ============================================================

@pytest.fixture
def test_settings() -> Settings:
    """
    Settings for tests: no .env file, no remote solver, telemetry off.
    """
    return Settings(
        _env_file=None,
        remote_solver_url=None,
        embedded_timeout_seconds=30.0,
        telemetry_enabled=False,
    )


# ============================================================
# DATE FIXTURE
# ============================================================

@pytest.fixture
def as_of_date() -> date:
    """Fixed reference date so lock windows and tenure are reproducible."""
    return date(2026, 1, 15)


# ============================================================
# MODEL FACTORIES
# ============================================================

def make_account(account_id: str, **overrides: Any) -> Account:
    """
    Build an Account with neutral defaults (no owner, no locks, no tier).
    """
    fields = {
        'id': account_id,
        'name': f'Account {account_id}',
        'arr': 100_000.0,
    }
    fields.update(overrides)
    return Account(**fields)


def make_rep(rep_id: str, **overrides: Any) -> Rep:
    fields = {
        'id': rep_id,
        'name': f'Rep {rep_id}',
        'region': 'North East',
    }
    fields.update(overrides)
    return Rep(**fields)


@pytest.fixture
def account_factory() -> Callable[..., Account]:
    return make_account


@pytest.fixture
def rep_factory() -> Callable[..., Rep]:
    return make_rep


# ============================================================
# SAMPLE BOOK OF BUSINESS
# ============================================================

@pytest.fixture
def sample_reps() -> List[Rep]:
    """
    Four regular reps across AMER plus one strategic rep.
    """
    return [
        make_rep('rep-ne', region='North East', team_tier=TeamTier.MM),
        make_rep('rep-se', region='South East', team_tier=TeamTier.GROWTH),
        make_rep('rep-ce', region='Central', team_tier=TeamTier.ENT),
        make_rep('rep-we', region='West', team_tier=TeamTier.SMB),
        make_rep('rep-strat', region='North East', team_tier=TeamTier.ENT, is_strategic=True),
    ]


@pytest.fixture
def sample_accounts(as_of_date: date) -> List[Account]:
    """
    Twelve parent accounts with a mix of owners, territories and sizes.

    acct-01 is strategic, acct-02 is manually locked, acct-03 has a child.
    """
    long_ago = as_of_date - timedelta(days=900)
    return [
        make_account('acct-01', arr=2_500_000, atr=900_000, owner_id='rep-strat',
                     territory='Boston', employees=5000, is_strategic=True, tier=1),
        make_account('acct-02', arr=800_000, atr=200_000, owner_id='rep-ne',
                     territory='New York', employees=1200, exclude_from_reassignment=True, tier=2),
        make_account('acct-03', arr=650_000, atr=150_000, owner_id='rep-se',
                     territory='Atlanta', employees=400, owner_change_date=long_ago,
                     owner_count=1, tier=2, child_ids=['acct-03-c1']),
        make_account('acct-04', arr=420_000, atr=100_000, owner_id='rep-ce',
                     territory='Chicago', employees=2000, owner_change_date=long_ago, tier=3),
        make_account('acct-05', arr=390_000, atr=80_000, owner_id='rep-we',
                     territory='California', employees=60, owner_change_date=long_ago, tier=3),
        make_account('acct-06', arr=300_000, atr=60_000, owner_id='rep-ne',
                     territory='Boston', employees=700, owner_change_date=long_ago, tier=3),
        make_account('acct-07', arr=280_000, atr=0, territory='Florida', employees=90, tier=4),
        make_account('acct-08', arr=250_000, atr=50_000, owner_id='rep-ce',
                     territory='Texas', employees=1600, owner_change_date=long_ago, tier=4),
        make_account('acct-09', arr=210_000, atr=40_000, territory='Bay Area', employees=30, tier=4),
        make_account('acct-10', arr=180_000, atr=30_000, owner_id='rep-se',
                     territory='Carolina', employees=300, owner_change_date=long_ago, tier=4),
        make_account('acct-11', arr=150_000, atr=0, territory='Midwest', employees=800, tier=4),
        make_account('acct-12', arr=120_000, atr=20_000, territory='New England', employees=150, tier=4),
    ]


@pytest.fixture
def default_config() -> LPConfiguration:
    return LPConfiguration()


# ============================================================
# SOLVER BACKEND FAKE
# ============================================================

class ScriptedBackend:
    """
    Solver backend returning scripted responses in order.

    Each script entry is either a SolverResponse (returned) or an exception
    instance (raised). Calls are recorded for assertions.
    """

    def __init__(self, kind: SolverBackend, script: Optional[List[Any]] = None):
        self.kind = kind
        self.script = list(script or [])
        self.calls: List[dict] = []
        self.is_open = False

    async def open(self) -> None:
        self.is_open = True

    async def close(self) -> None:
        self.is_open = False

    async def solve(self, lp_text: str, time_limit=None, mip_rel_gap=None) -> SolverResponse:
        self.calls.append({'lp': lp_text, 'time_limit': time_limit, 'mip_rel_gap': mip_rel_gap})
        if not self.script:
            raise AssertionError(f'{self.kind.value} backend called more times than scripted')
        step = self.script.pop(0)
        if isinstance(step, Exception):
            raise step
        return step


@pytest.fixture
def scripted_backend() -> Callable[..., ScriptedBackend]:
    """
    Factory for ScriptedBackend.

    Usage:
        def test_fallback(scripted_backend):
            remote = scripted_backend(SolverBackend.REMOTE, [SolverCrashError('boom')])
    """
    return ScriptedBackend


def optimal_response(columns: dict, objective: float = 1.0) -> SolverResponse:
    """SolverResponse with the given {name: value} primal columns."""
    return SolverResponse.model_validate({
        'status': SolverStatus.OPTIMAL.value,
        'objectiveValue': objective,
        'columns': {name: {'Primal': value} for name, value in columns.items()},
    })
