"""
Async PostgreSQL connection pool module for build data and run telemetry.

This module owns the process-wide asyncpg pool. The optimization core never
touches it directly: the data loader reads build snapshots through it and the
telemetry sink writes run records through it.

Key Components:
- Global connection pool (_pool)
- init_db(): Create the pool at application startup
- get_db_pool(): Get the pool instance (initializes if needed)
- close_db(): Close the pool at application shutdown
- execute_command(): Thin write helper used by the telemetry sink

Connection Pool Configuration:
- min_size: 1
- max_size: 10
- command_timeout: 60 seconds

Usage:
    await init_db()

    pool = await get_db_pool()
    async with pool.acquire() as conn:
        rows = await conn.fetch("SELECT * FROM accounts WHERE build_id = $1", build_id)

    await close_db()
"""

from typing import Any, Optional

import asyncpg
from asyncpg import Pool

from book_optimizer.core.config import get_settings


# =============================================================================
# Global Pool
# =============================================================================

# None until init_db() is called
_pool: Optional[Pool] = None


# =============================================================================
# Pool Lifecycle Functions
# =============================================================================

async def init_db() -> Pool:
    """
    Initialize the database connection pool.

    Idempotent: an existing pool is returned unchanged.

    Returns:
        Pool: The asyncpg connection pool instance.

    Raises:
        asyncpg.PostgresError: If connection to the database fails.
        OSError: If the database host is unreachable.
    """
    global _pool

    if _pool is None:
        settings = get_settings()
        _pool = await asyncpg.create_pool(
            dsn=settings.database_url,
            min_size=1,
            max_size=10,
            command_timeout=60,
        )

    return _pool


async def get_db_pool() -> Pool:
    """
    Get the database connection pool, initializing lazily if needed.

    Returns:
        Pool: The asyncpg connection pool instance.
    """
    global _pool

    if _pool is None:
        await init_db()

    assert _pool is not None, "Pool should be initialized after init_db()"
    return _pool


async def close_db() -> None:
    """
    Close the database connection pool gracefully.

    Calling this when no pool exists is a no-op.
    """
    global _pool

    if _pool is not None:
        await _pool.close()
        _pool = None


# =============================================================================
# Query Execution Helpers
# =============================================================================

async def execute_command(query: str, *args: Any) -> str:
    """
    Execute an INSERT/UPDATE/DELETE and return the asyncpg status string
    (e.g. 'INSERT 0 1').
    """
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        return await conn.execute(query, *args)
