"""
SQL Query Module for the Book Optimizer.

Provides parameterized SQL for loading a build snapshot (build_queries).
The telemetry insert lives next to its sink in services.telemetry.

Example usage:
    from book_optimizer.sql import get_accounts_query

    rows = await conn.fetch(get_accounts_query(), build_id)
"""

from book_optimizer.sql.build_queries import (
    ACCOUNT_COLUMNS,
    REP_COLUMNS,
    get_accounts_query,
    get_configuration_query,
    get_pipeline_query,
    get_reps_query,
)


__all__ = [
    "ACCOUNT_COLUMNS",
    "REP_COLUMNS",
    "get_accounts_query",
    "get_configuration_query",
    "get_pipeline_query",
    "get_reps_query",
]
