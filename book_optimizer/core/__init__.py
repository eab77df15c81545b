"""
Core infrastructure package for the Book Optimizer service.

Provides:
- Configuration management via pydantic-settings
- Async PostgreSQL database connectivity via asyncpg
- Domain exceptions shared by the optimization pipeline

FastAPI dependencies live in book_optimizer.core.dependencies and are not
re-exported here: they import the service layer, which itself imports this
package.

Usage Examples:
    from book_optimizer.core import get_settings
    settings = get_settings()
    print(settings.embedded_max_variables)
"""

from book_optimizer.core.config import Settings, get_settings
from book_optimizer.core.database import close_db, get_db_pool, init_db
from book_optimizer.core.exceptions import (
    DataValidationError,
    InfeasibleProblemError,
    LPFormatError,
    OptimizationFailure,
    SolverCrashError,
    SolverError,
    SolverInfeasibleError,
    SolverTimeoutError,
    SolverUnavailableError,
)


__all__ = [
    # Configuration
    "Settings",
    "get_settings",
    # Database
    "init_db",
    "close_db",
    "get_db_pool",
    # Exceptions
    "OptimizationFailure",
    "DataValidationError",
    "InfeasibleProblemError",
    "LPFormatError",
    "SolverError",
    "SolverInfeasibleError",
    "SolverTimeoutError",
    "SolverCrashError",
    "SolverUnavailableError",
]
