"""
Book Optimizer Package.

FastAPI service that assigns accounts to sales reps by solving a MILP with
soft workload balancing, plus the native solver service used for problems
too large to solve in-process.

Subpackages:
    - api: FastAPI route handlers
    - core: Configuration, database, exceptions and dependencies
    - models: Pydantic schemas, enums and the in-memory LP model
    - services: Optimization pipeline services
    - sql: Parameterized SQL queries
"""

__version__ = "1.0.0"
