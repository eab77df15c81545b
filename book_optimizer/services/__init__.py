"""
Book Optimizer Services Module

Business logic of the optimization pipeline. Every stage except the engine
is a plain function over pydantic models and is tested in isolation.

Services:
- data_loader: build snapshot loading and hierarchy aggregation
- geography / scoring / weights: pair scoring and objective weights
- strategic_pool: strategic accounts to strategic reps
- stability_locks: accounts pinned outside the optimization
- problem_builder: MILP with three-tier soft balance
- lp_format: LP text serialization and parsing
- solver / solver_router: embedded and remote backends with fallback
- proposals / cascade / metrics: post-processing
- telemetry: fire-and-forget run records
- engine: pipeline orchestration

Import from the submodules directly; this package does not re-export them.
"""
