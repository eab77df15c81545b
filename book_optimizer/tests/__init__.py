'''
Book Optimizer Test Suite

Test Modules:
-------------
- test_scoring.py: geography, continuity, team alignment, weights
- test_strategic_pool.py: strategic distribution policies and fallback
- test_stability_locks.py: lock rules, priority order, windows
- test_problem_builder.py: balance rows, tier slacks, penalties
- test_lp_format.py: LP text serialization and parsing
- test_solver.py: embedded HiGHS solves and the remote client
- test_solver_router.py: backend selection and fallback rules
- test_postprocessing.py: proposals, rationale, cascading, metrics
- test_telemetry.py: error categorization, run records, recorder queue
- test_data_loader.py: hierarchy aggregation and configuration parsing
- test_engine.py: end-to-end pipeline properties
- test_api.py: optimize and solver service endpoints

Running Tests:
--------------
    pip install -e ".[test]"
    pytest book_optimizer/tests/ -v

Configuration:
--------------
See conftest.py for shared fixtures and test configuration.
'''
