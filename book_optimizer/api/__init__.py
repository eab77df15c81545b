"""
Book Optimizer API package.

Router modules:
- optimize: run optimizations for a build (JSON and NDJSON streaming)
- solver_service: native solver service endpoint used by remote clients
"""

from book_optimizer.api.optimize import router as optimize_router
from book_optimizer.api.solver_service import router as solver_service_router


__all__ = [
    "optimize_router",
    "solver_service_router",
]
