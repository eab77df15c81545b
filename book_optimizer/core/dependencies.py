"""
FastAPI dependency injection module for the Book Optimizer service.

The solver router and telemetry recorder are process-wide resources with an
explicit lifecycle: main.py opens them in the lifespan handler and stores
them on app.state. Endpoints receive them (and an engine wired with them)
through the dependencies below, so tests can swap any of them with
app.dependency_overrides.

Key Dependencies Provided:
- SettingsDep: the cached Settings singleton
- SolverRouterDep: the open SolverRouter
- TelemetryDep: the running TelemetryRecorder, or None
- EngineDep: an OptimizationEngine wired with the three above

Usage Examples:
    @router.post("/optimize/{build_id}")
    async def optimize(build_id: str, engine: EngineDep) -> OptimizationResult:
        ...

    # In tests
    app.dependency_overrides[get_solver_router] = lambda: fake_router
"""

from typing import Annotated, Optional

from fastapi import Depends, HTTPException, Request

from book_optimizer.core.config import Settings, get_settings
from book_optimizer.services.engine import OptimizationEngine
from book_optimizer.services.solver_router import SolverRouter
from book_optimizer.services.telemetry import TelemetryRecorder


# =============================================================================
# Settings Dependency
# =============================================================================

def get_settings_dependency() -> Settings:
    """
    Return the Settings singleton instance.

    Thin wrapper around get_settings() so tests can override it:

        app.dependency_overrides[get_settings_dependency] = lambda: test_settings
    """
    return get_settings()


SettingsDep = Annotated[Settings, Depends(get_settings_dependency)]


# =============================================================================
# Solver and Telemetry Dependencies
# =============================================================================

def get_solver_router(request: Request) -> SolverRouter:
    """
    Return the solver router opened by the application lifespan.

    Raises:
        HTTPException(503): If the router was not initialized.
    """
    solver_router = getattr(request.app.state, "solver_router", None)
    if solver_router is None:
        raise HTTPException(status_code=503, detail="Solver router not initialized")
    return solver_router


def get_telemetry(request: Request) -> Optional[TelemetryRecorder]:
    # Telemetry is optional; runs proceed without it
    return getattr(request.app.state, "telemetry", None)


SolverRouterDep = Annotated[SolverRouter, Depends(get_solver_router)]
TelemetryDep = Annotated[Optional[TelemetryRecorder], Depends(get_telemetry)]


# =============================================================================
# Engine Dependency
# =============================================================================

def get_engine(
    settings: SettingsDep,
    solver_router: SolverRouterDep,
    telemetry: TelemetryDep,
) -> OptimizationEngine:
    return OptimizationEngine(settings, solver_router, telemetry)


EngineDep = Annotated[OptimizationEngine, Depends(get_engine)]
