"""
FastAPI application entry point for the Book Optimizer API.

Configures logging, owns the lifecycle of the process-wide resources
(database pool, solver router, telemetry recorder) and registers the API
routers:

- /optimize: run assignment optimizations for a build
- /solve: native solver service used by remote solver clients
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from book_optimizer.api.optimize import router as optimize_router
from book_optimizer.api.solver_service import router as solver_service_router
from book_optimizer.core.config import get_settings
from book_optimizer.core.database import close_db, init_db
from book_optimizer.services.solver_router import SolverRouter
from book_optimizer.services.telemetry import TelemetryRecorder

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Lifespan context manager for FastAPI application startup and shutdown events.

    On startup:
        - Initialize database connection pool (non-fatal on failure)
        - Open the solver router
        - Start the telemetry recorder

    On shutdown:
        - Drain and stop telemetry
        - Close the solver router
        - Close database connection pool
    """
    settings = get_settings()

    # Startup
    logger.info("Book Optimizer API starting")
    try:
        await init_db()
        logger.info("Database connection pool initialized")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        # Continue startup even if DB fails - the solver service does not need it

    solver_router = SolverRouter(settings)
    await solver_router.open()
    app.state.solver_router = solver_router

    telemetry = TelemetryRecorder(
        queue_size=settings.telemetry_queue_size,
        enabled=settings.telemetry_enabled,
    )
    await telemetry.start()
    app.state.telemetry = telemetry

    yield

    # Shutdown
    logger.info("Book Optimizer API shutting down")
    await telemetry.close()
    await solver_router.close()
    try:
        await close_db()
        logger.info("Database connection pool closed")
    except Exception as e:
        logger.error(f"Error closing database pool: {e}")


# Create FastAPI application
app = FastAPI(
    title="Book Optimizer API",
    version="1.0.0",
    description=(
        "Account-to-rep assignment optimization. "
        "Runs MILP-based book optimizations and hosts the native solver service."
    ),
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register API routers
app.include_router(optimize_router, prefix="/optimize", tags=["optimize"])
app.include_router(solver_service_router, tags=["solver"])  # Has its own /solve prefix


@app.get("/health")
async def health_check():
    """
    Health check endpoint for monitoring and load balancer probes.

    Returns:
        Dict with status 'healthy'
    """
    return {"status": "healthy"}


@app.get("/")
async def root():
    return {
        "name": "Book Optimizer API",
        "version": "1.0.0",
        "docs": "/docs",
        "openapi": "/openapi.json",
    }


# Run with uvicorn when executed directly
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "book_optimizer.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
