"""
FastAPI router exposing the native solver service.

This is the server side of RemoteSolverBackend: deploy the app on a large
instance and point REMOTE_SOLVER_URL at it.

Endpoints:
- POST /solve: solve LP text. Accepts text/plain (LP in the body, optional
  timeLimit / mipRelGap query parameters) or JSON {"lp", "timeLimit",
  "mipRelGap"}. Returns the solver wire format.
- GET /solve/health: liveness probe

Status codes:
- 200: the solver ran (Optimal, Infeasible or TimeLimit)
- 400: the LP text or request body is invalid
- 500: the solver failed; body is {"status": "Error", "error": ...}
"""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from book_optimizer.core.dependencies import SettingsDep
from book_optimizer.core.exceptions import LPFormatError
from book_optimizer.models.enums import SolverStatus
from book_optimizer.models.schemas import SolveRequest, SolverResponse
from book_optimizer.services.solver import solve_lp_text


# Configure logging
logger = logging.getLogger(__name__)

router = APIRouter()


async def _read_request(
    request: Request,
    time_limit: Optional[float],
    mip_rel_gap: Optional[float],
) -> SolveRequest:
    content_type = request.headers.get("content-type", "")
    try:
        if content_type.startswith("application/json"):
            return SolveRequest.model_validate(await request.json())
        body = (await request.body()).decode("utf-8")
        return SolveRequest(lp=body, timeLimit=time_limit, mipRelGap=mip_rel_gap)
    except (ValidationError, ValueError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid solve request: {e}")


@router.post("/solve", response_model=SolverResponse)
async def solve(
    request: Request,
    settings: SettingsDep,
    time_limit: Optional[float] = Query(default=None, alias="timeLimit", gt=0),
    mip_rel_gap: Optional[float] = Query(default=None, alias="mipRelGap", ge=0),
):
    """
    Solve an LP-format problem.

    Returns:
        SolverResponse: Status, objective value and non-zero columns.

    Raises:
        HTTPException(400): If the LP text cannot be parsed.
    """
    solve_request = await _read_request(request, time_limit, mip_rel_gap)
    limit = solve_request.timeLimit or settings.remote_timeout_seconds
    gap = solve_request.mipRelGap if solve_request.mipRelGap is not None else settings.mip_rel_gap

    logger.info(f"Solve request: {len(solve_request.lp)} bytes, time limit {limit:.0f}s")

    try:
        response = await asyncio.to_thread(solve_lp_text, solve_request.lp, limit, gap)
    except LPFormatError as e:
        raise HTTPException(status_code=400, detail=e.message)
    except (MemoryError, ValueError, RuntimeError) as e:
        logger.exception("Solver failed")
        error = SolverResponse(status=SolverStatus.ERROR, error=str(e) or type(e).__name__)
        return JSONResponse(status_code=500, content=error.model_dump(mode="json"))

    if response.status == SolverStatus.ERROR:
        return JSONResponse(status_code=500, content=response.model_dump(mode="json"))

    logger.info(
        f"Solved: {response.status.value}, objective {response.objectiveValue:.4f}, "
        f"{len(response.columns)} non-zero columns"
    )
    return response


@router.get("/solve/health")
async def solver_health():
    """
    Health check endpoint for the solver service.

    Returns:
        Dict with status 'healthy' and the solver in use
    """
    return {"status": "healthy", "solver": "highs"}
