"""
FastAPI router for running assignment optimizations.

Endpoints:
- POST /optimize/{build_id}: load one account-type batch of a build, run
  the optimization and return the OptimizationResult
- POST /optimize/{build_id}/stream: same run, streamed as NDJSON; one
  {"type": "progress", ...} line per stage followed by a single
  {"type": "result", "result": {...}} line

A failed optimization is still a 200 response: the result carries
success=false and a categorized error. HTTP errors are reserved for
requests that never reach the engine (unknown build, malformed stored
configuration, database failure).
"""

import asyncio
import json
import logging
from typing import AsyncIterator, Optional

from fastapi import APIRouter, HTTPException
from fastapi.responses import StreamingResponse

from book_optimizer.core.dependencies import EngineDep, SettingsDep
from book_optimizer.core.exceptions import OptimizationFailure
from book_optimizer.models.enums import ErrorCategory, ProgressStage
from book_optimizer.models.schemas import (
    BuildData,
    OptimizationError,
    OptimizationResult,
    OptimizeRequest,
)
from book_optimizer.services.data_loader import load_build_data
from book_optimizer.services.engine import OptimizationEngine, ProgressChannel


# Configure logging
logger = logging.getLogger(__name__)

router = APIRouter()


async def _load(build_id: str, request: OptimizeRequest) -> BuildData:
    """
    Load a batch, translating loader failures to HTTP errors.

    Raises:
        HTTPException(404): Build has neither accounts nor reps.
        HTTPException(400): Stored configuration is invalid.
        HTTPException(500): Database failure.
    """
    try:
        build_data = await load_build_data(build_id, request.assignment_type)
    except OptimizationFailure as e:
        raise HTTPException(status_code=400, detail=e.message)
    except Exception as e:
        logger.exception(f"Error loading build {build_id}")
        raise HTTPException(status_code=500, detail=f"Failed to load build: {str(e)}")

    if not build_data.accounts and not build_data.reps:
        raise HTTPException(status_code=404, detail=f"Build {build_id} not found")
    return build_data


@router.post("/{build_id}", response_model=OptimizationResult)
async def optimize_build(
    build_id: str,
    engine: EngineDep,
    request: Optional[OptimizeRequest] = None,
) -> OptimizationResult:
    """
    Optimize one account-type batch of a build.

    Args:
        build_id: Build identifier.
        request: Assignment type and optional reference date.

    Returns:
        OptimizationResult: Proposals and metrics, or a categorized error.
    """
    request = request or OptimizeRequest()
    build_data = await _load(build_id, request)
    result = await engine.run(build_data, as_of=request.as_of)

    logger.info(
        f"Optimize {build_id} ({request.assignment_type.value}): "
        f"success={result.success}, {len(result.proposals)} proposals"
    )
    return result


async def _load_and_run(
    build_id: str,
    request: OptimizeRequest,
    engine: OptimizationEngine,
    channel: ProgressChannel,
) -> OptimizationResult:
    channel.publish(ProgressStage.LOADING, f"Loading build {build_id}", 0.0)
    try:
        build_data = await load_build_data(build_id, request.assignment_type)
    except OptimizationFailure as e:
        error = OptimizationError(category=e.category, message=e.message, hint=e.hint)
    except Exception as e:
        logger.exception(f"Error loading build {build_id}")
        error = OptimizationError(category=ErrorCategory.UNKNOWN, message=f"Failed to load build: {str(e)}")
    else:
        return await engine.run(build_data, as_of=request.as_of, progress=channel)

    channel.publish(ProgressStage.ERROR, error.message, 1.0)
    return OptimizationResult(
        success=False,
        build_id=build_id,
        assignment_type=request.assignment_type,
        error=error,
    )


@router.post("/{build_id}/stream")
async def optimize_build_stream(
    build_id: str,
    engine: EngineDep,
    settings: SettingsDep,
    request: Optional[OptimizeRequest] = None,
) -> StreamingResponse:
    """
    Optimize one batch, streaming progress as newline-delimited JSON.
    """
    request = request or OptimizeRequest()
    channel = ProgressChannel(maxsize=settings.progress_queue_size)

    async def stream() -> AsyncIterator[str]:
        task = asyncio.create_task(_load_and_run(build_id, request, engine, channel))
        try:
            async for event in channel.events():
                yield json.dumps({"type": "progress", **event.model_dump(mode="json")}) + "\n"
            result = await task
        finally:
            if not task.done():
                task.cancel()
        yield json.dumps({"type": "result", "result": result.model_dump(mode="json")}) + "\n"

    return StreamingResponse(stream(), media_type="application/x-ndjson")
