"""
Solver backends.

Both backends take LP text and return a SolverResponse in the wire format

    {status: Optimal | Infeasible | TimeLimit | Error,
     objectiveValue: float,
     columns: {name: {Primal: float}}}

- EmbeddedSolverBackend parses the text and solves in-process with
  scipy.optimize.milp (HiGHS) on a worker thread.
- RemoteSolverBackend POSTs the text to a native solver service over
  httpx with a bounded timeout.

Backends report solver outcomes through the response status. They raise
only when no response could be produced at all: SolverCrashError (process
failure, HTTP 5xx, malformed reply), SolverTimeoutError (hard timeout
without any answer) or SolverUnavailableError (service unreachable).
"""

import asyncio
import logging
import time
from typing import Dict, Optional

import httpx
import numpy as np
from scipy.optimize import Bounds, LinearConstraint, milp

from book_optimizer.core.exceptions import (
    HINT_INFRASTRUCTURE,
    HINT_SMALLER_BATCH,
    LPFormatError,
    SolverCrashError,
    SolverTimeoutError,
    SolverUnavailableError,
)
from book_optimizer.models.enums import SolverBackend, SolverStatus
from book_optimizer.models.schemas import SolverColumn, SolverResponse
from book_optimizer.services.lp_format import ParsedLP, parse_lp


logger = logging.getLogger(__name__)


# Values closer to zero than this are left out of the sparse column map
COLUMN_EPSILON = 1e-9

# Extra wall-clock time granted beyond the solver's own time limit
TIMEOUT_GRACE_SECONDS = 5.0


# =============================================================================
# In-Process Solve
# =============================================================================

def solve_parsed(
    parsed: ParsedLP,
    time_limit: Optional[float] = None,
    mip_rel_gap: Optional[float] = None,
) -> SolverResponse:
    """
    Solve a parsed LP with scipy's HiGHS-based MILP solver.

    Args:
        parsed: Problem in matrix form.
        time_limit: Seconds before HiGHS stops with its best solution so far.
        mip_rel_gap: Relative optimality gap at which HiGHS stops.

    Returns:
        SolverResponse: Wire-format result. A time limit with an incumbent
            is reported as TimeLimit with columns; without one, TimeLimit
            with no columns.
    """
    started = time.perf_counter()

    # milp minimizes
    costs = -parsed.objective if parsed.maximize else parsed.objective
    constraints = None
    if parsed.num_constraints:
        constraints = LinearConstraint(parsed.matrix, parsed.row_lower, parsed.row_upper)

    options: Dict[str, object] = {"disp": False, "presolve": True}
    if time_limit is not None:
        options["time_limit"] = float(time_limit)
    if mip_rel_gap is not None:
        options["mip_rel_gap"] = float(mip_rel_gap)

    result = milp(
        costs,
        integrality=parsed.integrality,
        bounds=Bounds(parsed.lower, parsed.upper),
        constraints=constraints,
        options=options,
    )
    elapsed_ms = (time.perf_counter() - started) * 1000

    if result.status == 2:
        return SolverResponse(status=SolverStatus.INFEASIBLE, solveTimeMs=elapsed_ms)

    # 0 optimal, 1 iteration or time limit; anything else is a solver failure
    if result.status not in (0, 1):
        return SolverResponse(status=SolverStatus.ERROR, solveTimeMs=elapsed_ms, error=result.message)

    if result.x is None:
        status = SolverStatus.TIME_LIMIT if result.status == 1 else SolverStatus.ERROR
        return SolverResponse(status=status, solveTimeMs=elapsed_ms, error=result.message)

    values = np.asarray(result.x)
    # Integer columns come back with solver tolerance noise
    values = np.where(parsed.integrality == 1, np.round(values), values)
    columns = {
        name: SolverColumn(Primal=float(value))
        for name, value in zip(parsed.variable_names, values)
        if abs(value) > COLUMN_EPSILON
    }

    objective = float(result.fun)
    objective = (-objective if parsed.maximize else objective) + parsed.objective_offset

    status = SolverStatus.OPTIMAL if result.status == 0 else SolverStatus.TIME_LIMIT
    return SolverResponse(
        status=status,
        objectiveValue=objective,
        columns=columns,
        solveTimeMs=elapsed_ms,
    )


def solve_lp_text(
    lp_text: str,
    time_limit: Optional[float] = None,
    mip_rel_gap: Optional[float] = None,
) -> SolverResponse:
    """Parse and solve LP text in-process (blocking)."""
    return solve_parsed(parse_lp(lp_text), time_limit=time_limit, mip_rel_gap=mip_rel_gap)


# =============================================================================
# Backends
# =============================================================================

class EmbeddedSolverBackend:
    """
    In-process backend. Runs the blocking solve on a worker thread so the
    event loop stays responsive, and bounds the wait with a hard timeout.
    """

    kind = SolverBackend.EMBEDDED

    def __init__(self, default_time_limit: float = 60.0, default_mip_rel_gap: Optional[float] = None):
        self.default_time_limit = default_time_limit
        self.default_mip_rel_gap = default_mip_rel_gap
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    async def open(self) -> None:
        self._open = True

    async def close(self) -> None:
        self._open = False

    async def solve(
        self,
        lp_text: str,
        time_limit: Optional[float] = None,
        mip_rel_gap: Optional[float] = None,
    ) -> SolverResponse:
        """
        Solve LP text in-process.

        Raises:
            LPFormatError: If the text cannot be parsed.
            SolverCrashError: On memory exhaustion or an internal solver error.
            SolverTimeoutError: If the worker does not return within the
                time limit plus grace.
        """
        if not self._open:
            raise SolverUnavailableError("Embedded solver is not open", hint=HINT_INFRASTRUCTURE)

        limit = time_limit or self.default_time_limit
        gap = mip_rel_gap if mip_rel_gap is not None else self.default_mip_rel_gap

        # HiGHS stops itself at `limit`; wait_for only stops waiting, the
        # worker thread runs until HiGHS returns
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(solve_lp_text, lp_text, limit, gap),
                timeout=limit + TIMEOUT_GRACE_SECONDS,
            )
        except asyncio.TimeoutError as e:
            raise SolverTimeoutError(
                f"Embedded solver did not finish within {limit:.0f}s",
                hint=HINT_SMALLER_BATCH,
            ) from e
        except LPFormatError:
            raise
        except MemoryError as e:
            raise SolverCrashError(
                "Embedded solver ran out of memory",
                hint=HINT_SMALLER_BATCH,
            ) from e
        except (ValueError, RuntimeError) as e:
            raise SolverCrashError(
                f"Embedded solver failed: {e}",
                hint=HINT_SMALLER_BATCH,
            ) from e


class RemoteSolverBackend:
    """
    Client for the native solver service (POST {base_url}/solve).

    The underlying httpx.AsyncClient is created in open() and released in
    close(); solve() on a closed backend raises SolverUnavailableError.
    """

    kind = SolverBackend.REMOTE

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 300.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def is_open(self) -> bool:
        return self._client is not None

    async def open(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout_seconds, connect=10.0),
                transport=self._transport,
            )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def solve(
        self,
        lp_text: str,
        time_limit: Optional[float] = None,
        mip_rel_gap: Optional[float] = None,
    ) -> SolverResponse:
        """
        Send LP text to the solver service.

        Raises:
            SolverUnavailableError: Connection refused, DNS failure, closed client.
            SolverTimeoutError: No reply within the HTTP timeout.
            SolverCrashError: HTTP 5xx or an unreadable reply.
            LPFormatError: HTTP 4xx (the service rejected the LP text).
        """
        if self._client is None:
            raise SolverUnavailableError("Remote solver client is not open", hint=HINT_INFRASTRUCTURE)

        payload: Dict[str, object] = {"lp": lp_text}
        if time_limit is not None:
            payload["timeLimit"] = time_limit
        if mip_rel_gap is not None:
            payload["mipRelGap"] = mip_rel_gap

        try:
            response = await self._client.post("/solve", json=payload)
        except httpx.TimeoutException as e:
            raise SolverTimeoutError(
                f"Remote solver did not respond within {self.timeout_seconds:.0f}s",
                hint=HINT_SMALLER_BATCH,
            ) from e
        except httpx.TransportError as e:
            raise SolverUnavailableError(
                f"Remote solver unreachable: {e}",
                hint=HINT_INFRASTRUCTURE,
            ) from e

        if response.status_code >= 500:
            raise SolverCrashError(
                f"Remote solver error {response.status_code}: {_error_detail(response)}",
                hint=HINT_SMALLER_BATCH,
            )
        if response.status_code >= 400:
            raise LPFormatError(f"Remote solver rejected problem: {_error_detail(response)}")

        try:
            return SolverResponse.model_validate(response.json())
        except ValueError as e:
            raise SolverCrashError(f"Malformed remote solver response: {e}") from e


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        return str(body.get("error") or body.get("detail") or body)[:200]
    return str(body)[:200]
