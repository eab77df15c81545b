"""
Solver routing.

SolverRouter owns the embedded and remote backends and decides which one
solves a problem:

- variable count <= EMBEDDED_MAX_VARIABLES -> embedded, else remote
- embedded crash -> exactly one retry on the remote backend
- remote unreachable or 5xx -> one fallback to embedded, if the problem is
  no larger than EMBEDDED_FALLBACK_MAX_VARIABLES

Infeasible and timed-out solves are never retried. The router is created
once per process, opened in the app lifespan and injected into the engine.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple, Union

from book_optimizer.core.config import Settings
from book_optimizer.core.exceptions import (
    HINT_INFRASTRUCTURE,
    HINT_SMALLER_BATCH,
    SolverCrashError,
    SolverInfeasibleError,
    SolverTimeoutError,
    SolverUnavailableError,
)
from book_optimizer.models.enums import SolverBackend, SolverStatus
from book_optimizer.models.lp import LPProblem
from book_optimizer.models.schemas import SolverParams, SolverResponse
from book_optimizer.services.lp_format import serialize_lp
from book_optimizer.services.solver import (
    TIMEOUT_GRACE_SECONDS,
    EmbeddedSolverBackend,
    RemoteSolverBackend,
)


logger = logging.getLogger(__name__)


Backend = Union[EmbeddedSolverBackend, RemoteSolverBackend]

# Binary values at or above this are treated as chosen
SELECTION_THRESHOLD = 0.5


@dataclass
class SolveOutcome:
    """
    A usable solver response and where it came from.

    Attributes:
        response: Optimal or TimeLimit response with columns.
        backend: Backend that produced the response.
        solve_time_ms: Wall-clock time including any fallback attempt.
        warnings: Fallbacks taken and time-limit notices.
    """
    response: SolverResponse
    backend: SolverBackend
    solve_time_ms: float
    warnings: List[str] = field(default_factory=list)


class SolverRouter:
    """
    Routes LP problems to the embedded or remote solver.

    Usage:
        async with SolverRouter(settings) as router:
            outcome = await router.solve(problem)
    """

    def __init__(
        self,
        settings: Settings,
        embedded: Optional[EmbeddedSolverBackend] = None,
        remote: Optional[RemoteSolverBackend] = None,
    ):
        self.settings = settings
        self.embedded = embedded or EmbeddedSolverBackend(
            default_time_limit=settings.embedded_timeout_seconds,
            default_mip_rel_gap=settings.mip_rel_gap,
        )
        if remote is None and settings.remote_solver_url:
            remote = RemoteSolverBackend(
                settings.remote_solver_url,
                timeout_seconds=settings.remote_timeout_seconds + TIMEOUT_GRACE_SECONDS,
            )
        self.remote = remote

    async def open(self) -> None:
        await self.embedded.open()
        if self.remote is not None:
            await self.remote.open()
        logger.info(
            f"Solver router open (embedded <= {self.settings.embedded_max_variables} vars, "
            f"remote {'enabled' if self.remote is not None else 'disabled'})"
        )

    async def close(self) -> None:
        await self.embedded.close()
        if self.remote is not None:
            await self.remote.close()

    async def __aenter__(self) -> "SolverRouter":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # =========================================================================
    # Routing
    # =========================================================================

    def choose_backend(self, num_variables: int) -> SolverBackend:
        """Primary backend for a problem of the given size."""
        if num_variables <= self.settings.embedded_max_variables:
            return SolverBackend.EMBEDDED
        if self.remote is None and num_variables <= self.settings.embedded_fallback_max_variables:
            return SolverBackend.EMBEDDED
        return SolverBackend.REMOTE

    def _backend(self, kind: SolverBackend) -> Backend:
        if kind == SolverBackend.EMBEDDED:
            return self.embedded
        if self.remote is None:
            raise SolverUnavailableError(
                "Problem exceeds the embedded solver limit and no remote solver is configured",
                hint=HINT_INFRASTRUCTURE,
            )
        return self.remote

    def _time_limit(self, kind: SolverBackend, params: SolverParams) -> float:
        if params.timeout_seconds is not None:
            return params.timeout_seconds
        if kind == SolverBackend.EMBEDDED:
            return self.settings.embedded_timeout_seconds
        return self.settings.remote_timeout_seconds

    async def _attempt(
        self,
        kind: SolverBackend,
        lp_text: str,
        params: SolverParams,
    ) -> SolverResponse:
        backend = self._backend(kind)
        gap = params.mip_rel_gap if params.mip_rel_gap is not None else self.settings.mip_rel_gap
        response = await backend.solve(
            lp_text,
            time_limit=self._time_limit(kind, params),
            mip_rel_gap=gap,
        )
        if response.status == SolverStatus.ERROR:
            raise SolverCrashError(
                f"{kind.value.capitalize()} solver error: {response.error or 'unknown error'}",
                hint=HINT_SMALLER_BATCH,
            )
        return response

    def _fallback_for(
        self,
        primary: SolverBackend,
        error: Exception,
        num_variables: int,
    ) -> Optional[SolverBackend]:
        if primary == SolverBackend.EMBEDDED:
            if isinstance(error, SolverCrashError) and self.remote is not None:
                return SolverBackend.REMOTE
            return None

        if isinstance(error, (SolverCrashError, SolverUnavailableError)):
            if num_variables <= self.settings.embedded_fallback_max_variables:
                return SolverBackend.EMBEDDED
        return None

    async def solve(self, problem: LPProblem, params: Optional[SolverParams] = None) -> SolveOutcome:
        """
        Solve a problem, falling back at most once.

        Args:
            problem: Problem to solve.
            params: Per-build solver overrides.

        Returns:
            SolveOutcome: A response with a usable assignment.

        Raises:
            SolverInfeasibleError: The solver proved the problem infeasible.
            SolverTimeoutError: Time limit reached with no feasible solution.
            SolverCrashError: Solver failure with no successful fallback.
            SolverUnavailableError: No backend could be reached.
            LPFormatError: The LP text was rejected.
        """
        params = params or SolverParams()
        num_variables = problem.num_variables
        primary = self.choose_backend(num_variables)
        warnings: List[str] = []

        lp_text = serialize_lp(problem)
        logger.info(
            f"Routing {num_variables} variables ({len(lp_text)} bytes LP) "
            f"to {primary.value} solver"
        )

        started = time.perf_counter()
        backend = primary
        try:
            response = await self._attempt(primary, lp_text, params)
        except (SolverCrashError, SolverUnavailableError) as e:
            fallback = self._fallback_for(primary, e, num_variables)
            if fallback is None:
                raise

            message = f"{primary.value} solver failed ({e.message}); retried on {fallback.value} solver"
            logger.warning(message)
            warnings.append(message)
            backend = fallback
            response = await self._attempt(fallback, lp_text, params)

        solve_time_ms = (time.perf_counter() - started) * 1000

        if response.status == SolverStatus.INFEASIBLE:
            raise SolverInfeasibleError(
                "Solver reported the problem infeasible",
                hint="Relax the region filter or review locked accounts",
            )

        if response.status == SolverStatus.TIME_LIMIT:
            if not response.columns:
                raise SolverTimeoutError(
                    "Solver reached its time limit without a feasible solution",
                    hint=HINT_SMALLER_BATCH,
                )
            message = "Solver reached its time limit; using the best solution found"
            logger.warning(message)
            warnings.append(message)

        logger.info(
            f"{backend.value} solver returned {response.status.value} "
            f"(objective {response.objectiveValue:.4f}) in {solve_time_ms:.0f}ms"
        )
        return SolveOutcome(
            response=response,
            backend=backend,
            solve_time_ms=solve_time_ms,
            warnings=warnings,
        )


def extract_assignments(
    problem: LPProblem,
    response: SolverResponse,
) -> Tuple[Dict[str, str], List[str]]:
    """
    Read the chosen rep per account from a solver response.

    Any x >= 0.5 is chosen; if several qualify the largest value wins. An
    account with no qualifying x takes its largest value and a warning.

    Returns:
        Tuple of (account_id -> rep_id, warnings).
    """
    assignments: Dict[str, str] = {}
    warnings: List[str] = []

    for account_id, pairs in problem.pairs_by_account().items():
        best = max(pairs, key=lambda pair: response.primal(pair.name))
        value = response.primal(best.name)
        if value < SELECTION_THRESHOLD:
            warnings.append(
                f"No rep selected for account {account_id} (max value {value:.2f}); "
                f"using highest-valued rep"
            )
        assignments[account_id] = best.rep_id

    return assignments, warnings
