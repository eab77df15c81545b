"""
Strategic pool handling.

Strategic accounts (flagged is_strategic, or currently owned by a strategic
rep) are matched to strategic reps outside the optimization. Strategic reps
never receive regular accounts, so they are also removed from the regular
rep pool.

Assignment policy is configurable (StrategicAssignmentPolicy). When
strategic accounts exist but no strategic rep is eligible, the fallback
policy decides: fall through to the regular pool with a warning, or fail.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Sequence, Tuple

from book_optimizer.core.exceptions import InfeasibleProblemError
from book_optimizer.models.enums import StrategicAssignmentPolicy, StrategicFallbackPolicy
from book_optimizer.models.schemas import Account, Rep


logger = logging.getLogger(__name__)


@dataclass
class StrategicPoolResult:
    """
    Outcome of the strategic stage.

    Attributes:
        assignments: (account, rep) pairs fixed by this stage.
        remaining_accounts: Accounts left for locks and optimization.
        regular_reps: Eligible non-strategic reps.
        strategic_account_count: Strategic accounts found (assigned or not).
        strategic_rep_count: Eligible strategic reps.
        warnings: Non-fatal conditions.
    """
    assignments: List[Tuple[Account, Rep]] = field(default_factory=list)
    remaining_accounts: List[Account] = field(default_factory=list)
    regular_reps: List[Rep] = field(default_factory=list)
    strategic_account_count: int = 0
    strategic_rep_count: int = 0
    warnings: List[str] = field(default_factory=list)


def is_strategic_account(account: Account, strategic_rep_ids: set) -> bool:
    return account.is_strategic or (
        account.owner_id is not None and account.owner_id in strategic_rep_ids
    )


def _least_loaded(reps: Sequence[Rep], loads: Dict[str, float]) -> Rep:
    return min(reps, key=lambda rep: (loads[rep.id], rep.id))


def distribute_strategic_accounts(
    accounts: Sequence[Account],
    reps: Sequence[Rep],
    policy: StrategicAssignmentPolicy,
) -> List[Tuple[Account, Rep]]:
    """
    Assign strategic accounts to strategic reps deterministically.

    Accounts are processed by ARR descending (ties by id). Reps are ordered
    by id so that identical inputs always yield identical assignments.

    Args:
        accounts: Strategic accounts.
        reps: Eligible strategic reps (non-empty).
        policy: Distribution policy.

    Returns:
        List[Tuple[Account, Rep]]: One pair per account.
    """
    ordered_reps = sorted(reps, key=lambda rep: rep.id)
    reps_by_id = {rep.id: rep for rep in ordered_reps}
    loads: Dict[str, float] = {rep.id: 0.0 for rep in ordered_reps}
    ordered_accounts = sorted(accounts, key=lambda a: (-a.arr, a.id))
    assignments: List[Tuple[Account, Rep]] = []

    if policy == StrategicAssignmentPolicy.KEEP_OWNER:
        # Owners keep their strategic accounts; their load counts before the rest
        others = []
        for account in ordered_accounts:
            owner = reps_by_id.get(account.owner_id) if account.owner_id else None
            if owner is not None:
                assignments.append((account, owner))
                loads[owner.id] += account.arr
            else:
                others.append(account)
        ordered_accounts = others

    for index, account in enumerate(ordered_accounts):
        if policy == StrategicAssignmentPolicy.ROUND_ROBIN:
            rep = ordered_reps[index % len(ordered_reps)]
        else:
            rep = _least_loaded(ordered_reps, loads)
        assignments.append((account, rep))
        loads[rep.id] += account.arr

    return assignments


def assign_strategic_accounts(
    accounts: Sequence[Account],
    reps: Sequence[Rep],
    policy: StrategicAssignmentPolicy = StrategicAssignmentPolicy.LEAST_LOADED,
    fallback: StrategicFallbackPolicy = StrategicFallbackPolicy.FALL_THROUGH,
) -> StrategicPoolResult:
    """
    Split out strategic accounts and reps.

    Args:
        accounts: All accounts in the batch.
        reps: Eligible reps (active and included in assignments).
        policy: How strategic accounts are distributed.
        fallback: What to do when no strategic rep is eligible.

    Returns:
        StrategicPoolResult: Fixed assignments plus the remaining pool.

    Raises:
        InfeasibleProblemError: When strategic accounts exist, no strategic
            rep is eligible, and the fallback policy is FAIL.
    """
    strategic_reps = [rep for rep in reps if rep.is_strategic]
    regular_reps = [rep for rep in reps if not rep.is_strategic]
    strategic_rep_ids = {rep.id for rep in strategic_reps}

    strategic_accounts: List[Account] = []
    remaining: List[Account] = []
    for account in accounts:
        if is_strategic_account(account, strategic_rep_ids):
            strategic_accounts.append(account)
        else:
            remaining.append(account)

    result = StrategicPoolResult(
        regular_reps=regular_reps,
        strategic_account_count=len(strategic_accounts),
        strategic_rep_count=len(strategic_reps),
    )

    if not strategic_accounts:
        result.remaining_accounts = remaining
        return result

    if not strategic_reps:
        message = (
            f"{len(strategic_accounts)} strategic accounts found but no eligible strategic reps"
        )
        if fallback == StrategicFallbackPolicy.FAIL:
            raise InfeasibleProblemError(
                message,
                hint="Mark at least one eligible rep as strategic",
            )
        logger.warning(f"{message}; assigning them through the regular pool")
        result.warnings.append(f"{message} - assigned through the regular pool")
        result.remaining_accounts = list(accounts)
        return result

    result.assignments = distribute_strategic_accounts(strategic_accounts, strategic_reps, policy)
    result.remaining_accounts = remaining

    logger.info(
        f"Assigned {len(strategic_accounts)} strategic accounts to "
        f"{len(strategic_reps)} strategic reps ({policy.value})"
    )
    return result
