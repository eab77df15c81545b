"""
Stability lock identification.

A stability lock pins an account to a specific rep and removes it from the
optimizer's decision space. Rules are evaluated per account in the
configured priority order (StabilityConfig.priority, defaulting to manual,
backfill, risk, renewal, PE firm, recent change); the first rule that
matches wins.

Owner-based rules only fire when the current owner is an eligible rep.
Backfill is special: when the owner is leaving, the account is either
migrated to the replacement rep or left free, never pinned to the
departing owner by a later rule.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from book_optimizer.models.enums import LockType
from book_optimizer.models.schemas import (
    Account,
    Rep,
    StabilityConfig,
    StabilityLockResult,
)


logger = logging.getLogger(__name__)


UNLOCKED = StabilityLockResult(is_locked=False)


@dataclass
class LockPartition:
    """
    Disjoint split of accounts into locked and free.

    Attributes:
        locked: (account, lock) pairs; every lock has a target rep.
        unlocked: Accounts left for optimization.
        lock_stats: Locked account count per lock type.
    """
    locked: List[Tuple[Account, StabilityLockResult]] = field(default_factory=list)
    unlocked: List[Account] = field(default_factory=list)
    lock_stats: Dict[LockType, int] = field(default_factory=dict)


@dataclass
class _LockContext:
    account: Account
    owner: Optional[Rep]
    reps_by_id: Dict[str, Rep]
    config: StabilityConfig
    as_of: date


# =============================================================================
# Lock Rules
# =============================================================================

def _lock(lock_type: LockType, rep: Rep, reason: str) -> StabilityLockResult:
    return StabilityLockResult(
        is_locked=True,
        lock_type=lock_type,
        target_rep_id=rep.id,
        reason=reason,
    )


def _manual_rule(ctx: _LockContext) -> Optional[StabilityLockResult]:
    if ctx.account.exclude_from_reassignment and ctx.owner is not None:
        return _lock(LockType.MANUAL_LOCK, ctx.owner, "Manually excluded from reassignment")
    return None


def _backfill_rule(ctx: _LockContext) -> Optional[StabilityLockResult]:
    owner = ctx.owner
    if owner is None or not owner.is_backfill_source:
        return None
    target = ctx.reps_by_id.get(owner.backfill_target_rep_id or "")
    if target is None:
        # Departing owner without an eligible replacement: leave the account free
        return UNLOCKED
    return _lock(
        LockType.BACKFILL_MIGRATION,
        target,
        f"Migrating from departing rep {owner.name or owner.id}",
    )


def _risk_rule(ctx: _LockContext) -> Optional[StabilityLockResult]:
    if ctx.account.risk_flag and ctx.owner is not None:
        return _lock(LockType.CRE_RISK, ctx.owner, "At-risk account stays with current owner")
    return None


def _renewal_rule(ctx: _LockContext) -> Optional[StabilityLockResult]:
    if ctx.account.renewal_date is None or ctx.owner is None:
        return None
    days = (ctx.account.renewal_date - ctx.as_of).days
    if 0 <= days <= ctx.config.renewal_soon_days:
        return _lock(LockType.RENEWAL_SOON, ctx.owner, f"Renewal in {days} days")
    return None


def _pe_firm_rule(ctx: _LockContext) -> Optional[StabilityLockResult]:
    firm = (ctx.account.pe_firm or "").strip()
    if not firm:
        return None

    for rep in sorted(ctx.reps_by_id.values(), key=lambda r: r.id):
        if any(f.lower() == firm.lower() for f in rep.pe_firms):
            return _lock(LockType.PE_FIRM, rep, f"PE firm {firm} routed to dedicated rep")

    if ctx.owner is not None:
        return _lock(LockType.PE_FIRM, ctx.owner, f"PE firm {firm} stays with current owner")
    return None


def _recent_change_rule(ctx: _LockContext) -> Optional[StabilityLockResult]:
    if ctx.account.owner_change_date is None or ctx.owner is None:
        return None
    days = (ctx.as_of - ctx.account.owner_change_date).days
    if 0 <= days <= ctx.config.recent_change_days:
        return _lock(LockType.RECENT_CHANGE, ctx.owner, f"Owner changed {days} days ago")
    return None


# A rule returns None to defer to the next rule; any result (locked or not) is final
LOCK_RULES: Dict[LockType, Callable[[_LockContext], Optional[StabilityLockResult]]] = {
    LockType.MANUAL_LOCK: _manual_rule,
    LockType.BACKFILL_MIGRATION: _backfill_rule,
    LockType.CRE_RISK: _risk_rule,
    LockType.RENEWAL_SOON: _renewal_rule,
    LockType.PE_FIRM: _pe_firm_rule,
    LockType.RECENT_CHANGE: _recent_change_rule,
}


# =============================================================================
# Public API
# =============================================================================

def identify_lock(
    account: Account,
    reps_by_id: Dict[str, Rep],
    config: StabilityConfig,
    as_of: date,
) -> StabilityLockResult:
    """
    Evaluate lock rules for one account.

    Args:
        account: Account to evaluate.
        reps_by_id: Eligible regular reps keyed by id.
        config: Lock toggles, priority and windows.
        as_of: Reference date for renewal and ownership-change windows.

    Returns:
        StabilityLockResult: The first matching lock, or an unlocked result.
    """
    owner = reps_by_id.get(account.owner_id) if account.owner_id else None
    ctx = _LockContext(
        account=account,
        owner=owner,
        reps_by_id=reps_by_id,
        config=config,
        as_of=as_of,
    )
    enabled = set(config.enabled_locks)

    for lock_type in config.priority:
        if lock_type not in enabled:
            continue

        result = LOCK_RULES[lock_type](ctx)
        if result is not None:
            return result

    return UNLOCKED


def identify_locked_accounts(
    accounts: Sequence[Account],
    reps: Sequence[Rep],
    config: StabilityConfig,
    as_of: date,
) -> LockPartition:
    """
    Partition accounts into locked and free.

    Args:
        accounts: Accounts remaining after the strategic stage.
        reps: Eligible regular reps.
        config: Stability configuration.
        as_of: Reference date.

    Returns:
        LockPartition: Locked pairs, free accounts and per-type counts.
    """
    reps_by_id = {rep.id: rep for rep in reps}
    partition = LockPartition()

    for account in accounts:
        lock = identify_lock(account, reps_by_id, config, as_of)
        if lock.is_locked:
            partition.locked.append((account, lock))
            partition.lock_stats[lock.lock_type] = partition.lock_stats.get(lock.lock_type, 0) + 1
        else:
            partition.unlocked.append(account)

    logger.info(
        f"Stability locks: {len(partition.locked)} locked, "
        f"{len(partition.unlocked)} free"
    )
    return partition
