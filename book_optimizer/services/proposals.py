"""
Proposal building and rationale generation.

Merges the three sources of assignments (strategic pool, stability locks,
solver output) into AssignmentProposal records. Every proposal carries the
scores of its (account, rep) pair, a total score and a one-line rationale
explaining the dominant reason for the assignment.
"""

import logging
from datetime import date
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from book_optimizer.models.enums import AssignmentSource, LockType
from book_optimizer.models.schemas import (
    Account,
    AssignmentProposal,
    AssignmentScores,
    GeographyParams,
    LPConfiguration,
    NormalizedWeights,
    Rep,
    StabilityLockResult,
)
from book_optimizer.services.geography import classify_geo_match
from book_optimizer.services.scoring import PairScores, score_pair, tier_distance, weighted_score


logger = logging.getLogger(__name__)


# Fixed assignments (strategic, locked) are not traded off against other reps
FIXED_TOTAL_SCORE = 1.0


# =============================================================================
# Rationale
# =============================================================================

LOCK_RATIONALES: Dict[LockType, str] = {
    LockType.MANUAL_LOCK: "Excluded from reassignment → {rep} (manually locked)",
    LockType.BACKFILL_MIGRATION: "Stability Lock → {rep} (backfill migration from departing rep)",
    LockType.CRE_RISK: "Stability Lock → {rep} (at-risk account, relationship stability)",
    LockType.RENEWAL_SOON: "Stability Lock → {rep} ({reason})",
    LockType.PE_FIRM: "Stability Lock → {rep} ({reason})",
    LockType.RECENT_CHANGE: "Stability Lock → {rep} ({reason})",
}


def lock_rationale(lock: StabilityLockResult, rep: Rep) -> str:
    template = LOCK_RATIONALES.get(lock.lock_type, "Stability Lock → {rep} ({reason})")
    return template.format(rep=rep.name or rep.id, reason=lock.reason or "stability constraint")


def generate_rationale(
    rep: Rep,
    scores: AssignmentScores,
    weights: NormalizedWeights,
    geography: Optional[GeographyParams] = None,
) -> str:
    """
    Explain an optimized assignment by its dominant scoring factor.

    Checks, in order: strong geography plus continuity, geography tiers,
    continuity tiers, team alignment tiers, a low total (balance-driven),
    and finally the generic top contributor.
    """
    geography = geography or GeographyParams()
    effective = weights.effective_for(scores)
    name = rep.name or rep.id
    total = weighted_score(scores, weights)

    contributions = [
        ("continuity", effective.continuity * scores.continuity, scores.continuity),
        ("geography", effective.geography * scores.geography, scores.geography),
        (
            "team match",
            effective.team_alignment * scores.team_alignment if scores.team_alignment is not None else 0.0,
            scores.team_alignment,
        ),
    ]
    top, _, raw = max(contributions, key=lambda item: item[1])

    if scores.geography >= geography.sibling_score and scores.continuity >= geography.parent_score:
        return (
            f"Geography + Continuity → {name} "
            f"({rep.region or 'matching region'}, relationship maintained, score {total:.2f})"
        )

    if top == "geography":
        if raw >= geography.exact_match_score:
            return f"Geography Match → {name} ({rep.region or 'matching region'} - exact geo match, score {total:.2f})"
        if raw >= geography.sibling_score:
            return f"Geography Match → {name} ({rep.region or 'nearby region'} - sibling region, score {total:.2f})"
        if raw >= geography.parent_score:
            return f"Geography Match → {name} ({rep.region or 'same macro-region'} - regional alignment, score {total:.2f})"

    if top == "continuity":
        if raw > 0.7:
            return f"Account Continuity → {name} (long-term relationship, score {total:.2f})"
        if raw > 0.4:
            return f"Account Continuity → {name} (relationship maintained, score {total:.2f})"

    if top == "team match" and raw is not None:
        tier = rep.team_tier.value if rep.team_tier else None
        if raw >= 1.0:
            return f"Team Alignment → {name} ({tier or 'matching tier'} - exact tier match, score {total:.2f})"
        if raw >= 0.6:
            return f"Team Alignment → {name} ({tier or 'close tier'} - good tier alignment, score {total:.2f})"

    if total < 0.3:
        return f"Balance Optimization → {name} (best available for balance, score {total:.2f})"

    return f"Optimized → {name} ({top} was primary factor, score {total:.2f})"


# =============================================================================
# Proposal Construction
# =============================================================================

def _proposal(
    account: Account,
    rep: Rep,
    source: AssignmentSource,
    scores: AssignmentScores,
    total_score: float,
    rationale: str,
    lock: Optional[StabilityLockResult] = None,
) -> AssignmentProposal:
    return AssignmentProposal(
        account_id=account.id,
        account_name=account.name,
        proposed_rep_id=rep.id,
        proposed_rep_name=rep.name,
        proposed_rep_region=rep.region,
        current_owner_id=account.owner_id,
        source=source,
        scores=scores,
        total_score=total_score,
        lock_type=lock.lock_type if lock else None,
        rationale=rationale,
        arr=account.arr,
        atr=account.atr,
        pipeline=account.pipeline,
        tier=account.tier,
        is_strategic=source == AssignmentSource.STRATEGIC,
    )


def strategic_scores(account: Account, rep: Rep, config: LPConfiguration) -> AssignmentScores:
    """
    Scores of a strategic assignment: geography and team are not constraints
    in the strategic pool, so both score 1.0.
    """
    return AssignmentScores(
        continuity=1.0 if account.owner_id == rep.id else 0.0,
        geography=1.0,
        team_alignment=1.0,
        geo_match=classify_geo_match(account, rep, config.territory_mappings),
        tier_distance=tier_distance(account, rep),
    )


def build_proposals(
    strategic: Sequence[Tuple[Account, Rep]],
    locked: Sequence[Tuple[Account, StabilityLockResult]],
    solved: Mapping[str, str],
    free_accounts: Sequence[Account],
    reps: Sequence[Rep],
    scores: PairScores,
    weights: NormalizedWeights,
    config: LPConfiguration,
    as_of: date,
) -> List[AssignmentProposal]:
    """
    Merge strategic, locked and optimized assignments into proposals.

    Args:
        strategic: (account, strategic rep) pairs from the strategic stage.
        locked: (account, lock) pairs from the lock stage.
        solved: account_id -> rep_id read from the solver response.
        free_accounts: Accounts that were decision variables.
        reps: Every eligible rep (strategic and regular).
        scores: Pair scores of the free accounts.
        weights: Normalized objective weights.
        config: Build configuration.
        as_of: Reference date used for locked-pair scoring.

    Returns:
        List[AssignmentProposal]: Exactly one proposal per input account.
    """
    reps_by_id = {rep.id: rep for rep in reps}
    proposals: List[AssignmentProposal] = []

    for account, rep in strategic:
        proposals.append(_proposal(
            account,
            rep,
            AssignmentSource.STRATEGIC,
            strategic_scores(account, rep, config),
            FIXED_TOTAL_SCORE,
            f"Strategic Account → {rep.name or rep.id} (strategic rep, ARR-balanced distribution)",
        ))

    for account, lock in locked:
        rep = reps_by_id[lock.target_rep_id]
        # A locked account stays with its relationship: full continuity
        pair_scores = score_pair(account, rep, config, as_of).model_copy(update={"continuity": 1.0})
        proposals.append(_proposal(
            account,
            rep,
            AssignmentSource.LOCKED,
            pair_scores,
            FIXED_TOTAL_SCORE,
            lock_rationale(lock, rep),
            lock,
        ))

    for account in free_accounts:
        rep = reps_by_id[solved[account.id]]
        pair_scores = scores[(account.id, rep.id)]
        proposals.append(_proposal(
            account,
            rep,
            AssignmentSource.OPTIMIZED,
            pair_scores,
            weighted_score(pair_scores, weights),
            generate_rationale(rep, pair_scores, weights, config.geography),
        ))

    logger.info(
        f"Built {len(proposals)} proposals "
        f"({len(strategic)} strategic, {len(locked)} locked, {len(free_accounts)} optimized)"
    )
    return proposals
