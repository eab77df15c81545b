"""
Score calculation for (account, rep) pairs.

Every eligible pair gets three independent scores in [0, 1] plus a small
deterministic tie-breaker:

- continuity: how much value there is in keeping the account with its
  current owner (non-zero only for that owner)
- geography: territory / region fit (see services.geography)
- team alignment: distance between the account's size tier and the rep's
  team tier; None when either side lacks tier data

The objective coefficient of a pair combines the scores with normalized
weights. When team alignment is None the team weight is redistributed to
the other two dimensions for that pair only.
"""

import logging
from datetime import date
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from book_optimizer.models.enums import TeamTier
from book_optimizer.models.schemas import (
    Account,
    AssignmentScores,
    ContinuityParams,
    LPConfiguration,
    NormalizedWeights,
    Rep,
    TeamParams,
)
from book_optimizer.services.geography import geography_score


logger = logging.getLogger(__name__)


# =============================================================================
# Static Tier Table
# =============================================================================

TEAM_TIER_ORDER: List[TeamTier] = [
    TeamTier.SMB,
    TeamTier.GROWTH,
    TeamTier.MM,
    TeamTier.ENT,
]

# (exclusive upper bound on employees, tier); anything above the last bound is ENT
EMPLOYEE_TIER_BOUNDS: List[Tuple[int, TeamTier]] = [
    (100, TeamTier.SMB),
    (500, TeamTier.GROWTH),
    (1500, TeamTier.MM),
]

PairScores = Dict[Tuple[str, str], AssignmentScores]


# =============================================================================
# Continuity
# =============================================================================

def continuity_score(
    account: Account,
    rep: Rep,
    params: ContinuityParams,
    as_of: date,
) -> float:
    """
    Continuity score for keeping `account` with `rep`.

    Only the current owner scores above zero. A departing (backfill source)
    owner scores zero so continuity never pulls accounts toward them.

    Formula:
        base + tenure_weight * T + stability_weight * B + value_weight * V

        T = min(1, days since owner change / tenure_max_days)
        B = max(0, 1 - owner_count / stability_max_owners)
        V = min(1, arr / value_threshold)

    Args:
        account: Account being scored.
        rep: Candidate rep.
        params: Continuity weights and caps.
        as_of: Reference date for tenure.

    Returns:
        float: Score in [0, 1].
    """
    if not account.owner_id or account.owner_id != rep.id:
        return 0.0

    if rep.is_backfill_source:
        return 0.0

    tenure = 0.0
    if account.owner_change_date is not None:
        days = max(0, (as_of - account.owner_change_date).days)
        tenure = min(1.0, days / params.tenure_max_days)

    # Unknown history counts as a single owner
    owner_count = account.owner_count if account.owner_count is not None else 1
    stability = max(0.0, 1.0 - owner_count / params.stability_max_owners)

    value = min(1.0, account.arr / params.value_threshold)

    score = (
        params.base_continuity
        + params.tenure_weight * tenure
        + params.stability_weight * stability
        + params.value_weight * value
    )
    return max(0.0, min(1.0, score))


# =============================================================================
# Team Alignment
# =============================================================================

def classify_employee_tier(employees: Optional[int]) -> Optional[TeamTier]:
    """Tier for an employee count, or None when the count is unknown."""
    if employees is None:
        return None
    for bound, tier in EMPLOYEE_TIER_BOUNDS:
        if employees < bound:
            return tier
    return TeamTier.ENT


def tier_distance(account: Account, rep: Rep) -> Optional[int]:
    """
    Signed tier distance (rep index minus account index), or None.

    Positive values mean the rep sells to larger companies than the account.
    """
    account_tier = classify_employee_tier(account.employees)
    if account_tier is None or rep.team_tier is None:
        return None
    return TEAM_TIER_ORDER.index(rep.team_tier) - TEAM_TIER_ORDER.index(account_tier)


def team_alignment_score(account: Account, rep: Rep, params: TeamParams) -> Optional[float]:
    """
    Team alignment score, or None when tier data is missing.

    Distance 0/1/2/3 maps to exact/one/two/three-level scores. A rep whose
    tier is above the account's ("reaching down") loses an extra
    reaching_down_penalty per level.
    """
    distance = tier_distance(account, rep)
    if distance is None:
        return None

    steps = [
        params.exact_match_score,
        params.one_level_score,
        params.two_level_score,
        params.three_level_score,
    ]
    magnitude = min(abs(distance), len(steps) - 1)
    score = steps[magnitude]

    if distance > 0:
        score -= params.reaching_down_penalty * distance

    return max(0.0, min(1.0, score))


# =============================================================================
# Tie-Breaker
# =============================================================================

def rank_tie_breakers(accounts: Sequence[Account], scale: float) -> Dict[str, float]:
    """
    Strictly decreasing tie-breaker by ARR rank.

    Accounts are ranked by ARR descending, then id ascending, so the result
    is reproducible for identical inputs. Rank r of n maps to
    scale * (1 - r / n).
    """
    ordered = sorted(accounts, key=lambda a: (-a.arr, a.id))
    count = len(ordered)
    return {
        account.id: scale * (1.0 - rank / count)
        for rank, account in enumerate(ordered)
    }


# =============================================================================
# Pair Scoring
# =============================================================================

def score_pair(
    account: Account,
    rep: Rep,
    config: LPConfiguration,
    as_of: date,
    tie_breaker: float = 0.0,
) -> AssignmentScores:
    geo, match = geography_score(account, rep, config.geography, config.territory_mappings)
    return AssignmentScores(
        continuity=continuity_score(account, rep, config.continuity, as_of),
        geography=geo,
        team_alignment=team_alignment_score(account, rep, config.team),
        tie_breaker=tie_breaker,
        geo_match=match,
        tier_distance=tier_distance(account, rep),
    )


def calculate_scores(
    accounts: Sequence[Account],
    eligible_reps: Mapping[str, Iterable[Rep]],
    config: LPConfiguration,
    as_of: date,
    tie_breaker_scale: float,
) -> PairScores:
    """
    Score every eligible (account, rep) pair.

    Args:
        accounts: Free accounts entering the optimization.
        eligible_reps: Reps each account may be assigned to, keyed by account id.
        config: Build configuration.
        as_of: Reference date for tenure.
        tie_breaker_scale: Magnitude of the rank tie-breaker.

    Returns:
        PairScores: Scores keyed by (account_id, rep_id).
    """
    tie_breakers = rank_tie_breakers(accounts, tie_breaker_scale) if accounts else {}
    scores: PairScores = {}

    for account in accounts:
        for rep in eligible_reps.get(account.id, []):
            scores[(account.id, rep.id)] = score_pair(
                account, rep, config, as_of, tie_breakers[account.id]
            )

    logger.info(f"Scored {len(scores)} pairs for {len(accounts)} accounts")
    return scores


def weighted_score(scores: AssignmentScores, weights: NormalizedWeights) -> float:
    """
    Weighted quality score without the tie-breaker.
    """
    effective = weights.effective_for(scores)
    total = effective.continuity * scores.continuity + effective.geography * scores.geography
    if scores.team_alignment is not None:
        total += effective.team_alignment * scores.team_alignment
    return total


def objective_coefficient(scores: AssignmentScores, weights: NormalizedWeights) -> float:
    """Objective coefficient of x[account, rep]."""
    return weighted_score(scores, weights) + scores.tie_breaker
