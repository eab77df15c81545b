"""
Success metrics for an optimization run.

Everything here is derived from the final proposal list alone:

- Rep loads: ARR / ATR / pipeline / tier counts per rep, deviation from the
  per-rep targets and the tier decomposition of that deviation
- Balance: coefficient of variation (CV% = std / mean * 100, population std)
  of regular-rep loads for ARR, ATR and pipeline
- Continuity: share of accounts (and of ARR) staying with their owner
- Geography / team: exact and near match rates

Rates are percentages (0-100) over parent-level proposals; cascaded child
proposals follow their parent and are not counted twice.
"""

import logging
from typing import Dict, List, Mapping, Sequence

import numpy as np

from book_optimizer.models.enums import BalanceMetric, GeoMatch
from book_optimizer.models.schemas import (
    AssignmentProposal,
    BalanceConfig,
    LPMetrics,
    Rep,
    RepLoad,
)
from book_optimizer.services.problem_builder import (
    TIER_METRICS,
    band_widths,
    metric_config,
    tier_slacks,
)


logger = logging.getLogger(__name__)


HIGH_VALUE_ARR_THRESHOLD = 500_000


def coefficient_of_variation(values: Sequence[float]) -> float:
    """CV as a percentage; 0 for empty input or zero mean."""
    if len(values) == 0:
        return 0.0
    array = np.asarray(values, dtype=np.float64)
    mean = float(np.mean(array))
    if mean == 0:
        return 0.0
    return float(np.std(array)) / mean * 100


def _rate(count: int, total: int) -> float:
    return count / total * 100 if total else 0.0


def _metric_load(load: RepLoad, metric: BalanceMetric) -> float:
    if metric == BalanceMetric.ARR:
        return load.arr
    if metric == BalanceMetric.ATR:
        return load.atr
    if metric == BalanceMetric.PIPELINE:
        return load.pipeline
    return float(load.tier_counts.get(TIER_METRICS[metric], 0))


# =============================================================================
# Rep Loads
# =============================================================================

def calculate_rep_loads(
    proposals: Sequence[AssignmentProposal],
    reps: Sequence[Rep],
    targets: Mapping[BalanceMetric, float],
    balance: BalanceConfig,
) -> List[RepLoad]:
    """
    Per-rep workload summary.

    Targets, deviations and tier slacks apply to regular reps only; the
    strategic pool is not balanced against them.

    Args:
        proposals: Final proposals (cascaded children are skipped).
        reps: Every eligible rep, strategic and regular.
        targets: Per-rep target per balanced metric.
        balance: Balance configuration (bands for the tier decomposition).

    Returns:
        List[RepLoad]: One entry per rep, in input order.
    """
    loads: Dict[str, RepLoad] = {
        rep.id: RepLoad(rep_id=rep.id, rep_name=rep.name, is_strategic=rep.is_strategic)
        for rep in reps
    }

    for proposal in proposals:
        if proposal.is_cascaded:
            continue
        load = loads.get(proposal.proposed_rep_id)
        if load is None:
            continue
        load.account_count += 1
        load.arr += proposal.arr
        load.atr += proposal.atr
        load.pipeline += proposal.pipeline
        if proposal.tier is not None:
            load.tier_counts[proposal.tier] = load.tier_counts.get(proposal.tier, 0) + 1

    for load in loads.values():
        if load.is_strategic:
            continue
        for metric, target in targets.items():
            if target <= 0:
                continue
            value = _metric_load(load, metric)
            slacks = tier_slacks(value, target, band_widths(target, metric_config(balance, metric)))

            load.targets[metric] = target
            load.deviation[metric] = value - target
            load.deviation_percent[metric] = (value - target) / target * 100
            load.unresolved_slack += slacks.unresolved
            load.outside_buffer = load.outside_buffer or slacks.outside_buffer

    return list(loads.values())


# =============================================================================
# Aggregate Metrics
# =============================================================================

def calculate_metrics(
    proposals: Sequence[AssignmentProposal],
    rep_loads: Sequence[RepLoad],
    solve_time_ms: float = 0.0,
) -> LPMetrics:
    """
    Aggregate success metrics.

    Args:
        proposals: Final proposals, including cascaded children.
        rep_loads: Output of calculate_rep_loads.
        solve_time_ms: Solver wall-clock time.

    Returns:
        LPMetrics: Metrics for the run.
    """
    parents = [p for p in proposals if not p.is_cascaded]
    regular = [load for load in rep_loads if not load.is_strategic]
    total = len(parents)

    arr_target = next(
        (load.targets[BalanceMetric.ARR] for load in regular if BalanceMetric.ARR in load.targets),
        0.0,
    )
    utilization = [load.arr / arr_target * 100 for load in regular] if arr_target > 0 else []

    stayed = [p for p in parents if p.current_owner_id and p.proposed_rep_id == p.current_owner_id]
    high_value = [p for p in parents if p.arr >= HIGH_VALUE_ARR_THRESHOLD]
    high_value_stayed = [p for p in high_value if p.proposed_rep_id == p.current_owner_id]
    total_arr = sum(p.arr for p in parents)

    exact_geo = sum(1 for p in parents if p.scores.geo_match == GeoMatch.EXACT)
    sibling_geo = sum(1 for p in parents if p.scores.geo_match == GeoMatch.SIBLING)
    cross_region = sum(1 for p in parents if p.scores.geo_match == GeoMatch.GLOBAL)
    exact_tier = sum(1 for p in parents if p.scores.tier_distance == 0)
    one_level = sum(
        1 for p in parents
        if p.scores.tier_distance is not None and abs(p.scores.tier_distance) == 1
    )

    metrics = LPMetrics(
        arr_variance_percent=coefficient_of_variation([load.arr for load in regular]),
        atr_variance_percent=coefficient_of_variation([load.atr for load in regular if load.atr > 0]),
        pipeline_variance_percent=coefficient_of_variation(
            [load.pipeline for load in regular if load.pipeline > 0]
        ),
        max_overload_percent=max(utilization, default=0.0),
        continuity_rate=_rate(len(stayed), total),
        high_value_continuity_rate=(
            _rate(len(high_value_stayed), len(high_value)) if high_value else 100.0
        ),
        arr_stayed_percent=sum(p.arr for p in stayed) / total_arr * 100 if total_arr > 0 else 0.0,
        exact_geo_match_rate=_rate(exact_geo, total),
        sibling_geo_match_rate=_rate(exact_geo + sibling_geo, total),
        cross_region_rate=_rate(cross_region, total),
        exact_tier_match_rate=_rate(exact_tier, total),
        one_level_tier_match_rate=_rate(one_level, total),
        unresolved_slack_total=sum(load.unresolved_slack for load in rep_loads),
        reps_outside_buffer=sum(1 for load in rep_loads if load.outside_buffer),
        solve_time_ms=solve_time_ms,
        total_accounts=total,
        total_reps=len(rep_loads),
    )

    logger.info(
        f"Metrics: ARR CV {metrics.arr_variance_percent:.1f}%, "
        f"continuity {metrics.continuity_rate:.0f}%, "
        f"exact geo {metrics.exact_geo_match_rate:.0f}%, "
        f"{metrics.reps_outside_buffer} reps outside buffer"
    )
    return metrics
