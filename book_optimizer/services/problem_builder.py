"""
MILP construction with three-tier soft balance penalties.

Decision space:
- one binary x[account, rep] per eligible pair
- one equality per account: sum over reps of x[account, rep] = 1

Balance is soft. For every rep and every enabled balance metric, six
non-negative slacks absorb the deviation of the rep's load from target T:

    alpha  (over/under) - inside the variance band, bounded by v
    beta   (over/under) - inside the buffer zone, bounded by w - v
    bigM   (over/under) - beyond the buffer, unbounded

The balance row is normalized by T so coefficients stay O(1):

    sum(x * value / T) - a_o + a_u - b_o + b_u - M_o + M_u = 1 - fixed_load / T

Each slack is subtracted from the objective with a tier penalty
(alpha << beta << bigM) scaled by the metric's weight and the build's
balance intensity. The resulting cost is convex and piecewise linear:
cheap near target, steep toward the buffer edge, prohibitive beyond it,
yet no deviation is ever infeasible.

Objective (maximize):
    sum(coefficient * x) - sum(tier_penalty * slack)
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from book_optimizer.core.config import Settings
from book_optimizer.core.exceptions import InfeasibleProblemError
from book_optimizer.models.enums import BalanceIntensity, BalanceMetric
from book_optimizer.models.lp import BandWidths, Constraint, LPProblem, PairVariable, SlackSet, Variable
from book_optimizer.models.schemas import (
    Account,
    BalanceConfig,
    MetricBalanceConfig,
    NormalizedWeights,
    Rep,
)
from book_optimizer.services.geography import same_macro_region
from book_optimizer.services.scoring import PairScores, objective_coefficient


logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

INTENSITY_MULTIPLIERS: Dict[BalanceIntensity, float] = {
    BalanceIntensity.VERY_LIGHT: 0.1,
    BalanceIntensity.LIGHT: 0.5,
    BalanceIntensity.NORMAL: 1.0,
    BalanceIntensity.HEAVY: 10.0,
    BalanceIntensity.VERY_HEAVY: 100.0,
}

TIER_METRICS: Dict[BalanceMetric, int] = {
    BalanceMetric.TIER_1: 1,
    BalanceMetric.TIER_2: 2,
    BalanceMetric.TIER_3: 3,
    BalanceMetric.TIER_4: 4,
}

# Residuals below this are floating-point noise, not deviation
SLACK_TOLERANCE = 1e-9


@dataclass(frozen=True)
class PenaltyWeights:
    """Per-unit penalties of the three slack tiers."""
    alpha: float = 0.01
    beta: float = 0.1
    big_m: float = 100.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "PenaltyWeights":
        return cls(
            alpha=settings.penalty_alpha,
            beta=settings.penalty_beta,
            big_m=settings.penalty_big_m,
        )


@dataclass(frozen=True)
class TierSlacks:
    """Normalized tier decomposition of one rep's deviation from target."""
    alpha_over: float = 0.0
    alpha_under: float = 0.0
    beta_over: float = 0.0
    beta_under: float = 0.0
    big_m_over: float = 0.0
    big_m_under: float = 0.0

    @property
    def unresolved(self) -> float:
        """Deviation left outside the variance band."""
        return self.beta_over + self.beta_under + self.big_m_over + self.big_m_under

    @property
    def outside_buffer(self) -> bool:
        return self.big_m_over > SLACK_TOLERANCE or self.big_m_under > SLACK_TOLERANCE


# =============================================================================
# Balance Metric Helpers
# =============================================================================

def metric_value(account: Account, metric: BalanceMetric) -> float:
    if metric == BalanceMetric.ARR:
        return account.arr
    if metric == BalanceMetric.ATR:
        return account.atr
    if metric == BalanceMetric.PIPELINE:
        return account.pipeline
    return 1.0 if account.tier == TIER_METRICS[metric] else 0.0


def metric_config(balance: BalanceConfig, metric: BalanceMetric) -> MetricBalanceConfig:
    if metric == BalanceMetric.ARR:
        return balance.arr
    if metric == BalanceMetric.ATR:
        return balance.atr
    if metric == BalanceMetric.PIPELINE:
        return balance.pipeline
    return balance.tiers


def metric_weight(balance: BalanceConfig, metric: BalanceMetric) -> float:
    """Penalty weight of a metric, including the intensity multiplier."""
    weight = metric_config(balance, metric).penalty
    if metric in TIER_METRICS:
        # The tier weight is shared by the four tier rows
        weight /= len(TIER_METRICS)
    return weight * INTENSITY_MULTIPLIERS[balance.intensity]


def active_metrics(balance: BalanceConfig) -> List[BalanceMetric]:
    metrics = [
        metric
        for metric in (BalanceMetric.ARR, BalanceMetric.ATR, BalanceMetric.PIPELINE)
        if metric_config(balance, metric).enabled
    ]
    if balance.tiers.enabled:
        metrics.extend(TIER_METRICS)
    return metrics


def compute_targets(
    accounts: Sequence[Account],
    rep_count: int,
    metrics: Sequence[BalanceMetric],
) -> Dict[BalanceMetric, float]:
    """
    Per-rep target for each metric: total value divided by rep count.
    """
    if rep_count <= 0:
        return {metric: 0.0 for metric in metrics}
    return {
        metric: sum(metric_value(account, metric) for account in accounts) / rep_count
        for metric in metrics
    }


def band_widths(target: float, config: MetricBalanceConfig) -> BandWidths:
    """
    Normalized slack bounds for a metric.

    Absolute min/max values, when configured, replace the buffer edges.
    """
    alpha = config.variance
    beta_over = config.buffer - config.variance
    beta_under = config.buffer - config.variance

    if target > 0 and config.max_value is not None:
        beta_over = max(0.0, config.max_value / target - 1.0 - alpha)
    if target > 0 and config.min_value is not None:
        beta_under = max(0.0, 1.0 - alpha - config.min_value / target)

    return BandWidths(alpha=alpha, beta_over=beta_over, beta_under=beta_under)


def tier_slacks(load: float, target: float, widths: BandWidths) -> TierSlacks:
    """
    Split a load's deviation from target into alpha, beta and bigM tiers.

    This is the decomposition the solver settles on at optimum: cheaper
    tiers fill up to their bounds before the next tier is used.

    Example:
        Load 300 against target 200 with v=10% and w=40% is 50% over:
        alpha_over=0.1, beta_over=0.3, big_m_over=0.1 (all fractions of target).
    """
    if target <= 0:
        return TierSlacks()

    deviation = load / target - 1.0
    magnitude = abs(deviation)
    alpha = min(magnitude, widths.alpha)
    rest = magnitude - alpha
    if rest < SLACK_TOLERANCE:
        rest = 0.0

    if deviation > 0:
        beta = min(rest, widths.beta_over)
        overflow = rest - beta if rest - beta > SLACK_TOLERANCE else 0.0
        return TierSlacks(alpha_over=alpha, beta_over=beta, big_m_over=overflow)

    beta = min(rest, widths.beta_under)
    overflow = rest - beta if rest - beta > SLACK_TOLERANCE else 0.0
    return TierSlacks(alpha_under=alpha, beta_under=beta, big_m_under=overflow)


def tiered_penalty(slacks: TierSlacks, penalties: PenaltyWeights, weight: float = 1.0) -> float:
    """Objective cost of a tier decomposition."""
    return weight * (
        penalties.alpha * (slacks.alpha_over + slacks.alpha_under)
        + penalties.beta * (slacks.beta_over + slacks.beta_under)
        + penalties.big_m * (slacks.big_m_over + slacks.big_m_under)
    )


# =============================================================================
# Eligibility
# =============================================================================

def eligible_reps_by_account(
    accounts: Sequence[Account],
    reps: Sequence[Rep],
    restrict_to_macro_region: bool = False,
    territory_mappings: Optional[Dict[str, str]] = None,
) -> Dict[str, List[Rep]]:
    """
    Reps each account may be assigned to.

    With the macro-region filter on, pairs whose macro-regions are both known
    and differ are excluded. Pairs with unknown geography stay eligible.
    """
    eligible: Dict[str, List[Rep]] = {}
    for account in accounts:
        if restrict_to_macro_region:
            eligible[account.id] = [
                rep for rep in reps
                if same_macro_region(account, rep, territory_mappings) is not False
            ]
        else:
            eligible[account.id] = list(reps)
    return eligible


# =============================================================================
# Problem Construction
# =============================================================================

def _slack_variables(
    problem: LPProblem,
    metric: BalanceMetric,
    rep: Rep,
    rep_index: int,
    target: float,
    widths: BandWidths,
    penalties: PenaltyWeights,
    weight: float,
) -> SlackSet:
    prefix = metric.value
    slack_set = SlackSet(
        metric=metric,
        rep_id=rep.id,
        target=target,
        widths=widths,
        alpha_over=f"{prefix}_alpha_over_{rep_index}",
        alpha_under=f"{prefix}_alpha_under_{rep_index}",
        beta_over=f"{prefix}_beta_over_{rep_index}",
        beta_under=f"{prefix}_beta_under_{rep_index}",
        big_m_over=f"{prefix}_bigm_over_{rep_index}",
        big_m_under=f"{prefix}_bigm_under_{rep_index}",
    )

    tiers = [
        (slack_set.alpha_over, widths.alpha, penalties.alpha),
        (slack_set.alpha_under, widths.alpha, penalties.alpha),
        (slack_set.beta_over, widths.beta_over, penalties.beta),
        (slack_set.beta_under, widths.beta_under, penalties.beta),
        (slack_set.big_m_over, None, penalties.big_m),
        (slack_set.big_m_under, None, penalties.big_m),
    ]
    for name, upper, penalty in tiers:
        problem.add_variable(Variable(name=name, lower=0.0, upper=upper), -penalty * weight)

    problem.slack_sets.append(slack_set)
    return slack_set


def build_lp_problem(
    accounts: Sequence[Account],
    reps: Sequence[Rep],
    scores: PairScores,
    weights: NormalizedWeights,
    balance: BalanceConfig,
    penalties: PenaltyWeights,
    fixed_assignments: Sequence[Tuple[Account, str]] = (),
) -> LPProblem:
    """
    Build the assignment MILP.

    Args:
        accounts: Free accounts (decision variables).
        reps: Regular reps in the decision space.
        scores: Scores for every eligible pair; pairs absent here get no variable.
        weights: Normalized objective weights.
        balance: Balance metric configuration.
        penalties: Slack tier penalties.
        fixed_assignments: (account, rep_id) pairs already decided (locks);
            their load counts toward each rep's balance rows.

    Returns:
        LPProblem: The complete problem.

    Raises:
        InfeasibleProblemError: If an account has no eligible rep.
    """
    problem = LPProblem()
    rep_pairs: Dict[str, List[Tuple[str, Account]]] = {rep.id: [] for rep in reps}

    # Assignment variables and one-rep-per-account rows
    for account_index, account in enumerate(accounts):
        terms: Dict[str, float] = {}
        for rep_index, rep in enumerate(reps):
            pair_scores = scores.get((account.id, rep.id))
            if pair_scores is None:
                continue
            name = f"x{account_index}_{rep_index}"
            problem.add_variable(
                Variable(name=name, lower=0.0, upper=1.0, is_binary=True),
                objective_coefficient(pair_scores, weights),
            )
            problem.pairs[name] = PairVariable(name=name, account_id=account.id, rep_id=rep.id)
            rep_pairs[rep.id].append((name, account))
            terms[name] = 1.0

        if not terms:
            raise InfeasibleProblemError(
                f"Account {account.name or account.id} has no eligible rep",
                hint="Relax the region filter or add eligible reps",
            )
        problem.constraints.append(Constraint(f"assign_{account_index}", terms, "=", 1.0))

    # Balance rows
    metrics = active_metrics(balance)
    all_accounts = list(accounts) + [account for account, _ in fixed_assignments]
    problem.targets = compute_targets(all_accounts, len(reps), metrics)

    fixed_loads: Dict[Tuple[str, BalanceMetric], float] = {}
    for account, rep_id in fixed_assignments:
        for metric in metrics:
            key = (rep_id, metric)
            fixed_loads[key] = fixed_loads.get(key, 0.0) + metric_value(account, metric)

    for metric in metrics:
        target = problem.targets[metric]
        if target <= 0:
            logger.debug(f"Skipping balance rows for {metric.value}: no value in batch")
            continue

        widths = band_widths(target, metric_config(balance, metric))
        weight = metric_weight(balance, metric)

        for rep_index, rep in enumerate(reps):
            slack_set = _slack_variables(
                problem, metric, rep, rep_index, target, widths, penalties, weight
            )

            terms = {}
            for name, account in rep_pairs[rep.id]:
                value = metric_value(account, metric)
                if value:
                    terms[name] = value / target
            terms[slack_set.alpha_over] = -1.0
            terms[slack_set.alpha_under] = 1.0
            terms[slack_set.beta_over] = -1.0
            terms[slack_set.beta_under] = 1.0
            terms[slack_set.big_m_over] = -1.0
            terms[slack_set.big_m_under] = 1.0

            rhs = 1.0 - fixed_loads.get((rep.id, metric), 0.0) / target
            problem.constraints.append(
                Constraint(f"bal_{metric.value}_{rep_index}", terms, "=", rhs)
            )

    logger.info(
        f"Built LP: {problem.num_binary} binaries, "
        f"{problem.num_variables - problem.num_binary} slacks, "
        f"{problem.num_constraints} constraints"
    )
    return problem


def expected_penalty(
    loads: Mapping[str, float],
    target: float,
    widths: BandWidths,
    penalties: PenaltyWeights,
    weight: float = 1.0,
) -> float:
    """
    Total tiered penalty of a set of rep loads for one metric.

    Useful for comparing candidate partitions by hand.
    """
    return sum(
        tiered_penalty(tier_slacks(load, target, widths), penalties, weight)
        for load in loads.values()
    )
