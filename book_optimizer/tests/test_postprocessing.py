"""
Test suite for post-processing: proposals, rationale, cascade and metrics.

The tests verify:
1. Rationale selection by dominant scoring factor
2. Lock rationale wording
3. Proposal construction from strategic, locked and optimized sources
4. Child cascade: rep inheritance, zero revenue, no duplicates
5. Rep loads, tier decomposition of deviations and aggregate metrics
"""

from datetime import date
from typing import List

import pytest

from book_optimizer.models.enums import AssignmentSource, BalanceMetric, GeoMatch, LockType, TeamTier
from book_optimizer.models.schemas import (
    AssignmentProposal,
    AssignmentScores,
    BalanceConfig,
    LPConfiguration,
    NormalizedWeights,
    StabilityLockResult,
)
from book_optimizer.services.cascade import cascade_to_children
from book_optimizer.services.metrics import calculate_metrics, calculate_rep_loads, coefficient_of_variation
from book_optimizer.services.proposals import build_proposals, generate_rationale, lock_rationale
from book_optimizer.tests.conftest import make_account, make_rep


WEIGHTS = NormalizedWeights(continuity=0.35, geography=0.35, team_alignment=0.30)

REP = make_rep('r1', name='Dana Lee', region='North East', team_tier=TeamTier.MM)


def make_proposal(account_id: str, rep_id: str, arr: float = 0.0, **overrides) -> AssignmentProposal:
    fields = {
        'account_id': account_id,
        'account_name': f'Account {account_id}',
        'proposed_rep_id': rep_id,
        'source': AssignmentSource.OPTIMIZED,
        'scores': AssignmentScores(continuity=0.0, geography=1.0),
        'arr': arr,
    }
    fields.update(overrides)
    return AssignmentProposal(**fields)


# =============================================================================
# RATIONALE
# =============================================================================


class TestRationale:
    """Dominant-factor explanations."""

    def test_exact_geography(self) -> None:
        scores = AssignmentScores(continuity=0.0, geography=1.0, team_alignment=0.6)

        rationale = generate_rationale(REP, scores, WEIGHTS)

        assert rationale == 'Geography Match → Dana Lee (North East - exact geo match, score 0.53)'

    def test_sibling_geography(self) -> None:
        scores = AssignmentScores(continuity=0.0, geography=0.65, team_alignment=0.25)

        assert 'sibling region' in generate_rationale(REP, scores, WEIGHTS)

    def test_geography_and_continuity(self) -> None:
        scores = AssignmentScores(continuity=0.8, geography=1.0)

        rationale = generate_rationale(REP, scores, WEIGHTS)

        assert rationale.startswith('Geography + Continuity → Dana Lee')
        assert 'score 0.90' in rationale

    def test_long_term_continuity(self) -> None:
        scores = AssignmentScores(continuity=0.9, geography=0.2, team_alignment=0.25)

        assert 'long-term relationship' in generate_rationale(REP, scores, WEIGHTS)

    def test_moderate_continuity(self) -> None:
        scores = AssignmentScores(continuity=0.5, geography=0.2, team_alignment=0.25)

        rationale = generate_rationale(REP, scores, WEIGHTS)

        assert rationale.startswith('Account Continuity')
        assert 'relationship maintained' in rationale

    def test_exact_team_alignment(self) -> None:
        weights = NormalizedWeights(continuity=0.2, geography=0.2, team_alignment=0.6)
        scores = AssignmentScores(continuity=0.0, geography=0.4, team_alignment=1.0)

        rationale = generate_rationale(REP, scores, weights)

        assert rationale.startswith('Team Alignment → Dana Lee (MM')
        assert 'exact tier match' in rationale

    def test_low_total_is_balance_driven(self) -> None:
        scores = AssignmentScores(continuity=0.0, geography=0.2)

        rationale = generate_rationale(REP, scores, WEIGHTS)

        assert rationale == 'Balance Optimization → Dana Lee (best available for balance, score 0.10)'

    def test_generic_primary_factor(self) -> None:
        weights = NormalizedWeights(continuity=0.1, geography=0.1, team_alignment=0.8)
        scores = AssignmentScores(continuity=0.0, geography=0.2, team_alignment=0.45)

        rationale = generate_rationale(REP, scores, weights)

        assert rationale == 'Optimized → Dana Lee (team match was primary factor, score 0.38)'

    def test_rep_without_name_uses_id(self) -> None:
        rep = make_rep('r9', name='')
        scores = AssignmentScores(continuity=0.0, geography=1.0)

        assert '→ r9 ' in generate_rationale(rep, scores, WEIGHTS)


class TestLockRationale:
    """Lock explanations."""

    def test_manual_lock(self) -> None:
        lock = StabilityLockResult(is_locked=True, lock_type=LockType.MANUAL_LOCK, target_rep_id='r1')

        assert lock_rationale(lock, REP) == 'Excluded from reassignment → Dana Lee (manually locked)'

    def test_reason_is_included(self) -> None:
        lock = StabilityLockResult(
            is_locked=True,
            lock_type=LockType.RENEWAL_SOON,
            target_rep_id='r1',
            reason='Renewal in 10 days',
        )

        assert lock_rationale(lock, REP) == 'Stability Lock → Dana Lee (Renewal in 10 days)'


# =============================================================================
# PROPOSALS
# =============================================================================


class TestBuildProposals:
    """Merging the three assignment sources."""

    def test_one_proposal_per_source(self, as_of_date: date) -> None:
        strategic_rep = make_rep('rs', is_strategic=True)
        reps = [REP, make_rep('r2', region='West'), strategic_rep]
        strategic_account = make_account('s1', arr=3_000_000, owner_id='rs', is_strategic=True)
        locked_account = make_account('l1', arr=500_000, owner_id='r1', territory='Boston', risk_flag=True)
        free_account = make_account('f1', arr=200_000, owner_id='r1', territory='California')
        lock = StabilityLockResult(
            is_locked=True, lock_type=LockType.CRE_RISK, target_rep_id='r1', reason='At-risk account'
        )
        scores = {('f1', 'r2'): AssignmentScores(continuity=0.0, geography=1.0, geo_match=GeoMatch.EXACT)}

        proposals = build_proposals(
            strategic=[(strategic_account, strategic_rep)],
            locked=[(locked_account, lock)],
            solved={'f1': 'r2'},
            free_accounts=[free_account],
            reps=reps,
            scores=scores,
            weights=WEIGHTS,
            config=LPConfiguration(),
            as_of=as_of_date,
        )

        by_id = {p.account_id: p for p in proposals}
        assert len(proposals) == 3

        strategic = by_id['s1']
        assert strategic.source == AssignmentSource.STRATEGIC
        assert strategic.is_strategic
        assert strategic.total_score == 1.0
        assert strategic.scores.geography == 1.0
        assert strategic.scores.team_alignment == 1.0
        assert strategic.scores.continuity == 1.0
        assert strategic.rationale.startswith('Strategic Account')

        locked = by_id['l1']
        assert locked.source == AssignmentSource.LOCKED
        assert locked.proposed_rep_id == 'r1'
        assert locked.lock_type == LockType.CRE_RISK
        assert locked.scores.continuity == 1.0
        assert locked.total_score == 1.0
        assert locked.arr == 500_000

        optimized = by_id['f1']
        assert optimized.source == AssignmentSource.OPTIMIZED
        assert optimized.proposed_rep_id == 'r2'
        assert optimized.current_owner_id == 'r1'
        assert optimized.lock_type is None
        assert optimized.total_score == pytest.approx(0.5)
        assert optimized.rationale.startswith('Geography Match')


# =============================================================================
# CASCADE
# =============================================================================


class TestCascade:
    """Children follow their parent."""

    def test_children_inherit_parent_rep(self) -> None:
        parent = make_account('p1', name='Parent Co', child_ids=['c1', 'c2'])
        proposal = make_proposal(
            'p1', 'r1', arr=500,
            account_name='Parent Co',
            proposed_rep_name='Dana Lee',
            source=AssignmentSource.LOCKED,
            lock_type=LockType.MANUAL_LOCK,
            tier=2,
        )

        result = cascade_to_children([proposal], [parent], {'c1': 'Child One'})

        assert len(result) == 3
        assert result[0] is proposal
        children = {p.account_id: p for p in result[1:]}
        assert children['c1'].account_name == 'Child One'
        assert children['c2'].account_name == 'Child of Parent Co'
        for child in children.values():
            assert child.source == AssignmentSource.CASCADED
            assert child.is_cascaded
            assert child.proposed_rep_id == 'r1'
            assert child.parent_account_id == 'p1'
            assert child.lock_type is None
            assert child.arr == 0.0
            assert child.tier is None
            assert 'Child follows parent → Dana Lee' in child.rationale

    def test_child_already_proposed_is_skipped(self) -> None:
        parent = make_account('p1', child_ids=['c1'])
        proposals = [make_proposal('p1', 'r1'), make_proposal('c1', 'r2')]

        result = cascade_to_children(proposals, [parent])

        assert len(result) == 2

    def test_shared_child_is_cascaded_once(self) -> None:
        accounts = [make_account('p1', child_ids=['c1']), make_account('p2', child_ids=['c1'])]
        proposals = [make_proposal('p1', 'r1'), make_proposal('p2', 'r2')]

        result = cascade_to_children(proposals, accounts)

        assert [p.account_id for p in result] == ['p1', 'p2', 'c1']
        assert result[2].proposed_rep_id == 'r1'

    def test_child_keeps_its_own_owner(self) -> None:
        parent = make_account('p1', child_ids=['c1', 'c2'])
        proposal = make_proposal('p1', 'r1', current_owner_id='r1')

        result = cascade_to_children([proposal], [parent], child_owners={'c1': 'r7'})

        children = {p.account_id: p for p in result[1:]}
        assert children['c1'].current_owner_id == 'r7'
        # An unowned child does not borrow the parent's owner
        assert children['c2'].current_owner_id is None


# =============================================================================
# METRICS
# =============================================================================


@pytest.fixture
def final_proposals() -> List[AssignmentProposal]:
    return [
        make_proposal(
            'a1', 'r1', arr=300, tier=1, current_owner_id='r1',
            scores=AssignmentScores(continuity=1.0, geography=1.0, geo_match=GeoMatch.EXACT, tier_distance=0),
        ),
        make_proposal(
            'a2', 'r2', arr=100, current_owner_id='r3',
            scores=AssignmentScores(continuity=0.0, geography=0.65, geo_match=GeoMatch.SIBLING, tier_distance=1),
        ),
        make_proposal('a1-child', 'r1', source=AssignmentSource.CASCADED, parent_account_id='a1'),
    ]


class TestRepLoads:
    """Per-rep loads and deviations."""

    def test_loads_and_deviation(self, final_proposals) -> None:
        reps = [make_rep('r1'), make_rep('r2'), make_rep('rs', is_strategic=True)]

        loads = calculate_rep_loads(final_proposals, reps, {BalanceMetric.ARR: 200.0}, BalanceConfig())

        r1, r2, strategic = loads
        assert r1.account_count == 1
        assert r1.arr == 300
        assert r1.tier_counts == {1: 1}
        assert r1.deviation[BalanceMetric.ARR] == pytest.approx(100.0)
        assert r1.deviation_percent[BalanceMetric.ARR] == pytest.approx(50.0)
        assert r2.deviation_percent[BalanceMetric.ARR] == pytest.approx(-50.0)
        # 0.5 normalized deviation: 0.1 alpha, 0.3 beta, 0.1 bigM
        assert r1.unresolved_slack == pytest.approx(0.4)
        assert r2.unresolved_slack == pytest.approx(0.4)
        assert r1.outside_buffer and r2.outside_buffer
        assert strategic.targets == {}
        assert not strategic.outside_buffer

    def test_zero_target_metric_is_skipped(self, final_proposals) -> None:
        loads = calculate_rep_loads(
            final_proposals, [make_rep('r1')], {BalanceMetric.ATR: 0.0}, BalanceConfig()
        )

        assert loads[0].targets == {}
        assert loads[0].unresolved_slack == 0.0


class TestMetrics:
    """Aggregate success metrics."""

    def test_coefficient_of_variation(self) -> None:
        assert coefficient_of_variation([]) == 0.0
        assert coefficient_of_variation([0.0, 0.0]) == 0.0
        assert coefficient_of_variation([100.0, 300.0]) == pytest.approx(50.0)
        assert coefficient_of_variation([250.0, 250.0]) == 0.0

    def test_run_metrics(self, final_proposals) -> None:
        reps = [make_rep('r1'), make_rep('r2')]
        loads = calculate_rep_loads(final_proposals, reps, {BalanceMetric.ARR: 200.0}, BalanceConfig())

        metrics = calculate_metrics(final_proposals, loads, solve_time_ms=42.0)

        assert metrics.total_accounts == 2
        assert metrics.total_reps == 2
        assert metrics.arr_variance_percent == pytest.approx(50.0)
        assert metrics.atr_variance_percent == 0.0
        assert metrics.max_overload_percent == pytest.approx(150.0)
        assert metrics.continuity_rate == pytest.approx(50.0)
        assert metrics.arr_stayed_percent == pytest.approx(75.0)
        assert metrics.exact_geo_match_rate == pytest.approx(50.0)
        assert metrics.sibling_geo_match_rate == pytest.approx(100.0)
        assert metrics.cross_region_rate == 0.0
        assert metrics.exact_tier_match_rate == pytest.approx(50.0)
        assert metrics.one_level_tier_match_rate == pytest.approx(50.0)
        assert metrics.unresolved_slack_total == pytest.approx(0.8)
        assert metrics.reps_outside_buffer == 2
        assert metrics.solve_time_ms == 42.0

    def test_no_high_value_accounts_counts_as_full_continuity(self, final_proposals) -> None:
        metrics = calculate_metrics(final_proposals, [])

        assert metrics.high_value_continuity_rate == 100.0

    def test_high_value_continuity(self) -> None:
        proposals = [
            make_proposal('big1', 'r1', arr=900_000, current_owner_id='r1'),
            make_proposal('big2', 'r2', arr=600_000, current_owner_id='r1'),
        ]

        metrics = calculate_metrics(proposals, [])

        assert metrics.high_value_continuity_rate == pytest.approx(50.0)
        assert metrics.max_overload_percent == 0.0
