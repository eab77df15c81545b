"""
In-memory MILP representation.

Plain dataclasses rather than pydantic models: an LPProblem can hold
hundreds of thousands of variables and is built, serialized and discarded
within one run.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Literal, Optional

from book_optimizer.models.enums import BalanceMetric


ConstraintSense = Literal["=", "<=", ">="]


@dataclass
class Variable:
    name: str
    lower: float = 0.0
    upper: Optional[float] = None  # None = unbounded above
    is_binary: bool = False


@dataclass
class Constraint:
    name: str
    terms: Dict[str, float]
    sense: ConstraintSense
    rhs: float


@dataclass(frozen=True)
class PairVariable:
    """Binary x[account, rep]."""
    name: str
    account_id: str
    rep_id: str


@dataclass
class BandWidths:
    """
    Normalized slack bounds for one rep/metric (fractions of the target).

    alpha: variance-band half-width (both sides)
    beta_over / beta_under: buffer zone beyond the variance band
    """
    alpha: float
    beta_over: float
    beta_under: float


@dataclass
class SlackSet:
    """
    The six penalty slacks of one rep for one balance metric.
    """
    metric: BalanceMetric
    rep_id: str
    target: float
    widths: BandWidths
    alpha_over: str
    alpha_under: str
    beta_over: str
    beta_under: str
    big_m_over: str
    big_m_under: str

    @property
    def names(self) -> List[str]:
        return [
            self.alpha_over,
            self.alpha_under,
            self.beta_over,
            self.beta_under,
            self.big_m_over,
            self.big_m_under,
        ]


@dataclass
class LPProblem:
    """
    Complete MILP: variables, constraints and a maximization objective.

    Variables are kept in insertion order; binaries come first.
    """
    objective: Dict[str, float] = field(default_factory=dict)
    constraints: List[Constraint] = field(default_factory=list)
    variables: Dict[str, Variable] = field(default_factory=dict)
    pairs: Dict[str, PairVariable] = field(default_factory=dict)
    slack_sets: List[SlackSet] = field(default_factory=list)
    targets: Dict[BalanceMetric, float] = field(default_factory=dict)

    def add_variable(self, variable: Variable, objective: float = 0.0) -> None:
        self.variables[variable.name] = variable
        if objective:
            self.objective[variable.name] = objective

    @property
    def num_variables(self) -> int:
        return len(self.variables)

    @property
    def num_binary(self) -> int:
        return sum(1 for v in self.variables.values() if v.is_binary)

    @property
    def num_constraints(self) -> int:
        return len(self.constraints)

    def pairs_by_account(self) -> Dict[str, List[PairVariable]]:
        grouped: Dict[str, List[PairVariable]] = {}
        for pair in self.pairs.values():
            grouped.setdefault(pair.account_id, []).append(pair)
        return grouped
