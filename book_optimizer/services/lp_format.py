"""
LP text format: serialization and parsing.

Problems travel to every solver backend as LP text with the sections

    Maximize | Minimize
    Subject To
    Bounds
    Binary | General
    End

serialize_lp() writes an LPProblem in that format; parse_lp() reads the
same subset back into sparse matrices for the embedded solver and the
solver service. Supported syntax:

- optional "name:" labels on the objective and on constraints
- expressions spanning several lines (continuation lines start with a space)
- constraint senses <=, >=, = (and =<, =>, <, >)
- bounds "lo <= x <= hi", "x >= lo", "x <= hi", "x = v", "x free",
  with inf / infinity
- "\\" comment lines

Variables default to [0, +inf). Binary variables are integer in [0, 1].
"""

import logging
import math
import re
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np
from scipy import sparse

from book_optimizer.core.exceptions import LPFormatError
from book_optimizer.models.lp import LPProblem


logger = logging.getLogger(__name__)


MAX_LINE_LENGTH = 200

_SECTION_KEYWORDS: Dict[str, str] = {
    "maximize": "maximize",
    "maximise": "maximize",
    "maximum": "maximize",
    "max": "maximize",
    "minimize": "minimize",
    "minimise": "minimize",
    "minimum": "minimize",
    "min": "minimize",
    "subject to": "constraints",
    "such that": "constraints",
    "st": "constraints",
    "s.t.": "constraints",
    "bounds": "bounds",
    "bound": "bounds",
    "binary": "binary",
    "binaries": "binary",
    "bin": "binary",
    "general": "general",
    "generals": "general",
    "gen": "general",
    "end": "end",
}

_TOKEN_RE = re.compile(
    r"""
    \s*(?:
        (?P<label>[A-Za-z_][\w.\[\]]*)\s*:
      | (?P<op><=|>=|=<|=>|<|>|=)
      | (?P<sign>[+-])
      | (?P<number>(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)
      | (?P<name>[A-Za-z_][\w.\[\]]*)
    )
    """,
    re.VERBOSE,
)

_INFINITY_NAMES = {"inf", "infinity"}

_SENSES = {"<=": "<=", "=<": "<=", "<": "<=", ">=": ">=", "=>": ">=", ">": ">=", "=": "="}


# =============================================================================
# Serialization
# =============================================================================

def format_number(value: float) -> str:
    """Compact, round-trippable decimal for LP text."""
    if math.isinf(value):
        return "inf" if value > 0 else "-inf"
    text = f"{value:.12g}"
    return "0" if text == "-0" else text


def _format_terms(terms: Sequence[Tuple[str, float]]) -> List[str]:
    parts = []
    for name, coefficient in terms:
        sign = "-" if coefficient < 0 else "+"
        parts.append(f"{sign} {format_number(abs(coefficient))} {name}")
    return parts


def _wrap(head: str, parts: Sequence[str], tail: str = "") -> List[str]:
    """Join parts after head, wrapping so no line exceeds MAX_LINE_LENGTH."""
    lines: List[str] = []
    current = head
    for part in list(parts) + ([tail] if tail else []):
        candidate = f"{current} {part}" if current.strip() else f"{current}{part}"
        if len(candidate) > MAX_LINE_LENGTH and current.strip():
            lines.append(current)
            current = f"   {part}"
        else:
            current = candidate
    lines.append(current)
    return lines


def serialize_lp(problem: LPProblem) -> str:
    """
    Write a problem as LP text.

    Args:
        problem: Problem to serialize. Its objective is maximized.

    Returns:
        str: LP text ending with "End" and a newline.
    """
    lines: List[str] = ["Maximize"]

    objective_terms = [
        (name, coefficient)
        for name, coefficient in problem.objective.items()
        if coefficient != 0
    ]
    if not objective_terms and problem.variables:
        # An empty objective is not valid LP syntax
        objective_terms = [(next(iter(problem.variables)), 0.0)]
    lines.extend(_wrap(" obj:", _format_terms(objective_terms)))

    lines.append("Subject To")
    for constraint in problem.constraints:
        terms = [(name, c) for name, c in constraint.terms.items() if c != 0]
        tail = f"{constraint.sense} {format_number(constraint.rhs)}"
        lines.extend(_wrap(f" {constraint.name}:", _format_terms(terms), tail))

    bounds: List[str] = []
    binaries: List[str] = []
    for variable in problem.variables.values():
        if variable.is_binary:
            binaries.append(variable.name)
        elif variable.upper is not None:
            bounds.append(
                f" {format_number(variable.lower)} <= {variable.name} <= {format_number(variable.upper)}"
            )
        elif variable.lower != 0:
            bounds.append(f" {variable.name} >= {format_number(variable.lower)}")

    if bounds:
        lines.append("Bounds")
        lines.extend(bounds)

    if binaries:
        lines.append("Binary")
        lines.extend(_wrap("", binaries))

    lines.append("End")
    return "\n".join(lines) + "\n"


# =============================================================================
# Parsing
# =============================================================================

@dataclass
class ParsedLP:
    """
    LP problem in matrix form.

    Rows of `matrix` hold constraint coefficients; row_lower/row_upper give
    the constraint range (equal for equalities). lower/upper are variable
    bounds; integrality is 1 for integer variables.
    """
    variable_names: List[str]
    objective: np.ndarray
    maximize: bool
    matrix: sparse.csr_array
    row_lower: np.ndarray
    row_upper: np.ndarray
    lower: np.ndarray
    upper: np.ndarray
    integrality: np.ndarray
    row_names: List[str] = field(default_factory=list)
    objective_offset: float = 0.0

    @property
    def num_variables(self) -> int:
        return len(self.variable_names)

    @property
    def num_constraints(self) -> int:
        return len(self.row_names)


def _tokenize(text: str) -> List[Tuple[str, object]]:
    tokens: List[Tuple[str, object]] = []
    position = 0
    text = text.rstrip()
    while position < len(text):
        match = _TOKEN_RE.match(text, position)
        if match is None or match.end() == position:
            raise LPFormatError(f"Unexpected LP text near: {text[position:position + 40]!r}")
        position = match.end()
        kind = match.lastgroup
        value = match.group(kind)
        if kind == "number":
            tokens.append(("number", float(value)))
        elif kind == "name" and value.lower() in _INFINITY_NAMES:
            tokens.append(("number", math.inf))
        else:
            tokens.append((kind, value))
    return tokens


def _split_sections(text: str) -> Iterator[Tuple[str, str]]:
    section: Optional[str] = None
    buffer: List[str] = []

    for raw_line in text.splitlines():
        line = raw_line.split("\\", 1)[0].strip()
        if not line:
            continue
        keyword = _SECTION_KEYWORDS.get(" ".join(line.lower().split()))
        if keyword is not None:
            if section is not None:
                yield section, "\n".join(buffer)
            if keyword == "end":
                return
            section, buffer = keyword, []
            continue
        if section is None:
            raise LPFormatError(f"Content before first section: {line!r}")
        buffer.append(line)

    if section is not None:
        yield section, "\n".join(buffer)


class _Builder:
    """Accumulates variables, coefficients and rows while parsing."""

    def __init__(self) -> None:
        self.index: Dict[str, int] = {}
        self.names: List[str] = []
        self.objective: Dict[int, float] = {}
        self.rows: List[int] = []
        self.cols: List[int] = []
        self.values: List[float] = []
        self.row_lower: List[float] = []
        self.row_upper: List[float] = []
        self.row_names: List[str] = []
        self.lower: Dict[int, float] = {}
        self.upper: Dict[int, float] = {}
        self.integer: Dict[int, bool] = {}
        self.offset = 0.0

    def column(self, name: str) -> int:
        if name not in self.index:
            self.index[name] = len(self.names)
            self.names.append(name)
        return self.index[name]


def _read_expression(
    tokens: List[Tuple[str, object]],
    position: int,
) -> Tuple[Dict[str, float], float, int]:
    """
    Read "[sign] [coef] name ..." terms until an operator, label or the end.

    Returns the terms, any bare constant, and the next position.
    """
    terms: Dict[str, float] = {}
    constant = 0.0
    while position < len(tokens):
        kind, value = tokens[position]
        if kind in ("op", "label"):
            break

        sign = 1.0
        while kind == "sign":
            if value == "-":
                sign = -sign
            position += 1
            if position >= len(tokens):
                raise LPFormatError("Expression ends with a dangling sign")
            kind, value = tokens[position]

        coefficient = 1.0
        if kind == "number":
            coefficient = float(value)
            position += 1
            if position >= len(tokens) or tokens[position][0] != "name":
                constant += sign * coefficient
                continue
            kind, value = tokens[position]

        if kind != "name":
            raise LPFormatError(f"Expected a variable name, got {value!r}")
        terms[value] = terms.get(value, 0.0) + sign * coefficient
        position += 1

    return terms, constant, position


def _read_signed_number(tokens: List[Tuple[str, object]], position: int) -> Tuple[float, int]:
    sign = 1.0
    while position < len(tokens) and tokens[position][0] == "sign":
        if tokens[position][1] == "-":
            sign = -sign
        position += 1
    if position >= len(tokens) or tokens[position][0] != "number":
        raise LPFormatError("Expected a number")
    return sign * float(tokens[position][1]), position + 1


def _parse_objective(builder: _Builder, body: str) -> None:
    tokens = [token for token in _tokenize(body) if token[0] != "label"]
    terms, constant, position = _read_expression(tokens, 0)
    if position != len(tokens):
        raise LPFormatError("Unexpected operator in objective")
    for name, coefficient in terms.items():
        column = builder.column(name)
        builder.objective[column] = builder.objective.get(column, 0.0) + coefficient
    builder.offset += constant


def _parse_constraints(builder: _Builder, body: str) -> None:
    tokens = _tokenize(body)
    position = 0
    while position < len(tokens):
        name = f"r{len(builder.row_names)}"
        if tokens[position][0] == "label":
            name = str(tokens[position][1])
            position += 1

        terms, constant, position = _read_expression(tokens, position)
        if position >= len(tokens) or tokens[position][0] != "op":
            raise LPFormatError(f"Constraint {name} has no comparison operator")
        sense = _SENSES[str(tokens[position][1])]
        rhs, position = _read_signed_number(tokens, position + 1)
        rhs -= constant

        row = len(builder.row_names)
        builder.row_names.append(name)
        for variable, coefficient in terms.items():
            builder.rows.append(row)
            builder.cols.append(builder.column(variable))
            builder.values.append(coefficient)

        builder.row_lower.append(rhs if sense in ("=", ">=") else -math.inf)
        builder.row_upper.append(rhs if sense in ("=", "<=") else math.inf)


def _apply_bound(builder: _Builder, name: str, sense: str, value: float) -> None:
    column = builder.column(name)
    if sense == "<=":
        builder.upper[column] = value
    elif sense == ">=":
        builder.lower[column] = value
    else:
        builder.lower[column] = value
        builder.upper[column] = value


def _flip(sense: str) -> str:
    return {"<=": ">=", ">=": "<=", "=": "="}[sense]


def _parse_bounds(builder: _Builder, body: str) -> None:
    for line in body.splitlines():
        tokens = _tokenize(line)

        if len(tokens) == 2 and tokens[0][0] == "name" and str(tokens[1][1]).lower() == "free":
            column = builder.column(str(tokens[0][1]))
            builder.lower[column] = -math.inf
            builder.upper[column] = math.inf
            continue

        if tokens and tokens[0][0] == "name":
            # x op value
            name = str(tokens[0][1])
            if len(tokens) < 3 or tokens[1][0] != "op":
                raise LPFormatError(f"Malformed bound: {line!r}")
            value, end = _read_signed_number(tokens, 2)
            _apply_bound(builder, name, _SENSES[str(tokens[1][1])], value)
            if end != len(tokens):
                raise LPFormatError(f"Malformed bound: {line!r}")
            continue

        # value op x [op value]
        value, position = _read_signed_number(tokens, 0)
        if position + 1 >= len(tokens) or tokens[position][0] != "op" or tokens[position + 1][0] != "name":
            raise LPFormatError(f"Malformed bound: {line!r}")
        name = str(tokens[position + 1][1])
        _apply_bound(builder, name, _flip(_SENSES[str(tokens[position][1])]), value)
        position += 2
        if position < len(tokens):
            if tokens[position][0] != "op":
                raise LPFormatError(f"Malformed bound: {line!r}")
            upper, end = _read_signed_number(tokens, position + 1)
            _apply_bound(builder, name, _SENSES[str(tokens[position][1])], upper)
            if end != len(tokens):
                raise LPFormatError(f"Malformed bound: {line!r}")


def _parse_integers(builder: _Builder, body: str, binary: bool) -> None:
    for name in body.split():
        column = builder.column(name)
        builder.integer[column] = True
        if binary:
            builder.lower[column] = max(builder.lower.get(column, 0.0), 0.0)
            builder.upper[column] = min(builder.upper.get(column, 1.0), 1.0)


def parse_lp(text: str) -> ParsedLP:
    """
    Parse LP text into matrix form.

    Args:
        text: LP-format problem text.

    Returns:
        ParsedLP: Sparse constraint matrix, bounds and objective.

    Raises:
        LPFormatError: If the text is not valid LP in the supported subset.
    """
    builder = _Builder()
    maximize: Optional[bool] = None

    for section, body in _split_sections(text):
        if section in ("maximize", "minimize"):
            if maximize is not None:
                raise LPFormatError("More than one objective section")
            maximize = section == "maximize"
            _parse_objective(builder, body)
        elif section == "constraints":
            _parse_constraints(builder, body)
        elif section == "bounds":
            _parse_bounds(builder, body)
        elif section in ("binary", "general"):
            _parse_integers(builder, body, binary=section == "binary")

    if maximize is None:
        raise LPFormatError("LP text has no objective section")

    count = len(builder.names)
    objective = np.zeros(count)
    for column, coefficient in builder.objective.items():
        objective[column] = coefficient

    lower = np.zeros(count)
    upper = np.full(count, np.inf)
    integrality = np.zeros(count, dtype=np.uint8)
    for column, value in builder.lower.items():
        lower[column] = value
    for column, value in builder.upper.items():
        upper[column] = value
    for column in builder.integer:
        integrality[column] = 1

    matrix = sparse.csr_array(
        (
            np.array(builder.values, dtype=float),
            (np.array(builder.rows, dtype=np.int64), np.array(builder.cols, dtype=np.int64)),
        ),
        shape=(len(builder.row_names), count),
    )

    logger.debug(f"Parsed LP: {count} variables, {len(builder.row_names)} constraints")

    return ParsedLP(
        variable_names=builder.names,
        objective=objective,
        maximize=maximize,
        matrix=matrix,
        row_lower=np.array(builder.row_lower, dtype=float),
        row_upper=np.array(builder.row_upper, dtype=float),
        lower=lower,
        upper=upper,
        integrality=integrality,
        row_names=builder.row_names,
        objective_offset=builder.offset,
    )
