"""
Search query language for the register.

A query maps a field name (dotted paths reach into nested mappings) to
either a literal, meaning equality, or an operator object:

    {"vendor": "ACME"}
    {"amount": {"$gt": 100, "$lt": 500}}
    {"title": {"$regex": "^inv", "$flags": "i"}}
    {"notes": {"$contains": "late fee"}}

Queries are parsed once into a flat list of Predicate values (a closed set
of operators) and evaluated by a small interpreter. Each satisfied
predicate adds its operator's weight to the entry's score.

Invariants:
    - Unknown operators are rejected at parse time
    - A field absent from the record satisfies no predicate
    - Ordering predicates on incomparable types are simply unsatisfied
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from ..compare.values import MISSING, get_path, structurally_equal
from ..errors import InvalidQueryError


class Operator(str, Enum):
    """Supported query operators."""

    EQ = "$eq"
    CONTAINS = "$contains"
    GT = "$gt"
    LT = "$lt"
    REGEX = "$regex"

    @property
    def weight(self) -> float:
        """Score contributed when a predicate with this operator matches."""
        return _WEIGHTS[self]


_WEIGHTS = {
    Operator.EQ: 1.0,
    Operator.REGEX: 0.9,
    Operator.CONTAINS: 0.8,
    Operator.GT: 0.7,
    Operator.LT: 0.7,
}

FLAGS_KEY = "$flags"
DEFAULT_REGEX_FLAGS = "i"

# JavaScript-style flag letters accepted in $flags. g and y have no
# meaning for a single test and are accepted as no-ops.
_REGEX_FLAGS = {
    "i": re.IGNORECASE,
    "m": re.MULTILINE,
    "s": re.DOTALL,
    "u": 0,
    "g": 0,
    "y": 0,
}


@dataclass(frozen=True)
class Predicate:
    """One field test of a parsed query."""

    path: str
    operator: Operator
    operand: Any
    pattern: re.Pattern[str] | None = field(default=None, compare=False)

    def matches(self, data: Mapping[str, Any]) -> bool:
        value = get_path(data, self.path)
        if value is MISSING:
            return False
        return _EVALUATORS[self.operator](self, value)


@dataclass
class QueryMatch:
    """Outcome of evaluating a query against one record."""

    score: float = 0.0
    fields: list[str] = field(default_factory=list)

    @property
    def matched(self) -> bool:
        return self.score > 0


def _compile_regex(field_name: str, source: Any, flags: Any) -> re.Pattern[str]:
    if not isinstance(source, str):
        raise InvalidQueryError(f"$regex for '{field_name}' must be a string", field_name)
    flag_letters = DEFAULT_REGEX_FLAGS if flags is None else flags
    if not isinstance(flag_letters, str):
        raise InvalidQueryError(f"$flags for '{field_name}' must be a string", field_name)

    re_flags = 0
    for letter in flag_letters:
        if letter not in _REGEX_FLAGS:
            raise InvalidQueryError(f"Unsupported regex flag '{letter}' for '{field_name}'", field_name)
        re_flags |= _REGEX_FLAGS[letter]
    try:
        return re.compile(source, re_flags)
    except re.error as e:
        raise InvalidQueryError(f"Invalid $regex for '{field_name}': {e}", field_name)


def parse_query(query: Mapping[str, Any]) -> list[Predicate]:
    """Parse a query mapping into predicates.

    Raises:
        InvalidQueryError: On unknown operators or malformed operands
    """
    if not isinstance(query, Mapping):
        raise InvalidQueryError("Query must be a mapping of field name to condition")

    predicates: list[Predicate] = []
    for field_name, condition in query.items():
        if not isinstance(condition, Mapping):
            predicates.append(Predicate(field_name, Operator.EQ, condition))
            continue

        unknown = [k for k in condition if k != FLAGS_KEY and k not in _OPERATOR_KEYS]
        if unknown:
            raise InvalidQueryError(
                f"Unknown operator(s) {unknown} for field '{field_name}'", field_name
            )
        if FLAGS_KEY in condition and Operator.REGEX.value not in condition:
            raise InvalidQueryError(f"$flags without $regex for field '{field_name}'", field_name)

        for key, operand in condition.items():
            if key == FLAGS_KEY:
                continue
            operator = Operator(key)
            pattern = None
            if operator == Operator.REGEX:
                pattern = _compile_regex(field_name, operand, condition.get(FLAGS_KEY))
            predicates.append(Predicate(field_name, operator, operand, pattern))

    return predicates


def evaluate(predicates: list[Predicate], data: Mapping[str, Any]) -> QueryMatch:
    """Score a record against parsed predicates."""
    result = QueryMatch()
    for predicate in predicates:
        if predicate.matches(data):
            result.score += predicate.operator.weight
            if predicate.path not in result.fields:
                result.fields.append(predicate.path)
    return result


def _ordered(compare: Callable[[Any, Any], bool]) -> Callable[[Predicate, Any], bool]:
    def evaluator(predicate: Predicate, value: Any) -> bool:
        try:
            return bool(compare(value, predicate.operand))
        except TypeError:
            return False
    return evaluator


def _as_text(value: Any) -> str:
    # non-strings match against their JSON text, e.g. false or ["a"]
    return value if isinstance(value, str) else json.dumps(value, default=str)


_OPERATOR_KEYS = {op.value for op in Operator}

_EVALUATORS: dict[Operator, Callable[[Predicate, Any], bool]] = {
    Operator.EQ: lambda p, v: structurally_equal(v, p.operand),
    Operator.CONTAINS: lambda p, v: _as_text(p.operand) in _as_text(v),
    Operator.GT: _ordered(lambda v, operand: v > operand),
    Operator.LT: _ordered(lambda v, operand: v < operand),
    Operator.REGEX: lambda p, v: p.pattern is not None and p.pattern.search(_as_text(v)) is not None,
}
