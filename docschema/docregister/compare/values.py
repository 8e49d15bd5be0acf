"""
Value model helpers for structural comparison.

Records are JSON-shaped: None, bool, int/float, str, sequences and
mappings nested arbitrarily (acyclic). This module provides:
- structurally_equal: recursive equality independent of mapping key order
- freeze: hashable canonical form, for grouping and de-duplication
- significance: [0, 1] heuristic for how material a change is

Invariants:
    - bool is never treated as a number (True != 1 here)
    - int and float compare by value (1 == 1.0)
    - Sequences compare element-wise, in order
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any


class _Missing:
    """Marker for a field absent from a record (distinct from None)."""

    _instance: _Missing | None = None

    def __new__(cls) -> _Missing:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()

DEFAULT_SIGNIFICANCE = 0.5


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def is_sequence(value: Any) -> bool:
    """Ordered sequences, excluding strings and bytes."""
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray))


def structurally_equal(a: Any, b: Any) -> bool:
    """Deep equality over the JSON value model."""
    if a is b:
        return True
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b
    if is_number(a) and is_number(b):
        return a == b
    if isinstance(a, Mapping) and isinstance(b, Mapping):
        if a.keys() != b.keys():
            return False
        return all(structurally_equal(a[k], b[k]) for k in a)
    if is_sequence(a) and is_sequence(b):
        if len(a) != len(b):
            return False
        return all(structurally_equal(x, y) for x, y in zip(a, b))
    if type(a) is not type(b):
        return False
    return a == b


def contains_structurally(items: Sequence[Any], value: Any) -> bool:
    return any(structurally_equal(item, value) for item in items)


def freeze(value: Any) -> Any:
    """Convert a value into a hashable canonical form.

    Two values freeze to equal keys iff they are structurally equal.
    """
    if isinstance(value, bool):
        return ("bool", value)
    if is_number(value):
        return ("num", value)
    if isinstance(value, Mapping):
        return ("map", tuple(sorted((str(k), freeze(v)) for k, v in value.items())))
    if is_sequence(value):
        return ("seq", tuple(freeze(v) for v in value))
    if value is None:
        return ("null",)
    if value is MISSING:
        return ("missing",)
    return (type(value).__name__, value)


def common_prefix_length(a: str, b: str) -> int:
    i = 0
    limit = min(len(a), len(b))
    while i < limit and a[i] == b[i]:
        i += 1
    return i


def significance(old: Any, new: Any) -> float:
    """Heuristic materiality of a change from old to new, in [0, 1].

    - Missing or None on either side: 0.5
    - Numbers: relative change |new - old| / |old or 1|, clamped to 1
    - Strings: 1 - common_prefix / max_length (0 when both are empty)
    - Anything else: 0.5
    """
    if old is None or old is MISSING or new is None or new is MISSING:
        return DEFAULT_SIGNIFICANCE

    if is_number(old) and is_number(new):
        return min(abs(new - old) / abs(old or 1), 1.0)

    if isinstance(old, str) and isinstance(new, str):
        max_len = max(len(old), len(new))
        if max_len == 0:
            return 0.0
        return 1 - common_prefix_length(old, new) / max_len

    return DEFAULT_SIGNIFICANCE


def get_path(data: Mapping[str, Any], path: str) -> Any:
    """Resolve a dotted path into nested mappings; MISSING if absent.

    A top-level key that itself contains dots takes precedence.
    """
    if path in data:
        return data[path]
    current: Any = data
    for part in path.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return MISSING
        current = current[part]
    return current
