"""Pure predicate evaluation over semi-structured event payloads.

A rule filter is a ``{path, operator, value}`` triple. ``path`` is a dot path
into the payload tree; numeric segments index into lists. Lookups that fall
off the tree yield :data:`MISSING` rather than ``None`` so that "absent" and
"explicitly null" stay distinguishable.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Mapping, Sequence

ABSENT_LITERAL = "$absent"


class _Missing:
    _instance: "_Missing | None" = None

    def __new__(cls) -> "_Missing":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()


class RuleMatchError(ValueError):
    """Raised when a rule carries a filter that cannot be evaluated."""


class FilterOperator(str, Enum):
    EQ = "eq"
    NEQ = "neq"
    EXISTS = "exists"
    GTE = "gte"
    LTE = "lte"
    CONTAINS = "contains"


@dataclass(frozen=True)
class FilterPredicate:
    path: str
    operator: FilterOperator
    value: Any = None


def resolve_path(payload: Any, path: str) -> Any:
    """Return the value at ``path`` or :data:`MISSING`."""

    current = payload
    for segment in path.split("."):
        if isinstance(current, Mapping):
            if segment not in current:
                return MISSING
            current = current[segment]
        elif isinstance(current, list) and segment.isascii() and segment.isdigit():
            index = int(segment)
            if index >= len(current):
                return MISSING
            current = current[index]
        else:
            return MISSING
    return current


def compile_filter(raw: Any) -> FilterPredicate:
    if not isinstance(raw, Mapping):
        raise RuleMatchError(f"Filter must be an object, got {type(raw).__name__}")
    path = raw.get("path")
    if not isinstance(path, str) or not path.strip():
        raise RuleMatchError("Filter path must be a non-empty string")
    operator = raw.get("operator", raw.get("op"))
    try:
        op = FilterOperator(operator)
    except ValueError as exc:
        raise RuleMatchError(f"Unknown filter operator: {operator!r}") from exc
    return FilterPredicate(path=path.strip(), operator=op, value=raw.get("value"))


def compile_filters(raw_filters: Any) -> List[FilterPredicate]:
    """Validate stored filter JSON, raising :class:`RuleMatchError` on bad shapes."""

    if raw_filters is None:
        return []
    if not isinstance(raw_filters, list):
        raise RuleMatchError("Rule filters must be a list")
    return [compile_filter(raw) for raw in raw_filters]


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _strict_equals(left: Any, right: Any) -> bool:
    # True == 1 in Python; payload comparisons must keep booleans apart.
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left is right
    return left == right


def evaluate(predicate: FilterPredicate, payload: Mapping[str, Any]) -> bool:
    actual = resolve_path(payload, predicate.path)
    expected = predicate.value
    op = predicate.operator

    if op is FilterOperator.EQ:
        if actual is MISSING:
            return expected == ABSENT_LITERAL
        return _strict_equals(actual, expected)
    if op is FilterOperator.NEQ:
        if actual is MISSING:
            return expected != ABSENT_LITERAL
        return not _strict_equals(actual, expected)
    if op is FilterOperator.EXISTS:
        present = actual is not MISSING and actual is not None
        return present if expected is None or bool(expected) else not present
    if op is FilterOperator.GTE:
        return _is_number(actual) and _is_number(expected) and actual >= expected
    if op is FilterOperator.LTE:
        return _is_number(actual) and _is_number(expected) and actual <= expected
    if op is FilterOperator.CONTAINS:
        if isinstance(actual, str) and isinstance(expected, str):
            return expected in actual
        if isinstance(actual, list):
            return any(_strict_equals(item, expected) for item in actual)
        return False
    raise RuleMatchError(f"Unsupported operator {op!r}")  # pragma: no cover


def evaluate_filters(filters: Sequence[FilterPredicate], payload: Mapping[str, Any]) -> bool:
    """Logical AND over all predicates; an empty filter list always matches."""

    return all(evaluate(predicate, payload) for predicate in filters)


def matches(raw_filters: Any, payload: Mapping[str, Any]) -> bool:
    return evaluate_filters(compile_filters(raw_filters), payload)
