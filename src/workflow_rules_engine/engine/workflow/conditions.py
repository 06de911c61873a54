"""Condition evaluation against an event snapshot.

Pure functions. Any ambiguity (missing field, type mismatch, bad regex)
evaluates to False instead of raising.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable, Mapping, Sequence

from .events import MISSING, WorkflowEvent
from .models import ConditionOperator, FieldCondition, LogicOperator

logger = logging.getLogger(__name__)


def _is_number(value: object) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def _as_number(value: object) -> float | None:
    if _is_number(value):
        return float(value)  # type: ignore[arg-type]
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _is_sequence(value: object) -> bool:
    return isinstance(value, Sequence) and not isinstance(value, str | bytes)


def _normalize(value: object) -> object:
    if _is_sequence(value):
        return [_normalize(v) for v in value]  # type: ignore[union-attr]
    if isinstance(value, Mapping):
        return {k: _normalize(v) for k, v in value.items()}
    return value


def _equals(actual: object, expected: object) -> bool:
    actual = _normalize(actual)
    expected = _normalize(expected)
    if _is_number(actual) and _is_number(expected):
        return actual == expected
    if type(actual) is type(expected):
        return actual == expected
    if _is_number(actual):
        expected_num = _as_number(expected)
        return expected_num is not None and float(actual) == expected_num  # type: ignore[arg-type]
    if isinstance(actual, str | bool) and isinstance(expected, str | bool | int | float):
        return _stringify(actual) == _stringify(expected)
    return False


def _stringify(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _contains(actual: object, expected: object) -> bool:
    if _is_sequence(actual):
        return any(_equals(item, expected) for item in actual)  # type: ignore[union-attr]
    if isinstance(actual, str) and expected is not None:
        return _stringify(expected).lower() in actual.lower()
    return False


def _numeric(compare: Callable[[float, float], bool]) -> Callable[[object, object], bool]:
    def _check(actual: object, expected: object) -> bool:
        if not _is_number(actual):
            return False
        expected_num = _as_number(expected)
        if expected_num is None:
            return False
        return compare(float(actual), expected_num)  # type: ignore[arg-type]

    return _check


def _as_list(value: object) -> list[object] | None:
    if _is_sequence(value):
        return list(value)  # type: ignore[call-overload]
    if isinstance(value, str):
        return [part.strip() for part in value.split(",")]
    return None


def _in(actual: object, expected: object) -> bool:
    options = _as_list(expected)
    if options is None or _is_sequence(actual) or isinstance(actual, Mapping):
        return False
    return any(_equals(actual, option) for option in options)


def _is_empty(actual: object) -> bool:
    if actual is None or actual == "":
        return True
    if _is_sequence(actual) or isinstance(actual, Mapping):
        return len(actual) == 0  # type: ignore[arg-type]
    return False


def _matches_regex(actual: object, expected: object) -> bool:
    if not isinstance(expected, str) or actual is None or isinstance(actual, Mapping):
        return False
    try:
        return re.search(expected, _stringify(actual)) is not None
    except re.error:
        return False


_COMPARATORS: dict[ConditionOperator, Callable[[object, object], bool]] = {
    ConditionOperator.EQUALS: _equals,
    ConditionOperator.NOT_EQUALS: lambda a, e: not _equals(a, e),
    ConditionOperator.CONTAINS: _contains,
    ConditionOperator.NOT_CONTAINS: lambda a, e: (
        (_is_sequence(a) or isinstance(a, str)) and not _contains(a, e)
    ),
    ConditionOperator.GREATER_THAN: _numeric(lambda a, e: a > e),
    ConditionOperator.LESS_THAN: _numeric(lambda a, e: a < e),
    ConditionOperator.GREATER_OR_EQUAL: _numeric(lambda a, e: a >= e),
    ConditionOperator.LESS_OR_EQUAL: _numeric(lambda a, e: a <= e),
    ConditionOperator.IN: _in,
    ConditionOperator.NOT_IN: lambda a, e: _as_list(e) is not None and not _in(a, e),
    ConditionOperator.IS_EMPTY: lambda a, _e: _is_empty(a),
    ConditionOperator.IS_NOT_EMPTY: lambda a, _e: not _is_empty(a),
    ConditionOperator.MATCHES_REGEX: _matches_regex,
}


def _evaluate_change(condition: FieldCondition, event: WorkflowEvent) -> bool:
    current = event.resolve(condition.field)
    previous = event.resolve_previous(condition.field)
    if current is MISSING or previous is MISSING:
        return False
    changed = not _equals(previous, current)
    if condition.operator is ConditionOperator.CHANGED:
        return changed
    if condition.operator is ConditionOperator.CHANGED_FROM:
        return changed and _equals(previous, condition.value)
    return changed and _equals(current, condition.value)


_CHANGE_OPERATORS = frozenset(
    {ConditionOperator.CHANGED, ConditionOperator.CHANGED_FROM, ConditionOperator.CHANGED_TO}
)


def evaluate_condition(condition: FieldCondition, event: WorkflowEvent) -> bool:
    """Evaluate a single field condition against the event snapshot."""

    if condition.operator in _CHANGE_OPERATORS:
        return _evaluate_change(condition, event)

    actual = event.resolve(condition.field)
    if actual is MISSING:
        return False

    comparator = _COMPARATORS.get(condition.operator)
    if comparator is None:
        logger.warning("Unknown condition operator", extra={"operator": str(condition.operator)})
        return False
    try:
        return bool(comparator(actual, condition.value))
    except (TypeError, ValueError):
        return False


def evaluate(
    conditions: Iterable[FieldCondition],
    logic: LogicOperator,
    event: WorkflowEvent,
) -> bool:
    """Combine field conditions with AND / OR. An empty list is unconditionally true."""

    items = list(conditions)
    if not items:
        return True
    results = (evaluate_condition(c, event) for c in items)
    if logic is LogicOperator.OR:
        return any(results)
    return all(results)
