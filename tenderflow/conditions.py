"""Condition evaluation and context templating.

Context lookups walk a dot-path through nested mappings. A path that cannot
be followed resolves to :data:`UNDEFINED`, which is distinct from ``None``
and ``False``: it fails every operator except ``ne`` and ``nin``.
"""

from __future__ import annotations

import logging
import operator
import re
from typing import Any, Callable, Dict, Iterable, Mapping

from .contracts import Condition, ConditionOperator

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\{\{\s*([\w.]+)\s*\}\}")


class _Undefined:
    _instance = None

    def __new__(cls) -> "_Undefined":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNDEFINED"

    def __bool__(self) -> bool:
        return False


UNDEFINED: Any = _Undefined()


def resolve_path(path: str, context: Mapping[str, Any] | None) -> Any:
    """Return the value at ``path`` in ``context`` or :data:`UNDEFINED`."""
    current: Any = context if context is not None else {}
    for key in path.split("."):
        if isinstance(current, Mapping):
            if key not in current:
                return UNDEFINED
            current = current[key]
        elif isinstance(current, (list, tuple)) and key.isdigit():
            index = int(key)
            if index >= len(current):
                return UNDEFINED
            current = current[index]
        else:
            return UNDEFINED
    return current


def _contains(container: Any, actual: Any) -> bool:
    # A string value is searched as text: "in" matches substrings.
    if isinstance(container, str):
        return actual is not None and str(actual) in container
    if isinstance(container, (list, tuple, set, frozenset)):
        return actual in container
    return actual == container


def _ordered(compare: Callable[[Any, Any], bool]) -> Callable[[Any, Any], bool]:
    def check(actual: Any, expected: Any) -> bool:
        if actual is UNDEFINED or actual is None:
            return False
        try:
            return bool(compare(actual, expected))
        except TypeError:
            logger.debug(
                f"Cannot compare {actual!r} with {expected!r}; condition fails"
            )
            return False

    return check


_OPERATORS: Dict[ConditionOperator, Callable[[Any, Any], bool]] = {
    ConditionOperator.EQ: lambda a, e: a is not UNDEFINED and a == e,
    ConditionOperator.NE: lambda a, e: a is UNDEFINED or a != e,
    ConditionOperator.GT: _ordered(operator.gt),
    ConditionOperator.LT: _ordered(operator.lt),
    ConditionOperator.GTE: _ordered(operator.ge),
    ConditionOperator.LTE: _ordered(operator.le),
    ConditionOperator.IN: lambda a, e: a is not UNDEFINED and _contains(e, a),
    ConditionOperator.NIN: lambda a, e: a is UNDEFINED or not _contains(e, a),
}


def evaluate_condition(condition: Condition, context: Mapping[str, Any] | None) -> bool:
    actual = resolve_path(condition.field, context)
    return _OPERATORS[condition.operator](actual, condition.value)


def evaluate(conditions: Iterable[Condition], context: Mapping[str, Any] | None) -> bool:
    """AND all ``conditions`` against ``context``, stopping at the first failure."""
    for condition in conditions:
        if not evaluate_condition(condition, context):
            logger.debug(
                f"Condition {condition.field} {condition.operator.value} "
                f"{condition.value!r} not met"
            )
            return False
    return True


def interpolate(template: str | None, context: Mapping[str, Any] | None) -> str:
    """Replace ``{{key}}`` placeholders; unresolved keys stay literal."""
    if not template:
        return ""

    def _replace(match: re.Match[str]) -> str:
        value = resolve_path(match.group(1), context)
        if value is UNDEFINED or value is None:
            return match.group(0)
        return str(value)

    return _PLACEHOLDER.sub(_replace, template)


__all__ = [
    "UNDEFINED",
    "evaluate",
    "evaluate_condition",
    "interpolate",
    "resolve_path",
]
