"""Boolean expressions evaluated by ``condition`` steps.

An expression is a JSON object, either a comparison::

    {"field": "status", "operator": "eq", "value": "active"}

or a combinator over nested expressions::

    {"all": [...]}, {"any": [...]}, {"not": {...}}
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Mapping

from .errors import StepError
from .mapping.engine import MISSING, lookup


def _compare(op: Callable[[Any, Any], bool]) -> Callable[[Any, Any], bool]:
    def check(actual: Any, expected: Any) -> bool:
        if actual is MISSING or actual is None:
            return False
        try:
            return op(actual, expected)
        except TypeError:
            return op(str(actual), str(expected))

    return check


def _contains(actual: Any, expected: Any) -> bool:
    if actual is MISSING or actual is None:
        return False
    if isinstance(actual, (list, tuple, set, dict)):
        return expected in actual
    return str(expected) in str(actual)


def _in(actual: Any, expected: Any) -> bool:
    if actual is MISSING:
        return False
    return isinstance(expected, (list, tuple)) and actual in expected


OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "eq": lambda a, v: a is not MISSING and a == v,
    "neq": lambda a, v: a is MISSING or a != v,
    "gt": _compare(lambda a, v: a > v),
    "gte": _compare(lambda a, v: a >= v),
    "lt": _compare(lambda a, v: a < v),
    "lte": _compare(lambda a, v: a <= v),
    "contains": _contains,
    "in": _in,
    "exists": lambda a, v: a is not MISSING and a is not None,
    "not_exists": lambda a, v: a is MISSING or a is None,
}


def validate_expression(expression: Any, path: str = "conditionExpression") -> list[str]:
    """Return human-readable problems with ``expression`` (empty = valid)."""
    if not isinstance(expression, Mapping):
        return [f"{path}: must be an object"]
    if "all" in expression or "any" in expression:
        key = "all" if "all" in expression else "any"
        items = expression[key]
        if not isinstance(items, list) or not items:
            return [f"{path}.{key}: must be a non-empty list"]
        problems: list[str] = []
        for i, item in enumerate(items):
            problems.extend(validate_expression(item, f"{path}.{key}[{i}]"))
        return problems
    if "not" in expression:
        return validate_expression(expression["not"], f"{path}.not")

    problems = []
    if not isinstance(expression.get("field"), str) or not expression.get("field"):
        problems.append(f"{path}.field: required")
    operator = expression.get("operator", "eq")
    if operator not in OPERATORS:
        problems.append(
            f"{path}.operator: unsupported '{operator}'. Allowed: {sorted(OPERATORS)}"
        )
    return problems


def evaluate(expression: Mapping[str, Any], data: Any) -> bool:
    """Evaluate ``expression`` against ``data``.

    Raises:
        StepError: if the expression is malformed.
    """
    if not isinstance(expression, Mapping):
        raise StepError("condition expression must be an object")
    if "all" in expression:
        return all(evaluate(e, data) for e in expression["all"])
    if "any" in expression:
        return any(evaluate(e, data) for e in expression["any"])
    if "not" in expression:
        return not evaluate(expression["not"], data)

    field = expression.get("field")
    operator = expression.get("operator", "eq")
    if not field or operator not in OPERATORS:
        raise StepError(f"invalid condition expression: {dict(expression)}")

    actual = lookup(data, field) if isinstance(data, Mapping) else MISSING
    return OPERATORS[operator](actual, expression.get("value"))
