# planflow/execution/conditions.py
"""
Condition evaluation for guards, loops, preconditions and postconditions.

``evaluate`` is total: malformed patterns, failing custom predicates and
missing fields all produce False instead of an exception.
"""
import math
import re
from numbers import Number
from typing import Any, Iterable, List, Optional, Tuple

from planflow.context.manager import ExecutionContext
from planflow.plan.models import Condition, ConditionType
from planflow.utils.logging import get_logger
from planflow.utils.paths import MISSING

logger = get_logger(__name__)

# Predicates that compare the field against ``value``
VALUE_PREDICATES = {
    ConditionType.EQUALS, ConditionType.NOT_EQUALS,
    ConditionType.GREATER_THAN, ConditionType.LESS_THAN,
    ConditionType.GREATER_THAN_OR_EQUAL, ConditionType.LESS_THAN_OR_EQUAL,
    ConditionType.CONTAINS, ConditionType.NOT_CONTAINS, ConditionType.MATCHES,
}

# Longest operators first so ">=" is not read as ">"
_OPERATOR_TOKENS: List[Tuple[str, ConditionType]] = [
    ("===", ConditionType.EQUALS),
    ("!==", ConditionType.NOT_EQUALS),
    ("==", ConditionType.EQUALS),
    ("!=", ConditionType.NOT_EQUALS),
    (">=", ConditionType.GREATER_THAN_OR_EQUAL),
    ("<=", ConditionType.LESS_THAN_OR_EQUAL),
    (">", ConditionType.GREATER_THAN),
    ("<", ConditionType.LESS_THAN),
    (" not contains ", ConditionType.NOT_CONTAINS),
    (" contains ", ConditionType.CONTAINS),
    (" includes ", ConditionType.CONTAINS),
    (" matches ", ConditionType.MATCHES),
]

_DESCRIPTIONS = {
    ConditionType.EQUALS: "equals",
    ConditionType.NOT_EQUALS: "does not equal",
    ConditionType.GREATER_THAN: "is greater than",
    ConditionType.LESS_THAN: "is less than",
    ConditionType.GREATER_THAN_OR_EQUAL: "is greater than or equal to",
    ConditionType.LESS_THAN_OR_EQUAL: "is less than or equal to",
    ConditionType.CONTAINS: "contains",
    ConditionType.NOT_CONTAINS: "does not contain",
    ConditionType.MATCHES: "matches pattern",
    ConditionType.EXISTS: "exists",
    ConditionType.NOT_EXISTS: "does not exist",
    ConditionType.CUSTOM: "meets custom condition",
}


def _to_number(value: Any) -> float:
    """Numeric coercion; anything that is not a number becomes NaN."""
    if value is MISSING or value is None:
        return math.nan
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, Number):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0.0
        try:
            return float(text)
        except ValueError:
            return math.nan
    return math.nan


def _strict_equals(left: Any, right: Any) -> bool:
    """Equality without bool/number or str/number cross-matching."""
    if isinstance(left, bool) or isinstance(right, bool):
        return type(left) is type(right) and left == right
    if isinstance(left, Number) and isinstance(right, Number):
        return left == right
    if type(left) is not type(right):
        return False
    return left == right


def _contains(container: Any, item: Any) -> Optional[bool]:
    """Substring or membership test; None when ``container`` supports neither."""
    if isinstance(container, str):
        return str(item) in container
    if isinstance(container, (list, tuple)):
        return any(_strict_equals(member, item) for member in container)
    return None


class ConditionEvaluator:
    """Evaluates Conditions against an ExecutionContext."""

    def __init__(self):
        self._logger = logger

    def evaluate(self, condition: Condition, context: ExecutionContext) -> bool:
        """
        Evaluate a single condition.

        Args:
            condition: The condition to check
            context: The context its field path is resolved against

        Returns:
            The predicate's result, False on any error
        """
        try:
            return self._evaluate(condition, context)
        except Exception as e:
            self._logger.error(f"Error evaluating condition {describe_condition(condition)}: {e}")
            return False

    def evaluate_all(self, conditions: Iterable[Condition], context: ExecutionContext) -> bool:
        """AND across ``conditions``."""
        return all(self.evaluate(condition, context) for condition in conditions)

    def evaluate_any(self, conditions: Iterable[Condition], context: ExecutionContext) -> bool:
        """OR across ``conditions``."""
        return any(self.evaluate(condition, context) for condition in conditions)

    def _evaluate(self, condition: Condition, context: ExecutionContext) -> bool:
        kind = condition.type

        if kind == ConditionType.CUSTOM:
            if condition.custom_fn is None:
                self._logger.warning("Custom condition without a predicate")
                return False
            return bool(condition.custom_fn(context))

        actual = context.resolve_field(condition.field)

        if kind == ConditionType.EXISTS:
            return actual is not MISSING and actual is not None
        if kind == ConditionType.NOT_EXISTS:
            return actual is MISSING or actual is None

        # A missing field fails every remaining predicate
        if actual is MISSING:
            return False

        expected = condition.value

        if kind == ConditionType.EQUALS:
            return _strict_equals(actual, expected)
        if kind == ConditionType.NOT_EQUALS:
            return not _strict_equals(actual, expected)

        if kind == ConditionType.GREATER_THAN:
            return _to_number(actual) > _to_number(expected)
        if kind == ConditionType.LESS_THAN:
            return _to_number(actual) < _to_number(expected)
        if kind == ConditionType.GREATER_THAN_OR_EQUAL:
            return _to_number(actual) >= _to_number(expected)
        if kind == ConditionType.LESS_THAN_OR_EQUAL:
            return _to_number(actual) <= _to_number(expected)

        if kind == ConditionType.CONTAINS:
            return _contains(actual, expected) is True
        if kind == ConditionType.NOT_CONTAINS:
            return _contains(actual, expected) is False

        if kind == ConditionType.MATCHES:
            if not isinstance(actual, str) or not isinstance(expected, str):
                return False
            return re.search(expected, actual) is not None

        self._logger.warning(f"Unknown condition type: {kind}")
        return False


# --- Helpers ---

def _parse_literal(text: str) -> Any:
    text = text.strip()
    if text == "true":
        return True
    if text == "false":
        return False
    if text == "null":
        return None
    if len(text) >= 2 and text[0] == text[-1] and text[0] in ("'", '"'):
        return text[1:-1]
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return float(text)
    except ValueError:
        return text


def condition_from_string(expression: str) -> Optional[Condition]:
    """
    Build a Condition from a short expression such as ``"variables.score < 30"``.

    Supports the comparison operators, ``contains``/``includes``/``matches``,
    and the suffixes ``exists`` / ``not exists``.

    Returns:
        The condition, or None when the expression cannot be parsed
    """
    text = expression.strip()
    if not text:
        return None

    if text.endswith(" not exists"):
        return Condition(type=ConditionType.NOT_EXISTS, field=text[: -len(" not exists")].strip())
    if text.endswith(" exists"):
        return Condition(type=ConditionType.EXISTS, field=text[: -len(" exists")].strip())

    for token, kind in _OPERATOR_TOKENS:
        if token in text:
            field, raw_value = text.split(token, 1)
            field = field.strip()
            if not field:
                break
            return Condition(type=kind, field=field, value=_parse_literal(raw_value))

    logger.warning(f"Could not parse condition: {expression}")
    return None


def validate_condition(condition: Condition) -> Tuple[bool, Optional[str]]:
    """
    Check that a condition carries what its predicate needs.

    Returns:
        Tuple of (is_valid, error_message)
    """
    if condition.type == ConditionType.CUSTOM:
        if condition.custom_fn is None:
            return False, "Custom condition requires custom_fn"
        return True, None

    if not condition.field:
        return False, "Condition field is required"

    if condition.type in VALUE_PREDICATES and "value" not in condition.model_fields_set:
        return False, f"Condition type \"{condition.type.value}\" requires a value"

    return True, None


def describe_condition(condition: Condition) -> str:
    """Human readable rendering, e.g. ``variables.score is less than 30``."""
    if condition.type == ConditionType.CUSTOM:
        return condition.message or "Custom condition"

    text = _DESCRIPTIONS.get(condition.type, str(condition.type))
    if condition.type in (ConditionType.EXISTS, ConditionType.NOT_EXISTS):
        return f"{condition.field} {text}"
    return f"{condition.field} {text} {condition.value!r}"


def all_of(*conditions: Condition) -> Condition:
    """A custom condition that holds when every condition holds."""
    evaluator = ConditionEvaluator()
    return Condition(
        type=ConditionType.CUSTOM,
        custom_fn=lambda context: evaluator.evaluate_all(conditions, context),
        message="All conditions met: " + " AND ".join(describe_condition(c) for c in conditions),
    )


def any_of(*conditions: Condition) -> Condition:
    """A custom condition that holds when at least one condition holds."""
    evaluator = ConditionEvaluator()
    return Condition(
        type=ConditionType.CUSTOM,
        custom_fn=lambda context: evaluator.evaluate_any(conditions, context),
        message="Any condition met: " + " OR ".join(describe_condition(c) for c in conditions),
    )


def negate(condition: Condition) -> Condition:
    evaluator = ConditionEvaluator()
    return Condition(
        type=ConditionType.CUSTOM,
        custom_fn=lambda context: not evaluator.evaluate(condition, context),
        message=f"NOT ({describe_condition(condition)})",
    )


def field_exists(field: str) -> Condition:
    return Condition(type=ConditionType.EXISTS, field=field, message=f"{field} exists")
