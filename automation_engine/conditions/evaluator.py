"""
Condition evaluation for condition nodes and trigger filters.

Evaluation is total: every operator returns a bool for any operand types,
and unexpected errors are logged and read as False.
"""

import logging
import math
import re
from typing import Any, Callable, Mapping, Optional, Union

from pydantic import ValidationError

from automation_engine.core.models import Condition, ConditionGroup, ConditionSpec
from automation_engine.template.resolver import MISSING, lookup, stringify

logger = logging.getLogger(__name__)


# ==================== Value Coercion ====================

def to_number(value: Any) -> float:
    """
    Coerce a value to float for ordering comparisons.

    None, MISSING, blank or non-numeric strings, lists and dicts become NaN.
    Booleans count as 1/0.
    """
    if value is None or value is MISSING:
        return math.nan
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return math.nan
        try:
            return float(text)
        except ValueError:
            return math.nan
    return math.nan


def is_number(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and not (isinstance(value, float) and math.isnan(value))
    )


def loose_equals(left: Any, right: Any) -> bool:
    """
    Loose equality used by ``equals`` and ``in_list``.

    Missing and None only equal each other; booleans compare as 1/0; a number
    against a string compares numerically; otherwise Python equality.
    """
    left_null = left is None or left is MISSING
    right_null = right is None or right is MISSING
    if left_null or right_null:
        return left_null and right_null

    if isinstance(left, bool) or isinstance(right, bool):
        if isinstance(left, bool) and isinstance(right, bool):
            return left == right
        return to_number(left) == to_number(right)

    if isinstance(left, (int, float)) and isinstance(right, str) or (
        isinstance(left, str) and isinstance(right, (int, float))
    ):
        return to_number(left) == to_number(right)

    try:
        return bool(left == right)
    except Exception:
        return False


def _strict_type(value: Any) -> str:
    if value is None or value is MISSING:
        return "null" if value is None else "missing"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def strict_equals(left: Any, right: Any) -> bool:
    """Type-and-value equality; int and float are both numbers."""
    if _strict_type(left) != _strict_type(right):
        return False
    if left is MISSING or left is None:
        return True
    return bool(left == right)


def is_empty(value: Any) -> bool:
    if value is None or value is MISSING or value is False:
        return True
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value == 0 or math.isnan(value)
    if isinstance(value, str):
        return value == ""
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) == 0
    return False


# ==================== Operators ====================

def _compare(op: Callable[[float, float], bool]) -> Callable[[Any, Any], bool]:
    def compare(field_value: Any, value: Any) -> bool:
        left, right = to_number(field_value), to_number(value)
        if math.isnan(left) or math.isnan(right):
            return False
        return op(left, right)
    return compare


def _text(op: Callable[[str, str], bool]) -> Callable[[Any, Any], bool]:
    def check(field_value: Any, value: Any) -> bool:
        return op(stringify(field_value).lower(), stringify(value).lower())
    return check


def _matches_regex(field_value: Any, value: Any) -> bool:
    try:
        return re.search(stringify(value), stringify(field_value)) is not None
    except re.error:
        logger.warning(f"Invalid regex pattern in condition: {value!r}")
        return False


def _bounds(value: Any) -> tuple[Any, Any]:
    if isinstance(value, Mapping):
        return value.get("min"), value.get("max")
    if isinstance(value, (list, tuple)) and len(value) == 2:
        return value[0], value[1]
    raise ValueError(f"in_range expects {{min, max}} or [min, max], got {value!r}")


def _in_range(field_value: Any, value: Any) -> bool:
    try:
        low, high = _bounds(value)
    except ValueError as e:
        logger.warning(str(e))
        return False
    number = to_number(field_value)
    if math.isnan(number):
        return False
    if low is not None:
        low_number = to_number(low)
        if math.isnan(low_number) or number < low_number:
            return False
    if high is not None:
        high_number = to_number(high)
        if math.isnan(high_number) or number > high_number:
            return False
    return True


def _in_list(field_value: Any, value: Any) -> bool:
    if isinstance(value, str):
        candidates: list[Any] = [part.strip() for part in value.split(",")]
    elif isinstance(value, (list, tuple, set)):
        candidates = list(value)
    else:
        return False
    return any(loose_equals(field_value, candidate) for candidate in candidates)


OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "equals": loose_equals,
    "not_equals": lambda f, v: not loose_equals(f, v),
    "strict_equals": strict_equals,
    "strict_not_equals": lambda f, v: not strict_equals(f, v),
    "greater_than": _compare(lambda a, b: a > b),
    "greater_than_or_equal": _compare(lambda a, b: a >= b),
    "less_than": _compare(lambda a, b: a < b),
    "less_than_or_equal": _compare(lambda a, b: a <= b),
    "contains": _text(lambda a, b: b in a),
    "not_contains": _text(lambda a, b: b not in a),
    "starts_with": _text(lambda a, b: a.startswith(b)),
    "ends_with": _text(lambda a, b: a.endswith(b)),
    "matches_regex": _matches_regex,
    "is_empty": lambda f, v: is_empty(f),
    "is_not_empty": lambda f, v: not is_empty(f),
    "is_null": lambda f, v: f is None or f is MISSING,
    "is_not_null": lambda f, v: not (f is None or f is MISSING),
    "is_number": lambda f, v: is_number(f),
    "is_boolean": lambda f, v: isinstance(f, bool),
    "is_array": lambda f, v: isinstance(f, (list, tuple)),
    "in_range": _in_range,
    "in_list": _in_list,
}

OPERATOR_ALIASES: dict[str, str] = {
    "==": "equals",
    "eq": "equals",
    "!=": "not_equals",
    "ne": "not_equals",
    "===": "strict_equals",
    "!==": "strict_not_equals",
    ">": "greater_than",
    "gt": "greater_than",
    ">=": "greater_than_or_equal",
    "gte": "greater_than_or_equal",
    "greater_or_equal": "greater_than_or_equal",
    "<": "less_than",
    "lt": "less_than",
    "<=": "less_than_or_equal",
    "lte": "less_than_or_equal",
    "less_or_equal": "less_than_or_equal",
}


def normalize_operator(operator: str) -> str:
    key = operator.strip()
    key = OPERATOR_ALIASES.get(key, key)
    return OPERATOR_ALIASES.get(key.lower(), key.lower())


# ==================== Evaluator ====================

RawCondition = Union[ConditionSpec, Mapping[str, Any]]


class ConditionEvaluator:
    """
    Evaluates single and composite conditions against execution bindings.

    Field names are looked up in the variables first, then the trigger
    payload. Composite groups reduce with AND (all) or OR (any).
    """

    def evaluate(
        self,
        condition: Optional[RawCondition],
        variables: Mapping[str, Any],
        trigger_data: Optional[Mapping[str, Any]] = None,
    ) -> bool:
        """
        Evaluate a condition.

        Args:
            condition: Condition, ConditionGroup or an equivalent raw dict
            variables: Current execution bindings
            trigger_data: Trigger payload snapshot, consulted after variables

        Returns:
            The boolean result; never raises
        """
        try:
            spec = self._coerce(condition)
            if spec is None:
                logger.warning(f"Malformed condition evaluated as false: {condition!r}")
                return False
            return self._evaluate(spec, variables, trigger_data or {})
        except Exception as e:
            logger.warning(f"Condition evaluation failed: {e}", exc_info=True)
            return False

    def _coerce(self, condition: Optional[RawCondition]) -> Optional[ConditionSpec]:
        if isinstance(condition, (Condition, ConditionGroup)):
            return condition
        if not isinstance(condition, Mapping):
            return None
        try:
            if "conditions" in condition:
                return ConditionGroup.model_validate(condition)
            return Condition.model_validate(condition)
        except ValidationError:
            return None

    def _evaluate(
        self,
        spec: ConditionSpec,
        variables: Mapping[str, Any],
        trigger_data: Mapping[str, Any],
    ) -> bool:
        if isinstance(spec, ConditionGroup):
            return self._evaluate_group(spec, variables, trigger_data)
        return self._evaluate_single(spec, variables, trigger_data)

    def _evaluate_group(
        self,
        group: ConditionGroup,
        variables: Mapping[str, Any],
        trigger_data: Mapping[str, Any],
    ) -> bool:
        logic = (group.logic_operator or "AND").strip().upper()
        results = (self._evaluate(c, variables, trigger_data) for c in group.conditions)
        if logic == "AND":
            return all(results)
        if logic == "OR":
            return any(results)
        logger.warning(f"Unknown logic operator '{group.logic_operator}'")
        return False

    def _evaluate_single(
        self,
        condition: Condition,
        variables: Mapping[str, Any],
        trigger_data: Mapping[str, Any],
    ) -> bool:
        name = normalize_operator(condition.operator)
        operator = OPERATORS.get(name)
        if operator is None:
            logger.warning(f"Unknown condition operator '{condition.operator}'")
            return False

        field_value = lookup(condition.field, variables, trigger_data)
        return bool(operator(field_value, condition.value))


def evaluate_condition(
    condition: Optional[RawCondition],
    variables: Mapping[str, Any],
    trigger_data: Optional[Mapping[str, Any]] = None,
) -> bool:
    """Module-level shortcut for one-off evaluation."""
    return ConditionEvaluator().evaluate(condition, variables, trigger_data)
