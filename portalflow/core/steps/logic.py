"""
conditional_check step

The only branching step: evaluates a field of the context against an
operator and routes via "success" or "failure".
"""

import logging
import math
import re
from typing import Any, Dict, List, Optional

from .base import StepExecutor, StepResult, StepServices, register_step
from ..nodes import StepNode, StepType
from ..templates import get_value_by_path, stringify_value

logger = logging.getLogger(__name__)

SUCCESS_HANDLE = "success"
FAILURE_HANDLE = "failure"

_LEADING_FLOAT_RE = re.compile(r"^\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?|[+-]?Infinity)")
_WRAPPING_BRACES_RE = re.compile(r"^\{\{|\}\}$")


def parse_leading_float(value: Any) -> Optional[float]:
    """
    Parse the leading number of a value ("12.5kg" → 12.5).

    Returns None for booleans, None and text without a leading number.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return None if isinstance(value, float) and math.isnan(value) else float(value)
    match = _LEADING_FLOAT_RE.match(str(value))
    if not match:
        return None
    return float(match.group(1).replace("Infinity", "inf"))


def _is_blank(value: Any) -> bool:
    return value is None or value == ""


def _compare_numbers(actual: Any, expected: Any, op: str) -> bool:
    left = parse_leading_float(actual)
    right = parse_leading_float(expected)
    if left is None or right is None:
        return False
    if op == "gt":
        return left > right
    if op == "lt":
        return left < right
    if op == "gte":
        return left >= right
    return left <= right


_NUMERIC_OPERATORS = {
    "greater_than": "gt", "gt": "gt",
    "less_than": "lt", "lt": "lt",
    "greater_than_or_equal": "gte", "gte": "gte",
    "less_than_or_equal": "lte", "lte": "lte",
}


def evaluate_condition(actual: Any, operator: str, expected: Any) -> bool:
    """
    Evaluate one operator.

    Equality and containment compare stringified values; numeric
    operators compare leading floats and are False if either side is not
    numeric. Unknown operators behave as "exists".
    """
    if operator in ("is_not_null", "isNotNull"):
        return actual is not None
    if operator in ("is_null", "isNull"):
        return actual is None
    if operator in ("not_exists", "notExists"):
        return _is_blank(actual)
    if operator in ("equals", "eq"):
        return stringify_value(actual) == stringify_value(expected)
    if operator in ("not_equals", "notEquals", "ne"):
        return stringify_value(actual) != stringify_value(expected)
    if operator == "contains":
        return stringify_value(expected) in stringify_value(actual)
    if operator in ("not_contains", "notContains"):
        return stringify_value(expected) not in stringify_value(actual)
    if operator in _NUMERIC_OPERATORS:
        return _compare_numbers(actual, expected, _NUMERIC_OPERATORS[operator])
    if operator != "exists":
        logger.warning(f"Unknown operator: {operator}, defaulting to 'exists'")
    return not _is_blank(actual)


def clean_field_path(raw: Any) -> str:
    """Strip a surrounding {{ }} from a configured field path."""
    return _WRAPPING_BRACES_RE.sub("", str(raw or ""))


@register_step(StepType.CONDITIONAL_CHECK)
class ConditionalCheckStep(StepExecutor):
    """
    Config:
        fieldPath | jsonPath | checkField: Context path to test
        operator | conditionType: Operator (default "exists")
        expectedValue: Comparison value
        storeResultAs: Context key for the boolean (default condition_<nodeId>_result)
        additionalConditions: [{jsonPath, operator, expectedValue}]
        logicalOperator: AND (default) | OR
    """

    async def execute(self, node: StepNode, run, services: StepServices) -> StepResult:
        config = node.config
        context = run.context

        field_path = clean_field_path(config.get("fieldPath") or config.get("jsonPath") or config.get("checkField"))
        operator = config.get("operator") or config.get("conditionType") or "exists"
        expected_value = config.get("expectedValue")
        store_result_as = config.get("storeResultAs") or f"condition_{node.id}_result"

        actual_value = get_value_by_path(context.view(), field_path)
        condition_met = evaluate_condition(actual_value, operator, expected_value)

        output: Dict[str, Any] = {
            "conditionMet": condition_met,
            "fieldPath": field_path,
            "operator": operator,
            "actualValue": actual_value,
            "expectedValue": expected_value,
            "storeResultAs": store_result_as,
        }

        additional = config.get("additionalConditions") or []
        if additional:
            results: List[Dict[str, Any]] = []
            for condition in additional:
                path = clean_field_path(condition.get("jsonPath") or condition.get("fieldPath"))
                op = condition.get("operator") or "exists"
                value = get_value_by_path(context.view(), path)
                met = evaluate_condition(value, op, condition.get("expectedValue"))
                results.append({
                    "fieldPath": path,
                    "operator": op,
                    "actualValue": value,
                    "expectedValue": condition.get("expectedValue"),
                    "conditionMet": met,
                })

            all_results = [condition_met] + [r["conditionMet"] for r in results]
            if str(config.get("logicalOperator") or "AND").upper() == "OR":
                condition_met = any(all_results)
            else:
                condition_met = all(all_results)

            output["additionalResults"] = results
            output["conditionMet"] = condition_met

        context.set(store_result_as, condition_met)
        handle = SUCCESS_HANDLE if condition_met else FAILURE_HANDLE
        logger.info(f"Condition '{field_path} {operator}' → {condition_met}, routing via {handle}")

        return StepResult(output=output, handle=handle)
