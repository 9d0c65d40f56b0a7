"""
Assertions

User-defined checks evaluated against collector results. An assertion
compares one field of a result (optionally a nested value reached through a
JSON path) against an expected value. Evaluation stops at the first failure.
"""

import json
import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class AssertionOperator(str, Enum):
    """Comparison operators available to assertions."""

    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    MATCHES = "matches"
    IS_EMPTY = "is_empty"
    EXISTS = "exists"
    NOT_EXISTS = "not_exists"
    IS_TRUE = "is_true"
    IS_FALSE = "is_false"
    LESS_THAN = "less_than"
    LESS_THAN_OR_EQUAL = "less_than_or_equal"
    GREATER_THAN = "greater_than"
    GREATER_THAN_OR_EQUAL = "greater_than_or_equal"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ")


NUMERIC_OPERATORS = {
    AssertionOperator.LESS_THAN,
    AssertionOperator.LESS_THAN_OR_EQUAL,
    AssertionOperator.GREATER_THAN,
    AssertionOperator.GREATER_THAN_OR_EQUAL,
}

# Operators that do not take an expected value
UNARY_OPERATORS = {
    AssertionOperator.IS_EMPTY,
    AssertionOperator.EXISTS,
    AssertionOperator.NOT_EXISTS,
    AssertionOperator.IS_TRUE,
    AssertionOperator.IS_FALSE,
}

_MISSING = object()


class Assertion(BaseModel):
    """A check against a single result field."""

    field: str = Field(..., min_length=1, description="Result field to check")
    path: str | None = Field(
        default=None, description="JSON path into the field value (e.g. $.data[0].id)"
    )
    operator: AssertionOperator
    value: Any | None = Field(default=None, description="Expected value")


@dataclass
class AssertionResult:
    """Outcome of evaluating one assertion."""

    passed: bool
    assertion: Assertion
    actual: Any = None
    message: str | None = None


def extract_path(value: Any, path: str) -> Any:
    """
    Extract a nested value using ``$.a.b[0]`` or ``a.b.0`` notation.

    String values are parsed as JSON first. Returns ``None`` when any step
    of the path is missing.
    """
    if isinstance(value, (str, bytes)):
        try:
            value = json.loads(value)
        except ValueError:
            return None

    expression = path.strip()
    if expression.startswith("$"):
        expression = expression[1:]

    current = value
    for part in re.findall(r"[^.\[\]]+", expression):
        part = part.strip("'\"")
        if isinstance(current, dict):
            current = current.get(part)
        elif isinstance(current, list) and part.lstrip("-").isdigit():
            idx = int(part)
            current = current[idx] if -len(current) <= idx < len(current) else None
        else:
            return None
        if current is None:
            return None

    return current


def _to_number(value: Any) -> float | None:
    if value is None or isinstance(value, (dict, list)):
        return None
    if isinstance(value, bool):
        return float(value)
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number):
        return None
    return number


def _to_text(value: Any) -> str:
    if value is None or value is _MISSING:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _evaluate_operator(operator: AssertionOperator, actual: Any, expected: Any) -> bool:
    """Evaluate one operator. ``actual`` is ``_MISSING`` when the field is absent."""
    missing = actual is _MISSING or actual is None

    if operator == AssertionOperator.EXISTS:
        return not missing
    if operator == AssertionOperator.NOT_EXISTS:
        return missing
    if operator == AssertionOperator.IS_EMPTY:
        if missing:
            return True
        if isinstance(actual, (list, dict)):
            return len(actual) == 0
        return _to_text(actual).strip() == ""

    if missing and operator != AssertionOperator.NOT_EQUALS:
        return False

    if operator == AssertionOperator.IS_TRUE:
        return actual is True
    if operator == AssertionOperator.IS_FALSE:
        return actual is False

    if operator in NUMERIC_OPERATORS:
        left = _to_number(actual)
        right = _to_number(expected)
        if left is None or right is None:
            return False
        if operator == AssertionOperator.LESS_THAN:
            return left < right
        if operator == AssertionOperator.LESS_THAN_OR_EQUAL:
            return left <= right
        if operator == AssertionOperator.GREATER_THAN:
            return left > right
        return left >= right

    if operator == AssertionOperator.EQUALS:
        if _is_number(actual) and _is_number(expected):
            return actual == expected
        if actual == expected:
            return True
        return _to_text(actual) == _to_text(expected)
    if operator == AssertionOperator.NOT_EQUALS:
        if missing:
            return expected is not None
        if actual == expected:
            return False
        return _to_text(actual) != _to_text(expected)

    text = _to_text(actual)
    pattern = _to_text(expected)
    if operator == AssertionOperator.CONTAINS:
        if isinstance(actual, list):
            return expected in actual or pattern in [_to_text(v) for v in actual]
        return pattern in text
    if operator == AssertionOperator.STARTS_WITH:
        return text.startswith(pattern)
    if operator == AssertionOperator.ENDS_WITH:
        return text.endswith(pattern)
    if operator == AssertionOperator.MATCHES:
        try:
            return re.search(pattern, text) is not None
        except re.error:
            return False

    return False


def format_assertion(assertion: Assertion) -> str:
    """Render an assertion as ``field[path] operator value``."""
    target = assertion.field
    if assertion.path:
        target = f"{target} {assertion.path}"
    if assertion.operator in UNARY_OPERATORS:
        return f"{target} {assertion.operator.label}"
    return f"{target} {assertion.operator.label} {json.dumps(assertion.value, default=str)}"


def _failure_message(assertion: Assertion, actual: Any) -> str:
    target = f"{assertion.field} {assertion.path}" if assertion.path else assertion.field
    got = json.dumps(None if actual is _MISSING else actual, default=str)
    if assertion.operator in UNARY_OPERATORS:
        return f"{target}: expected {assertion.operator.label}, got {got}"
    expected = json.dumps(assertion.value, default=str)
    return f"{target}: expected {assertion.operator.label} {expected}, got {got}"


def evaluate_assertion(assertion: Assertion, values: dict[str, Any]) -> AssertionResult:
    """
    Evaluate a single assertion against a result's values.

    Args:
        assertion: The assertion to check
        values: Collector result fields

    Returns:
        AssertionResult with the extracted actual value and a failure message
    """
    actual = values.get(assertion.field, _MISSING)
    if assertion.path and actual is not _MISSING:
        extracted = extract_path(actual, assertion.path)
        actual = _MISSING if extracted is None else extracted

    passed = _evaluate_operator(assertion.operator, actual, assertion.value)
    return AssertionResult(
        passed=passed,
        assertion=assertion,
        actual=None if actual is _MISSING else actual,
        message=None if passed else _failure_message(assertion, actual),
    )


def evaluate_assertions(
    assertions: list[Assertion] | None,
    values: dict[str, Any],
) -> AssertionResult | None:
    """
    Evaluate assertions in order and return the first failure.

    Returns:
        The failing AssertionResult, or None when every assertion passes
    """
    for assertion in assertions or []:
        result = evaluate_assertion(assertion, values)
        if not result.passed:
            return result
    return None
