"""
Tests for assertion evaluation.
"""

import pytest

from pulsecheck.assertions import (
    Assertion,
    AssertionOperator,
    evaluate_assertion,
    evaluate_assertions,
    extract_path,
    format_assertion,
)


def _check(field: str, operator: str, value: object = None, path: str | None = None) -> Assertion:
    return Assertion(field=field, operator=AssertionOperator(operator), value=value, path=path)


RESULT = {
    "status_code": 200,
    "response_time_ms": 120.5,
    "success": True,
    "timed_out": False,
    "status_text": "OK",
    "values": ["93.184.216.34", "93.184.216.35"],
    "stderr": "",
    "body": '{"data": {"items": [{"id": "abc"}, {"id": "def"}]}, "healthy": true}',
}


class TestExtractPath:
    """Tests for JSON path extraction."""

    def test_dollar_notation(self) -> None:
        """Test $.a.b[0] paths walk dicts and lists."""
        assert extract_path({"a": {"b": [{"c": 1}]}}, "$.a.b[0].c") == 1

    def test_dot_notation(self) -> None:
        """Test a.b.0 paths are accepted."""
        assert extract_path({"a": {"b": ["x", "y"]}}, "a.b.1") == "y"

    def test_json_string(self) -> None:
        """Test string values are parsed as JSON first."""
        assert extract_path(RESULT["body"], "$.data.items[1].id") == "def"

    def test_missing(self) -> None:
        """Test missing steps give None."""
        assert extract_path({"a": {}}, "$.a.b.c") is None
        assert extract_path({"a": [1]}, "$.a[5]") is None
        assert extract_path("not json", "$.a") is None


class TestOperators:
    """Tests for individual operators."""

    @pytest.mark.parametrize(
        ("field", "operator", "value"),
        [
            ("status_code", "equals", 200),
            ("status_code", "equals", "200"),
            ("status_code", "not_equals", 500),
            ("status_text", "contains", "O"),
            ("status_text", "starts_with", "O"),
            ("status_text", "ends_with", "K"),
            ("status_text", "matches", "^O.$"),
            ("values", "contains", "93.184.216.34"),
            ("stderr", "is_empty", None),
            ("success", "exists", None),
            ("missing", "not_exists", None),
            ("success", "is_true", None),
            ("timed_out", "is_false", None),
            ("response_time_ms", "less_than", 500),
            ("response_time_ms", "less_than_or_equal", 120.5),
            ("status_code", "greater_than", "199"),
            ("status_code", "greater_than_or_equal", 200),
        ],
    )
    def test_passing(self, field: str, operator: str, value: object) -> None:
        """Test operators that should pass against the sample result."""
        assert evaluate_assertion(_check(field, operator, value), RESULT).passed is True

    @pytest.mark.parametrize(
        ("field", "operator", "value"),
        [
            ("status_code", "equals", 500),
            ("status_code", "not_equals", 200),
            ("status_text", "contains", "fail"),
            ("status_text", "matches", "[invalid"),
            ("values", "is_empty", None),
            ("missing", "exists", None),
            ("timed_out", "is_true", None),
            ("response_time_ms", "greater_than", 500),
            ("status_text", "less_than", 10),
            ("missing", "equals", "x"),
            ("missing", "less_than", 10),
        ],
    )
    def test_failing(self, field: str, operator: str, value: object) -> None:
        """Test operators that should fail against the sample result."""
        assert evaluate_assertion(_check(field, operator, value), RESULT).passed is False

    def test_missing_field_not_equals(self) -> None:
        """Test an absent field is not equal to a concrete value."""
        assert evaluate_assertion(_check("missing", "not_equals", "x"), RESULT).passed is True

    def test_missing_field_is_empty(self) -> None:
        """Test an absent field counts as empty."""
        assert evaluate_assertion(_check("missing", "is_empty"), RESULT).passed is True

    def test_path_assertion(self) -> None:
        """Test assertions reach into JSON bodies."""
        result = evaluate_assertion(_check("body", "equals", "abc", path="$.data.items[0].id"), RESULT)
        assert result.passed is True
        assert result.actual == "abc"

    def test_path_boolean(self) -> None:
        """Test a JSON boolean reached by path works with is_true."""
        assert evaluate_assertion(_check("body", "is_true", path="$.healthy"), RESULT).passed is True


class TestEvaluateAssertions:
    """Tests for evaluating assertion lists."""

    def test_all_pass(self) -> None:
        """Test None is returned when every assertion passes."""
        assertions = [_check("status_code", "equals", 200), _check("success", "is_true")]
        assert evaluate_assertions(assertions, RESULT) is None

    def test_empty(self) -> None:
        """Test no assertions means no failure."""
        assert evaluate_assertions([], RESULT) is None
        assert evaluate_assertions(None, RESULT) is None

    def test_first_failure_wins(self) -> None:
        """Test evaluation stops at the first failing assertion."""
        assertions = [
            _check("status_code", "equals", 200),
            _check("status_code", "equals", 201),
            _check("success", "is_false"),
        ]
        failed = evaluate_assertions(assertions, RESULT)

        assert failed is not None
        assert failed.assertion is assertions[1]
        assert failed.actual == 200
        assert failed.message == "status_code: expected equals 201, got 200"

    def test_unary_message(self) -> None:
        """Test messages for operators without an expected value."""
        failed = evaluate_assertions([_check("missing", "exists")], RESULT)
        assert failed is not None
        assert failed.message == "missing: expected exists, got null"

    def test_format_assertion(self) -> None:
        """Test assertions render readably."""
        assert format_assertion(_check("status_code", "less_than", 300)) == "status_code less than 300"
        assert format_assertion(_check("body", "exists", path="$.id")) == "body $.id exists"
