"""Tests for failure classification and fingerprinting."""

from __future__ import annotations

import pytest

from journeyforge.constants import ErrorCategory, ErrorSeverity, FixType
from journeyforge.execution.models import ExecutionResult, TestFailure
from journeyforge.refinement.error_parser import (
    classify,
    errors_from_execution,
    fingerprint,
    is_code_error,
    is_environmental,
    is_selector_related,
    is_timing_related,
    normalize_message,
    parse_error,
    parse_errors,
    suggested_fix_types,
)

_SELECTOR_FAILURE = """\
playwright._impl._errors.TimeoutError: Locator.click: Timeout 30000ms exceeded.
Call log:
  - waiting for get_by_role("button", name="Sign in")
tests/e2e/test_jrn_0001.py:14: TimeoutError
"""


class TestClassify:
    @pytest.mark.parametrize(
        ("text", "category"),
        [
            ("waiting for get_by_test_id(\"x\")", ErrorCategory.SELECTOR_NOT_FOUND),
            ("strict mode violation: resolved to 2 elements", ErrorCategory.SELECTOR_NOT_FOUND),
            ("Test timeout of 30000ms exceeded", ErrorCategory.TIMEOUT),
            ("AssertionError: Locator expected to be visible", ErrorCategory.ASSERTION_FAILED),
            ("net::ERR_CONNECTION_REFUSED at http://localhost", ErrorCategory.NAVIGATION_ERROR),
            ("fetch failed ECONNREFUSED", ErrorCategory.NETWORK_ERROR),
            ("Login failed: invalid credentials", ErrorCategory.AUTHENTICATION_ERROR),
            ("Permission denied for /admin", ErrorCategory.PERMISSION_ERROR),
            ("AttributeError: 'Page' object has no attribute 'clik'", ErrorCategory.TYPE_ERROR),
            ("SyntaxError: invalid syntax", ErrorCategory.SYNTAX_ERROR),
            ("KeyError: 'email'", ErrorCategory.RUNTIME_ERROR),
            ("something odd happened", ErrorCategory.UNKNOWN),
        ],
    )
    def test_category(self, text: str, category: ErrorCategory) -> None:
        """The first matching rule decides the category."""
        assert classify(text)[0] == category

    def test_navigation_is_critical(self) -> None:
        assert classify("net::ERR_NAME_NOT_RESOLVED")[1] == ErrorSeverity.CRITICAL


class TestFingerprint:
    def test_normalize_strips_run_specific_values(self) -> None:
        assert normalize_message("Timeout 5000ms exceeded for 'Save'") == (
            "timeout xms exceeded for 'x'"
        )

    def test_same_failure_same_fingerprint(self) -> None:
        """Durations and quoted values don't change the fingerprint."""
        a = fingerprint(ErrorCategory.TIMEOUT, "Timeout 5000ms exceeded 'a'")
        b = fingerprint(ErrorCategory.TIMEOUT, "Timeout 9000ms exceeded 'b'")
        assert a == b
        assert len(a) == 12

    def test_category_changes_fingerprint(self) -> None:
        assert fingerprint(ErrorCategory.TIMEOUT, "x") != fingerprint(
            ErrorCategory.UNKNOWN, "x"
        )


class TestParseError:
    def test_selector_failure(self) -> None:
        """Selector failures carry the selector and the test file location."""
        error = parse_error(
            _SELECTOR_FAILURE, test_file="tests/e2e/test_jrn_0001.py"
        )
        assert error.category == ErrorCategory.SELECTOR_NOT_FOUND
        assert error.selector == 'get_by_role("button", name="Sign in")'
        assert error.location is not None
        assert error.location.line == 14
        assert is_selector_related(error)
        assert is_timing_related(error)

    def test_assertion_values(self) -> None:
        error = parse_error(
            "AssertionError: Locator text mismatch\n"
            "Expected: 'Welcome'\n"
            "Received: 'Sign in'\n"
        )
        assert error.category == ErrorCategory.ASSERTION_FAILED
        assert error.expected_value == "'Welcome'"
        assert error.actual_value == "'Sign in'"

    def test_long_message_truncated(self) -> None:
        error = parse_error("Error: " + "x" * 500)
        assert error.message.endswith("...")
        assert len(error.message) == 203

    def test_environmental(self) -> None:
        assert is_environmental(parse_error("ECONNREFUSED 127.0.0.1:3000"))

    def test_code_error(self) -> None:
        assert is_code_error(parse_error("NameError: name 'pg' is not defined"))
        assert not is_code_error(parse_error("ECONNREFUSED 127.0.0.1:3000"))


class TestParseErrors:
    def test_splits_on_exception_lines(self) -> None:
        """Each exception line starts a new failure block."""
        output = (
            "E   AssertionError: expected to be visible\n"
            "E   KeyError: 'missing thing here'\n"
        )
        errors = parse_errors(output)
        assert [e.category for e in errors] == [
            ErrorCategory.ASSERTION_FAILED,
            ErrorCategory.RUNTIME_ERROR,
        ]

    def test_duplicates_are_removed(self) -> None:
        output = "ValueError: bad value 1\nValueError: bad value 1\n"
        assert len(parse_errors(output)) == 1


class TestFromExecution:
    def test_structured_failures(self) -> None:
        result = ExecutionResult(
            status="failed",
            exit_code=1,
            duration_ms=10.0,
            failures=[
                TestFailure(
                    title="test_jrn_0001",
                    file="tests/e2e/test_jrn_0001.py",
                    error="Test timeout of 30000ms exceeded",
                )
            ],
        )
        errors = errors_from_execution(result)
        assert len(errors) == 1
        assert errors[0].category == ErrorCategory.TIMEOUT
        assert errors[0].location is None

    def test_falls_back_to_output(self) -> None:
        """Without structured failures the raw output is parsed."""
        result = ExecutionResult(
            status="error",
            exit_code=4,
            duration_ms=1.0,
            stderr="SyntaxError: invalid syntax in generated module",
        )
        errors = errors_from_execution(result)
        assert errors[0].category == ErrorCategory.SYNTAX_ERROR

    def test_passed_run_has_no_errors(self) -> None:
        result = ExecutionResult(status="passed", exit_code=0, duration_ms=1.0)
        assert errors_from_execution(result) == []


def test_suggested_fix_types() -> None:
    assert suggested_fix_types(ErrorCategory.TIMEOUT)[0] == FixType.WAIT_ADDED
    assert suggested_fix_types(ErrorCategory.UNKNOWN) == [FixType.OTHER]
