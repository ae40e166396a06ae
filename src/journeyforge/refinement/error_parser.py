"""Classify and fingerprint failures of generated Playwright tests."""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from pathlib import PurePath

from journeyforge.constants import (
    ERROR_MESSAGE_MAX_CHARS,
    FINGERPRINT_HEX_CHARS,
    ErrorCategory,
    ErrorSeverity,
    FixType,
)
from journeyforge.execution.models import ExecutionResult
from journeyforge.refinement.models import ErrorAnalysis, ErrorLocation


@dataclass(frozen=True)
class _CategoryRule:
    category: ErrorCategory
    severity: ErrorSeverity
    patterns: tuple[re.Pattern[str], ...]


def _rule(
    category: ErrorCategory, severity: ErrorSeverity, *patterns: str
) -> _CategoryRule:
    return _CategoryRule(
        category,
        severity,
        tuple(re.compile(p, re.IGNORECASE) for p in patterns),
    )


# First matching rule wins.
_RULES: tuple[_CategoryRule, ...] = (
    _rule(
        ErrorCategory.SELECTOR_NOT_FOUND,
        ErrorSeverity.MAJOR,
        r"locator\.\w+: Timeout \d+ms exceeded",
        r"waiting for (?:locator|selector|get_by_\w+)",
        r"No element matches selector",
        r"element\(s\) not found",
        r"Element is not attached to the DOM",
        r"Element is outside of the viewport",
        r"strict mode violation",
        r"resolved to \d+ elements?",
    ),
    _rule(
        ErrorCategory.TIMEOUT,
        ErrorSeverity.MAJOR,
        r"Timeout \d+ms exceeded",
        r"wait_for_\w+.*exceeded",
        r"Test timeout of \d+ms exceeded",
        r"Navigation timeout of \d+ms exceeded",
        r"exceeded .*timeout",
        r"TimeoutError",
    ),
    _rule(
        ErrorCategory.ASSERTION_FAILED,
        ErrorSeverity.MAJOR,
        r"AssertionError",
        r"expected to (?:be|have|contain|match|equal)",
        r"Expected.*to (?:be|have|contain|match|equal)",
        r"Actual value:",
        r"^\s*assert\s",
    ),
    _rule(
        ErrorCategory.NAVIGATION_ERROR,
        ErrorSeverity.CRITICAL,
        r"net::ERR_",
        r"Navigation failed",
        r"page\.goto.*failed",
        r"Frame was detached",
        r"Target page.*closed",
        r"browser has disconnected",
        r"Target closed",
    ),
    _rule(
        ErrorCategory.NETWORK_ERROR,
        ErrorSeverity.MAJOR,
        r"ECONNREFUSED",
        r"ENOTFOUND",
        r"ETIMEDOUT",
        r"fetch failed",
        r"Request failed",
        r"Status code: [45]\d{2}",
        r"ConnectionError",
    ),
    _rule(
        ErrorCategory.AUTHENTICATION_ERROR,
        ErrorSeverity.CRITICAL,
        r"401 Unauthorized",
        r"403 Forbidden",
        r"Authentication failed",
        r"Login failed",
        r"Invalid credentials",
        r"Session expired",
        r"Token expired",
    ),
    _rule(
        ErrorCategory.PERMISSION_ERROR,
        ErrorSeverity.CRITICAL,
        r"Permission denied",
        r"Access denied",
        r"not authorized",
        r"insufficient permissions",
    ),
    _rule(
        ErrorCategory.TYPE_ERROR,
        ErrorSeverity.MAJOR,
        r"TypeError:",
        r"AttributeError:",
        r"object has no attribute",
        r"object is not callable",
        r"'NoneType' object",
    ),
    _rule(
        ErrorCategory.SYNTAX_ERROR,
        ErrorSeverity.CRITICAL,
        r"SyntaxError:",
        r"IndentationError:",
        r"invalid syntax",
    ),
    _rule(
        ErrorCategory.RUNTIME_ERROR,
        ErrorSeverity.MAJOR,
        r"NameError:",
        r"KeyError:",
        r"ValueError:",
        r"RuntimeError:",
        r"Error:",
    ),
)

_SELECTOR_RE = re.compile(r"((?:get_by_\w+|locator)\((?:[^()]|\([^()]*\))*\))")
_EXPECTED_RE = re.compile(r"Expected(?: value)?:?\s*(.+?)(?:\n|$)", re.IGNORECASE)
_ACTUAL_RE = re.compile(r"(?:Actual value|Received|Actual):?\s*(.+?)(?:\n|$)", re.IGNORECASE)
_TRACEBACK_FRAME_RE = re.compile(r'File "(?P<file>[^"]+)", line (?P<line>\d+)')
_PYTEST_FRAME_RE = re.compile(
    r"^(?P<file>[^\s:]+\.py):(?P<line>\d+)(?::(?P<column>\d+))?", re.MULTILINE
)
_STACK_RE = re.compile(r"(Traceback \(most recent call last\):.*)", re.DOTALL)
_BOUNDARY_RE = re.compile(
    r"^(?=\s*(?:E\s+)?[\w.]*(?:Error|Exception):)", re.MULTILINE
)
_RELEVANT_RE = re.compile(r"error|failed|timeout|assert", re.IGNORECASE)

_NORMALIZERS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\d+ms"), "Xms"),
    (re.compile(r"\d+ element"), "X element"),
    (re.compile(r"timeout of \d+", re.IGNORECASE), "timeout of X"),
    (re.compile(r"'[^']+'"), "'X'"),
    (re.compile(r'"[^"]+"'), '"X"'),
)


def normalize_message(message: str) -> str:
    """Strip run-specific values so repeats of a failure compare equal."""
    for pattern, replacement in _NORMALIZERS:
        message = pattern.sub(replacement, message)
    return message.lower().strip()[:100]


def fingerprint(
    category: ErrorCategory,
    message: str,
    selector: str | None = None,
    location: ErrorLocation | None = None,
) -> str:
    parts = [
        category.value,
        normalize_message(message),
        selector or "",
        location.file if location else "",
        str(location.line) if location and location.line is not None else "",
    ]
    digest = hashlib.md5("|".join(parts).encode("utf-8")).hexdigest()
    return digest[:FINGERPRINT_HEX_CHARS]


def classify(text: str) -> tuple[ErrorCategory, ErrorSeverity]:
    for rule in _RULES:
        if any(p.search(text) for p in rule.patterns):
            return rule.category, rule.severity
    return ErrorCategory.UNKNOWN, ErrorSeverity.MAJOR


def _extract_location(
    text: str, test_file: str | None, test_name: str | None
) -> ErrorLocation | None:
    frames: list[tuple[str, int, int | None]] = [
        (m.group("file"), int(m.group("line")), None)
        for m in _TRACEBACK_FRAME_RE.finditer(text)
    ]
    frames.extend(
        (
            m.group("file"),
            int(m.group("line")),
            int(m.group("column")) if m.group("column") else None,
        )
        for m in _PYTEST_FRAME_RE.finditer(text)
    )
    if not frames:
        return None
    chosen = frames[0]
    if test_file:
        name = PurePath(test_file).name
        chosen = next(
            (f for f in frames if PurePath(f[0]).name == name), chosen
        )
    file, line, column = chosen
    return ErrorLocation(
        file=test_file or file,
        line=line,
        column=column,
        test_name=test_name,
    )


def parse_error(
    text: str,
    test_file: str | None = None,
    test_name: str | None = None,
) -> ErrorAnalysis:
    """Parse one raw failure into an ``ErrorAnalysis``."""
    category, severity = classify(text)

    first_line = next((ln.strip() for ln in text.splitlines() if ln.strip()), "")
    message = (
        first_line[:ERROR_MESSAGE_MAX_CHARS] + "..."
        if len(first_line) > ERROR_MESSAGE_MAX_CHARS
        else first_line
    )

    selector: str | None = None
    if category == ErrorCategory.SELECTOR_NOT_FOUND:
        m = _SELECTOR_RE.search(text)
        selector = m.group(1) if m else None

    expected: str | None = None
    actual: str | None = None
    if category == ErrorCategory.ASSERTION_FAILED:
        if m := _EXPECTED_RE.search(text):
            expected = m.group(1).strip()
        if m := _ACTUAL_RE.search(text):
            actual = m.group(1).strip()

    stack = _STACK_RE.search(text)
    location = _extract_location(text, test_file, test_name)
    return ErrorAnalysis(
        category=category,
        severity=severity,
        message=message,
        original_error=text,
        location=location,
        selector=selector,
        expected_value=expected,
        actual_value=actual,
        stack_trace=stack.group(1).strip() if stack else None,
        fingerprint=fingerprint(category, message, selector, location),
    )


def dedupe(errors: list[ErrorAnalysis]) -> list[ErrorAnalysis]:
    seen: set[str] = set()
    unique: list[ErrorAnalysis] = []
    for error in errors:
        if error.fingerprint not in seen:
            seen.add(error.fingerprint)
            unique.append(error)
    return unique


def parse_errors(
    output: str,
    test_file: str | None = None,
    test_name: str | None = None,
) -> list[ErrorAnalysis]:
    """Split free-form output at exception lines; one analysis per failure."""
    errors = [
        parse_error(block.strip(), test_file, test_name)
        for block in _BOUNDARY_RE.split(output)
        if len(block.strip()) > 10 and _RELEVANT_RE.search(block)
    ]
    return dedupe(errors)


def errors_from_execution(result: ExecutionResult) -> list[ErrorAnalysis]:
    errors = [
        parse_error(
            "\n".join(p for p in (failure.error, failure.stack) if p),
            test_file=failure.file or None,
            test_name=failure.title,
        )
        for failure in result.failures
    ]
    if not errors and not result.passed:
        errors = parse_errors(result.stderr or result.stdout)
    return dedupe(errors)


# ── Category helpers ─────────────────────────────────────


def is_selector_related(error: ErrorAnalysis) -> bool:
    return error.category == ErrorCategory.SELECTOR_NOT_FOUND and bool(
        error.selector
    )


def is_timing_related(error: ErrorAnalysis) -> bool:
    return error.category == ErrorCategory.TIMEOUT or (
        error.category == ErrorCategory.SELECTOR_NOT_FOUND
        and "timeout" in error.message.lower()
    )


def is_environmental(error: ErrorAnalysis) -> bool:
    """Failures that code changes cannot fix."""
    return error.category in {
        ErrorCategory.NETWORK_ERROR,
        ErrorCategory.AUTHENTICATION_ERROR,
        ErrorCategory.PERMISSION_ERROR,
    }


def is_code_error(error: ErrorAnalysis) -> bool:
    return error.category in {
        ErrorCategory.SYNTAX_ERROR,
        ErrorCategory.TYPE_ERROR,
        ErrorCategory.RUNTIME_ERROR,
    }


_SUGGESTED_FIXES: dict[ErrorCategory, list[FixType]] = {
    ErrorCategory.SELECTOR_NOT_FOUND: [
        FixType.SELECTOR_CHANGE,
        FixType.LOCATOR_STRATEGY_CHANGED,
        FixType.FRAME_CONTEXT_ADDED,
    ],
    ErrorCategory.TIMEOUT: [
        FixType.WAIT_ADDED,
        FixType.TIMEOUT_INCREASED,
        FixType.RETRY_ADDED,
    ],
    ErrorCategory.ASSERTION_FAILED: [
        FixType.ASSERTION_MODIFIED,
        FixType.WAIT_ADDED,
    ],
    ErrorCategory.NAVIGATION_ERROR: [
        FixType.ERROR_HANDLING_ADDED,
        FixType.RETRY_ADDED,
    ],
}


def suggested_fix_types(category: ErrorCategory) -> list[FixType]:
    return list(_SUGGESTED_FIXES.get(category, [FixType.OTHER]))
