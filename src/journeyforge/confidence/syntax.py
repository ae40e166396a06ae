"""Syntax dimension: does the generated module parse and look like a test?"""

from __future__ import annotations

import ast
import re
from dataclasses import dataclass, field

from journeyforge.confidence.schemas import DimensionScore, SubScore
from journeyforge.constants import Dimension


@dataclass(frozen=True)
class SyntaxIssue:
    line: int
    column: int
    message: str
    code: str


@dataclass(frozen=True)
class StyleWarning:
    line: int
    message: str
    suggestion: str


_DEPRECATED_APIS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"page\.click\("), "page.click()"),
    (re.compile(r"page\.fill\("), "page.fill()"),
    (re.compile(r"page\.type\("), "page.type()"),
    (re.compile(r"page\.query_selector(?:_all)?\("), "page.query_selector()"),
    (re.compile(r"page\.wait_for_timeout\(\s*\d+\s*\)"), "wait_for_timeout with fixed delay"),
    (re.compile(r"page\.wait_for_selector\("), "page.wait_for_selector()"),
    (re.compile(r"element_handle"), "ElementHandle"),
)

_WARNING_PATTERNS: tuple[tuple[re.Pattern[str], str, str], ...] = (
    (
        re.compile(r"#\s*TODO", re.IGNORECASE),
        "TODO comment found",
        "Complete the TODO items",
    ),
    (re.compile(r"\bprint\("), "print() in test code", "Remove debug output"),
    (
        re.compile(r"pytest\.mark\.skip"),
        "Skipped test will not run",
        "Remove the skip marker or explain it",
    ),
    (
        re.compile(r"pytest\.mark\.only"),
        "Focused test marker",
        "Remove the marker before committing",
    ),
    (re.compile(r"\bbreakpoint\(\)"), "breakpoint() left in code", "Remove it"),
    (re.compile(r"\btime\.sleep\("), "Fixed sleep", "Use web-first assertions"),
)

_PLAYWRIGHT_IMPORT_RE = re.compile(r"^\s*(?:from|import)\s+playwright\b", re.MULTILINE)
_TEST_FUNCTION_RE = re.compile(r"^\s*def\s+test_\w+\s*\(", re.MULTILINE)
_PAGE_FIXTURE_RE = re.compile(r"def\s+test_\w+\s*\([^)]*\bpage\b")
_HARD_WAIT_RE = re.compile(r"wait_for_timeout\(\s*\d{4,}")


@dataclass
class SyntaxReport:
    parses: bool
    errors: list[SyntaxIssue] = field(default_factory=lambda: list[SyntaxIssue]())
    warnings: list[StyleWarning] = field(
        default_factory=lambda: list[StyleWarning]()
    )
    type_inference_score: float = 1.0
    has_playwright_import: bool = False
    has_test_functions: bool = False
    uses_page_fixture: bool = False
    api_usage_score: float = 1.0
    deprecated_apis: list[str] = field(default_factory=lambda: list[str]())
    score: float = 0.0

    @property
    def valid(self) -> bool:
        return not self.errors


def _line_of(code: str, index: int) -> int:
    return code.count("\n", 0, index) + 1


def _annotation_coverage(tree: ast.Module) -> float:
    slots = 0
    annotated = 0
    for node in ast.walk(tree):
        if not isinstance(node, ast.FunctionDef | ast.AsyncFunctionDef):
            continue
        args = [*node.args.posonlyargs, *node.args.args, *node.args.kwonlyargs]
        for arg in args:
            if arg.arg in ("self", "cls"):
                continue
            slots += 1
            annotated += arg.annotation is not None
        slots += 1
        annotated += node.returns is not None
    return annotated / slots if slots else 1.0


def _structure_from_ast(tree: ast.Module, report: SyntaxReport) -> None:
    for node in ast.walk(tree):
        if isinstance(node, ast.ImportFrom) and (node.module or "").startswith(
            "playwright"
        ):
            report.has_playwright_import = True
        elif isinstance(node, ast.Import) and any(
            a.name.startswith("playwright") for a in node.names
        ):
            report.has_playwright_import = True
        elif isinstance(node, ast.FunctionDef) and node.name.startswith("test_"):
            report.has_test_functions = True
            if any(a.arg == "page" for a in node.args.args):
                report.uses_page_fixture = True


def _api_usage_score(code: str, deprecated: list[str]) -> float:
    score = 1.0 - 0.15 * len(deprecated)
    if "get_by_" in code or ".locator(" in code:
        score += 0.1
    if "expect(" in code and ").to_" in code:
        score += 0.1
    score -= 0.2 * len(_HARD_WAIT_RE.findall(code))
    return max(0.0, min(1.0, score))


def validate_syntax(code: str) -> SyntaxReport:
    try:
        tree = ast.parse(code)
    except SyntaxError as exc:
        report = SyntaxReport(parses=False, type_inference_score=0.0)
        report.errors.append(
            SyntaxIssue(
                line=exc.lineno or 1,
                column=exc.offset or 1,
                message=exc.msg,
                code="PARSE_ERROR",
            )
        )
        report.has_playwright_import = bool(_PLAYWRIGHT_IMPORT_RE.search(code))
        report.has_test_functions = bool(_TEST_FUNCTION_RE.search(code))
        report.uses_page_fixture = bool(_PAGE_FIXTURE_RE.search(code))
    else:
        report = SyntaxReport(parses=True)
        report.type_inference_score = _annotation_coverage(tree)
        _structure_from_ast(tree, report)

    for pattern, message, suggestion in _WARNING_PATTERNS:
        for m in pattern.finditer(code):
            report.warnings.append(
                StyleWarning(_line_of(code, m.start()), message, suggestion)
            )
    report.deprecated_apis = [
        name for pattern, name in _DEPRECATED_APIS if pattern.search(code)
    ]
    report.api_usage_score = _api_usage_score(code, report.deprecated_apis)
    report.score = _syntax_score(report)
    return report


def _syntax_score(report: SyntaxReport) -> float:
    score = 1.0
    score -= 0.3 * len(report.errors)
    score -= 0.05 * len(report.warnings)
    if not report.parses:
        score -= 0.4
    score *= 0.7 + 0.3 * report.type_inference_score
    if not report.has_playwright_import:
        score -= 0.2
    if not report.has_test_functions:
        score -= 0.3
    if not report.uses_page_fixture:
        score -= 0.1
    score *= 0.7 + 0.3 * report.api_usage_score
    return max(0.0, min(1.0, score))


def syntax_dimension(report: SyntaxReport, weight: float) -> DimensionScore:
    reasons: list[str] = []
    if not report.parses:
        reasons.append(f"does not parse: {report.errors[0].message}")
    if report.deprecated_apis:
        reasons.append(f"deprecated APIs: {', '.join(report.deprecated_apis)}")
    if not report.has_test_functions:
        reasons.append("no test functions")
    if report.warnings:
        reasons.append(f"{len(report.warnings)} warnings")
    return DimensionScore(
        dimension=Dimension.SYNTAX,
        score=report.score,
        weight=weight,
        reasoning="; ".join(reasons) or "parses cleanly",
        sub_scores=[
            SubScore(name="Parses", score=1.0 if report.parses else 0.0),
            SubScore(
                name="Type inference",
                score=report.type_inference_score,
                details=f"annotation coverage {report.type_inference_score:.0%}",
            ),
            SubScore(name="Playwright API usage", score=report.api_usage_score),
            SubScore(
                name="Test structure",
                score=1.0 if report.has_test_functions else 0.3,
            ),
        ],
    )
