"""Pattern dimension: how much of the code is made of known constructs."""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Literal

from journeyforge.confidence.schemas import DimensionScore, SubScore
from journeyforge.constants import Dimension
from journeyforge.llkb.store import Lesson
from journeyforge.mapping.glossary import Glossary

type PatternSource = Literal["builtin", "glossary", "llkb"]
type PatternCategory = Literal[
    "navigation",
    "interaction",
    "assertion",
    "wait",
    "form",
    "data",
    "module",
    "utility",
]
type RiskLevel = Literal["low", "medium", "high"]


@dataclass(frozen=True)
class PatternDefinition:
    id: str
    name: str
    category: PatternCategory
    regexes: tuple[str, ...]
    confidence: float
    source: PatternSource = "builtin"

    def compiled(self) -> list[re.Pattern[str]]:
        return [re.compile(r, re.MULTILINE) for r in self.regexes]


def _builtin(
    id: str, name: str, category: PatternCategory, confidence: float, *regexes: str
) -> PatternDefinition:
    return PatternDefinition(id, name, category, regexes, confidence)


BUILTIN_PATTERNS: tuple[PatternDefinition, ...] = (
    _builtin("nav-goto", "Page navigation", "navigation", 0.95, r"page\.goto\s*\("),
    _builtin("nav-reload", "Page reload", "navigation", 0.95, r"page\.reload\s*\("),
    _builtin(
        "nav-history",
        "History navigation",
        "navigation",
        0.95,
        r"page\.go_back\s*\(",
        r"page\.go_forward\s*\(",
    ),
    _builtin(
        "wait-url", "Wait for URL", "navigation", 0.9, r"page\.wait_for_url\s*\("
    ),
    _builtin("click-locator", "Locator click", "interaction", 0.9, r"\)\.click\s*\("),
    _builtin("fill-locator", "Locator fill", "interaction", 0.9, r"\)\.fill\s*\("),
    _builtin(
        "type-locator",
        "Sequential typing",
        "interaction",
        0.85,
        r"\.press_sequentially\s*\(",
    ),
    _builtin(
        "select-option", "Select option", "interaction", 0.9, r"\.select_option\s*\("
    ),
    _builtin(
        "check-toggle",
        "Checkbox toggle",
        "interaction",
        0.9,
        r"\)\.check\s*\(",
        r"\)\.uncheck\s*\(",
        r"\.set_checked\s*\(",
    ),
    _builtin("hover", "Hover", "interaction", 0.9, r"\)\.hover\s*\("),
    _builtin(
        "keyboard",
        "Keyboard action",
        "interaction",
        0.85,
        r"\.press\s*\(\s*[\"']",
        r"keyboard\.press\s*\(",
    ),
    _builtin(
        "expect-visible",
        "Visibility assertion",
        "assertion",
        0.95,
        r"expect\(.+\)\.to_be_visible",
        r"expect\(.+\)\.to_be_hidden",
        r"expect\(.+\)\.to_be_attached",
    ),
    _builtin(
        "expect-text",
        "Text assertion",
        "assertion",
        0.9,
        r"expect\(.+\)\.to_have_text",
        r"expect\(.+\)\.to_contain_text",
    ),
    _builtin(
        "expect-value", "Value assertion", "assertion", 0.9, r"expect\(.+\)\.to_have_value"
    ),
    _builtin(
        "expect-url", "URL assertion", "assertion", 0.95, r"expect\(page\)\.to_have_url"
    ),
    _builtin(
        "expect-title",
        "Title assertion",
        "assertion",
        0.95,
        r"expect\(page\)\.to_have_title",
    ),
    _builtin(
        "expect-count", "Count assertion", "assertion", 0.9, r"expect\(.+\)\.to_have_count"
    ),
    _builtin(
        "expect-enabled",
        "Enabled state assertion",
        "assertion",
        0.9,
        r"expect\(.+\)\.to_be_enabled",
        r"expect\(.+\)\.to_be_disabled",
    ),
    _builtin(
        "expect-checked",
        "Checked state assertion",
        "assertion",
        0.9,
        r"expect\(.+\)\.to_be_checked",
    ),
    _builtin("wait-locator", "Locator wait", "wait", 0.85, r"\)\.wait_for\s*\("),
    _builtin(
        "wait-load-state", "Wait for load state", "wait", 0.9, r"page\.wait_for_load_state\s*\("
    ),
    _builtin(
        "wait-response",
        "Wait for response",
        "wait",
        0.9,
        r"page\.expect_response\s*\(",
        r"page\.expect_request\s*\(",
    ),
    _builtin(
        "form-submit",
        "Form submit",
        "form",
        0.85,
        r"get_by_role\(\s*[\"']button[\"'].*(?i:submit)",
    ),
    _builtin(
        "table-access",
        "Table access",
        "data",
        0.85,
        r"get_by_role\(\s*[\"'](?:row|cell)[\"']",
    ),
    _builtin("screenshot", "Screenshot", "utility", 0.95, r"page\.screenshot\s*\("),
    _builtin(
        "blocked-step", "Blocked step marker", "utility", 0.9, r"pytest\.fail\(\s*\"BLOCKED"
    ),
)

_HIGH_RISK = frozenset({"evaluate", "evaluate_handle", "add_script_tag", "set_content"})
_MEDIUM_RISK = frozenset({"wait_for_timeout", "wait_for_function", "route", "unroute"})

_ACTION_SITES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"page\.(\w+)\s*\("), "page method"),
    (re.compile(r"(?:locator|get_by_\w+)\([^)]*\)\.(\w+)\s*\("), "locator method"),
    (re.compile(r"expect\((?:[^()]|\([^()]*\))*\)\.(\w+)"), "assertion"),
)
_LOCATOR_FACTORIES = frozenset({"locator", "frame_locator"})


@dataclass(frozen=True)
class MatchedPattern:
    pattern_id: str
    name: str
    category: PatternCategory
    confidence: float
    source: PatternSource
    line: int


@dataclass(frozen=True)
class UnmatchedElement:
    element: str
    line: int
    risk: RiskLevel
    suggested_patterns: list[str] = field(default_factory=lambda: list[str]())


@dataclass
class PatternMatchResult:
    score: float
    matched: list[MatchedPattern]
    unmatched: list[UnmatchedElement]
    novelty_score: float
    consistency_score: float


def risk_level(method: str) -> RiskLevel:
    if method in _HIGH_RISK:
        return "high"
    if method in _MEDIUM_RISK:
        return "medium"
    return "low"


def patterns_from_glossary(glossary: Glossary) -> list[PatternDefinition]:
    """Module calls and test-id aliases the glossary declares are known-good."""
    patterns = [
        PatternDefinition(
            id=f"glossary-module-{m.module}-{m.method}",
            name=f"Module call {m.module}.{m.method}",
            category="module",
            regexes=(rf"\b{re.escape(m.module)}\.{re.escape(m.method)}\s*\(",),
            confidence=0.9,
            source="glossary",
        )
        for m in glossary.module_methods
    ]
    patterns.extend(
        PatternDefinition(
            id=f"glossary-testid-{alias.testid}",
            name=f"Aliased test id {alias.testid}",
            category="interaction",
            regexes=(rf"get_by_test_id\(\s*[\"']{re.escape(alias.testid)}[\"']",),
            confidence=0.9,
            source="glossary",
        )
        for alias in glossary.label_aliases
        if alias.testid
    )
    return patterns


def patterns_from_lessons(lessons: Iterable[Lesson]) -> list[PatternDefinition]:
    """Each lesson's replacement code becomes a literal pattern."""
    patterns: list[PatternDefinition] = []
    for lesson in lessons:
        snippet = lesson.fix.replacement.strip().splitlines()
        if not snippet or not snippet[0].strip():
            continue
        patterns.append(
            PatternDefinition(
                id=f"llkb-{lesson.id}",
                name=f"Learned {lesson.type.value}: {lesson.pattern}",
                category="utility",
                regexes=(re.escape(snippet[0].strip()),),
                confidence=lesson.confidence,
                source="llkb",
            )
        )
    return patterns


def _line_of(code: str, index: int) -> int:
    return code.count("\n", 0, index) + 1


def _find_unmatched(
    code: str, matched: list[MatchedPattern], library: list[PatternDefinition]
) -> list[UnmatchedElement]:
    covered = {m.line for m in matched}
    seen: set[str] = set()
    unmatched: list[UnmatchedElement] = []
    for regex, kind in _ACTION_SITES:
        for m in regex.finditer(code):
            method = m.group(1)
            line = _line_of(code, m.start())
            element = f"{kind}: {method}"
            if (
                line in covered
                or element in seen
                or method in _LOCATOR_FACTORIES
                or method.startswith("get_by_")
            ):
                continue
            seen.add(element)
            unmatched.append(
                UnmatchedElement(
                    element=element,
                    line=line,
                    risk=risk_level(method),
                    suggested_patterns=[
                        p.name
                        for p in library
                        if method.lower() in " ".join(p.regexes).lower()
                    ][:3],
                )
            )
    return unmatched


def _novelty(matched: list[MatchedPattern]) -> float:
    """Higher when matches come from project knowledge, not just builtins."""
    if not matched:
        return 0.5
    learned = sum(1 for m in matched if m.source != "builtin")
    return 0.5 + 0.5 * learned / len(matched)


def _consistency(matched: list[MatchedPattern]) -> float:
    if len(matched) < 2:
        return 1.0
    ordered = sorted(matched, key=lambda m: m.line)
    transitions = sum(
        1 for a, b in zip(ordered, ordered[1:], strict=False) if a.category != b.category
    )
    return max(0.6, 1.0 - 0.4 * transitions / (len(ordered) - 1))


def match_patterns(
    code: str,
    custom: Iterable[PatternDefinition] = (),
    llkb: Iterable[PatternDefinition] = (),
    include_builtins: bool = True,
) -> PatternMatchResult:
    library = [
        *(BUILTIN_PATTERNS if include_builtins else ()),
        *custom,
        *llkb,
    ]
    matched: list[MatchedPattern] = []
    seen: set[tuple[str, int]] = set()
    for pattern in library:
        for regex in pattern.compiled():
            for m in regex.finditer(code):
                line = _line_of(code, m.start())
                if (pattern.id, line) in seen:
                    continue
                seen.add((pattern.id, line))
                matched.append(
                    MatchedPattern(
                        pattern_id=pattern.id,
                        name=pattern.name,
                        category=pattern.category,
                        confidence=pattern.confidence,
                        source=pattern.source,
                        line=line,
                    )
                )

    unmatched = _find_unmatched(code, matched, library)
    novelty = _novelty(matched)
    consistency = _consistency(matched)

    avg = sum(m.confidence for m in matched) / len(matched) if matched else 0.5
    high = sum(1 for u in unmatched if u.risk == "high")
    medium = sum(1 for u in unmatched if u.risk == "medium")
    risk_penalty = 0.15 * high + 0.05 * medium
    score = 0.4 * avg + 0.2 * novelty + 0.2 * consistency + 0.2 * (1 - risk_penalty)
    if len(matched) < 3:
        score *= 0.8
    return PatternMatchResult(
        score=max(0.0, min(1.0, score)),
        matched=matched,
        unmatched=unmatched,
        novelty_score=novelty,
        consistency_score=consistency,
    )


def pattern_dimension(result: PatternMatchResult, weight: float) -> DimensionScore:
    count = len(result.matched)
    reasons = [
        "no recognized patterns" if not count else f"{count} patterns matched"
    ]
    llkb_count = sum(1 for m in result.matched if m.source == "llkb")
    if llkb_count:
        reasons.append(f"{llkb_count} learned patterns used")
    high = [u for u in result.unmatched if u.risk == "high"]
    if high:
        reasons.append(f"{len(high)} high-risk unmatched constructs")
    if result.consistency_score < 0.7:
        reasons.append("inconsistent pattern usage")
    return DimensionScore(
        dimension=Dimension.PATTERN,
        score=result.score,
        weight=weight,
        reasoning="; ".join(reasons),
        sub_scores=[
            SubScore(name="Coverage", score=min(1.0, count / 10)),
            SubScore(name="Novelty", score=result.novelty_score),
            SubScore(name="Consistency", score=result.consistency_score),
            SubScore(
                name="Unmatched risk",
                score=max(0.0, 1.0 - 0.2 * len(result.unmatched)),
                details=f"{len(result.unmatched)} unmatched constructs",
            ),
        ],
    )
