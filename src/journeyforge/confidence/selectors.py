"""Selector dimension: how robust are the locators a test relies on."""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Literal

from journeyforge.confidence.schemas import DimensionScore, SubScore
from journeyforge.constants import Dimension

type SelectorStrategy = Literal[
    "testid",
    "role",
    "label",
    "placeholder",
    "text",
    "title",
    "alt",
    "css",
    "xpath",
    "nth",
    "chain",
]
type Priority = Literal["high", "medium", "low"]


@dataclass(frozen=True)
class _StrategyRule:
    strategy: SelectorStrategy
    regex: re.Pattern[str]
    stability: float


def _rule(
    strategy: SelectorStrategy,
    pattern: str,
    stability: float,
) -> _StrategyRule:
    return _StrategyRule(strategy, re.compile(pattern), stability)


_Q = r"[\"']"
_RULES: tuple[_StrategyRule, ...] = (
    _rule("testid", rf"get_by_test_id\(\s*{_Q}([^\"']+){_Q}", 1.0),
    _rule("testid", rf"locator\(\s*{_Q}(\[data-testid=[^\]]+\]){_Q}", 0.95),
    _rule("role", rf"get_by_role\(\s*{_Q}([^\"']+){_Q}[^)]*\)", 0.9),
    _rule("label", rf"get_by_label\(\s*{_Q}([^\"']+){_Q}", 0.85),
    _rule("placeholder", rf"get_by_placeholder\(\s*{_Q}([^\"']+){_Q}", 0.75),
    _rule("text", rf"get_by_text\(\s*{_Q}([^\"']+){_Q}", 0.65),
    _rule("text", r"get_by_text\(\s*re\.compile\(([^)]+)\)", 0.6),
    _rule("title", rf"get_by_title\(\s*{_Q}([^\"']+){_Q}", 0.7),
    _rule("alt", rf"get_by_alt_text\(\s*{_Q}([^\"']+){_Q}", 0.75),
    _rule(
        "css",
        rf"locator\(\s*{_Q}(?!xpath=|//|\[data-testid=)([^\"']+){_Q}",
        0.5,
    ),
    _rule("xpath", rf"locator\(\s*{_Q}((?:xpath=|//)[^\"']+){_Q}", 0.3),
    _rule("nth", r"\.nth\(\s*(\d+)\s*\)", 0.4),
    _rule("nth", r"\.(first|last)\b(?!\s*\()", 0.45),
)

_ACCESSIBLE = frozenset({"role", "label", "alt", "title"})

_CHAIN_RE = re.compile(
    r"(?:locator|get_by_\w+)\([^)]*\)\s*\.\s*(?:locator|get_by_\w+)\("
)

_FRAGILITY: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\[class[*^$~|]?="), "class attribute selector"),
    (re.compile(r"\[id[*^$~|]?="), "id attribute selector"),
    (re.compile(r":nth-child\("), "nth-child pseudo-class"),
    (re.compile(r":nth-of-type\("), "nth-of-type pseudo-class"),
    (re.compile(r"\s>\s"), "direct child combinator"),
    (re.compile(r"[\w\]\)]\s+[.#\w\[]"), "descendant combinator"),
    (re.compile(r"\[style"), "style attribute selector"),
    (re.compile(r"\.btn-\w+"), "framework button class"),
    (re.compile(r"\.col-\w+"), "grid layout class"),
    (re.compile(r"#[a-z]+-?\d{3,}|[a-f0-9]{8,}"), "generated identifier"),
)
_COMBINATOR_RE = re.compile(r"\s*[>+~]\s*|\s+")


@dataclass(frozen=True)
class SelectorUsage:
    strategy: SelectorStrategy
    value: str
    line: int
    stability: float
    fragile: bool
    issues: list[str] = field(default_factory=lambda: list[str]())


@dataclass(frozen=True)
class SelectorRecommendation:
    line: int
    current: str
    suggested_strategy: SelectorStrategy
    reason: str
    priority: Priority


@dataclass
class SelectorReport:
    score: float
    selectors: list[SelectorUsage]
    strategy_counts: dict[str, int]
    testid_ratio: float
    accessibility: float
    fragile_count: int
    recommendations: list[SelectorRecommendation]

    @property
    def average_stability(self) -> float:
        if not self.selectors:
            return 0.5
        return sum(s.stability for s in self.selectors) / len(self.selectors)


def _line_of(code: str, index: int) -> int:
    return code.count("\n", 0, index) + 1


def fragility_issues(strategy: SelectorStrategy, value: str) -> list[str]:
    """Reasons a raw css/xpath selector is likely to break."""
    if strategy not in ("css", "xpath"):
        return []
    issues = [label for regex, label in _FRAGILITY if regex.search(value)]
    if len(value) > 100:
        issues.append("overly long selector")
    if len(_COMBINATOR_RE.findall(value.strip())) > 3:
        issues.append("deeply nested selector")
    return issues


def _extract(code: str) -> list[SelectorUsage]:
    usages: list[SelectorUsage] = []
    seen: set[tuple[int, int]] = set()
    for rule in _RULES:
        for m in rule.regex.finditer(code):
            span = (m.start(), m.end())
            # A more specific rule earlier in the table already claimed it.
            if any(s <= span[0] < e for s, e in seen):
                continue
            seen.add(span)
            value = m.group(1)
            issues = fragility_issues(rule.strategy, value)
            stability = rule.stability * max(0.0, 1.0 - 0.1 * len(issues))
            usages.append(
                SelectorUsage(
                    strategy=rule.strategy,
                    value=value,
                    line=_line_of(code, m.start()),
                    stability=stability,
                    fragile=bool(issues),
                    issues=issues,
                )
            )
    for m in _CHAIN_RE.finditer(code):
        usages.append(
            SelectorUsage(
                strategy="chain",
                value=m.group(0),
                line=_line_of(code, m.start()),
                stability=0.55,
                fragile=False,
            )
        )
    usages.sort(key=lambda u: u.line)
    return usages


_PRIORITY_ORDER: dict[Priority, int] = {"high": 0, "medium": 1, "low": 2}


def _recommend(usages: list[SelectorUsage]) -> list[SelectorRecommendation]:
    recs: list[SelectorRecommendation] = []
    for u in usages:
        if u.fragile:
            recs.append(
                SelectorRecommendation(
                    u.line,
                    u.value,
                    "testid",
                    f"fragile selector ({', '.join(u.issues)})",
                    "high",
                )
            )
        elif u.strategy in ("css", "xpath"):
            recs.append(
                SelectorRecommendation(
                    u.line,
                    u.value,
                    "testid",
                    f"{u.strategy} selectors break when markup changes",
                    "high",
                )
            )
        elif u.strategy == "nth":
            recs.append(
                SelectorRecommendation(
                    u.line,
                    u.value,
                    "role",
                    "positional selection depends on element order",
                    "medium",
                )
            )
        elif u.strategy == "text":
            recs.append(
                SelectorRecommendation(
                    u.line,
                    u.value,
                    "role",
                    "text changes with copy and localization",
                    "low",
                )
            )
    recs.sort(key=lambda r: _PRIORITY_ORDER[r.priority])
    return recs[:10]


def analyze_selectors(code: str) -> SelectorReport:
    usages = _extract(code)
    counts = Counter(u.strategy for u in usages)
    total = len(usages)
    fragile = sum(1 for u in usages if u.fragile)
    recommendations = _recommend(usages)
    if not total:
        return SelectorReport(0.5, [], {}, 0.0, 0.5, 0, [])

    stability = sum(u.stability for u in usages) / total
    accessibility = sum(1 for u in usages if u.strategy in _ACCESSIBLE) / total
    testid_ratio = counts["testid"] / total
    fragility = 1.0 - fragile / total
    score = (
        0.4 * stability
        + 0.2 * accessibility
        + 0.25 * testid_ratio
        + 0.15 * fragility
    )
    brittle = counts["css"] + counts["xpath"] + counts["nth"]
    if brittle / total > 0.5:
        score *= 0.8
    return SelectorReport(
        score=max(0.0, min(1.0, score)),
        selectors=usages,
        strategy_counts=dict(counts),
        testid_ratio=testid_ratio,
        accessibility=accessibility,
        fragile_count=fragile,
        recommendations=recommendations,
    )


def selector_dimension(report: SelectorReport, weight: float) -> DimensionScore:
    total = len(report.selectors)
    if not total:
        reasoning = "no selectors found"
    else:
        dominant = max(report.strategy_counts.items(), key=lambda kv: kv[1])[0]
        reasoning = f"{total} selectors, mostly {dominant}"
        if report.fragile_count:
            reasoning += f"; {report.fragile_count} fragile"
    return DimensionScore(
        dimension=Dimension.SELECTOR,
        score=report.score,
        weight=weight,
        reasoning=reasoning,
        sub_scores=[
            SubScore(name="Stability", score=report.average_stability),
            SubScore(
                name="Accessibility",
                score=report.accessibility,
                details=f"a11y {report.accessibility:.0%}",
            ),
            SubScore(
                name="Test id usage",
                score=report.testid_ratio,
                details=f"{report.testid_ratio:.0%} of selectors",
            ),
            SubScore(
                name="Fragility",
                score=1.0 - report.fragile_count / total if total else 1.0,
                details=f"{report.fragile_count} fragile selectors",
            ),
        ],
    )
