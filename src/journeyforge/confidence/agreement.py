"""Agreement dimension: do independently generated candidates agree?

Several candidates are generated for the same journey at different
temperatures; structural features are extracted from each and compared.
High agreement means the model is not guessing.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from itertools import combinations

from journeyforge.confidence.schemas import DimensionScore, SubScore
from journeyforge.constants import SAMPLE_ESTIMATED_TOKENS, Dimension
from journeyforge.llm.client import GenerateOptions, LLMClient, LLMResponse
from journeyforge.observability.cost_tracker import CostTracker

logger = logging.getLogger(__name__)

DEFAULT_TEMPERATURES: tuple[float, ...] = (0.2, 0.5, 0.8)

_TEST_RE = re.compile(r"^\s*(?:async\s+)?def\s+test_\w+", re.MULTILINE)
_STEP_RE = re.compile(r"^\s*#\s*(?:PS|AC)-\d+:", re.MULTILINE)
_ASSERTION_RE = re.compile(r"expect\((?:[^()]|\([^()]*\))*\)\.(?:not_)?(to_\w+)")
_SELECTOR_STRATEGIES: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("testid", re.compile(r"get_by_test_id\(")),
    ("role", re.compile(r"get_by_role\(")),
    ("label", re.compile(r"get_by_label\(")),
    ("placeholder", re.compile(r"get_by_placeholder\(")),
    ("text", re.compile(r"get_by_text\(")),
    ("css", re.compile(r"\.locator\(\s*[\"'](?!xpath=|//)")),
    ("xpath", re.compile(r"\.locator\(\s*[\"'](?:xpath=|//)")),
)
_FLOW_STEPS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("navigate", re.compile(r"\.goto\(")),
    ("click", re.compile(r"\.click\(")),
    ("fill", re.compile(r"\.fill\(|\.press_sequentially\(")),
    ("select", re.compile(r"\.select_option\(")),
    ("wait", re.compile(r"\.wait_for\w*\(|\.expect_response\(")),
    ("assert", re.compile(r"expect\(")),
)


@dataclass(frozen=True)
class CodeStructure:
    test_count: int
    step_count: int
    selectors: frozenset[str]
    assertions: frozenset[str]
    flow: tuple[str, ...]

    @property
    def signature(self) -> tuple[int, int, tuple[str, ...]]:
        return (self.test_count, self.step_count, self.flow)


@dataclass(frozen=True)
class DisagreementArea:
    area: str
    variants: list[str]
    vote_counts: dict[str, int]
    confidence: float


@dataclass
class AgreementReport:
    score: float
    sample_count: int
    structural: float
    selector: float
    flow: float
    assertion: float
    disagreements: list[DisagreementArea] = field(
        default_factory=lambda: list[DisagreementArea]()
    )
    consensus_index: int = 0


def extract_structure(code: str) -> CodeStructure:
    selectors = frozenset(
        name for name, regex in _SELECTOR_STRATEGIES if regex.search(code)
    )
    assertions = frozenset(_ASSERTION_RE.findall(code))

    # Flow is the order in which each kind of action first appears.
    first_seen: list[tuple[int, str]] = []
    for name, regex in _FLOW_STEPS:
        m = regex.search(code)
        if m:
            first_seen.append((m.start(), name))
    flow = tuple(name for _, name in sorted(first_seen))
    return CodeStructure(
        test_count=len(_TEST_RE.findall(code)),
        step_count=len(_STEP_RE.findall(code)),
        selectors=selectors,
        assertions=assertions,
        flow=flow,
    )


def _ratio_agreement(values: list[int]) -> float:
    high = max(values)
    return 1.0 if high == 0 else min(values) / high


def _jaccard(a: frozenset[str], b: frozenset[str]) -> float:
    union = a | b
    return 1.0 if not union else len(a & b) / len(union)


def _pairwise_jaccard(sets: list[frozenset[str]]) -> float:
    pairs = list(combinations(sets, 2))
    return sum(_jaccard(a, b) for a, b in pairs) / len(pairs)


def analyze_agreement(codes: list[str]) -> AgreementReport:
    if len(codes) < 2:
        return AgreementReport(
            score=1.0,
            sample_count=len(codes),
            structural=1.0,
            selector=1.0,
            flow=1.0,
            assertion=1.0,
        )

    structures = [extract_structure(c) for c in codes]
    n = len(structures)
    structural = (
        _ratio_agreement([s.test_count for s in structures])
        + _ratio_agreement([s.step_count for s in structures])
    ) / 2
    selector = _pairwise_jaccard([s.selectors for s in structures])
    assertion = _pairwise_jaccard([s.assertions for s in structures])
    flows = Counter(s.flow for s in structures)
    flow = flows.most_common(1)[0][1] / n

    disagreements: list[DisagreementArea] = []
    selector_votes = Counter(
        ",".join(sorted(s.selectors)) or "none" for s in structures
    )
    if len(selector_votes) > 1:
        disagreements.append(
            DisagreementArea(
                area="Selector Strategies",
                variants=list(selector_votes),
                vote_counts=dict(selector_votes),
                confidence=max(selector_votes.values()) / n,
            )
        )
    if len(flows) > 1:
        disagreements.append(
            DisagreementArea(
                area="Test Flow",
                variants=[" -> ".join(f) or "empty" for f in flows],
                vote_counts={
                    " -> ".join(f) or "empty": c for f, c in flows.items()
                },
                confidence=max(flows.values()) / n,
            )
        )

    signatures = Counter(s.signature for s in structures)
    winner, votes = signatures.most_common(1)[0]
    consensus = (
        next(i for i, s in enumerate(structures) if s.signature == winner)
        if votes > 1
        else 0
    )
    score = 0.3 * structural + 0.3 * selector + 0.2 * flow + 0.2 * assertion
    return AgreementReport(
        score=max(0.0, min(1.0, score)),
        sample_count=n,
        structural=structural,
        selector=selector,
        flow=flow,
        assertion=assertion,
        disagreements=disagreements,
        consensus_index=consensus,
    )


def agreement_dimension(report: AgreementReport, weight: float) -> DimensionScore:
    if report.disagreements:
        areas = ", ".join(d.area for d in report.disagreements)
        reasoning = f"{report.sample_count} samples disagree on {areas}"
    else:
        reasoning = f"{report.sample_count} samples agree"
    return DimensionScore(
        dimension=Dimension.AGREEMENT,
        score=report.score,
        weight=weight,
        reasoning=reasoning,
        sub_scores=[
            SubScore(name="Structure", score=report.structural),
            SubScore(name="Selectors", score=report.selector),
            SubScore(name="Flow", score=report.flow),
            SubScore(name="Assertions", score=report.assertion),
        ],
    )


async def sample_candidates(
    llm: LLMClient,
    prompt: str,
    system_prompt: str,
    n: int = len(DEFAULT_TEMPERATURES),
    temperatures: tuple[float, ...] = DEFAULT_TEMPERATURES,
    cost_tracker: CostTracker | None = None,
) -> list[LLMResponse]:
    """Generate ``n`` candidates concurrently, cycling through temperatures.

    Returns an empty list when the budget cannot cover all ``n`` samples.
    Failed samples are dropped; at least one must succeed.
    """
    if n < 1:
        return []
    if cost_tracker is not None and cost_tracker.would_exceed_limit(
        n * SAMPLE_ESTIMATED_TOKENS
    ):
        logger.warning("event=sampling_skipped reason=budget samples=%d", n)
        return []

    options = [
        GenerateOptions(temperature=temperatures[i % len(temperatures)])
        for i in range(n)
    ]
    results = await asyncio.gather(
        *(llm.generate(prompt, system_prompt, o) for o in options),
        return_exceptions=True,
    )
    responses: list[LLMResponse] = []
    failures: list[BaseException] = []
    for result in results:
        if isinstance(result, BaseException):
            failures.append(result)
            logger.warning("event=sample_failed error=%s", result)
            continue
        responses.append(result)
        if cost_tracker is not None:
            cost_tracker.track_usage(result.token_usage, result.model)
    if not responses and failures:
        raise failures[0]
    logger.info(
        "event=samples_generated requested=%d succeeded=%d", n, len(responses)
    )
    return responses


SAMPLING_SYSTEM_PROMPT = """\
You write end-to-end tests with pytest-playwright (sync API).
Given a user journey, write one complete Python test module:
import from playwright.sync_api, define test_* functions that take the
`page` fixture, prefer get_by_test_id / get_by_role / get_by_label
locators and web-first expect(...) assertions. Mark each step with a
comment of the form `# PS-<n>: <step text>`.
Return only the code, no explanation."""

_CODE_FENCE_RE = re.compile(r"```(?:python|py)?\s*\n(.*?)```", re.DOTALL)


def build_sampling_prompt(journey_text: str) -> str:
    return f"Write the test module for this journey:\n\n{journey_text.strip()}\n"


def extract_code(content: str) -> str:
    """Code inside the first fenced block, or the whole reply."""
    m = _CODE_FENCE_RE.search(content)
    return (m.group(1) if m else content).strip() + "\n"
