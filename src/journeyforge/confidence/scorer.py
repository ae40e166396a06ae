"""Combine per-dimension scores into an overall confidence and a verdict."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from statistics import median

from journeyforge.config import Settings
from journeyforge.confidence.agreement import agreement_dimension, analyze_agreement
from journeyforge.confidence.patterns import (
    PatternDefinition,
    match_patterns,
    pattern_dimension,
)
from journeyforge.confidence.schemas import (
    DEFAULT_WEIGHTS,
    ConfidenceDiagnostics,
    ConfidenceScore,
    ConfidenceThresholds,
    DimensionRef,
    DimensionScore,
)
from journeyforge.confidence.selectors import analyze_selectors, selector_dimension
from journeyforge.confidence.syntax import syntax_dimension, validate_syntax
from journeyforge.constants import Dimension, Verdict

logger = logging.getLogger(__name__)

MAX_SUGGESTIONS = 5
SUGGESTION_BELOW = 0.7
RISK_BELOW = 0.5

_SUGGESTIONS: dict[Dimension, str] = {
    Dimension.SYNTAX: (
        "Fix parse errors and replace deprecated page-level calls"
        " with locator methods"
    ),
    Dimension.PATTERN: (
        "Express steps with known patterns or add glossary module mappings"
    ),
    Dimension.SELECTOR: (
        "Prefer get_by_test_id or get_by_role over CSS and XPath selectors"
    ),
    Dimension.AGREEMENT: (
        "Samples disagree; make the journey steps more explicit"
    ),
}


class ConfidenceScorer:
    """Scores generated test code and gates it with a verdict."""

    def __init__(
        self,
        thresholds: ConfidenceThresholds | None = None,
        weights: dict[Dimension, float] | None = None,
        custom_patterns: Iterable[PatternDefinition] = (),
        llkb_patterns: Iterable[PatternDefinition] = (),
    ) -> None:
        self.thresholds = thresholds or ConfidenceThresholds()
        self.weights = {**DEFAULT_WEIGHTS, **(weights or {})}
        self._custom = list(custom_patterns)
        self._llkb = list(llkb_patterns)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        custom_patterns: Iterable[PatternDefinition] = (),
        llkb_patterns: Iterable[PatternDefinition] = (),
    ) -> ConfidenceScorer:
        thresholds = ConfidenceThresholds(
            accept=settings.confidence_accept,
            reject=settings.confidence_reject,
            block_on_any_below=settings.confidence_block_on_any_below,
            per_dimension={
                d: settings.confidence_min_per_dimension for d in Dimension
            },
        )
        return cls(
            thresholds=thresholds,
            custom_patterns=custom_patterns,
            llkb_patterns=llkb_patterns,
        )

    def dimensions_for(self, code: str) -> list[DimensionScore]:
        """Syntax, pattern and selector scores of one candidate."""
        return [
            syntax_dimension(
                validate_syntax(code), self.weights[Dimension.SYNTAX]
            ),
            pattern_dimension(
                match_patterns(code, self._custom, self._llkb),
                self.weights[Dimension.PATTERN],
            ),
            selector_dimension(
                analyze_selectors(code), self.weights[Dimension.SELECTOR]
            ),
        ]

    def score(self, code: str) -> ConfidenceScore:
        """Score a single candidate; agreement is not computed."""
        return self.combine(self.dimensions_for(code))

    def score_samples(self, codes: list[str]) -> ConfidenceScore:
        """Score several candidates of the same journey.

        Each static dimension takes the median over all samples; the
        agreement dimension is added from their mutual agreement.
        """
        if not codes:
            msg = "score_samples needs at least one candidate"
            raise ValueError(msg)
        per_sample = [self.dimensions_for(c) for c in codes]
        merged: list[DimensionScore] = []
        for index, first in enumerate(per_sample[0]):
            scores = [dims[index].score for dims in per_sample]
            merged.append(
                first.model_copy(
                    update={
                        "score": median(scores),
                        "reasoning": (
                            f"median of {len(codes)} samples; {first.reasoning}"
                        ),
                    }
                )
            )
        merged.append(
            agreement_dimension(
                analyze_agreement(codes), self.weights[Dimension.AGREEMENT]
            )
        )
        return self.combine(merged)

    def combine(self, dimensions: list[DimensionScore]) -> ConfidenceScore:
        total_weight = sum(d.weight for d in dimensions)
        if total_weight <= 0:
            overall = sum(d.score for d in dimensions) / max(1, len(dimensions))
        else:
            overall = sum(d.score * d.weight for d in dimensions) / total_weight
        overall = max(0.0, min(1.0, overall))

        verdict, blocked = self._verdict(overall, dimensions)
        result = ConfidenceScore(
            overall=overall,
            dimensions=dimensions,
            verdict=verdict,
            blocked_dimensions=blocked,
            thresholds=self.thresholds,
            diagnostics=_diagnose(dimensions),
        )
        logger.info(
            "event=confidence_scored overall=%.3f verdict=%s blocked=%s",
            overall,
            verdict.value,
            ",".join(d.value for d in blocked) or "-",
        )
        return result

    def _verdict(
        self, overall: float, dimensions: list[DimensionScore]
    ) -> tuple[Verdict, list[Dimension]]:
        t = self.thresholds
        blocked = [
            d.dimension for d in dimensions if d.score < t.block_on_any_below
        ]
        if blocked or overall < t.reject:
            return Verdict.REJECT, blocked
        if overall >= t.accept and all(
            d.score >= t.minimum_for(d.dimension) for d in dimensions
        ):
            return Verdict.ACCEPT, []
        return Verdict.REVIEW, []


def _diagnose(dimensions: list[DimensionScore]) -> ConfidenceDiagnostics:
    if not dimensions:
        return ConfidenceDiagnostics()
    ordered = sorted(dimensions, key=lambda d: d.score)
    lowest, highest = ordered[0], ordered[-1]
    suggestions = [
        f"{_SUGGESTIONS[d.dimension]} ({d.reasoning})"
        for d in ordered
        if d.score < SUGGESTION_BELOW
    ][:MAX_SUGGESTIONS]
    risks = [
        f"{d.dimension.value}: {d.reasoning}"
        for d in ordered
        if d.score < RISK_BELOW
    ]
    return ConfidenceDiagnostics(
        lowest_dimension=DimensionRef(name=lowest.dimension, score=lowest.score),
        highest_dimension=DimensionRef(
            name=highest.dimension, score=highest.score
        ),
        improvement_suggestions=suggestions,
        risk_areas=risks,
    )
