"""Tests for combining dimensions into a verdict."""

from __future__ import annotations

import pytest

from journeyforge.confidence.schemas import ConfidenceThresholds, DimensionScore
from journeyforge.confidence.scorer import ConfidenceScorer
from journeyforge.config import Settings
from journeyforge.constants import Dimension, Verdict


def _dims(
    syntax: float, pattern: float, selector: float, agreement: float
) -> list[DimensionScore]:
    values = {
        Dimension.SYNTAX: (syntax, 0.25),
        Dimension.PATTERN: (pattern, 0.25),
        Dimension.SELECTOR: (selector, 0.30),
        Dimension.AGREEMENT: (agreement, 0.20),
    }
    return [
        DimensionScore(dimension=d, score=s, weight=w, reasoning=f"{d.value} test")
        for d, (s, w) in values.items()
    ]


class TestCombine:
    def test_accept(self) -> None:
        result = ConfidenceScorer().combine(_dims(0.9, 0.9, 0.9, 0.9))
        assert result.overall == pytest.approx(0.9)
        assert result.verdict == Verdict.ACCEPT
        assert result.diagnostics.improvement_suggestions == []

    def test_review_when_one_dimension_is_weak(self) -> None:
        """A high overall does not hide a dimension below its minimum."""
        result = ConfidenceScorer().combine(_dims(1.0, 1.0, 0.45, 1.0))
        assert result.overall == pytest.approx(0.835)
        assert result.verdict == Verdict.REVIEW
        assert result.blocked_dimensions == []
        diagnostics = result.diagnostics
        assert diagnostics.lowest_dimension is not None
        assert diagnostics.lowest_dimension.name == Dimension.SELECTOR
        assert len(diagnostics.improvement_suggestions) == 1
        assert diagnostics.improvement_suggestions[0].startswith("Prefer get_by_test_id")
        assert diagnostics.risk_areas == ["selector: selector test"]

    def test_reject_on_low_overall(self) -> None:
        result = ConfidenceScorer().combine(_dims(0.4, 0.4, 0.4, 0.4))
        assert result.verdict == Verdict.REJECT
        assert result.blocked_dimensions == []

    def test_reject_on_blocking_dimension(self) -> None:
        result = ConfidenceScorer().combine(_dims(1.0, 0.2, 1.0, 1.0))
        assert result.overall == pytest.approx(0.8)
        assert result.verdict == Verdict.REJECT
        assert result.blocked_dimensions == [Dimension.PATTERN]

    def test_custom_weights(self) -> None:
        scorer = ConfidenceScorer(weights={Dimension.AGREEMENT: 0.0})
        dims = [
            d.model_copy(update={"weight": scorer.weights[d.dimension]})
            for d in _dims(1.0, 1.0, 1.0, 0.0)
        ]
        assert scorer.combine(dims).overall == pytest.approx(1.0)


class TestScore:
    def test_unparseable_code_is_rejected(self) -> None:
        result = ConfidenceScorer().score("def test_x(page):\n    page.goto(\n")
        assert result.verdict == Verdict.REJECT
        assert Dimension.SYNTAX in result.blocked_dimensions
        assert result.dimension(Dimension.AGREEMENT) is None

    def test_score_samples_adds_agreement(self, good_module: str) -> None:
        scorer = ConfidenceScorer()
        single = scorer.score(good_module)
        result = scorer.score_samples([good_module, good_module])
        agreement = result.dimension(Dimension.AGREEMENT)
        assert agreement is not None
        assert agreement.score == pytest.approx(1.0)
        syntax = result.dimension(Dimension.SYNTAX)
        assert syntax is not None
        assert syntax.reasoning.startswith("median of 2 samples")
        assert syntax.score == pytest.approx(
            single.dimension(Dimension.SYNTAX).score  # type: ignore[union-attr]
        )

    def test_score_samples_needs_candidates(self) -> None:
        with pytest.raises(ValueError, match="at least one candidate"):
            ConfidenceScorer().score_samples([])


def test_from_settings() -> None:
    settings = Settings(
        confidence_accept=0.9,
        confidence_reject=0.6,
        confidence_block_on_any_below=0.2,
        confidence_min_per_dimension=0.4,
    )
    thresholds = ConfidenceScorer.from_settings(settings).thresholds
    assert thresholds.accept == 0.9
    assert thresholds.reject == 0.6
    assert thresholds.block_on_any_below == 0.2
    assert thresholds.minimum_for(Dimension.SELECTOR) == 0.4


def test_thresholds_default_minimum() -> None:
    thresholds = ConfidenceThresholds(per_dimension={})
    assert thresholds.minimum_for(Dimension.SYNTAX) == 0.0
