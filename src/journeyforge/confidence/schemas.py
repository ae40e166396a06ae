"""Pydantic models for confidence scoring output."""

from __future__ import annotations

from pydantic import BaseModel, Field

from journeyforge.constants import Dimension, Verdict

DEFAULT_WEIGHTS: dict[Dimension, float] = {
    Dimension.SYNTAX: 0.25,
    Dimension.PATTERN: 0.25,
    Dimension.SELECTOR: 0.30,
    Dimension.AGREEMENT: 0.20,
}


class SubScore(BaseModel):
    name: str
    score: float = Field(ge=0.0, le=1.0)
    details: str = ""


class DimensionScore(BaseModel):
    """Score of one dimension; always within [0, 1]."""

    dimension: Dimension
    score: float = Field(ge=0.0, le=1.0)
    weight: float = Field(default=0.25, ge=0.0)
    reasoning: str = ""
    sub_scores: list[SubScore] = Field(default_factory=lambda: list[SubScore]())


class ConfidenceThresholds(BaseModel):
    accept: float = 0.8
    reject: float = 0.5
    block_on_any_below: float = 0.3
    per_dimension: dict[Dimension, float] = Field(
        default_factory=lambda: {d: 0.5 for d in Dimension}
    )

    def minimum_for(self, dimension: Dimension) -> float:
        return self.per_dimension.get(dimension, 0.0)


class DimensionRef(BaseModel):
    name: Dimension
    score: float


class ConfidenceDiagnostics(BaseModel):
    lowest_dimension: DimensionRef | None = None
    highest_dimension: DimensionRef | None = None
    improvement_suggestions: list[str] = Field(default_factory=lambda: list[str]())
    risk_areas: list[str] = Field(default_factory=lambda: list[str]())


class ConfidenceScore(BaseModel):
    overall: float = Field(ge=0.0, le=1.0)
    dimensions: list[DimensionScore]
    verdict: Verdict
    blocked_dimensions: list[Dimension] = Field(
        default_factory=lambda: list[Dimension]()
    )
    thresholds: ConfidenceThresholds = Field(default_factory=ConfidenceThresholds)
    diagnostics: ConfidenceDiagnostics = Field(default_factory=ConfidenceDiagnostics)

    def dimension(self, name: Dimension) -> DimensionScore | None:
        return next((d for d in self.dimensions if d.dimension == name), None)
