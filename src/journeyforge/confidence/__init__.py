"""Multi-dimensional confidence scoring of generated test code."""

from journeyforge.confidence.schemas import (
    ConfidenceScore,
    ConfidenceThresholds,
    DimensionScore,
)
from journeyforge.confidence.scorer import ConfidenceScorer

__all__ = [
    "ConfidenceScore",
    "ConfidenceScorer",
    "ConfidenceThresholds",
    "DimensionScore",
]
