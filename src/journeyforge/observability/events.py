"""Typed trace events emitted while journeys move through the pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

TraceEventType = Literal[
    "command_start",
    "command_end",
    "stage_start",
    "stage_end",
    "pipeline_transition",
    "refinement_attempt",
    "llm_call",
    "error",
]

TraceCategory = Literal[
    "pipeline",
    "mapping",
    "generation",
    "execution",
    "refinement",
    "confidence",
    "llm",
]


@dataclass(frozen=True)
class TraceEvent:
    """Immutable trace event; ``trace_id`` is usually the journey id."""

    type: TraceEventType
    trace_id: str
    timestamp: datetime = field(
        default_factory=lambda: datetime.now(UTC)
    )
    category: TraceCategory = "pipeline"
    data: dict[str, Any] = field(
        default_factory=lambda: dict[str, Any]()
    )
