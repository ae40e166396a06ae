"""Trace events rendered as ``event=trace`` log lines."""

from __future__ import annotations

import logging
from typing import Any

from journeyforge.observability.events import TraceEvent, TraceEventType

logger = logging.getLogger(__name__)

_LEVELS: dict[TraceEventType, int] = {
    "error": logging.WARNING,
    "llm_call": logging.DEBUG,
    "pipeline_transition": logging.DEBUG,
}


def _fmt(value: Any) -> str:
    text = f"{value:.1f}" if isinstance(value, float) else str(value)
    return repr(text) if " " in text else text


class ConsoleTraceHandler:
    """Writes each event to the log; chatty event types go to DEBUG."""

    @property
    def name(self) -> str:
        return "console"

    async def handle(self, event: TraceEvent) -> None:
        level = _LEVELS.get(event.type, logging.INFO)
        if not logger.isEnabledFor(level):
            return
        fields = {"type": event.type, "trace_id": event.trace_id, "category": event.category}
        fields.update({k: v for k, v in event.data.items() if v is not None})
        logger.log(
            level,
            "event=trace %s",
            " ".join(f"{k}={_fmt(v)}" for k, v in fields.items()),
        )
