"""Observability layer -- event dispatcher, handlers and cost budget."""

from __future__ import annotations

from journeyforge.config import Settings
from journeyforge.observability.cost_tracker import CostTracker
from journeyforge.observability.dispatcher import TraceDispatcher
from journeyforge.observability.events import (
    TraceCategory,
    TraceEvent,
    TraceEventType,
)
from journeyforge.observability.handlers.console import (
    ConsoleTraceHandler,
)
from journeyforge.observability.handlers.telemetry import TelemetryHandler

__all__ = [
    "CostTracker",
    "TelemetryHandler",
    "TraceCategory",
    "TraceDispatcher",
    "TraceEvent",
    "TraceEventType",
    "initialize_tracing",
]


def initialize_tracing(settings: Settings) -> TraceDispatcher:
    """Create dispatcher and register handlers based on settings.

    Telemetry is always recorded; console output follows ``trace_enabled``.
    """
    dispatcher = TraceDispatcher()
    dispatcher.register(TelemetryHandler(path=settings.telemetry_path))
    if settings.trace_enabled:
        dispatcher.register(ConsoleTraceHandler())
    return dispatcher
