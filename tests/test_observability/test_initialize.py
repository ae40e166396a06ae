"""Tests for observability bootstrap."""

from __future__ import annotations

from journeyforge.config import Settings
from journeyforge.observability import initialize_tracing


class TestInitializeTracing:
    def test_trace_enabled_adds_console(self, settings: Settings) -> None:
        settings.trace_enabled = True
        dispatcher = initialize_tracing(settings)
        assert dispatcher.handler_count == 2
        assert dispatcher.get("console") is not None

    def test_telemetry_always_registered(self, settings: Settings) -> None:
        """Disabling tracing keeps telemetry but drops console output."""
        dispatcher = initialize_tracing(settings)
        assert dispatcher.handler_count == 1
        assert dispatcher.get("telemetry") is not None
