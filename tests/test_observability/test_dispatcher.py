"""Tests for the trace event dispatcher."""

from __future__ import annotations

import pytest

from journeyforge.observability.dispatcher import TraceDispatcher
from journeyforge.observability.events import TraceEvent


class _Collector:
    def __init__(self, name: str = "collector") -> None:
        self._name = name
        self.events: list[TraceEvent] = []

    @property
    def name(self) -> str:
        return self._name

    async def handle(self, event: TraceEvent) -> None:
        self.events.append(event)


class _BadHandler:
    @property
    def name(self) -> str:
        return "bad"

    async def handle(self, event: TraceEvent) -> None:
        msg = "boom"
        raise RuntimeError(msg)


class TestTraceDispatcher:
    async def test_emit_fans_out_in_order(self) -> None:
        """Every handler sees the event, in registration order."""
        first, second = _Collector("a"), _Collector("b")
        dispatcher = TraceDispatcher()
        dispatcher.register(first)
        dispatcher.register(second)

        await dispatcher.emit(TraceEvent(type="stage_start", trace_id="JRN-1"))

        assert [e.trace_id for e in first.events] == ["JRN-1"]
        assert len(second.events) == 1
        assert dispatcher.get("b") is second

    def test_duplicate_handler_ignored(self) -> None:
        dispatcher = TraceDispatcher()
        dispatcher.register(_Collector())
        dispatcher.register(_Collector())
        assert dispatcher.handler_count == 1

    async def test_handler_error_does_not_propagate(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        """A failing handler is logged and later handlers still run."""
        collector = _Collector()
        dispatcher = TraceDispatcher()
        dispatcher.register(_BadHandler())
        dispatcher.register(collector)

        await dispatcher.emit(TraceEvent(type="error", trace_id="t1"))

        assert len(collector.events) == 1
        assert "event=trace_handler_error handler=bad" in caplog.text

    async def test_emit_with_no_handlers(self) -> None:
        await TraceDispatcher().emit(TraceEvent(type="command_end", trace_id="t1"))

    def test_get_unknown(self) -> None:
        assert TraceDispatcher().get("nope") is None
