"""Delivers trace events to every registered handler."""

from __future__ import annotations

import logging

from journeyforge.observability.events import TraceEvent
from journeyforge.observability.handlers import TraceHandler

logger = logging.getLogger(__name__)


class TraceDispatcher:
    """Handlers are keyed by name and called in registration order.

    A handler that raises is logged and skipped; emitting never fails.
    """

    def __init__(self) -> None:
        self._by_name: dict[str, TraceHandler] = {}

    def register(self, handler: TraceHandler) -> None:
        """Add ``handler`` unless one with the same name is registered."""
        self._by_name.setdefault(handler.name, handler)

    def get(self, name: str) -> TraceHandler | None:
        return self._by_name.get(name)

    @property
    def handler_count(self) -> int:
        return len(self._by_name)

    async def emit(self, event: TraceEvent) -> None:
        for name, handler in self._by_name.items():
            try:
                await handler.handle(event)
            except Exception:
                logger.warning(
                    "event=trace_handler_error handler=%s type=%s trace_id=%s",
                    name,
                    event.type,
                    event.trace_id,
                    exc_info=True,
                )
