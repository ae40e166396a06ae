"""Trace handler contract; console and telemetry live beside it."""

from __future__ import annotations

from typing import Protocol

from journeyforge.observability.events import TraceEvent


class TraceHandler(Protocol):
    @property
    def name(self) -> str:
        """Registry key; one handler per name."""
        ...

    async def handle(self, event: TraceEvent) -> None: ...
