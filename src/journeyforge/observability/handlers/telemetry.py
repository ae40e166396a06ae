"""Telemetry handler -- per-command stats persisted as versioned JSON."""

from __future__ import annotations

import json
import logging
import threading
import uuid
from collections import deque
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from journeyforge.constants import (
    TELEMETRY_MAX_EVENTS,
    TELEMETRY_SCHEMA_VERSION,
)
from journeyforge.observability.events import TraceEvent

logger = logging.getLogger(__name__)

_RECORDED_TYPES = frozenset(
    {"command_start", "command_end", "llm_call", "error", "pipeline_transition"}
)


@dataclass
class CommandStats:
    count: int = 0
    success_count: int = 0
    error_count: int = 0
    avg_duration_ms: float = 0.0
    total_duration_ms: float = 0.0
    last_run: str | None = None


class TelemetryHandler:
    """Aggregates command, LLM and error events for one session.

    Only the most recent ``max_events`` events are kept. ``flush()``
    writes the document to ``path``; an existing document is loaded on
    construction so stats accumulate across runs.
    """

    def __init__(
        self,
        path: Path | None = None,
        max_events: int = TELEMETRY_MAX_EVENTS,
        session_id: str | None = None,
    ) -> None:
        self._path = path
        self._lock = threading.Lock()
        now = datetime.now(UTC).isoformat()
        self.session_id = session_id or uuid.uuid4().hex[:12]
        self.created_at = now
        self.updated_at = now
        self.total_tokens = 0
        self.total_cost_usd = 0.0
        self.command_stats: dict[str, CommandStats] = {}
        self.error_counts: dict[str, int] = {}
        self.recent_events: deque[dict[str, Any]] = deque(maxlen=max_events)
        if path is not None and path.exists():
            self._load(path)

    @property
    def name(self) -> str:
        return "telemetry"

    async def handle(self, event: TraceEvent) -> None:
        if event.type not in _RECORDED_TYPES:
            return
        with self._lock:
            self._apply(event)

    def _apply(self, event: TraceEvent) -> None:
        data = event.data
        self.updated_at = event.timestamp.isoformat()
        self.recent_events.append(
            {
                "type": event.type,
                "timestamp": event.timestamp.isoformat(),
                "trace_id": event.trace_id,
                "command": data.get("command", ""),
                "data": {k: v for k, v in data.items() if v is not None},
            }
        )
        if event.type == "command_end":
            command = str(data.get("command", "unknown"))
            stats = self.command_stats.setdefault(command, CommandStats())
            duration = float(data.get("duration_ms", 0.0))
            stats.count += 1
            if data.get("success"):
                stats.success_count += 1
            else:
                stats.error_count += 1
            stats.total_duration_ms += duration
            stats.avg_duration_ms = stats.total_duration_ms / stats.count
            stats.last_run = event.timestamp.isoformat()
        elif event.type == "llm_call":
            self.total_tokens += int(data.get("input_tokens", 0)) + int(
                data.get("output_tokens", 0)
            )
            self.total_cost_usd += float(data.get("cost", 0.0))
        elif event.type == "error":
            key = str(data.get("error_type") or data.get("component") or "unknown")
            self.error_counts[key] = self.error_counts.get(key, 0) + 1

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "version": TELEMETRY_SCHEMA_VERSION,
                "session_id": self.session_id,
                "created_at": self.created_at,
                "updated_at": self.updated_at,
                "total_tokens": self.total_tokens,
                "total_cost_usd": self.total_cost_usd,
                "command_stats": {
                    k: asdict(v) for k, v in self.command_stats.items()
                },
                "recent_events": list(self.recent_events),
                "error_counts": dict(self.error_counts),
            }

    def flush(self) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(
            json.dumps(self.snapshot(), indent=2, default=str),
            encoding="utf-8",
        )

    def _load(self, path: Path) -> None:
        try:
            doc = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            logger.warning("event=telemetry_unreadable path=%s", path)
            return
        if not isinstance(doc, dict):
            logger.warning("event=telemetry_unreadable path=%s", path)
            return
        raw: dict[str, Any] = doc  # pyright: ignore[reportUnknownVariableType]
        version = int(raw.get("version", 0))
        if version != TELEMETRY_SCHEMA_VERSION:
            logger.info(
                "event=telemetry_migrated from_version=%d to_version=%d",
                version,
                TELEMETRY_SCHEMA_VERSION,
            )
        self.created_at = str(raw.get("created_at", self.created_at))
        self.total_tokens = int(raw.get("total_tokens", 0))
        self.total_cost_usd = float(raw.get("total_cost_usd", 0.0))
        for command, stats in (raw.get("command_stats") or {}).items():
            self.command_stats[command] = CommandStats(
                count=int(stats.get("count", 0)),
                success_count=int(stats.get("success_count", 0)),
                error_count=int(stats.get("error_count", 0)),
                avg_duration_ms=float(stats.get("avg_duration_ms", 0.0)),
                total_duration_ms=float(stats.get("total_duration_ms", 0.0)),
                last_run=stats.get("last_run"),
            )
        self.error_counts.update(
            {k: int(v) for k, v in (raw.get("error_counts") or {}).items()}
        )
        self.recent_events.extend(raw.get("recent_events") or [])
