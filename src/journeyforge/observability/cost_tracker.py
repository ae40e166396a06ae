"""Session-scoped LLM token and cost budget."""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import litellm

from journeyforge.constants import COST_SCHEMA_VERSION
from journeyforge.llm.client import TokenUsage

logger = logging.getLogger(__name__)

# USD per 1K tokens (prompt, completion), matched by model-name substring.
# Used when litellm has no price for the model.
PRICE_TABLE: dict[str, tuple[float, float]] = {
    "gpt-4.1-mini": (0.0004, 0.0016),
    "gpt-4.1": (0.002, 0.008),
    "gpt-4o-mini": (0.00015, 0.0006),
    "gpt-4o": (0.0025, 0.01),
    "claude-3-5-haiku": (0.0008, 0.004),
    "claude-3-5-sonnet": (0.003, 0.015),
    "claude-sonnet": (0.003, 0.015),
    "claude-opus": (0.015, 0.075),
}
DEFAULT_PRICE: tuple[float, float] = (0.003, 0.015)


def _table_price(model: str | None) -> tuple[float, float]:
    if model:
        lowered = model.lower()
        # Longest key first so "gpt-4.1-mini" beats "gpt-4.1".
        for key in sorted(PRICE_TABLE, key=len, reverse=True):
            if key in lowered:
                return PRICE_TABLE[key]
    return DEFAULT_PRICE


def estimate_cost(usage: TokenUsage, model: str | None = None) -> float:
    """USD cost of ``usage``: litellm's price when known, else the table."""
    if model:
        try:
            prompt_cost, completion_cost = litellm.cost_per_token(
                model=model,
                prompt_tokens=usage.prompt_tokens,
                completion_tokens=usage.completion_tokens,
            )
            return float(prompt_cost) + float(completion_cost)
        except Exception:
            logger.debug("event=cost_lookup_miss model=%s", model)
    prompt_rate, completion_rate = _table_price(model)
    return (
        usage.prompt_tokens / 1000 * prompt_rate
        + usage.completion_tokens / 1000 * completion_rate
    )


@dataclass
class ModelCost:
    calls: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    cost_usd: float = 0.0


class CostTracker:
    """Accumulates usage for one session and enforces optional limits.

    Writes are serialized with a lock; a tracker may be shared by the
    journeys of one session but never across sessions.
    """

    def __init__(
        self,
        limit_usd: float | None = None,
        limit_tokens: int | None = None,
    ) -> None:
        self.limit_usd = limit_usd
        self.limit_tokens = limit_tokens
        self._lock = threading.Lock()
        self._by_model: dict[str, ModelCost] = {}
        self._prompt_tokens = 0
        self._completion_tokens = 0
        self._cost_usd = 0.0

    @property
    def total_tokens(self) -> int:
        return self._prompt_tokens + self._completion_tokens

    @property
    def total_cost_usd(self) -> float:
        return self._cost_usd

    def by_model(self) -> dict[str, ModelCost]:
        with self._lock:
            return {
                k: ModelCost(**vars(v)) for k, v in self._by_model.items()
            }

    def track_usage(
        self, usage: TokenUsage, model: str | None = None
    ) -> float:
        """Record ``usage`` and return the cost attributed to it."""
        cost = (
            usage.estimated_cost_usd
            if usage.estimated_cost_usd > 0
            else estimate_cost(usage, model)
        )
        with self._lock:
            self._prompt_tokens += usage.prompt_tokens
            self._completion_tokens += usage.completion_tokens
            self._cost_usd += cost
            entry = self._by_model.setdefault(model or "unknown", ModelCost())
            entry.calls += 1
            entry.prompt_tokens += usage.prompt_tokens
            entry.completion_tokens += usage.completion_tokens
            entry.cost_usd += cost
        logger.debug(
            "event=usage_tracked model=%s tokens=%d cost_usd=%.6f"
            " total_tokens=%d total_cost_usd=%.6f",
            model,
            usage.total_tokens,
            cost,
            self.total_tokens,
            self._cost_usd,
        )
        return cost

    def would_exceed_limit(self, estimated_tokens: int) -> bool:
        """True if spending ``estimated_tokens`` more would break a limit."""
        if (
            self.limit_tokens is not None
            and self.total_tokens + estimated_tokens > self.limit_tokens
        ):
            return True
        if self.limit_usd is not None:
            rate = DEFAULT_PRICE[0]
            projected = self._cost_usd + estimated_tokens / 1000 * rate
            if projected > self.limit_usd:
                return True
        return False

    @property
    def limit_reached(self) -> bool:
        return self.would_exceed_limit(0)

    # ── Persistence ──────────────────────────────────────

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "version": COST_SCHEMA_VERSION,
                "updated_at": datetime.now(UTC).isoformat(),
                "limit_usd": self.limit_usd,
                "limit_tokens": self.limit_tokens,
                "prompt_tokens": self._prompt_tokens,
                "completion_tokens": self._completion_tokens,
                "total_cost_usd": self._cost_usd,
                "by_model": {k: vars(v).copy() for k, v in self._by_model.items()},
            }

    @classmethod
    def restore(cls, doc: dict[str, Any]) -> CostTracker:
        """Rebuild a tracker from ``snapshot()`` output.

        Missing fields default to zero so older documents still load.
        """
        version = int(doc.get("version", 0))
        if version > COST_SCHEMA_VERSION:
            logger.warning(
                "event=cost_snapshot_newer version=%d supported=%d",
                version,
                COST_SCHEMA_VERSION,
            )
        tracker = cls(
            limit_usd=doc.get("limit_usd"),
            limit_tokens=doc.get("limit_tokens"),
        )
        tracker._prompt_tokens = int(doc.get("prompt_tokens", 0))
        tracker._completion_tokens = int(doc.get("completion_tokens", 0))
        tracker._cost_usd = float(doc.get("total_cost_usd", 0.0))
        raw_models: dict[str, dict[str, Any]] = doc.get("by_model", {}) or {}
        for model, entry in raw_models.items():
            tracker._by_model[model] = ModelCost(
                calls=int(entry.get("calls", 0)),
                prompt_tokens=int(entry.get("prompt_tokens", 0)),
                completion_tokens=int(entry.get("completion_tokens", 0)),
                cost_usd=float(entry.get("cost_usd", 0.0)),
            )
        return tracker

    def save(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.snapshot(), indent=2), encoding="utf-8")

    @classmethod
    def load(
        cls,
        path: Path,
        limit_usd: float | None = None,
        limit_tokens: int | None = None,
    ) -> CostTracker:
        """Load a snapshot; a missing or corrupt file starts a fresh tracker."""
        if not path.exists():
            return cls(limit_usd=limit_usd, limit_tokens=limit_tokens)
        try:
            doc: Any = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            logger.warning("event=cost_snapshot_unreadable path=%s", path)
            return cls(limit_usd=limit_usd, limit_tokens=limit_tokens)
        if not isinstance(doc, dict):
            return cls(limit_usd=limit_usd, limit_tokens=limit_tokens)
        tracker = cls.restore(doc)  # pyright: ignore[reportUnknownArgumentType]
        if limit_usd is not None:
            tracker.limit_usd = limit_usd
        if limit_tokens is not None:
            tracker.limit_tokens = limit_tokens
        return tracker
