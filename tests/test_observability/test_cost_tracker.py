"""Tests for the session cost budget."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import patch

import pytest

from journeyforge.constants import COST_SCHEMA_VERSION
from journeyforge.llm.client import TokenUsage
from journeyforge.observability.cost_tracker import (
    DEFAULT_PRICE,
    CostTracker,
    estimate_cost,
)


def _no_litellm_price():  # noqa: ANN202
    return patch(
        "journeyforge.observability.cost_tracker.litellm.cost_per_token",
        side_effect=Exception("unknown model"),
    )


class TestEstimateCost:
    def test_uses_litellm_price(self) -> None:
        with patch(
            "journeyforge.observability.cost_tracker.litellm.cost_per_token",
            return_value=(0.001, 0.002),
        ):
            assert estimate_cost(TokenUsage(10, 10), "gpt-4o") == pytest.approx(0.003)

    def test_falls_back_to_table(self) -> None:
        """Longest matching key wins when litellm has no price."""
        with _no_litellm_price():
            cost = estimate_cost(TokenUsage(1000, 1000), "openai/gpt-4.1-mini")
        assert cost == pytest.approx(0.0004 + 0.0016)

    def test_unknown_model_uses_default(self) -> None:
        with _no_litellm_price():
            cost = estimate_cost(TokenUsage(2000, 0), "mystery-model")
        assert cost == pytest.approx(2 * DEFAULT_PRICE[0])

    def test_no_model_skips_litellm(self) -> None:
        assert estimate_cost(TokenUsage(0, 1000)) == pytest.approx(DEFAULT_PRICE[1])


class TestTracking:
    def test_known_cost_is_used_verbatim(self) -> None:
        tracker = CostTracker()
        cost = tracker.track_usage(TokenUsage(10, 5, 0.5), "m")
        assert cost == 0.5
        assert tracker.total_cost_usd == 0.5
        assert tracker.total_tokens == 15

    def test_by_model_breakdown(self) -> None:
        tracker = CostTracker()
        tracker.track_usage(TokenUsage(10, 5, 0.1), "a")
        tracker.track_usage(TokenUsage(1, 1, 0.1), "a")
        tracker.track_usage(TokenUsage(3, 0, 0.1), None)
        models = tracker.by_model()
        assert models["a"].calls == 2
        assert models["a"].prompt_tokens == 11
        assert models["unknown"].calls == 1

    def test_by_model_returns_copies(self) -> None:
        tracker = CostTracker()
        tracker.track_usage(TokenUsage(1, 1, 0.1), "a")
        tracker.by_model()["a"].calls = 99
        assert tracker.by_model()["a"].calls == 1


class TestLimits:
    def test_unlimited(self) -> None:
        tracker = CostTracker()
        assert not tracker.would_exceed_limit(10**9)
        assert not tracker.limit_reached

    def test_token_limit(self) -> None:
        tracker = CostTracker(limit_tokens=1000)
        tracker.track_usage(TokenUsage(600, 0, 0.01))
        assert not tracker.would_exceed_limit(400)
        assert tracker.would_exceed_limit(401)
        assert not tracker.limit_reached

    def test_usd_limit_projects_at_default_price(self) -> None:
        tracker = CostTracker(limit_usd=0.01)
        # 0.003 per 1K tokens: 3000 tokens cost 0.009, 4000 cost 0.012.
        assert not tracker.would_exceed_limit(3000)
        assert tracker.would_exceed_limit(4000)

    def test_limit_reached_after_spend(self) -> None:
        tracker = CostTracker(limit_usd=0.01)
        tracker.track_usage(TokenUsage(1, 1, 0.02))
        assert tracker.limit_reached


class TestPersistence:
    def test_save_and_load(self, tmp_path: Path) -> None:
        path = tmp_path / "cost.json"
        tracker = CostTracker(limit_tokens=500)
        tracker.track_usage(TokenUsage(100, 20, 0.05), "gpt-4o-mini")
        tracker.save(path)

        doc = json.loads(path.read_text(encoding="utf-8"))
        assert doc["version"] == COST_SCHEMA_VERSION

        loaded = CostTracker.load(path)
        assert loaded.total_tokens == 120
        assert loaded.total_cost_usd == pytest.approx(0.05)
        assert loaded.limit_tokens == 500
        assert loaded.by_model()["gpt-4o-mini"].completion_tokens == 20

    def test_load_overrides_limits(self, tmp_path: Path) -> None:
        path = tmp_path / "cost.json"
        CostTracker(limit_usd=1.0).save(path)
        loaded = CostTracker.load(path, limit_usd=2.0, limit_tokens=10)
        assert loaded.limit_usd == 2.0
        assert loaded.limit_tokens == 10

    def test_missing_file_is_fresh(self, tmp_path: Path) -> None:
        loaded = CostTracker.load(tmp_path / "none.json", limit_tokens=7)
        assert loaded.total_tokens == 0
        assert loaded.limit_tokens == 7

    def test_corrupt_file_is_fresh(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        path = tmp_path / "cost.json"
        path.write_text("not json", encoding="utf-8")
        assert CostTracker.load(path).total_tokens == 0
        assert "event=cost_snapshot_unreadable" in caplog.text

    def test_restore_tolerates_missing_fields(self) -> None:
        tracker = CostTracker.restore({"version": 0, "prompt_tokens": 5})
        assert tracker.total_tokens == 5
        assert tracker.total_cost_usd == 0.0
