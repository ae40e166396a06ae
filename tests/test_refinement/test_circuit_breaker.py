"""Tests for the refinement circuit breaker."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from journeyforge.constants import CircuitOpenReason
from journeyforge.refinement.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    attempt_signature,
    trailing_runs,
)


class _FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += timedelta(milliseconds=ms)


def _breaker(**overrides: object) -> CircuitBreaker:
    defaults: dict[str, object] = {
        "max_attempts": 5,
        "same_error_threshold": 3,
        "oscillation_window": 4,
        "total_timeout_ms": 60_000,
        "max_token_budget": 10_000,
    }
    defaults.update(overrides)
    return CircuitBreaker(CircuitBreakerConfig(**defaults))  # type: ignore[arg-type]


class TestSignature:
    def test_order_independent(self) -> None:
        assert attempt_signature(["b", "a", "a"]) == attempt_signature(["a", "b"])


class TestOpening:
    def test_same_error_threshold(self) -> None:
        """Three identical attempts in a row open with SAME_ERROR."""
        breaker = _breaker()
        assert not breaker.record_attempt(["fp1"])
        assert not breaker.record_attempt(["fp1"])
        assert breaker.record_attempt(["fp1"])
        assert breaker.open_reason == CircuitOpenReason.SAME_ERROR

    def test_same_error_counts_one_stuck_fingerprint(self) -> None:
        """A stuck fingerprint trips SAME_ERROR while other errors churn."""
        breaker = _breaker(max_attempts=10)
        assert not breaker.record_attempt(["stuck", "b"])
        assert not breaker.record_attempt(["stuck", "c"])
        assert breaker.record_attempt(["stuck", "d"])
        assert breaker.open_reason == CircuitOpenReason.SAME_ERROR

    def test_gap_restarts_the_run(self) -> None:
        breaker = _breaker(max_attempts=10, oscillation_detection=False)
        breaker.record_attempt(["stuck", "b"])
        breaker.record_attempt(["stuck"])
        breaker.record_attempt(["c"])
        assert not breaker.record_attempt(["stuck"])
        assert trailing_runs(breaker.state.attempt_signatures) == {"stuck": 1}

    def test_changing_errors_reach_max_attempts(self) -> None:
        """Distinct errors never trip SAME_ERROR; max attempts does."""
        breaker = _breaker(oscillation_detection=False)
        for i in range(4):
            assert not breaker.record_attempt([f"fp{i}"])
        assert breaker.record_attempt(["fp4"])
        assert breaker.open_reason == CircuitOpenReason.MAX_ATTEMPTS
        assert breaker.remaining_attempts == 0

    def test_max_attempts_checked_before_same_error(self) -> None:
        """When both trip on the same attempt MAX_ATTEMPTS wins."""
        breaker = _breaker(max_attempts=2, same_error_threshold=2)
        breaker.record_attempt(["fp"])
        breaker.record_attempt(["fp"])
        assert breaker.open_reason == CircuitOpenReason.MAX_ATTEMPTS

    def test_empty_signature_never_counts_as_same_error(self) -> None:
        breaker = _breaker(max_attempts=10)
        for _ in range(4):
            breaker.record_attempt([])
        assert not breaker.is_open

    def test_oscillation(self) -> None:
        """A-B-A-B within the window opens with OSCILLATION."""
        breaker = _breaker(max_attempts=10)
        for fp in ("a", "b", "a"):
            assert not breaker.record_attempt([fp])
        assert breaker.record_attempt(["b"])
        assert breaker.open_reason == CircuitOpenReason.OSCILLATION

    def test_budget(self) -> None:
        breaker = _breaker(max_attempts=10)
        assert breaker.would_exceed_budget(10_001)
        breaker.record_attempt(["a"], tokens=6_000)
        assert breaker.remaining_token_budget == 4_000
        assert breaker.record_attempt(["b"], tokens=4_000)
        assert breaker.open_reason == CircuitOpenReason.BUDGET

    def test_timeout_via_can_attempt(self) -> None:
        """Elapsed wall time opens the breaker before the next attempt."""
        clock = _FakeClock()
        breaker = CircuitBreaker(
            CircuitBreakerConfig(total_timeout_ms=1_000), clock=clock
        )
        assert breaker.can_attempt()
        clock.advance(1_000)
        assert not breaker.can_attempt()
        assert breaker.open_reason == CircuitOpenReason.TIMEOUT

    def test_skipped_attempts_can_be_excluded(self) -> None:
        """Skipped attempts don't extend the same-error run when excluded."""
        breaker = _breaker(count_skipped_attempts=False, max_attempts=10)
        breaker.record_attempt(["fp"])
        breaker.record_attempt(["fp"], skipped=True)
        breaker.record_attempt(["fp"])
        assert not breaker.is_open
        assert breaker.record_attempt(["fp"])

    def test_open_breaker_ignores_more_attempts(self) -> None:
        breaker = _breaker(max_attempts=1)
        assert breaker.record_attempt(["a"])
        assert breaker.record_attempt(["b"])
        assert breaker.state.attempt_count == 1


class TestLifecycle:
    def test_state_is_a_copy(self) -> None:
        breaker = _breaker()
        breaker.record_attempt(["a"])
        snapshot = breaker.state
        snapshot.attempt_count = 99
        assert breaker.state.attempt_count == 1

    def test_restore_continues_counting(self) -> None:
        """A restored breaker resumes from the persisted counters."""
        first = _breaker()
        first.record_attempt(["fp"])
        first.record_attempt(["fp"])
        second = _breaker()
        second.restore_state(first.state)
        assert second.record_attempt(["fp"])
        assert second.open_reason == CircuitOpenReason.SAME_ERROR

    def test_reset(self) -> None:
        breaker = _breaker(max_attempts=1)
        breaker.record_attempt(["a"])
        breaker.reset()
        assert not breaker.is_open
        assert breaker.remaining_attempts == 1
