"""Stop condition for the refinement loop.

Unlike the per-model LLM breaker (``circuitbreaker`` library, see
``llm/_llm_call.py``), this breaker never half-opens: once a condition
trips it stays open until ``reset()`` or ``restore_state()``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import UTC, datetime

from journeyforge.config import Settings
from journeyforge.constants import (
    FINGERPRINT_HISTORY_LIMIT,
    REFINE_COOLDOWN_MS,
    REFINE_MAX_ATTEMPTS,
    REFINE_MAX_TOKEN_BUDGET,
    REFINE_OSCILLATION_WINDOW,
    REFINE_SAME_ERROR_THRESHOLD,
    REFINE_TOTAL_TIMEOUT_MS,
    CircuitOpenReason,
)
from journeyforge.refinement.models import CircuitBreakerState

logger = logging.getLogger(__name__)

type Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class CircuitBreakerConfig:
    max_attempts: int = REFINE_MAX_ATTEMPTS
    same_error_threshold: int = REFINE_SAME_ERROR_THRESHOLD
    oscillation_detection: bool = True
    oscillation_window: int = REFINE_OSCILLATION_WINDOW
    total_timeout_ms: int = REFINE_TOTAL_TIMEOUT_MS
    cooldown_ms: int = REFINE_COOLDOWN_MS
    max_token_budget: int = REFINE_MAX_TOKEN_BUDGET
    count_skipped_attempts: bool = True

    @classmethod
    def from_settings(cls, settings: Settings) -> CircuitBreakerConfig:
        return cls(
            max_attempts=settings.refinement_max_attempts,
            same_error_threshold=settings.refinement_same_error_threshold,
            oscillation_detection=settings.refinement_oscillation_detection,
            oscillation_window=settings.refinement_oscillation_window,
            total_timeout_ms=settings.refinement_total_timeout_ms,
            cooldown_ms=settings.refinement_cooldown_ms,
            max_token_budget=settings.refinement_max_token_budget,
            count_skipped_attempts=settings.refinement_count_skipped_attempts,
        )


def attempt_signature(fingerprints: Iterable[str]) -> str:
    """Order-independent identity of the error set seen by one attempt."""
    return "|".join(sorted(set(fingerprints)))


def trailing_runs(signatures: list[str]) -> dict[str, int]:
    """Per fingerprint of the latest attempt, its run of consecutive attempts.

    Other errors may come and go around a fingerprint without breaking
    its run.
    """
    if not signatures or not signatures[-1]:
        return {}
    runs: dict[str, int] = {}
    for fp in signatures[-1].split("|"):
        run = 0
        for sig in reversed(signatures):
            if fp not in sig.split("|"):
                break
            run += 1
        runs[fp] = run
    return runs


class CircuitBreaker:
    """Tracks attempts, tokens and error shapes; opens on the first limit hit.

    Conditions are evaluated after every recorded attempt in a fixed
    order: max attempts, same error, oscillation, timeout, budget.
    """

    def __init__(
        self,
        config: CircuitBreakerConfig | None = None,
        state: CircuitBreakerState | None = None,
        clock: Clock = _utcnow,
    ) -> None:
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._state = (
            state.model_copy(deep=True)
            if state is not None
            else CircuitBreakerState(started_at=clock())
        )

    # ── Recording ────────────────────────────────────────

    def record_attempt(
        self,
        fingerprints: Iterable[str],
        tokens: int = 0,
        skipped: bool = False,
    ) -> bool:
        """Record one attempt; returns True if the circuit is now open."""
        if self._state.is_open:
            return True

        fps = list(fingerprints)
        state = self._state
        state.attempt_count += 1
        state.tokens_used += max(tokens, 0)
        state.error_history.extend(fps)
        if len(state.error_history) > FINGERPRINT_HISTORY_LIMIT:
            del state.error_history[:-FINGERPRINT_HISTORY_LIMIT]
        if not skipped or self.config.count_skipped_attempts:
            state.attempt_signatures.append(attempt_signature(fps))
            if len(state.attempt_signatures) > FINGERPRINT_HISTORY_LIMIT:
                del state.attempt_signatures[:-FINGERPRINT_HISTORY_LIMIT]

        reason = self._evaluate()
        if reason is not None:
            self._open(reason)
        return state.is_open

    def _evaluate(self) -> CircuitOpenReason | None:
        if self._state.attempt_count >= self.config.max_attempts:
            return CircuitOpenReason.MAX_ATTEMPTS
        if self._same_error_run() >= self.config.same_error_threshold:
            return CircuitOpenReason.SAME_ERROR
        if self.config.oscillation_detection and self._oscillating():
            return CircuitOpenReason.OSCILLATION
        if self._timed_out():
            return CircuitOpenReason.TIMEOUT
        if self._state.tokens_used >= self.config.max_token_budget:
            return CircuitOpenReason.BUDGET
        return None

    def _open(self, reason: CircuitOpenReason) -> None:
        self._state.is_open = True
        self._state.open_reason = reason
        logger.info(
            "event=refinement_circuit_open reason=%s attempts=%d tokens=%d",
            reason,
            self._state.attempt_count,
            self._state.tokens_used,
        )

    # ── Conditions ───────────────────────────────────────

    def _same_error_run(self) -> int:
        """Longest trailing run of attempts sharing one fingerprint."""
        return max(trailing_runs(self._state.attempt_signatures).values(), default=0)

    def _oscillating(self) -> bool:
        window = self.config.oscillation_window
        sigs = self._state.attempt_signatures
        if window < 3 or len(sigs) < window:
            return False
        recent = sigs[-window:]
        if len(set(recent)) != 2:
            return False
        return all(a != b for a, b in zip(recent, recent[1:], strict=False))

    def _timed_out(self) -> bool:
        elapsed = self._clock() - self._state.started_at
        return elapsed.total_seconds() * 1000 >= self.config.total_timeout_ms

    # ── Queries ──────────────────────────────────────────

    def can_attempt(self) -> bool:
        if self._state.is_open:
            return False
        if self._timed_out():
            self._open(CircuitOpenReason.TIMEOUT)
            return False
        return True

    @property
    def is_open(self) -> bool:
        return self._state.is_open

    @property
    def open_reason(self) -> CircuitOpenReason | None:
        return self._state.open_reason

    @property
    def remaining_attempts(self) -> int:
        return max(0, self.config.max_attempts - self._state.attempt_count)

    @property
    def remaining_token_budget(self) -> int:
        return max(0, self.config.max_token_budget - self._state.tokens_used)

    def would_exceed_budget(self, estimated_tokens: int) -> bool:
        return (
            self._state.tokens_used + estimated_tokens
            > self.config.max_token_budget
        )

    @property
    def state(self) -> CircuitBreakerState:
        """Snapshot suitable for persisting with the session."""
        return self._state.model_copy(deep=True)

    # ── Lifecycle ────────────────────────────────────────

    def reset(self) -> None:
        self._state = CircuitBreakerState(started_at=self._clock())

    def restore_state(self, state: CircuitBreakerState) -> None:
        """Adopt a persisted state as-is; recorded attempts are not replayed."""
        self._state = state.model_copy(deep=True)
        logger.debug(
            "event=refinement_circuit_restored attempts=%d open=%s",
            self._state.attempt_count,
            self._state.is_open,
        )
