"""Refinement data model: errors, fixes, attempts and sessions.

Everything here is a pydantic model so a session can be written to disk
mid-flight and resumed by a later process.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel, Field

from journeyforge.constants import (
    SESSION_SCHEMA_VERSION,
    CircuitOpenReason,
    ErrorCategory,
    ErrorSeverity,
    FixOutcome,
    FixType,
    LoopState,
    RefinementStatus,
    SuggestedAction,
    Trend,
)
from journeyforge.llkb.store import Lesson

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(UTC)


# ── Errors ───────────────────────────────────────────────


class ErrorLocation(BaseModel):
    file: str
    line: int | None = None
    column: int | None = None
    test_name: str | None = None


class ErrorAnalysis(BaseModel):
    """One classified failure. Equal fingerprints mean the same failure."""

    category: ErrorCategory
    severity: ErrorSeverity
    message: str
    fingerprint: str
    original_error: str = ""
    location: ErrorLocation | None = None
    selector: str | None = None
    expected_value: str | None = None
    actual_value: str | None = None
    stack_trace: str | None = None
    timestamp: datetime = Field(default_factory=_now)


# ── Fixes ────────────────────────────────────────────────


class FixLocation(BaseModel):
    file: str = ""
    line: int | None = None
    step_description: str | None = None


class CodeFix(BaseModel):
    type: FixType = FixType.OTHER
    description: str = ""
    original_code: str
    fixed_code: str
    location: FixLocation = Field(default_factory=FixLocation)
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    reasoning: str = ""


class FixAttempt(BaseModel):
    attempt_number: int
    timestamp: datetime = Field(default_factory=_now)
    error: ErrorAnalysis | None = None
    proposed_fixes: list[CodeFix] = Field(default_factory=lambda: list[CodeFix]())
    applied_fix: CodeFix | None = None
    outcome: FixOutcome
    new_errors: list[ErrorAnalysis] = Field(
        default_factory=lambda: list[ErrorAnalysis]()
    )
    tokens_used: int = 0
    skip_reason: str | None = None


# ── Breaker / convergence state ──────────────────────────


class CircuitBreakerState(BaseModel):
    is_open: bool = False
    open_reason: CircuitOpenReason | None = None
    attempt_count: int = 0
    # Flat, bounded history of every recorded fingerprint.
    error_history: list[str] = Field(default_factory=lambda: list[str]())
    # One signature per counted attempt (sorted unique fingerprints).
    attempt_signatures: list[str] = Field(default_factory=lambda: list[str]())
    started_at: datetime = Field(default_factory=_now)
    tokens_used: int = 0


class ConvergenceInfo(BaseModel):
    converged: bool = False
    attempts: int = 0
    error_count_history: list[int] = Field(default_factory=lambda: list[int]())
    unique_error_history: list[list[str]] = Field(
        default_factory=lambda: list[list[str]]()
    )
    last_improvement: int | None = None
    stagnation_count: int = 0
    trend: Trend = Trend.STAGNATING
    improvement_pct: int = 0
    oscillating: bool = False


# ── Session ──────────────────────────────────────────────


class RefinementSession(BaseModel):
    """Attempt history for one journey's refinement.

    Only the refinement loop mutates a session. Once ``close()`` sets a
    terminal status the session is read-only: ``add_attempt`` raises.
    """

    version: int = SESSION_SCHEMA_VERSION
    session_id: str
    journey_id: str
    test_file: str
    parent_session_id: str | None = None
    started_at: datetime = Field(default_factory=_now)
    ended_at: datetime | None = None
    original_code: str
    current_code: str
    state: LoopState = LoopState.IDLE
    attempts: list[FixAttempt] = Field(default_factory=lambda: list[FixAttempt]())
    circuit_breaker: CircuitBreakerState = Field(
        default_factory=CircuitBreakerState
    )
    convergence: ConvergenceInfo = Field(default_factory=ConvergenceInfo)
    final_status: RefinementStatus | None = None
    total_tokens: int = 0

    @property
    def closed(self) -> bool:
        return self.final_status is not None

    @property
    def next_attempt_number(self) -> int:
        return len(self.attempts) + 1

    def add_attempt(self, attempt: FixAttempt) -> None:
        if self.closed:
            msg = f"Session {self.session_id} is closed ({self.final_status})"
            raise RuntimeError(msg)
        self.attempts.append(attempt)

    def close(self, status: RefinementStatus) -> None:
        if self.closed:
            msg = f"Session {self.session_id} is already closed"
            raise RuntimeError(msg)
        self.final_status = status
        self.ended_at = _now()

    def save(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.model_dump_json(indent=2), encoding="utf-8")

    @classmethod
    def load(cls, path: Path) -> RefinementSession:
        """Load a persisted session.

        Raises:
            FileNotFoundError: If ``path`` does not exist.
            ValueError: If the file is not a valid session document.
        """
        if not path.exists():
            msg = f"Session file not found: {path}"
            raise FileNotFoundError(msg)
        raw = path.read_text(encoding="utf-8")
        try:
            version = json.loads(raw).get("version", 0)
        except (json.JSONDecodeError, AttributeError) as exc:
            msg = f"Invalid session file {path}: {exc}"
            raise ValueError(msg) from exc
        if version != SESSION_SCHEMA_VERSION:
            logger.info(
                "event=session_migrated from_version=%s to_version=%d",
                version,
                SESSION_SCHEMA_VERSION,
            )
        session = cls.model_validate_json(raw)
        session.version = SESSION_SCHEMA_VERSION
        return session


# ── Results ──────────────────────────────────────────────


class RefinementDiagnostics(BaseModel):
    attempts: int = 0
    last_error: str = ""
    trend: Trend = Trend.STAGNATING
    convergence_failure: bool = False
    same_error_repeated: bool = False
    repeated_fingerprints: list[str] = Field(default_factory=lambda: list[str]())
    oscillation_detected: bool = False
    budget_exhausted: bool = False
    timed_out: bool = False


class DeadEndResult(BaseModel):
    """Controlled stop of a session that did not reach SUCCESS."""

    status: RefinementStatus
    reason: str
    suggested_action: SuggestedAction
    diagnostics: RefinementDiagnostics


@dataclass
class RefinementResult:
    session: RefinementSession
    final_code: str
    remaining_errors: list[ErrorAnalysis] = field(
        default_factory=lambda: list[ErrorAnalysis]()
    )
    applied_fixes: list[CodeFix] = field(default_factory=lambda: list[CodeFix]())
    lessons: list[Lesson] = field(default_factory=lambda: list[Lesson]())
    dead_end: DeadEndResult | None = None
    # Set when the repair generator itself failed (LLM unreachable, bad output).
    llm_failure: str | None = None

    @property
    def success(self) -> bool:
        return self.session.final_status == RefinementStatus.SUCCESS
