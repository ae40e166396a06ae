"""Refinement loop: propose a fix, apply it, re-run, judge, repeat.

State machine::

    IDLE -> REFINING <-> EXECUTING -> DONE | BLOCKED | DEAD_END | FAILED

Every iteration records exactly one ``FixAttempt``. The circuit breaker
alone decides when to stop; the convergence detector only informs the
dead-end diagnostics.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from journeyforge.config import Settings
from journeyforge.constants import (
    REFINE_ESTIMATED_TOKENS_PER_ATTEMPT,
    CircuitOpenReason,
    Confidence,
    FixOutcome,
    FixType,
    LoopState,
    RefinementStatus,
    SuggestedAction,
    Trend,
)
from journeyforge.execution.models import RunOptions, TestExecutor
from journeyforge.llkb.store import (
    Lesson,
    LessonContext,
    LessonStore,
    RelevantLesson,
)
from journeyforge.llm.client import GenerateOptions, LLMClient, TokenUsage
from journeyforge.observability.cost_tracker import CostTracker
from journeyforge.observability.dispatcher import TraceDispatcher
from journeyforge.observability.emitters import (
    emit_attempt,
    emit_error,
    emit_llm_call,
    emit_transition,
)
from journeyforge.refinement.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    Clock,
    attempt_signature,
    trailing_runs,
)
from journeyforge.refinement.convergence import ConvergenceDetector
from journeyforge.refinement.error_parser import (
    errors_from_execution,
    is_environmental,
    parse_error,
)
from journeyforge.refinement.lessons import extract_lessons
from journeyforge.refinement.models import (
    CodeFix,
    DeadEndResult,
    ErrorAnalysis,
    FixAttempt,
    FixLocation,
    RefinementDiagnostics,
    RefinementResult,
    RefinementSession,
)
from journeyforge.refinement.prompts import (
    MAX_PROMPT_LESSONS,
    REFINEMENT_SYSTEM_PROMPT,
    build_fix_prompt,
)
from journeyforge.resilience.errors import LLMError, LLMErrorKind

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^```(?:json)?\s*\n(.*?)```\s*$", re.DOTALL)

_STATUS_FOR_REASON: dict[CircuitOpenReason, RefinementStatus] = {
    CircuitOpenReason.MAX_ATTEMPTS: RefinementStatus.MAX_ATTEMPTS_REACHED,
    CircuitOpenReason.SAME_ERROR: RefinementStatus.SAME_ERROR_LOOP,
    CircuitOpenReason.OSCILLATION: RefinementStatus.OSCILLATION_DETECTED,
    CircuitOpenReason.TIMEOUT: RefinementStatus.TIMEOUT,
    CircuitOpenReason.BUDGET: RefinementStatus.BUDGET_EXCEEDED,
}

_FINAL_STATE: dict[RefinementStatus, LoopState] = {
    RefinementStatus.SUCCESS: LoopState.DONE,
    RefinementStatus.CANNOT_FIX: LoopState.BLOCKED,
    RefinementStatus.ABORTED: LoopState.FAILED,
}


# ── Repair generator ─────────────────────────────────────


@dataclass(frozen=True)
class FixProposal:
    fixes: list[CodeFix]
    token_usage: TokenUsage = field(default_factory=TokenUsage)
    reasoning: str = ""
    model: str = ""
    # LLKB lessons shown to the model for this proposal
    lesson_ids: tuple[str, ...] = ()


class FixGenerator(Protocol):
    """Produces ranked candidate fixes for the current failures."""

    async def generate_fixes(
        self,
        code: str,
        errors: list[ErrorAnalysis],
        attempts: list[FixAttempt],
    ) -> FixProposal: ...


class _FixLocationPayload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    file: str = ""
    line: int | None = None
    step_description: str | None = None


class _FixPayload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    type: str = FixType.OTHER.value
    description: str = ""
    original_code: str
    fixed_code: str
    location: _FixLocationPayload = Field(default_factory=_FixLocationPayload)
    confidence: float = 0.5
    reasoning: str = ""

    def to_fix(self) -> CodeFix:
        try:
            fix_type = FixType(self.type.upper())
        except ValueError:
            fix_type = FixType.OTHER
        return CodeFix(
            type=fix_type,
            description=self.description,
            original_code=self.original_code,
            fixed_code=self.fixed_code,
            location=FixLocation(
                file=self.location.file,
                line=self.location.line,
                step_description=self.location.step_description,
            ),
            confidence=min(1.0, max(0.0, self.confidence)),
            reasoning=self.reasoning,
        )


class _FixResponse(BaseModel):
    reasoning: str = ""
    fixes: list[_FixPayload] = Field(default_factory=lambda: list[_FixPayload]())


def parse_fix_response(content: str) -> tuple[list[CodeFix], str]:
    """Parse the repair generator's JSON reply.

    Raises:
        ValueError: If the content is not JSON or does not fit the schema.
    """
    text = content.strip()
    m = _FENCE_RE.match(text)
    if m:
        text = m.group(1).strip()
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        msg = f"Fix response is not valid JSON: {exc}"
        raise ValueError(msg) from exc
    try:
        parsed = _FixResponse.model_validate(data)
    except ValidationError as exc:
        msg = f"Fix response does not match schema: {exc.error_count()} errors"
        raise ValueError(msg) from exc
    fixes = sorted(
        (p.to_fix() for p in parsed.fixes),
        key=lambda f: f.confidence,
        reverse=True,
    )
    return fixes, parsed.reasoning


class LLMFixGenerator:
    """Asks the LLM for fixes, with relevant LLKB lessons in the prompt."""

    def __init__(
        self,
        llm: LLMClient,
        settings: Settings | None = None,
        lesson_store: LessonStore | None = None,
    ) -> None:
        self._llm = llm
        self._settings = settings or Settings()
        self._lessons = lesson_store

    async def generate_fixes(
        self,
        code: str,
        errors: list[ErrorAnalysis],
        attempts: list[FixAttempt],
    ) -> FixProposal:
        relevant: list[RelevantLesson] = []
        if self._lessons is not None and errors:
            relevant = self._lessons.find_relevant(
                LessonContext(
                    error_type=errors[0].category.value,
                    error_message=errors[0].message,
                )
            )
        settings = self._settings
        try:
            response = await self._llm.generate(
                build_fix_prompt(code, errors, attempts, relevant),
                REFINEMENT_SYSTEM_PROMPT,
                GenerateOptions(
                    temperature=settings.llm_temperature,
                    max_tokens=settings.llm_max_tokens,
                    timeout_ms=settings.llm_timeout_seconds * 1000,
                    json_mode=True,
                ),
            )
        except Exception as exc:
            raise LLMError.from_exception(exc) from exc
        try:
            fixes, reasoning = parse_fix_response(response.content)
        except ValueError as exc:
            raise LLMError(str(exc), LLMErrorKind.INVALID_RESPONSE) from exc
        return FixProposal(
            fixes=fixes,
            token_usage=response.token_usage,
            reasoning=reasoning,
            model=response.model,
            lesson_ids=tuple(r.lesson.id for r in relevant[:MAX_PROMPT_LESSONS]),
        )


# ── Loop ─────────────────────────────────────────────────


@dataclass(frozen=True)
class RefinementConfig:
    breaker: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)
    forbidden_fix_types: frozenset[FixType] = frozenset()
    min_fix_confidence: float = Confidence.FIX_MIN_VIABLE
    stop_on_environmental: bool = True
    run_timeout_seconds: float = 120.0
    learn_lessons: bool = True
    lesson_min_confidence: float = Confidence.LESSON_MIN
    max_lessons_per_session: int = 10

    @classmethod
    def from_settings(cls, settings: Settings) -> RefinementConfig:
        return cls(
            breaker=CircuitBreakerConfig.from_settings(settings),
            forbidden_fix_types=frozenset(settings.refinement_forbidden_fix_types),
            min_fix_confidence=settings.refinement_min_fix_confidence,
            stop_on_environmental=settings.refinement_stop_on_environmental_errors,
            run_timeout_seconds=float(settings.runner_timeout_seconds),
            learn_lessons=settings.refinement_learn_lessons,
            lesson_min_confidence=settings.refinement_lesson_min_confidence,
            max_lessons_per_session=settings.refinement_max_lessons_per_session,
        )


def suggested_action(status: RefinementStatus, trend: Trend) -> SuggestedAction:
    match status:
        case RefinementStatus.SAME_ERROR_LOOP | RefinementStatus.OSCILLATION_DETECTED:
            return SuggestedAction.JOURNEY_REVISION
        case RefinementStatus.TIMEOUT | RefinementStatus.BUDGET_EXCEEDED:
            return SuggestedAction.RETRY
        case RefinementStatus.MAX_ATTEMPTS_REACHED:
            if trend == Trend.IMPROVING:
                return SuggestedAction.MANUAL_REVIEW
            return SuggestedAction.JOURNEY_REVISION
        case RefinementStatus.ABORTED:
            return SuggestedAction.ABORT
        case _:
            return SuggestedAction.MANUAL_REVIEW


_REASONS: dict[RefinementStatus, str] = {
    RefinementStatus.MAX_ATTEMPTS_REACHED: "Maximum refinement attempts reached",
    RefinementStatus.SAME_ERROR_LOOP: "The same failure repeated after each fix",
    RefinementStatus.OSCILLATION_DETECTED: "Fixes alternate between two failure states",
    RefinementStatus.TIMEOUT: "Refinement time limit exceeded",
    RefinementStatus.BUDGET_EXCEEDED: "Token budget exhausted",
    RefinementStatus.CANNOT_FIX: "No applicable fix could be generated",
    RefinementStatus.ABORTED: "Refinement was cancelled",
}


def build_dead_end(
    status: RefinementStatus,
    session: RefinementSession,
    errors: list[ErrorAnalysis],
    detector: ConvergenceDetector,
) -> DeadEndResult:
    info = detector.analyze()
    repeated: list[str] = []
    if status == RefinementStatus.SAME_ERROR_LOOP:
        runs = trailing_runs(session.circuit_breaker.attempt_signatures)
        longest = max(runs.values(), default=0)
        repeated = sorted(fp for fp, run in runs.items() if run == longest)
    return DeadEndResult(
        status=status,
        reason=_REASONS.get(status, status.value),
        suggested_action=suggested_action(status, info.trend),
        diagnostics=RefinementDiagnostics(
            attempts=len(session.attempts),
            last_error=errors[0].message if errors else "",
            trend=info.trend,
            convergence_failure=info.trend != Trend.IMPROVING,
            same_error_repeated=status == RefinementStatus.SAME_ERROR_LOOP,
            repeated_fingerprints=repeated,
            oscillation_detected=(
                status == RefinementStatus.OSCILLATION_DETECTED or info.oscillating
            ),
            budget_exhausted=status == RefinementStatus.BUDGET_EXCEEDED,
            timed_out=status == RefinementStatus.TIMEOUT,
        ),
    )


def _fingerprints(errors: list[ErrorAnalysis]) -> list[str]:
    return [e.fingerprint for e in errors]


class RefinementLoop:
    def __init__(
        self,
        fixer: FixGenerator | None,
        executor: TestExecutor,
        config: RefinementConfig | None = None,
        cost_tracker: CostTracker | None = None,
        lesson_store: LessonStore | None = None,
        dispatcher: TraceDispatcher | None = None,
        sessions_dir: Path | None = None,
        clock: Clock | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._fixer = fixer
        self._executor = executor
        self.config = config or RefinementConfig()
        self._cost = cost_tracker
        self._lessons = lesson_store
        self._dispatcher = dispatcher
        self._sessions_dir = sessions_dir
        self._clock = clock
        self._sleep = sleep
        self._cancelled = False

    def cancel(self) -> None:
        """Stop cooperatively before the next attempt."""
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def _breaker(self) -> CircuitBreaker:
        if self._clock is not None:
            return CircuitBreaker(self.config.breaker, clock=self._clock)
        return CircuitBreaker(self.config.breaker)

    # ── Entry points ─────────────────────────────────────

    async def run(
        self,
        journey_id: str,
        code: str,
        initial_errors: list[ErrorAnalysis],
        test_file: Path,
    ) -> RefinementResult:
        """Refine ``test_file`` (currently holding ``code``) until it passes."""
        session = RefinementSession(
            session_id=f"ref-{uuid.uuid4().hex[:12]}",
            journey_id=journey_id,
            test_file=str(test_file),
            original_code=code,
            current_code=code,
        )
        breaker = self._breaker()
        session.circuit_breaker = breaker.state
        detector = ConvergenceDetector()
        detector.record(len(initial_errors), _fingerprints(initial_errors))
        logger.info(
            "event=refinement_start journey=%s session=%s errors=%d",
            journey_id,
            session.session_id,
            len(initial_errors),
        )
        return await self._drive(session, initial_errors, breaker, detector)

    async def resume(
        self,
        previous: RefinementSession,
        errors: list[ErrorAnalysis] | None = None,
    ) -> RefinementResult:
        """Continue a persisted session without re-counting its attempts.

        An unfinished session continues in place. A closed session is
        continued as a child session that inherits its attempt history;
        if its breaker had opened, the child starts a fresh breaker.
        """
        if previous.closed:
            session = previous.model_copy(
                deep=True,
                update={
                    "session_id": f"ref-{uuid.uuid4().hex[:12]}",
                    "parent_session_id": previous.session_id,
                    "final_status": None,
                    "ended_at": None,
                    "state": LoopState.IDLE,
                },
            )
        else:
            session = previous

        breaker = self._breaker()
        if not session.circuit_breaker.is_open:
            breaker.restore_state(session.circuit_breaker)
        session.circuit_breaker = breaker.state

        detector = ConvergenceDetector()
        detector.restore_from_history(
            session.convergence.error_count_history,
            session.convergence.unique_error_history,
        )

        test_file = Path(session.test_file)
        if errors is None:
            test_file.write_text(session.current_code, encoding="utf-8")
            errors = await self._execute(test_file)
        logger.info(
            "event=refinement_resume journey=%s session=%s parent=%s"
            " prior_attempts=%d errors=%d",
            session.journey_id,
            session.session_id,
            session.parent_session_id,
            len(session.attempts),
            len(errors),
        )
        return await self._drive(session, errors, breaker, detector)

    # ── Core ─────────────────────────────────────────────

    async def _drive(
        self,
        session: RefinementSession,
        errors: list[ErrorAnalysis],
        breaker: CircuitBreaker,
        detector: ConvergenceDetector,
    ) -> RefinementResult:
        test_file = Path(session.test_file)
        code = session.current_code
        applied: list[CodeFix] = []
        ever_proposed = any(a.proposed_fixes for a in session.attempts)
        llm_failure: str | None = None

        while True:
            if self._cancelled:
                status = RefinementStatus.ABORTED
                break
            if not errors:
                status = RefinementStatus.SUCCESS
                break
            if not breaker.can_attempt():
                reason = breaker.open_reason or CircuitOpenReason.MAX_ATTEMPTS
                status = _STATUS_FOR_REASON[reason]
                break
            if self._cost is not None and self._cost.would_exceed_limit(
                REFINE_ESTIMATED_TOKENS_PER_ATTEMPT
            ):
                status = RefinementStatus.BUDGET_EXCEEDED
                break
            if self._fixer is None:
                status = RefinementStatus.CANNOT_FIX
                break
            if self.config.stop_on_environmental and all(
                is_environmental(e) for e in errors
            ):
                logger.info(
                    "event=refinement_environmental journey=%s category=%s",
                    session.journey_id,
                    errors[0].category.value,
                )
                status = RefinementStatus.CANNOT_FIX
                break

            await self._transition(session, LoopState.REFINING)
            number = session.next_attempt_number
            primary = errors[0]

            started = time.monotonic()
            try:
                proposal = await self._fixer.generate_fixes(
                    code, errors, list(session.attempts)
                )
            except LLMError as exc:
                llm_failure = exc.kind.value
                logger.warning(
                    "event=fix_generation_failed journey=%s kind=%s error=%s",
                    session.journey_id,
                    exc.kind.value,
                    exc,
                )
                if self._dispatcher is not None:
                    await emit_error(
                        self._dispatcher,
                        session.journey_id,
                        "refinement",
                        str(exc),
                        exc.kind.value,
                    )
                session.add_attempt(
                    FixAttempt(
                        attempt_number=number,
                        error=primary,
                        outcome=FixOutcome.FAILURE,
                        new_errors=[parse_error(str(exc), session.test_file)],
                    )
                )
                status = RefinementStatus.CANNOT_FIX
                break

            tokens = proposal.token_usage.total_tokens
            await self._track(session, proposal, time.monotonic() - started)

            if not proposal.fixes:
                self._record_skip(
                    session, number, primary, [], tokens, "No fixes proposed"
                )
                if not ever_proposed:
                    status = RefinementStatus.CANNOT_FIX
                    break
                breaker.record_attempt(_fingerprints(errors), tokens, skipped=True)
                await self._after_attempt(
                    session, breaker, detector, FixOutcome.SKIPPED, errors, tokens
                )
                continue
            ever_proposed = True

            fix, skip_reason = self._select(proposal.fixes, code)
            if fix is None:
                self._record_skip(
                    session, number, primary, proposal.fixes, tokens, skip_reason
                )
                breaker.record_attempt(_fingerprints(errors), tokens, skipped=True)
                await self._after_attempt(
                    session, breaker, detector, FixOutcome.SKIPPED, errors, tokens
                )
                continue

            candidate = code.replace(fix.original_code, fix.fixed_code, 1)
            test_file.write_text(candidate, encoding="utf-8")
            await self._transition(session, LoopState.EXECUTING)
            try:
                new_errors = await self._execute(test_file)
            except Exception as exc:
                logger.warning(
                    "event=refinement_run_failed journey=%s attempt=%d error=%s",
                    session.journey_id,
                    number,
                    exc,
                )
                new_errors = [
                    parse_error(f"{type(exc).__name__}: {exc}", session.test_file)
                ]
                outcome = FixOutcome.FAILURE
            else:
                outcome = self._judge(errors, new_errors)
                self._lesson_feedback(proposal.lesson_ids, outcome)

            if outcome == FixOutcome.FAILURE:
                test_file.write_text(code, encoding="utf-8")
            else:
                code = candidate
                applied.append(fix)
                errors = new_errors
            session.current_code = code

            session.add_attempt(
                FixAttempt(
                    attempt_number=number,
                    error=primary,
                    proposed_fixes=proposal.fixes,
                    applied_fix=fix,
                    outcome=outcome,
                    new_errors=new_errors,
                    tokens_used=tokens,
                )
            )
            new_fps = _fingerprints(new_errors)
            detector.record(len(new_errors), new_fps)
            breaker.record_attempt(new_fps, tokens)
            await self._after_attempt(
                session, breaker, detector, outcome, new_errors, tokens
            )

        return await self._finish(
            session, status, code, errors, applied, detector, llm_failure
        )

    def _select(
        self, fixes: list[CodeFix], code: str
    ) -> tuple[CodeFix | None, str]:
        """Highest-confidence fix that policy allows and that applies to ``code``."""
        reason = "No candidate fix was applicable"
        for fix in sorted(fixes, key=lambda f: f.confidence, reverse=True):
            if fix.type in self.config.forbidden_fix_types:
                reason = f"Fix type {fix.type} is forbidden"
                continue
            if fix.confidence < self.config.min_fix_confidence:
                reason = (
                    f"Fix confidence {fix.confidence:.2f} is below"
                    f" {self.config.min_fix_confidence}"
                )
                continue
            if not fix.original_code or fix.original_code not in code:
                reason = "Original code snippet not found in test source"
                continue
            return fix, ""
        return None, reason

    @staticmethod
    def _judge(
        before: list[ErrorAnalysis], after: list[ErrorAnalysis]
    ) -> FixOutcome:
        if not after:
            return FixOutcome.SUCCESS
        before_fps = set(_fingerprints(before))
        after_fps = set(_fingerprints(after))
        if len(after) < len(before) or before_fps - after_fps:
            return FixOutcome.PARTIAL
        return FixOutcome.FAILURE

    async def _execute(self, test_file: Path) -> list[ErrorAnalysis]:
        result = await self._executor.run(
            RunOptions(
                test_files=[test_file],
                timeout_seconds=self.config.run_timeout_seconds,
            )
        )
        errors = errors_from_execution(result)
        if not errors and not result.passed:
            errors = [
                parse_error(
                    f"Test run {result.status} (exit code {result.exit_code})",
                    str(test_file),
                )
            ]
        return errors

    def _record_skip(
        self,
        session: RefinementSession,
        number: int,
        primary: ErrorAnalysis,
        proposed: list[CodeFix],
        tokens: int,
        reason: str,
    ) -> None:
        logger.info(
            "event=fix_skipped journey=%s attempt=%d reason=%s",
            session.journey_id,
            number,
            reason,
        )
        session.add_attempt(
            FixAttempt(
                attempt_number=number,
                error=primary,
                proposed_fixes=proposed,
                outcome=FixOutcome.SKIPPED,
                tokens_used=tokens,
                skip_reason=reason,
            )
        )

    async def _track(
        self, session: RefinementSession, proposal: FixProposal, elapsed_s: float
    ) -> None:
        usage = proposal.token_usage
        session.total_tokens += usage.total_tokens
        cost = 0.0
        if self._cost is not None:
            cost = self._cost.track_usage(usage, proposal.model or None)
        if self._dispatcher is not None:
            await emit_llm_call(
                self._dispatcher,
                session.journey_id,
                proposal.model or "unknown",
                usage.prompt_tokens,
                usage.completion_tokens,
                elapsed_s * 1000,
                cost,
                purpose="refinement",
            )

    async def _after_attempt(
        self,
        session: RefinementSession,
        breaker: CircuitBreaker,
        detector: ConvergenceDetector,
        outcome: FixOutcome,
        errors: list[ErrorAnalysis],
        tokens: int,
    ) -> None:
        session.circuit_breaker = breaker.state
        session.convergence = detector.analyze()
        attempt = session.attempts[-1]
        logger.info(
            "event=refinement_attempt journey=%s attempt=%d outcome=%s"
            " errors=%d signature=%s",
            session.journey_id,
            attempt.attempt_number,
            outcome.value,
            len(errors),
            attempt_signature(_fingerprints(errors)) or "-",
        )
        if self._dispatcher is not None:
            await emit_attempt(
                self._dispatcher,
                session.journey_id,
                attempt.attempt_number,
                outcome.value,
                len(errors),
                tokens,
            )
        self._persist(session)
        cooldown_ms = self.config.breaker.cooldown_ms
        if errors and not breaker.is_open and cooldown_ms > 0:
            await self._sleep(cooldown_ms / 1000)

    def _lesson_feedback(
        self, lesson_ids: tuple[str, ...], outcome: FixOutcome
    ) -> None:
        """Credit or debit the lessons that informed an applied fix.

        Partial progress leaves their confidence unchanged.
        """
        if self._lessons is None:
            return
        for key in lesson_ids:
            if outcome == FixOutcome.SUCCESS:
                self._lessons.record_success(key)
            elif outcome == FixOutcome.FAILURE:
                self._lessons.record_failure(key)

    async def _transition(self, session: RefinementSession, state: LoopState) -> None:
        if session.state == state:
            return
        previous = session.state
        session.state = state
        if self._dispatcher is not None:
            await emit_transition(
                self._dispatcher, session.journey_id, previous.value, state.value
            )

    def _persist(self, session: RefinementSession) -> None:
        if self._sessions_dir is not None:
            session.save(self._sessions_dir / f"{session.session_id}.json")

    async def _finish(
        self,
        session: RefinementSession,
        status: RefinementStatus,
        code: str,
        errors: list[ErrorAnalysis],
        applied: list[CodeFix],
        detector: ConvergenceDetector,
        llm_failure: str | None,
    ) -> RefinementResult:
        await self._transition(session, _FINAL_STATE.get(status, LoopState.DEAD_END))
        session.current_code = code
        session.convergence = detector.analyze()
        session.close(status)
        self._persist(session)

        lessons: list[Lesson] = []
        if status == RefinementStatus.SUCCESS and self.config.learn_lessons:
            lessons = extract_lessons(
                session,
                min_confidence=self.config.lesson_min_confidence,
                max_per_session=self.config.max_lessons_per_session,
            )
            if self._lessons is not None and lessons:
                lessons = self._lessons.add_lessons(lessons)

        dead_end = (
            None
            if status == RefinementStatus.SUCCESS
            else build_dead_end(status, session, errors, detector)
        )
        logger.info(
            "event=refinement_done journey=%s session=%s status=%s attempts=%d"
            " tokens=%d lessons=%d",
            session.journey_id,
            session.session_id,
            status.value,
            len(session.attempts),
            session.total_tokens,
            len(lessons),
        )
        return RefinementResult(
            session=session,
            final_code=code,
            remaining_errors=errors,
            applied_fixes=applied,
            lessons=lessons,
            dead_end=dead_end,
            llm_failure=llm_failure,
        )
