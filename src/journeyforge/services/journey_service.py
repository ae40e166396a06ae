"""Entry operations: generate, validate, verify and refine journeys.

Every operation works per journey and isolates failures: one journey
whose LLM calls fail is marked ``LLM_UNAVAILABLE`` (or
``GENERATION_FAILED``) while the others carry on.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path

from journeyforge.codegen.generator import generate_test
from journeyforge.confidence.agreement import (
    SAMPLING_SYSTEM_PROMPT,
    build_sampling_prompt,
    extract_code,
    sample_candidates,
)
from journeyforge.confidence.patterns import (
    patterns_from_glossary,
    patterns_from_lessons,
)
from journeyforge.confidence.schemas import ConfidenceScore
from journeyforge.confidence.scorer import ConfidenceScorer
from journeyforge.config import Settings
from journeyforge.constants import (
    GenerationStrategy,
    JourneyPhaseStatus,
    Verdict,
)
from journeyforge.execution.models import ExecutionResult, RunOptions, TestExecutor
from journeyforge.execution.runner import PytestRunner
from journeyforge.ir.builder import build_ir_journey
from journeyforge.journey.loader import JourneyLoadError, load_journey
from journeyforge.journey.models import Journey
from journeyforge.journey.validator import (
    JourneyValidation,
    ValidationIssue,
    validate_journey,
)
from journeyforge.llkb.store import LessonStore
from journeyforge.llm.client import LiteLLMClient, LLMClient
from journeyforge.logger import RunLogger
from journeyforge.mapping.glossary import DEFAULT_GLOSSARY, Glossary, load_glossary
from journeyforge.mapping.step_mapper import MappingStats
from journeyforge.observability import initialize_tracing
from journeyforge.observability.cost_tracker import CostTracker
from journeyforge.observability.dispatcher import TraceDispatcher
from journeyforge.observability.emitters import (
    emit_command_end,
    emit_command_start,
    emit_error,
)
from journeyforge.observability.handlers.telemetry import TelemetryHandler
from journeyforge.pipeline import JourneyPool, PipelineStage
from journeyforge.planning.planner import (
    PlanErrorType,
    PlanResult,
    extract_code_context,
    generate_plan,
)
from journeyforge.refinement.error_parser import errors_from_execution
from journeyforge.refinement.loop import (
    LLMFixGenerator,
    RefinementConfig,
    RefinementLoop,
)
from journeyforge.refinement.models import (
    ErrorAnalysis,
    RefinementResult,
    RefinementSession,
)
from journeyforge.resilience.errors import LLMError, LLMErrorKind

logger = logging.getLogger(__name__)

# Failure kinds meaning the model could not be reached at all.
_UNREACHABLE = frozenset(
    {
        LLMErrorKind.TIMEOUT.value,
        LLMErrorKind.RATE_LIMIT.value,
        LLMErrorKind.API_ERROR.value,
        LLMErrorKind.UNAVAILABLE.value,
    }
)
_PLAN_LLM_ERRORS = frozenset({PlanErrorType.LLM_ERROR, PlanErrorType.TIMEOUT})


@dataclass
class JourneyOutcome:
    """Result of one entry operation for one journey."""

    journey_id: str
    status: JourneyPhaseStatus
    test_file: Path | None = None
    code: str | None = None
    validation: JourneyValidation | None = None
    mapping: MappingStats | None = None
    plan: PlanResult | None = None
    confidence: ConfidenceScore | None = None
    execution: ExecutionResult | None = None
    refinement: RefinementResult | None = None
    error: str | None = None
    duration_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status in (
            JourneyPhaseStatus.GENERATED,
            JourneyPhaseStatus.PASSED,
            JourneyPhaseStatus.HEALED,
        )


@dataclass
class ServiceContext:
    """Session-scoped collaborators shared by every journey of a command."""

    settings: Settings
    llm: LLMClient | None = None
    executor: TestExecutor | None = None
    glossary: Glossary = DEFAULT_GLOSSARY
    cost_tracker: CostTracker = field(default_factory=CostTracker)
    lesson_store: LessonStore = field(default_factory=LessonStore)
    dispatcher: TraceDispatcher = field(default_factory=TraceDispatcher)
    run_logger: RunLogger | None = None

    @classmethod
    def create(
        cls,
        settings: Settings | None = None,
        *,
        llm: LLMClient | None = None,
        executor: TestExecutor | None = None,
        use_llm: bool = True,
    ) -> ServiceContext:
        cfg = settings or Settings()
        glossary = (
            load_glossary(cfg.glossary_path)
            if cfg.glossary_path is not None
            else DEFAULT_GLOSSARY
        )
        if llm is None and use_llm:
            llm = LiteLLMClient(cfg.litellm_model_chain)
        lesson_store = LessonStore(cfg.llkb_path).open()
        lesson_store.maintain()
        return cls(
            settings=cfg,
            llm=llm,
            executor=executor or PytestRunner.from_settings(cfg),
            glossary=glossary,
            cost_tracker=CostTracker.load(
                cfg.cost_snapshot_path,
                limit_usd=cfg.cost_limit_usd,
                limit_tokens=cfg.cost_limit_tokens,
            ),
            lesson_store=lesson_store,
            dispatcher=initialize_tracing(cfg),
            run_logger=RunLogger(cfg.log_dir, cfg.log_level),
        )

    def close(self) -> None:
        """Persist session state: lessons, cost snapshot and telemetry."""
        self.lesson_store.close()
        self.cost_tracker.save(self.settings.cost_snapshot_path)
        telemetry = self.dispatcher.get("telemetry")
        if isinstance(telemetry, TelemetryHandler):
            telemetry.flush()
        if self.run_logger is not None:
            self.run_logger.close()

    def scorer(self) -> ConfidenceScorer:
        return ConfidenceScorer.from_settings(
            self.settings,
            custom_patterns=patterns_from_glossary(self.glossary),
            llkb_patterns=patterns_from_lessons(self.lesson_store.lessons),
        )

    def log_stage(
        self, outcome: JourneyOutcome, stage: str, error: str | None = None
    ) -> None:
        if self.run_logger is None:
            return
        self.run_logger.log_stage(
            outcome.journey_id,
            stage,
            outcome.status.value,
            outcome.duration_ms,
            error or outcome.error,
        )


def _elapsed(t0: float) -> float:
    return (time.monotonic() - t0) * 1000


def _trace_id(command: str) -> str:
    return f"{command}_{uuid.uuid4().hex[:8]}"


# ── validate ─────────────────────────────────────────────


def validate_journey_file(
    path: Path, glossary: Glossary = DEFAULT_GLOSSARY
) -> JourneyValidation:
    """Load and validate one journey file; load problems become issues."""
    try:
        journey = load_journey(path)
    except (FileNotFoundError, JourneyLoadError) as exc:
        result = JourneyValidation(journey_id=path.stem)
        result.issues.append(ValidationIssue("file", str(exc)))
        return result
    return validate_journey(journey, glossary)


# ── generate ─────────────────────────────────────────────


async def _score(journey: Journey, code: str, ctx: ServiceContext) -> ConfidenceScore:
    """Confidence of ``code``; sampling problems fall back to static scoring."""
    scorer = ctx.scorer()
    settings = ctx.settings
    if not settings.confidence_sampling_enabled or ctx.llm is None:
        return scorer.score(code)
    try:
        responses = await sample_candidates(
            ctx.llm,
            build_sampling_prompt(journey.describe()),
            SAMPLING_SYSTEM_PROMPT,
            n=settings.confidence_sample_count,
            cost_tracker=ctx.cost_tracker,
        )
    except LLMError as exc:
        logger.warning(
            "event=sampling_failed journey=%s kind=%s", journey.id, exc.kind.value
        )
        return scorer.score(code)
    if not responses:
        return scorer.score(code)
    return scorer.score_samples([code, *(extract_code(r.content) for r in responses)])


def _llm_status(error: BaseException | str) -> JourneyPhaseStatus:
    if isinstance(error, LLMError):
        kind = error.kind.value
    else:
        kind = str(error)
    if kind in _UNREACHABLE:
        return JourneyPhaseStatus.LLM_UNAVAILABLE
    return JourneyPhaseStatus.GENERATION_FAILED


async def generate_journey(
    journey: Journey,
    ctx: ServiceContext,
    output_dir: Path,
    strategy: GenerationStrategy = GenerationStrategy.BLOCKS,
) -> JourneyOutcome:
    """Validate, optionally plan, generate and score one journey's test."""
    t0 = time.monotonic()
    outcome = JourneyOutcome(
        journey_id=journey.id, status=JourneyPhaseStatus.GENERATED
    )
    outcome.validation = validate_journey(journey, ctx.glossary)
    if not outcome.validation.valid:
        outcome.status = JourneyPhaseStatus.INVALID
        outcome.error = "; ".join(i.message for i in outcome.validation.errors)
        outcome.duration_ms = _elapsed(t0)
        ctx.log_stage(outcome, "validate")
        return outcome

    structure_comments: list[str] | None = None
    if ctx.settings.planner_enabled:
        outcome.plan = await generate_plan(
            journey, ctx.llm, ctx.settings, ctx.cost_tracker
        )
        if outcome.plan.success and outcome.plan.plan is not None:
            structure_comments = extract_code_context(outcome.plan.plan).comments
        elif not outcome.plan.fallback_used:
            outcome.status = (
                JourneyPhaseStatus.LLM_UNAVAILABLE
                if outcome.plan.error_type in _PLAN_LLM_ERRORS
                else JourneyPhaseStatus.GENERATION_FAILED
            )
            outcome.error = outcome.plan.message
            outcome.duration_ms = _elapsed(t0)
            ctx.log_stage(outcome, "plan")
            return outcome

    build = build_ir_journey(journey, ctx.glossary)
    outcome.mapping = build.stats
    test_file = output_dir / journey.test_filename
    existing = (
        test_file.read_text(encoding="utf-8") if test_file.exists() else None
    )
    generated = generate_test(
        build.ir,
        strategy,
        existing,
        structure_comments=structure_comments,
    )
    output_dir.mkdir(parents=True, exist_ok=True)
    test_file.write_text(generated.code, encoding="utf-8")
    outcome.test_file = test_file
    outcome.code = generated.code

    outcome.confidence = await _score(journey, generated.code, ctx)

    outcome.duration_ms = _elapsed(t0)
    logger.info(
        "event=journey_generated journey=%s file=%s verdict=%s overall=%.2f",
        journey.id,
        test_file,
        outcome.confidence.verdict.value,
        outcome.confidence.overall,
    )
    ctx.log_stage(outcome, "generate")
    return outcome


async def _run_pool(
    name: str,
    journeys: list[Journey],
    ctx: ServiceContext,
    work: PipelineStage[Journey, JourneyOutcome],
) -> list[JourneyOutcome]:
    trace_id = _trace_id(name)
    t0 = time.monotonic()
    await emit_command_start(ctx.dispatcher, trace_id, name)
    pool = JourneyPool(work, max_concurrency=ctx.settings.max_concurrent_journeys)
    results = await pool.run_all(journeys)

    outcomes: list[JourneyOutcome] = []
    for journey, result in zip(journeys, results, strict=True):
        if result.output is not None:
            outcomes.append(result.output)
            continue
        status = (
            _llm_status(result.exception)
            if isinstance(result.exception, LLMError)
            else JourneyPhaseStatus.FAILED
        )
        failed = JourneyOutcome(
            journey_id=journey.id,
            status=status,
            error=result.error,
            duration_ms=result.duration_ms,
        )
        await emit_error(
            ctx.dispatcher, trace_id, name, result.error or "unknown error"
        )
        ctx.log_stage(failed, name)
        outcomes.append(failed)

    await emit_command_end(
        ctx.dispatcher,
        trace_id,
        name,
        _elapsed(t0),
        success=all(o.ok for o in outcomes),
    )
    return outcomes


async def generate_tests(
    journeys: list[Journey],
    ctx: ServiceContext,
    output_dir: Path,
    strategy: GenerationStrategy = GenerationStrategy.BLOCKS,
) -> list[JourneyOutcome]:
    """Generate one test module per journey, concurrently."""

    async def _generate(journey: Journey) -> JourneyOutcome:
        return await generate_journey(journey, ctx, output_dir, strategy)

    return await _run_pool(
        "generate", journeys, ctx, PipelineStage("generate", _generate)
    )


# ── refine ───────────────────────────────────────────────


def _loop(ctx: ServiceContext) -> RefinementLoop:
    if ctx.executor is None:
        msg = "refinement needs a test executor"
        raise ValueError(msg)
    fixer = (
        LLMFixGenerator(ctx.llm, ctx.settings, ctx.lesson_store)
        if ctx.llm is not None
        else None
    )
    return RefinementLoop(
        fixer,
        ctx.executor,
        config=RefinementConfig.from_settings(ctx.settings),
        cost_tracker=ctx.cost_tracker,
        lesson_store=ctx.lesson_store,
        dispatcher=ctx.dispatcher,
        sessions_dir=ctx.settings.sessions_dir,
    )


async def _run_tests(test_file: Path, ctx: ServiceContext) -> ExecutionResult:
    if ctx.executor is None:
        msg = "no test executor configured"
        raise ValueError(msg)
    return await ctx.executor.run(
        RunOptions(
            test_files=[test_file],
            timeout_seconds=float(ctx.settings.runner_timeout_seconds),
        )
    )


async def run_refinement(
    journey_id: str,
    test_file: Path,
    ctx: ServiceContext,
    errors: list[ErrorAnalysis] | None = None,
) -> RefinementResult:
    """Heal ``test_file`` with the refinement loop.

    Without ``errors`` the test is run first to collect them.
    """
    code = test_file.read_text(encoding="utf-8")
    if errors is None:
        errors = errors_from_execution(await _run_tests(test_file, ctx))
    result = await _loop(ctx).run(journey_id, code, errors, test_file)
    if ctx.run_logger is not None:
        for attempt in result.session.attempts:
            ctx.run_logger.log_attempt(
                journey_id,
                attempt.attempt_number,
                attempt.outcome.value,
                len(attempt.new_errors),
                attempt.applied_fix.type.value if attempt.applied_fix else None,
            )
    return result


async def resume_refinement(
    session_file: Path, ctx: ServiceContext
) -> RefinementResult:
    """Continue a persisted refinement session."""
    session = RefinementSession.model_validate_json(
        session_file.read_text(encoding="utf-8")
    )
    return await _loop(ctx).resume(session)


# ── verify ───────────────────────────────────────────────


async def verify_journey(
    journey: Journey,
    ctx: ServiceContext,
    output_dir: Path,
    heal: bool = True,
    strategy: GenerationStrategy = GenerationStrategy.BLOCKS,
) -> JourneyOutcome:
    """Generate, run, optionally heal, then gate on confidence."""
    t0 = time.monotonic()
    outcome = await generate_journey(journey, ctx, output_dir, strategy)
    if outcome.test_file is None:
        return outcome

    outcome.execution = await _run_tests(outcome.test_file, ctx)
    if outcome.execution.passed:
        outcome.status = JourneyPhaseStatus.PASSED
    else:
        errors = errors_from_execution(outcome.execution)
        if not heal or ctx.llm is None:
            outcome.status = JourneyPhaseStatus.FAILED
            outcome.error = errors[0].message if errors else "tests failed"
        else:
            outcome.refinement = await run_refinement(
                journey.id, outcome.test_file, ctx, errors
            )
            outcome.code = outcome.refinement.final_code
            if outcome.refinement.success:
                outcome.status = JourneyPhaseStatus.HEALED
                outcome.confidence = await _score(journey, outcome.code, ctx)
            elif outcome.refinement.llm_failure is not None:
                outcome.status = _llm_status(outcome.refinement.llm_failure)
                outcome.error = f"repair model failed: {outcome.refinement.llm_failure}"
            else:
                outcome.status = JourneyPhaseStatus.FAILED
                status = outcome.refinement.session.final_status
                outcome.error = (
                    f"refinement stopped: {status.value}" if status else None
                )

    if (
        outcome.ok
        and outcome.confidence is not None
        and outcome.confidence.verdict == Verdict.REJECT
    ):
        outcome.status = JourneyPhaseStatus.FAILED
        blocked = ", ".join(d.value for d in outcome.confidence.blocked_dimensions)
        outcome.error = (
            f"confidence gate rejected the test (blocked: {blocked})"
            if blocked
            else f"confidence {outcome.confidence.overall:.2f} below reject floor"
        )

    outcome.duration_ms = _elapsed(t0)
    ctx.log_stage(outcome, "verify")
    return outcome


async def verify_journeys(
    journeys: list[Journey],
    ctx: ServiceContext,
    output_dir: Path,
    heal: bool = True,
) -> list[JourneyOutcome]:
    async def _verify(journey: Journey) -> JourneyOutcome:
        return await verify_journey(journey, ctx, output_dir, heal)

    return await _run_pool(
        "verify", journeys, ctx, PipelineStage("verify", _verify)
    )
