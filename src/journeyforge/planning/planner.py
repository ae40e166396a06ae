"""LLM-assisted structured planning ahead of code generation.

The planner decomposes a journey into sequential, branch and loop
structures. It is optional and confidence-gated: any failure yields a
``PlanResult`` with an error type, and callers fall back to plain
pattern-based generation when ``fallback_used`` is set.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from enum import StrEnum

from pydantic import ValidationError

from journeyforge.config import Settings
from journeyforge.constants import PLAN_ESTIMATED_TOKENS
from journeyforge.journey.models import Journey
from journeyforge.llm.client import GenerateOptions, LLMClient
from journeyforge.observability.cost_tracker import CostTracker
from journeyforge.planning.schemas import PlanStep, StructuredPlan
from journeyforge.resilience.errors import LLMError, LLMErrorKind

logger = logging.getLogger(__name__)

MAX_STRUCTURES = 20
MIN_REASONING_CHARS = 10
DEFAULT_LOOP_ITERATIONS = 3

PLANNER_SYSTEM_PROMPT = """\
You plan browser end-to-end tests. Given a user journey, decompose it
into control-flow structures:

- "sequential": ordered steps executed once
- "branch": a condition with thenBranch and optional elseBranch steps
- "loop": an iterator with body steps and maxIterations

Each step has: action, target, value, assertion, journeyStep (the
number of the journey step it implements).

Respond with ONE JSON object:
{"journeyId": str, "reasoning": str, "confidence": 0..1,
 "structures": [...], "warnings": [str]}
No prose outside the JSON."""

_FENCE_RE = re.compile(r"^```(?:json)?\s*\n(.*?)```\s*$", re.DOTALL)


class PlanErrorType(StrEnum):
    DISABLED = "DISABLED"
    NO_CLIENT = "NO_CLIENT"
    COST_LIMIT = "COST_LIMIT"
    PARSE_ERROR = "PARSE_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    LOW_CONFIDENCE = "LOW_CONFIDENCE"
    TIMEOUT = "TIMEOUT"
    LLM_ERROR = "LLM_ERROR"


@dataclass(frozen=True)
class PlanResult:
    success: bool
    plan: StructuredPlan | None = None
    error_type: PlanErrorType | None = None
    message: str = ""
    fallback_used: bool = False
    tokens_used: int = 0


@dataclass
class PlanValidation:
    errors: list[str] = field(default_factory=lambda: list[str]())
    warnings: list[str] = field(default_factory=lambda: list[str]())

    @property
    def valid(self) -> bool:
        return not self.errors


@dataclass(frozen=True)
class CodeContext:
    """What the code generator takes from a plan."""

    comments: list[str] = field(default_factory=lambda: list[str]())
    has_conditionals: bool = False
    has_loops: bool = False
    estimated_steps: int = 0


def build_plan_prompt(journey: Journey) -> str:
    return journey.describe()


def parse_plan_response(content: str) -> StructuredPlan:
    """Parse LLM output into a plan.

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
        msg = f"Plan response is not valid JSON: {exc}"
        raise ValueError(msg) from exc
    try:
        return StructuredPlan.model_validate(data)
    except ValidationError as exc:
        msg = f"Plan response does not match schema: {exc.error_count()} errors"
        raise ValueError(msg) from exc


def _fallback(
    settings: Settings, error_type: PlanErrorType, message: str, tokens: int = 0
) -> PlanResult:
    fallback = settings.planner_fallback == "pattern-only"
    logger.info(
        "event=plan_failed error_type=%s fallback=%s message=%s",
        error_type.value,
        fallback,
        message,
    )
    return PlanResult(
        success=False,
        error_type=error_type,
        message=message,
        fallback_used=fallback,
        tokens_used=tokens,
    )


async def generate_plan(
    journey: Journey,
    llm: LLMClient | None,
    settings: Settings,
    cost_tracker: CostTracker | None = None,
) -> PlanResult:
    """Ask the LLM for a structured plan, gated on validity and confidence."""
    if not settings.planner_enabled:
        return PlanResult(
            success=False,
            error_type=PlanErrorType.DISABLED,
            message="Structured planning is disabled",
            fallback_used=True,
        )
    if llm is None:
        return _fallback(settings, PlanErrorType.NO_CLIENT, "No LLM client configured")
    if cost_tracker is not None and cost_tracker.would_exceed_limit(
        PLAN_ESTIMATED_TOKENS
    ):
        return _fallback(
            settings, PlanErrorType.COST_LIMIT, "Planning would exceed cost limit"
        )

    try:
        response = await llm.generate(
            build_plan_prompt(journey),
            PLANNER_SYSTEM_PROMPT,
            GenerateOptions(
                temperature=settings.llm_temperature,
                max_tokens=settings.llm_max_tokens,
                timeout_ms=settings.llm_timeout_seconds * 1000,
                json_mode=True,
            ),
        )
    except Exception as exc:
        timed_out = "timeout" in str(exc).lower() or (
            isinstance(exc, LLMError) and exc.kind == LLMErrorKind.TIMEOUT
        )
        return _fallback(
            settings,
            PlanErrorType.TIMEOUT if timed_out else PlanErrorType.LLM_ERROR,
            str(exc) or type(exc).__name__,
        )

    tokens = response.token_usage.total_tokens
    if cost_tracker is not None:
        cost_tracker.track_usage(response.token_usage, response.model)

    try:
        plan = parse_plan_response(response.content)
    except ValueError as exc:
        return _fallback(settings, PlanErrorType.PARSE_ERROR, str(exc), tokens)
    if not plan.journey_id:
        plan = plan.model_copy(update={"journey_id": journey.id})

    validation = validate_plan(plan, journey, max_structures=MAX_STRUCTURES)
    if not validation.valid:
        return _fallback(
            settings,
            PlanErrorType.VALIDATION_ERROR,
            "; ".join(validation.errors),
            tokens,
        )
    if plan.confidence < settings.planner_min_confidence:
        return _fallback(
            settings,
            PlanErrorType.LOW_CONFIDENCE,
            f"Plan confidence {plan.confidence:.2f} is below threshold"
            f" {settings.planner_min_confidence}",
            tokens,
        )

    extra = [w for w in validation.warnings if w not in plan.warnings]
    if extra:
        plan = plan.model_copy(update={"warnings": [*plan.warnings, *extra]})
    logger.info(
        "event=plan_generated journey=%s structures=%d confidence=%.2f",
        journey.id,
        len(plan.structures),
        plan.confidence,
    )
    return PlanResult(success=True, plan=plan, tokens_used=tokens)


def validate_plan(
    plan: StructuredPlan,
    journey: Journey | None = None,
    max_structures: int = MAX_STRUCTURES,
) -> PlanValidation:
    """Check plan shape; step references are checked when ``journey`` is given."""
    result = PlanValidation()
    errors = result.errors

    if not plan.journey_id:
        errors.append("Plan is missing journey_id")
    if not plan.structures:
        errors.append("Plan has no structures")
    if len(plan.structures) > max_structures:
        errors.append(
            f"Plan has {len(plan.structures)} structures (max {max_structures})"
        )

    known_steps = (
        {ps.number for ps in journey.procedural_steps} if journey else set[int]()
    )

    def check_steps(steps: list[PlanStep], where: str) -> None:
        for i, step in enumerate(steps):
            if not step.action.strip():
                errors.append(f"{where}[{i}] is missing an action")
            if (
                known_steps
                and step.journey_step is not None
                and step.journey_step not in known_steps
            ):
                errors.append(
                    f"{where}[{i}] references unknown journey step"
                    f" {step.journey_step}"
                )

    for index, structure in enumerate(plan.structures):
        where = f"structures[{index}]"
        match structure.type:
            case "sequential":
                if not structure.steps:
                    errors.append(f"{where}: sequential structure has no steps")
                check_steps(structure.steps, f"{where}.steps")
            case "branch":
                if not structure.condition:
                    errors.append(f"{where}: branch has no condition")
                if not structure.then_branch:
                    errors.append(f"{where}: branch has an empty then_branch")
                check_steps(structure.then_branch, f"{where}.then_branch")
                check_steps(structure.else_branch, f"{where}.else_branch")
            case "loop":
                if not structure.iterator:
                    errors.append(f"{where}: loop has no iterator")
                if not structure.body:
                    errors.append(f"{where}: loop has an empty body")
                if (
                    structure.max_iterations is not None
                    and structure.max_iterations <= 0
                ):
                    errors.append(f"{where}: max_iterations must be positive")
                check_steps(structure.body, f"{where}.body")
        if not structure.description:
            result.warnings.append(f"{where} has no description")

    if len(plan.reasoning.strip()) < MIN_REASONING_CHARS:
        result.warnings.append("Plan reasoning is missing or very short")
    result.warnings.extend(plan.warnings)
    return result


def extract_code_context(
    plan: StructuredPlan, include_reasoning: bool = False
) -> CodeContext:
    comments: list[str] = []
    if include_reasoning and plan.reasoning:
        comments.append(f"PLAN: {' '.join(plan.reasoning.split())}")
    estimated = 0
    for structure in plan.structures:
        label = structure.type.upper()
        comments.append(
            f"{label}: {structure.description}" if structure.description else label
        )
        estimated += len(structure.steps)
        estimated += len(structure.then_branch) + len(structure.else_branch)
        estimated += len(structure.body) * (
            structure.max_iterations or DEFAULT_LOOP_ITERATIONS
        )
    return CodeContext(
        comments=comments,
        has_conditionals=any(s.type == "branch" for s in plan.structures),
        has_loops=any(s.type == "loop" for s in plan.structures),
        estimated_steps=estimated,
    )
