"""Build an ``IRJourney`` from a structured journey."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from journeyforge.ir.types import (
    Blocked,
    CallModule,
    IRJourney,
    IRPrimitive,
    IRStep,
)
from journeyforge.journey.models import AcceptanceCriterion, Journey
from journeyforge.mapping.glossary import DEFAULT_GLOSSARY, Glossary
from journeyforge.mapping.step_mapper import (
    MappingStats,
    StepMappingOptions,
    StepMappingResult,
    map_step,
    mapping_stats,
    suggest_improvement,
)

logger = logging.getLogger(__name__)


@dataclass
class IRBuildResult:
    ir: IRJourney
    mappings: list[StepMappingResult] = field(
        default_factory=lambda: list[StepMappingResult]()
    )

    @property
    def stats(self) -> MappingStats:
        return mapping_stats(self.mappings)

    @property
    def suggestions(self) -> list[str]:
        return [
            suggest_improvement(m.source_text)
            for m in self.mappings
            if not m.mapped
        ]


def build_ir_journey(
    journey: Journey, glossary: Glossary = DEFAULT_GLOSSARY
) -> IRBuildResult:
    """Map every criterion to one step; unlinked procedural steps follow."""
    options = StepMappingOptions(glossary=glossary)
    mappings: list[StepMappingResult] = []
    steps: list[IRStep] = []

    for ac in journey.acceptance_criteria:
        steps.append(_build_criterion_step(journey, ac, options, mappings))

    linked = {ac.id for ac in journey.acceptance_criteria}
    for ps in journey.procedural_steps:
        if ps.linked_ac in linked:
            continue
        result = map_step(ps.text, options)
        mappings.append(result)
        step = IRStep(id=f"PS-{ps.number}", description=ps.text)
        _place(step, result)
        steps.append(step)

    modules: list[str] = list(journey.modules)
    for step in steps:
        for primitive in step.primitives():
            if (
                isinstance(primitive, CallModule)
                and primitive.module not in modules
            ):
                modules.append(primitive.module)

    ir = IRJourney(
        id=journey.id,
        title=journey.title,
        tier=journey.tier,
        steps=steps,
        module_dependencies=modules,
        tags=list(journey.tags),
    )
    result = IRBuildResult(ir=ir, mappings=mappings)
    stats = result.stats
    logger.info(
        "event=ir_built journey=%s steps=%d mapped=%d blocked=%d",
        journey.id,
        len(steps),
        stats.mapped,
        stats.blocked,
    )
    return result


def _build_criterion_step(
    journey: Journey,
    ac: AcceptanceCriterion,
    options: StepMappingOptions,
    mappings: list[StepMappingResult],
) -> IRStep:
    step = IRStep(id=ac.id, description=ac.title or f"Step {ac.id}")
    for text in ac.steps:
        result = map_step(text, options)
        mappings.append(result)
        _place(step, result)

    # Linked procedural steps add primitives but never duplicate a bullet.
    for ps in journey.procedural_steps:
        if ps.linked_ac != ac.id or ps.text in ac.steps:
            continue
        result = map_step(ps.text, options)
        if result.primitive is not None:
            _append(step, result.primitive, result.is_assertion)

    if not step.assertions and ac.title:
        step.notes.append(f"TODO: add assertion for: {ac.title}")
    return step


def _place(step: IRStep, result: StepMappingResult) -> None:
    if result.primitive is not None:
        _append(step, result.primitive, result.is_assertion)
        return
    step.actions.append(
        Blocked(
            reason=result.message or "Could not map step",
            source_text=result.source_text,
        )
    )


def _append(step: IRStep, primitive: IRPrimitive, assertion: bool) -> None:
    if assertion:
        step.assertions.append(primitive)
    else:
        step.actions.append(primitive)
