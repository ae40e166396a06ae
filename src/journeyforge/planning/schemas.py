"""Pydantic models for structured journey plans returned by the LLM."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

type StructureType = Literal["sequential", "branch", "loop"]


class _PlanModel(BaseModel):
    # The LLM answers in camelCase; Python callers use snake_case.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PlanStep(_PlanModel):
    action: str = ""
    target: str | None = None
    value: str | None = None
    assertion: str | None = None
    journey_step: int | None = None


class PlanStructure(_PlanModel):
    """One control-flow region of a plan."""

    type: StructureType
    description: str = ""
    steps: list[PlanStep] = Field(default_factory=lambda: list[PlanStep]())
    condition: str | None = None
    then_branch: list[PlanStep] = Field(
        default_factory=lambda: list[PlanStep]()
    )
    else_branch: list[PlanStep] = Field(
        default_factory=lambda: list[PlanStep]()
    )
    iterator: str | None = None
    body: list[PlanStep] = Field(default_factory=lambda: list[PlanStep]())
    max_iterations: int | None = None


class StructuredPlan(_PlanModel):
    journey_id: str = ""
    reasoning: str = ""
    structures: list[PlanStructure] = Field(
        default_factory=lambda: list[PlanStructure]()
    )
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    warnings: list[str] = Field(default_factory=lambda: list[str]())
