"""Structured journey input as produced by the upstream journey parser."""

from __future__ import annotations

import re

from pydantic import BaseModel, Field

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


class AcceptanceCriterion(BaseModel):
    id: str
    title: str = ""
    steps: list[str] = Field(default_factory=list)


class ProceduralStep(BaseModel):
    number: int
    text: str
    linked_ac: str | None = None


class Journey(BaseModel):
    """A user-facing scenario: acceptance criteria plus procedural steps."""

    id: str
    title: str
    tier: str = "regression"
    actor: str = "user"
    scope: str = ""
    status: str = "clarified"
    acceptance_criteria: list[AcceptanceCriterion] = Field(
        default_factory=list
    )
    procedural_steps: list[ProceduralStep] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    modules: list[str] = Field(default_factory=list)

    @property
    def slug(self) -> str:
        """``JRN-0001`` -> ``jrn_0001``."""
        return _NON_ALNUM.sub("_", self.id.lower()).strip("_")

    @property
    def test_filename(self) -> str:
        return f"test_{self.slug}.py"

    def all_step_texts(self) -> list[str]:
        texts = [s for ac in self.acceptance_criteria for s in ac.steps]
        texts.extend(ps.text for ps in self.procedural_steps)
        return texts

    def describe(self) -> str:
        """Plain-text rendering used in LLM prompts."""
        lines = [
            f"Journey {self.id}: {self.title}",
            f"Actor: {self.actor or 'user'}",
            "",
            "Acceptance criteria:",
        ]
        for ac in self.acceptance_criteria:
            lines.append(f"- {ac.id}: {ac.title}")
            lines.extend(f"  - {s}" for s in ac.steps)
        if self.procedural_steps:
            lines.append("")
            lines.append("Procedural steps:")
            lines.extend(f"{ps.number}. {ps.text}" for ps in self.procedural_steps)
        return "\n".join(lines)
