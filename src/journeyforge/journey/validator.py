"""Per-field validation of a structured journey before generation."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from journeyforge.constants import Severity
from journeyforge.journey.models import Journey
from journeyforge.mapping.glossary import DEFAULT_GLOSSARY, Glossary
from journeyforge.mapping.hints import contains_hints, parse_hints, validate_hints
from journeyforge.mapping.step_mapper import StepMappingOptions, map_step

JOURNEY_ID_RE = re.compile(r"^JRN-\d+$")
KNOWN_TIERS: frozenset[str] = frozenset({"smoke", "release", "regression"})


@dataclass(frozen=True)
class ValidationIssue:
    field: str
    message: str
    severity: Severity = Severity.ERROR


@dataclass
class JourneyValidation:
    journey_id: str
    issues: list[ValidationIssue] = field(
        default_factory=lambda: list[ValidationIssue]()
    )

    @property
    def errors(self) -> list[ValidationIssue]:
        return [i for i in self.issues if i.severity == Severity.ERROR]

    @property
    def warnings(self) -> list[ValidationIssue]:
        return [i for i in self.issues if i.severity == Severity.WARNING]

    @property
    def valid(self) -> bool:
        """Warnings never make a journey invalid."""
        return not self.errors


def validate_journey(
    journey: Journey, glossary: Glossary = DEFAULT_GLOSSARY
) -> JourneyValidation:
    result = JourneyValidation(journey_id=journey.id)
    issues = result.issues

    if not JOURNEY_ID_RE.match(journey.id):
        issues.append(
            ValidationIssue("id", f"Journey id must match JRN-<digits>: {journey.id!r}")
        )
    if not journey.title.strip():
        issues.append(ValidationIssue("title", "Journey title is empty"))
    if journey.tier not in KNOWN_TIERS:
        issues.append(
            ValidationIssue(
                "tier",
                f"Unknown tier {journey.tier!r}; expected one of {sorted(KNOWN_TIERS)}",
                Severity.WARNING,
            )
        )
    if not journey.all_step_texts():
        issues.append(
            ValidationIssue("acceptance_criteria", "Journey has no steps")
        )

    seen: set[str] = set()
    for ac in journey.acceptance_criteria:
        if ac.id in seen:
            issues.append(
                ValidationIssue(
                    f"acceptance_criteria.{ac.id}",
                    f"Duplicate acceptance criterion id: {ac.id}",
                )
            )
        seen.add(ac.id)
        if not ac.steps:
            issues.append(
                ValidationIssue(
                    f"acceptance_criteria.{ac.id}",
                    "Acceptance criterion has no steps",
                    Severity.WARNING,
                )
            )

    for ps in journey.procedural_steps:
        if ps.linked_ac is not None and ps.linked_ac not in seen:
            issues.append(
                ValidationIssue(
                    f"procedural_steps.{ps.number}",
                    f"Linked to unknown acceptance criterion: {ps.linked_ac}",
                    Severity.WARNING,
                )
            )

    options = StepMappingOptions(glossary=glossary)
    for index, text in enumerate(journey.all_step_texts()):
        location = f"steps[{index}]"
        if contains_hints(text):
            parsed = parse_hints(text)
            for error in validate_hints(parsed):
                issues.append(ValidationIssue(location, error))
            for warning in parsed.warnings:
                issues.append(
                    ValidationIssue(location, warning, Severity.WARNING)
                )
        if not map_step(text, options).mapped:
            issues.append(
                ValidationIssue(
                    location,
                    f"Step will be blocked: {text!r}",
                    Severity.WARNING,
                )
            )
    return result
