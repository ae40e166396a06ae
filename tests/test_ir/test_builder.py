"""Tests for building the IR journey from a structured journey."""

from __future__ import annotations

from journeyforge.ir.builder import build_ir_journey
from journeyforge.ir.types import Blocked, CallModule, ExpectVisible, Goto
from journeyforge.journey.models import AcceptanceCriterion, Journey, ProceduralStep


class TestBuildIRJourney:
    def test_one_step_per_criterion(self, login_journey: Journey) -> None:
        """Actions and assertions are split within the criterion step."""
        result = build_ir_journey(login_journey)
        assert [s.id for s in result.ir.steps] == ["AC-1"]
        step = result.ir.steps[0]
        assert step.actions[0] == Goto("/login")
        assert len(step.assertions) == 1
        assert isinstance(step.assertions[0], ExpectVisible)
        assert result.stats.mapped == 4
        assert result.stats.blocked == 0

    def test_linked_procedural_step_adds_primitive(
        self, login_journey: Journey
    ) -> None:
        """A linked procedural step contributes to its criterion step."""
        step = build_ir_journey(login_journey).ir.steps[0]
        assert step.actions[-1] == Goto("/login")
        assert len(step.actions) == 4

    def test_linked_duplicate_is_not_repeated(self) -> None:
        journey = Journey(
            id="JRN-1",
            title="Dup",
            acceptance_criteria=[
                AcceptanceCriterion(id="AC-1", steps=["User logs out"])
            ],
            procedural_steps=[
                ProceduralStep(number=1, text="User logs out", linked_ac="AC-1")
            ],
        )
        step = build_ir_journey(journey).ir.steps[0]
        assert step.actions == [CallModule("auth", "logout")]

    def test_unlinked_procedural_steps_follow(self) -> None:
        journey = Journey(
            id="JRN-1",
            title="Procedural",
            procedural_steps=[
                ProceduralStep(number=1, text="User navigates to /a"),
                ProceduralStep(number=2, text="Juggle three oranges"),
            ],
        )
        result = build_ir_journey(journey)
        assert [s.id for s in result.ir.steps] == ["PS-1", "PS-2"]
        blocked = result.ir.steps[1].blocked
        assert len(blocked) == 1
        assert isinstance(blocked[0], Blocked)
        assert blocked[0].source_text == "Juggle three oranges"
        assert len(result.suggestions) == 1

    def test_module_dependencies_collected(self) -> None:
        """Module calls add their module to the dependency list once."""
        journey = Journey(
            id="JRN-1",
            title="Auth",
            modules=["setup"],
            acceptance_criteria=[
                AcceptanceCriterion(
                    id="AC-1",
                    title="In and out",
                    steps=["User logs in", "User logs out"],
                )
            ],
        )
        result = build_ir_journey(journey)
        assert result.ir.module_dependencies == ["setup", "auth"]

    def test_missing_assertion_leaves_note(self) -> None:
        journey = Journey(
            id="JRN-1",
            title="No assert",
            acceptance_criteria=[
                AcceptanceCriterion(
                    id="AC-1", title="Goes home", steps=["User navigates to /"]
                )
            ],
        )
        step = build_ir_journey(journey).ir.steps[0]
        assert step.notes == ["TODO: add assertion for: Goes home"]

    def test_to_dict(self, login_journey: Journey) -> None:
        """The dict form carries primitive type discriminants."""
        data = build_ir_journey(login_journey).ir.to_dict()
        assert data["id"] == "JRN-0001"
        assert data["steps"][0]["actions"][0] == {"type": "goto", "url": "/login"}
