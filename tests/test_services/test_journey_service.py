"""Tests for the generate / validate / verify / refine entry operations."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

from journeyforge.confidence.schemas import ConfidenceScore
from journeyforge.config import Settings
from journeyforge.constants import Dimension, JourneyPhaseStatus, LessonType, Verdict
from journeyforge.execution.models import ExecutionResult, RunOptions, TestFailure
from journeyforge.journey.models import AcceptanceCriterion, Journey
from journeyforge.llkb.store import LessonStore
from journeyforge.llm.client import LLMResponse, TokenUsage
from journeyforge.logger import RunLogger
from journeyforge.refinement.models import RefinementSession
from journeyforge.refinement.prompts import REFINEMENT_SYSTEM_PROMPT
from journeyforge.resilience.errors import LLMError, LLMErrorKind
from journeyforge.services.journey_service import (
    JourneyOutcome,
    ServiceContext,
    generate_journey,
    generate_tests,
    resume_refinement,
    run_refinement,
    validate_journey_file,
    verify_journey,
)


class _Executor:
    def __init__(self, *results: ExecutionResult) -> None:
        self._results = list(results)
        self.calls: list[RunOptions] = []

    async def run(self, options: RunOptions) -> ExecutionResult:
        self.calls.append(options)
        if len(self._results) > 1:
            return self._results.pop(0)
        return self._results[0]


class _DownLLM:
    async def generate(self, prompt, system_prompt, options=None):  # type: ignore[no-untyped-def]
        raise LLMError("provider down", LLMErrorKind.UNAVAILABLE)


class _RepairOnlyLLM:
    """Answers repair prompts with a no-op fix; every other call fails."""

    def __init__(self) -> None:
        self.system_prompts: list[str] = []

    async def generate(self, prompt, system_prompt, options=None):  # type: ignore[no-untyped-def]
        self.system_prompts.append(system_prompt)
        if system_prompt != REFINEMENT_SYSTEM_PROMPT:
            raise LLMError("sampling provider down", LLMErrorKind.UNAVAILABLE)
        fix = {
            "type": "selector_change",
            "originalCode": "def test_",
            "fixedCode": "def test_",
            "confidence": 0.9,
        }
        return LLMResponse(
            content=json.dumps({"fixes": [fix]}),
            token_usage=TokenUsage(prompt_tokens=10, completion_tokens=5),
            model="stub",
        )


def _passed() -> ExecutionResult:
    return ExecutionResult(status="passed", exit_code=0, duration_ms=5.0)


def _failed() -> ExecutionResult:
    return ExecutionResult(
        status="failed",
        exit_code=1,
        duration_ms=5.0,
        failures=[
            TestFailure(
                title="test_jrn_0001",
                file="test_jrn_0001.py",
                error='TimeoutError: waiting for locator(".btn")',
                error_type="selector",
            )
        ],
    )


def _score(verdict: Verdict, blocked: list[Dimension] | None = None) -> ConfidenceScore:
    return ConfidenceScore(
        overall=0.9 if verdict == Verdict.ACCEPT else 0.2,
        dimensions=[],
        verdict=verdict,
        blocked_dimensions=blocked or [],
    )


def _ctx(settings: Settings, **kwargs: Any) -> ServiceContext:
    return ServiceContext(settings=settings, **kwargs)


# ── validate ──


def test_validate_missing_file_is_an_issue(tmp_path: Path) -> None:
    result = validate_journey_file(tmp_path / "JRN-0009.yaml")
    assert result.journey_id == "JRN-0009"
    assert not result.valid
    assert result.issues[0].field == "file"


# ── generate ──


class TestGenerate:
    async def test_writes_test_module(
        self, settings: Settings, login_journey: Journey, tmp_path: Path
    ) -> None:
        out = tmp_path / "e2e"
        outcome = await generate_journey(login_journey, _ctx(settings), out)
        assert outcome.status == JourneyPhaseStatus.GENERATED
        assert outcome.test_file == out / "test_jrn_0001.py"
        assert outcome.test_file.read_text(encoding="utf-8") == outcome.code
        assert outcome.confidence is not None
        assert outcome.mapping is not None

    async def test_invalid_journey_writes_nothing(
        self, settings: Settings, tmp_path: Path
    ) -> None:
        journey = Journey(
            id="login",
            title="Login",
            acceptance_criteria=[
                AcceptanceCriterion(id="AC-1", steps=["User navigates to /login"])
            ],
        )
        outcome = await generate_journey(journey, _ctx(settings), tmp_path)
        assert outcome.status == JourneyPhaseStatus.INVALID
        assert "JRN-" in (outcome.error or "")
        assert outcome.test_file is None
        assert list(tmp_path.glob("*.py")) == []

    async def test_planner_without_client_falls_back(
        self, settings: Settings, login_journey: Journey, tmp_path: Path
    ) -> None:
        cfg = settings.model_copy(update={"planner_enabled": True})
        outcome = await generate_journey(login_journey, _ctx(cfg), tmp_path)
        assert outcome.status == JourneyPhaseStatus.GENERATED
        assert outcome.plan is not None
        assert outcome.plan.fallback_used

    async def test_planner_error_mode_fails_generation(
        self, settings: Settings, login_journey: Journey, tmp_path: Path
    ) -> None:
        cfg = settings.model_copy(
            update={"planner_enabled": True, "planner_fallback": "error"}
        )
        outcome = await generate_journey(login_journey, _ctx(cfg), tmp_path)
        assert outcome.status == JourneyPhaseStatus.GENERATION_FAILED
        assert outcome.test_file is None

    async def test_planner_llm_outage_marks_journey(
        self, settings: Settings, login_journey: Journey, tmp_path: Path
    ) -> None:
        cfg = settings.model_copy(
            update={"planner_enabled": True, "planner_fallback": "error"}
        )
        outcome = await generate_journey(
            login_journey, _ctx(cfg, llm=_DownLLM()), tmp_path
        )
        assert outcome.status == JourneyPhaseStatus.LLM_UNAVAILABLE

    async def test_sampling_failure_keeps_static_score(
        self, settings: Settings, login_journey: Journey, tmp_path: Path
    ) -> None:
        cfg = settings.model_copy(update={"confidence_sampling_enabled": True})
        outcome = await generate_journey(
            login_journey, _ctx(cfg, llm=_DownLLM()), tmp_path
        )
        assert outcome.status == JourneyPhaseStatus.GENERATED
        assert outcome.confidence is not None
        assert outcome.confidence.dimension(Dimension.AGREEMENT) is None

    async def test_sampling_adds_agreement(
        self, settings: Settings, login_journey: Journey, tmp_path: Path
    ) -> None:
        """Sampled candidates identical to the generated code agree fully."""
        cfg = settings.model_copy(
            update={"confidence_sampling_enabled": True, "confidence_sample_count": 2}
        )
        first = await generate_journey(login_journey, _ctx(settings), tmp_path / "a")
        llm = AsyncMock()
        llm.generate.return_value = LLMResponse(
            content=f"```python\n{first.code}```",
            token_usage=TokenUsage(prompt_tokens=10, completion_tokens=5),
            model="stub",
        )
        outcome = await generate_journey(
            login_journey, _ctx(cfg, llm=llm), tmp_path / "b"
        )
        assert outcome.confidence is not None
        agreement = outcome.confidence.dimension(Dimension.AGREEMENT)
        assert agreement is not None
        assert agreement.score == 1.0
        assert llm.generate.await_count == 2


class TestPoolIsolation:
    async def test_one_failure_does_not_stop_others(
        self, settings: Settings, login_journey: Journey, tmp_path: Path
    ) -> None:
        second = login_journey.model_copy(update={"id": "JRN-0002"})
        third = login_journey.model_copy(update={"id": "JRN-0003"})

        def _fake(journey: Journey, *args: Any) -> JourneyOutcome:
            if journey.id == "JRN-0001":
                raise LLMError("503 from provider", LLMErrorKind.UNAVAILABLE)
            if journey.id == "JRN-0002":
                raise LLMError("garbage", LLMErrorKind.INVALID_RESPONSE)
            return JourneyOutcome(journey.id, JourneyPhaseStatus.GENERATED)

        with patch(
            "journeyforge.services.journey_service.generate_journey",
            side_effect=_fake,
        ):
            outcomes = await generate_tests(
                [login_journey, second, third], _ctx(settings), tmp_path
            )
        assert [o.journey_id for o in outcomes] == ["JRN-0001", "JRN-0002", "JRN-0003"]
        assert [o.status for o in outcomes] == [
            JourneyPhaseStatus.LLM_UNAVAILABLE,
            JourneyPhaseStatus.GENERATION_FAILED,
            JourneyPhaseStatus.GENERATED,
        ]
        assert outcomes[0].error == "503 from provider"

    async def test_unexpected_error_is_failed(
        self, settings: Settings, login_journey: Journey, tmp_path: Path
    ) -> None:
        with patch(
            "journeyforge.services.journey_service.generate_journey",
            side_effect=RuntimeError("disk full"),
        ):
            outcomes = await generate_tests([login_journey], _ctx(settings), tmp_path)
        assert outcomes[0].status == JourneyPhaseStatus.FAILED
        assert outcomes[0].error == "disk full"


# ── verify ──


class TestVerify:
    async def test_passing_run(
        self, settings: Settings, login_journey: Journey, tmp_path: Path
    ) -> None:
        executor = _Executor(_passed())
        with patch(
            "journeyforge.services.journey_service._score",
            AsyncMock(return_value=_score(Verdict.ACCEPT)),
        ):
            outcome = await verify_journey(
                login_journey, _ctx(settings, executor=executor), tmp_path
            )
        assert outcome.status == JourneyPhaseStatus.PASSED
        assert executor.calls[0].test_files == [tmp_path / "test_jrn_0001.py"]

    async def test_confidence_gate_rejects_passing_test(
        self, settings: Settings, login_journey: Journey, tmp_path: Path
    ) -> None:
        with patch(
            "journeyforge.services.journey_service._score",
            AsyncMock(return_value=_score(Verdict.REJECT, [Dimension.SELECTOR])),
        ):
            outcome = await verify_journey(
                login_journey, _ctx(settings, executor=_Executor(_passed())), tmp_path
            )
        assert outcome.status == JourneyPhaseStatus.FAILED
        assert outcome.error == "confidence gate rejected the test (blocked: selector)"

    async def test_failure_without_healing(
        self, settings: Settings, login_journey: Journey, tmp_path: Path
    ) -> None:
        outcome = await verify_journey(
            login_journey,
            _ctx(settings, executor=_Executor(_failed())),
            tmp_path,
            heal=False,
        )
        assert outcome.status == JourneyPhaseStatus.FAILED
        assert outcome.refinement is None
        assert ".btn" in (outcome.error or "")

    async def test_repair_model_outage(
        self, settings: Settings, login_journey: Journey, tmp_path: Path
    ) -> None:
        outcome = await verify_journey(
            login_journey,
            _ctx(settings, executor=_Executor(_failed()), llm=_DownLLM()),
            tmp_path,
        )
        assert outcome.status == JourneyPhaseStatus.LLM_UNAVAILABLE
        assert outcome.refinement is not None
        assert outcome.refinement.llm_failure == "UNAVAILABLE"

    async def test_healed_test_survives_sampling_outage(
        self, settings: Settings, login_journey: Journey, tmp_path: Path
    ) -> None:
        """Agreement sampling failing after a heal keeps the static score."""
        cfg = settings.model_copy(update={"confidence_sampling_enabled": True})
        llm = _RepairOnlyLLM()
        scorer = MagicMock()
        scorer.score.return_value = _score(Verdict.ACCEPT)
        with patch.object(ServiceContext, "scorer", return_value=scorer):
            outcome = await verify_journey(
                login_journey,
                _ctx(cfg, executor=_Executor(_failed(), _passed()), llm=llm),
                tmp_path,
            )
        assert outcome.status == JourneyPhaseStatus.HEALED
        assert outcome.refinement is not None
        assert outcome.refinement.success
        assert outcome.confidence == _score(Verdict.ACCEPT)
        assert REFINEMENT_SYSTEM_PROMPT in llm.system_prompts


# ── refine ──


class TestRefine:
    async def test_runs_tests_first_when_no_errors_given(
        self, settings: Settings, tmp_path: Path
    ) -> None:
        test_file = tmp_path / "test_jrn_0001.py"
        test_file.write_text("def test_ok(page):\n    pass\n", encoding="utf-8")
        executor = _Executor(_passed())
        result = await run_refinement(
            "JRN-0001", test_file, _ctx(settings, executor=executor)
        )
        assert result.success
        assert len(executor.calls) == 1

    async def test_attempts_logged_and_session_resumable(
        self, settings: Settings, tmp_path: Path
    ) -> None:
        test_file = tmp_path / "test_jrn_0001.py"
        test_file.write_text(
            'def test_x(page):\n    page.locator(".btn").click()\n',
            encoding="utf-8",
        )
        run_logger = RunLogger(tmp_path / "logs")
        ctx = _ctx(
            settings,
            executor=_Executor(_failed()),
            llm=_DownLLM(),
            run_logger=run_logger,
        )
        try:
            result = await run_refinement("JRN-0001", test_file, ctx)
        finally:
            run_logger.close()
        assert not result.success
        records = [
            json.loads(line)
            for line in (tmp_path / "logs" / "runs.log").read_text().splitlines()
        ]
        assert [r["type"] for r in records] == ["attempt"] * len(result.session.attempts)

        session_file = next(settings.sessions_dir.glob("*.json"))
        saved = RefinementSession.model_validate_json(session_file.read_text())
        assert saved.session_id == result.session.session_id

        resumed = await resume_refinement(session_file, ctx)
        assert resumed.session.journey_id == "JRN-0001"


# ── context lifecycle ──


async def test_context_persists_cost_and_telemetry(
    settings: Settings, login_journey: Journey, tmp_path: Path
) -> None:
    ctx = ServiceContext.create(settings, executor=_Executor(_passed()), use_llm=False)
    assert ctx.llm is None
    await generate_tests([login_journey], ctx, tmp_path / "e2e")
    ctx.close()
    assert settings.cost_snapshot_path.exists()
    telemetry = json.loads(settings.telemetry_path.read_text())
    assert telemetry
    assert (settings.log_dir / "runs.log").exists()


def test_context_prunes_weak_lessons_on_open(settings: Settings) -> None:
    with LessonStore(settings.llkb_path) as store:
        weak = store.add_lesson(LessonType.ERROR_FIX, "weak", initial_confidence=0.15)
        weak.failure_count = 3
        kept = store.add_lesson(LessonType.ERROR_FIX, "kept", initial_confidence=0.8)

    ctx = ServiceContext.create(settings, executor=_Executor(_passed()), use_llm=False)
    try:
        assert ctx.lesson_store.get(weak.id) is None
        assert ctx.lesson_store.get(kept.id) is not None
    finally:
        ctx.close()
