"""Tests for pipeline stages and the bounded journey pool."""

from __future__ import annotations

import asyncio

from journeyforge.constants import StageOutcome
from journeyforge.pipeline import JourneyPool, PipelineStage, StageResult


async def _double(x: int) -> int:
    return x * 2


async def _explode(x: int) -> int:
    msg = f"bad input {x}"
    raise ValueError(msg)


class TestPipelineStage:
    async def test_success(self) -> None:
        result = await PipelineStage("double", _double).run(21)
        assert result.ok
        assert result.output == 42
        assert result.stage_name == "double"
        assert result.duration_ms >= 0

    async def test_failure_is_captured(self) -> None:
        """Exceptions become a FAILED result instead of propagating."""
        result = await PipelineStage("explode", _explode).run(3)
        assert not result.ok
        assert result.status == StageOutcome.FAILED
        assert result.output is None
        assert result.error == "bad input 3"
        assert isinstance(result.exception, ValueError)

    async def test_empty_message_uses_type_name(self) -> None:
        async def _silent(_: int) -> int:
            raise KeyError

        result = await PipelineStage("silent", _silent).run(0)
        assert result.error == "KeyError"


def test_stage_result_ok() -> None:
    skipped = StageResult[int]("s", None, 0.0, StageOutcome.SKIPPED)
    assert not skipped.ok


class TestJourneyPool:
    async def test_empty(self) -> None:
        assert await JourneyPool(PipelineStage("double", _double)).run_all([]) == []

    async def test_results_keep_input_order(self) -> None:
        async def _slow_first(x: int) -> int:
            await asyncio.sleep(0.02 if x == 0 else 0)
            return x

        results = await JourneyPool(PipelineStage("s", _slow_first)).run_all(
            [0, 1, 2]
        )
        assert [r.output for r in results] == [0, 1, 2]

    async def test_failures_are_isolated(self) -> None:
        async def _odd_fails(x: int) -> int:
            if x % 2:
                return await _explode(x)
            return x

        results = await JourneyPool(PipelineStage("odd", _odd_fails)).run_all(
            [0, 1, 2, 3]
        )
        assert [r.ok for r in results] == [True, False, True, False]

    async def test_concurrency_is_bounded(self) -> None:
        running = 0
        peak = 0

        async def _track(x: int) -> int:
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1
            return x

        pool = JourneyPool(PipelineStage("track", _track), max_concurrency=2)
        await pool.run_all(list(range(6)))
        assert peak == 2

    async def test_timeout_fails_only_the_slow_item(self) -> None:
        async def _hang_on_one(x: int) -> int:
            if x == 1:
                await asyncio.sleep(5)
            return x

        pool = JourneyPool(PipelineStage("hang", _hang_on_one), timeout=0.05)
        results = await pool.run_all([0, 1, 2])
        assert [r.ok for r in results] == [True, False, True]
        assert results[1].error == "timed out after 0s"
