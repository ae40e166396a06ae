"""Typed pipeline stages and a bounded pool for per-journey work."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from journeyforge.constants import StageOutcome

logger = logging.getLogger(__name__)


@dataclass
class StageResult[TOutput]:
    """Outcome of a single pipeline stage execution."""

    stage_name: str
    output: TOutput | None
    duration_ms: float
    status: StageOutcome
    error: str | None = None
    exception: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.status == StageOutcome.COMPLETED


@dataclass
class PipelineStage[TInput, TOutput]:
    """A named, typed, async pipeline stage with error isolation."""

    name: str
    execute: Callable[[TInput], Awaitable[TOutput]]

    async def run(self, input_data: TInput) -> StageResult[TOutput]:
        """Execute the stage, capturing timing and errors."""
        start = time.monotonic()
        try:
            output = await self.execute(input_data)
        except Exception as exc:
            elapsed = (time.monotonic() - start) * 1000
            logger.warning(
                "event=stage_failed stage=%s error=%s", self.name, exc
            )
            return StageResult(
                stage_name=self.name,
                output=None,
                duration_ms=elapsed,
                status=StageOutcome.FAILED,
                error=str(exc) or type(exc).__name__,
                exception=exc,
            )
        return StageResult(
            stage_name=self.name,
            output=output,
            duration_ms=(time.monotonic() - start) * 1000,
            status=StageOutcome.COMPLETED,
        )


@dataclass
class JourneyPool[TInput, TOutput]:
    """Run one stage over many journeys with bounded concurrency.

    Each item runs independently: a failure or timeout of one journey
    never cancels the others. Results keep the order of the inputs.
    """

    stage: PipelineStage[TInput, TOutput]
    max_concurrency: int = 4
    timeout: float | None = None  # per item, seconds

    async def run_all(
        self, items: list[TInput]
    ) -> list[StageResult[TOutput]]:
        if not items:
            return []
        semaphore = asyncio.Semaphore(max(1, self.max_concurrency))

        async def _one(item: TInput) -> StageResult[TOutput]:
            async with semaphore:
                if self.timeout is None:
                    return await self.stage.run(item)
                try:
                    return await asyncio.wait_for(
                        self.stage.run(item), timeout=self.timeout
                    )
                except TimeoutError:
                    logger.error(
                        "event=journey_timeout stage=%s timeout_s=%.1f",
                        self.stage.name,
                        self.timeout,
                    )
                    return StageResult(
                        stage_name=self.stage.name,
                        output=None,
                        duration_ms=self.timeout * 1000,
                        status=StageOutcome.FAILED,
                        error=f"timed out after {self.timeout:.0f}s",
                    )

        return list(await asyncio.gather(*(_one(i) for i in items)))
