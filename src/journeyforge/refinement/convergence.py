"""Track whether refinement attempts are actually reducing failures."""

from __future__ import annotations

from collections.abc import Iterable

from journeyforge.constants import Trend
from journeyforge.refinement.models import ConvergenceInfo

TREND_WINDOW = 4


class ConvergenceDetector:
    def __init__(self, window: int = TREND_WINDOW) -> None:
        self._window = window
        self._counts: list[int] = []
        self._unique: list[list[str]] = []
        self._last_improvement: int | None = None
        self._stagnation = 0

    def record(self, error_count: int, fingerprints: Iterable[str] = ()) -> None:
        if self._counts:
            previous = self._counts[-1]
            if error_count < previous:
                self._last_improvement = len(self._counts)
                self._stagnation = 0
            else:
                self._stagnation += 1
        self._counts.append(error_count)
        self._unique.append(sorted(set(fingerprints)))

    @property
    def counts(self) -> list[int]:
        return list(self._counts)

    def is_converged(self) -> bool:
        return bool(self._counts) and self._counts[-1] == 0

    def detect_trend(self) -> Trend:
        recent = self._counts[-self._window :]
        if len(recent) < 2:
            return Trend.STAGNATING
        diffs = [b - a for a, b in zip(recent, recent[1:], strict=False)]

        if (
            len(diffs) >= 3
            and all(d != 0 for d in diffs)
            and all((a > 0) != (b > 0) for a, b in zip(diffs, diffs[1:], strict=False))
        ):
            return Trend.OSCILLATING
        if all(d <= 0 for d in diffs) and any(d < 0 for d in diffs):
            return Trend.IMPROVING
        if all(d >= 0 for d in diffs) and any(d > 0 for d in diffs):
            return Trend.DEGRADING
        return Trend.STAGNATING

    def improvement_pct(self) -> int:
        """Percent reduction from the first recorded count to the latest."""
        if len(self._counts) < 2 or self._counts[0] == 0:
            return 0
        first, last = self._counts[0], self._counts[-1]
        return round((first - last) / first * 100)

    def new_errors(self) -> list[str]:
        if len(self._unique) < 2:
            return list(self._unique[-1]) if self._unique else []
        previous = set(self._unique[-2])
        return [fp for fp in self._unique[-1] if fp not in previous]

    def fixed_errors(self) -> list[str]:
        if len(self._unique) < 2:
            return []
        current = set(self._unique[-1])
        return [fp for fp in self._unique[-2] if fp not in current]

    def analyze(self) -> ConvergenceInfo:
        trend = self.detect_trend()
        return ConvergenceInfo(
            converged=self.is_converged(),
            attempts=len(self._counts),
            error_count_history=list(self._counts),
            unique_error_history=[list(s) for s in self._unique],
            last_improvement=self._last_improvement,
            stagnation_count=self._stagnation,
            trend=trend,
            improvement_pct=self.improvement_pct(),
            oscillating=trend == Trend.OSCILLATING,
        )

    def reset(self) -> None:
        self._counts.clear()
        self._unique.clear()
        self._last_improvement = None
        self._stagnation = 0

    def restore_from_history(
        self,
        counts: list[int],
        unique_sets: list[list[str]] | None = None,
    ) -> None:
        """Rebuild trend context from a persisted session."""
        self.reset()
        sets = unique_sets or []
        for i, count in enumerate(counts):
            self.record(count, sets[i] if i < len(sets) else ())
