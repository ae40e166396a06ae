"""Structured JSON run log for journeys and refinement attempts."""

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from journeyforge.constants import ERROR_TRUNCATION_CHARS

__all__ = ["RunLogger"]


class RunLogger:
    """JSON-lines logger keyed by journey id."""

    def __init__(self, log_dir: Path, level: str = "INFO") -> None:
        self._log_dir = log_dir
        self._log_dir.mkdir(parents=True, exist_ok=True)
        self._logger = logging.getLogger("journeyforge.runs")
        self._logger.setLevel(getattr(logging, level.upper()))
        self._logger.propagate = False

        target = str((log_dir / "runs.log").resolve())
        if not any(
            isinstance(h, logging.FileHandler)
            and h.baseFilename == target
            for h in self._logger.handlers
        ):
            handler = logging.FileHandler(log_dir / "runs.log")
            handler.setFormatter(logging.Formatter("%(message)s"))
            self._logger.addHandler(handler)

    def _write(self, level: int, record: dict[str, Any]) -> None:
        record["timestamp"] = datetime.now(UTC).isoformat()
        self._logger.log(level, json.dumps(record, default=str))

    def log_stage(
        self,
        journey_id: str,
        stage_name: str,
        status: str,
        duration_ms: float,
        error: str | None = None,
    ) -> None:
        self._write(
            logging.INFO,
            {
                "type": "stage",
                "journey_id": journey_id,
                "stage": stage_name,
                "status": status,
                "duration_ms": duration_ms,
                "error": error,
            },
        )

    def log_attempt(
        self,
        journey_id: str,
        attempt_number: int,
        outcome: str,
        error_count: int,
        fix_type: str | None = None,
    ) -> None:
        self._write(
            logging.INFO,
            {
                "type": "attempt",
                "journey_id": journey_id,
                "attempt": attempt_number,
                "outcome": outcome,
                "error_count": error_count,
                "fix_type": fix_type,
            },
        )

    def log_error(
        self,
        journey_id: str,
        component: str,
        error: str,
    ) -> None:
        self._write(
            logging.ERROR,
            {
                "type": "error",
                "journey_id": journey_id,
                "component": component,
                "error": error[:ERROR_TRUNCATION_CHARS],
            },
        )

    def close(self) -> None:
        """Detach and close file handlers."""
        for handler in list(self._logger.handlers):
            handler.close()
            self._logger.removeHandler(handler)
