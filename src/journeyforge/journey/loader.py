"""Load structured journeys from YAML or JSON files."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from journeyforge.journey.models import Journey

logger = logging.getLogger(__name__)

JOURNEY_SUFFIXES: frozenset[str] = frozenset({".yaml", ".yml", ".json"})


class JourneyLoadError(Exception):
    """A journey file exists but cannot be read as a journey."""

    def __init__(self, path: Path, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Cannot load journey {path}: {reason}")


def load_journey(path: Path) -> Journey:
    """Load one journey document.

    Raises ``FileNotFoundError`` if the file doesn't exist and
    ``JourneyLoadError`` if it cannot be parsed or fails the schema.
    """
    if not path.exists():
        msg = f"Journey not found: {path}"
        raise FileNotFoundError(msg)

    text = path.read_text(encoding="utf-8")
    try:
        raw: Any = (
            json.loads(text)
            if path.suffix == ".json"
            else yaml.safe_load(text)
        )
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise JourneyLoadError(path, f"parse error: {exc}") from exc

    if not isinstance(raw, dict):
        raise JourneyLoadError(path, "document must be a mapping")

    try:
        journey = Journey.model_validate(_normalize_keys(raw))
    except ValidationError as exc:
        raise JourneyLoadError(path, str(exc)) from exc

    logger.debug(
        "event=journey_loaded path=%s id=%s criteria=%d",
        path,
        journey.id,
        len(journey.acceptance_criteria),
    )
    return journey


def load_journeys(paths: list[Path]) -> list[Journey]:
    """Load every journey file under ``paths`` (files or directories)."""
    files: list[Path] = []
    for path in paths:
        if path.is_dir():
            files.extend(
                sorted(
                    p
                    for p in path.rglob("*")
                    if p.suffix in JOURNEY_SUFFIXES
                )
            )
        else:
            files.append(path)
    return [load_journey(f) for f in files]


def _normalize_keys(raw: dict[str, Any]) -> dict[str, Any]:
    """Accept the camelCase keys used by upstream journey exporters."""
    renames = {
        "acceptanceCriteria": "acceptance_criteria",
        "proceduralSteps": "procedural_steps",
        "linkedAC": "linked_ac",
        "linkedAc": "linked_ac",
    }
    out: dict[str, Any] = {}
    for key, value in raw.items():
        target = renames.get(key, key)
        if isinstance(value, list):
            out[target] = [
                _normalize_keys(v) if isinstance(v, dict) else v
                for v in value  # pyright: ignore[reportUnknownVariableType]
            ]
        else:
            out[target] = value
    return out
