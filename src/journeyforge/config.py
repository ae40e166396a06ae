"""Environment-based configuration."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Annotated, Any, Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode

from journeyforge.constants import Confidence, FixType

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Reads from .env file and JOURNEYFORGE_* environment variables."""

    # Model chain (first = primary, rest = fallbacks tried in order)
    litellm_model_chain: Annotated[list[str], NoDecode] = [
        "openai/gpt-4.1-mini",
        "anthropic/claude-3-5-haiku-latest",
    ]
    llm_timeout_seconds: int = 60
    llm_temperature: float = 0.2
    llm_max_tokens: int = 4096

    # Refinement loop
    refinement_max_attempts: int = 3
    refinement_same_error_threshold: int = 2
    refinement_oscillation_detection: bool = True
    refinement_oscillation_window: int = 4
    refinement_total_timeout_ms: int = 300_000
    refinement_cooldown_ms: int = 1_000
    refinement_max_token_budget: int = 50_000
    refinement_count_skipped_attempts: bool = True
    refinement_forbidden_fix_types: Annotated[list[FixType], NoDecode] = []
    refinement_min_fix_confidence: float = Confidence.FIX_MIN_VIABLE
    refinement_stop_on_environmental_errors: bool = True
    refinement_learn_lessons: bool = True
    refinement_lesson_min_confidence: float = Confidence.LESSON_MIN
    refinement_max_lessons_per_session: int = 10

    # Confidence gate
    confidence_accept: float = 0.8
    confidence_reject: float = 0.5
    confidence_block_on_any_below: float = 0.3
    confidence_min_per_dimension: float = 0.5
    confidence_sampling_enabled: bool = False
    confidence_sample_count: int = 3

    # Structured planner
    planner_enabled: bool = False
    planner_min_confidence: float = 0.7
    planner_fallback: Literal["pattern-only", "error"] = "pattern-only"

    # Test execution
    pytest_executable: str = "pytest"
    runner_timeout_seconds: int = 120
    runner_kill_grace_seconds: float = 5.0
    runner_max_output_bytes: int = 1_048_576

    # Directories
    data_dir: Path = Path(".journeyforge")
    log_dir: Path = Path(".journeyforge/logs")
    glossary_path: Path | None = None
    modules_package: str = "modules"

    # Cost limits (None = unlimited)
    cost_limit_usd: float | None = None
    cost_limit_tokens: int | None = None

    # Logging / tracing
    log_level: str = "INFO"
    trace_enabled: bool = True

    # Worker pool
    max_concurrent_journeys: int = 4

    @field_validator("litellm_model_chain", mode="before")
    @classmethod
    def _parse_chain(cls, v: Any) -> Any:
        """Accept comma-separated string or JSON array."""
        if isinstance(v, str):
            return [s.strip() for s in v.split(",") if s.strip()]
        return v

    @field_validator("litellm_model_chain")
    @classmethod
    def _validate_chain(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError(
                "litellm_model_chain must contain at least one model"
            )
        seen: set[str] = set()
        dupes: list[str] = []
        for m in v:
            if m in seen:
                dupes.append(m)
            seen.add(m)
        if dupes:
            logger.warning(
                "Duplicate models in JOURNEYFORGE_LITELLM_MODEL_CHAIN: %s",
                ", ".join(dupes),
            )
        return v

    @field_validator("refinement_forbidden_fix_types", mode="before")
    @classmethod
    def _parse_fix_types(cls, v: Any) -> Any:
        """Accept comma-separated fix type names in any case."""
        if isinstance(v, str):
            return [s.strip().upper() for s in v.split(",") if s.strip()]
        return v

    @field_validator(
        "confidence_accept",
        "confidence_reject",
        "confidence_block_on_any_below",
        "confidence_min_per_dimension",
        "planner_min_confidence",
        "refinement_min_fix_confidence",
        "refinement_lesson_min_confidence",
    )
    @classmethod
    def _validate_unit_interval(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("threshold must be within [0, 1]")
        return v

    @property
    def llkb_path(self) -> Path:
        """Location of the learned-lessons store."""
        return self.data_dir / "llkb" / "lessons.json"

    @property
    def telemetry_path(self) -> Path:
        return self.data_dir / "telemetry.json"

    @property
    def cost_snapshot_path(self) -> Path:
        return self.data_dir / "cost.json"

    @property
    def sessions_dir(self) -> Path:
        """Directory holding persisted refinement sessions."""
        return self.data_dir / "sessions"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_prefix": "JOURNEYFORGE_",
        "extra": "ignore",
    }
