"""Shared test fixtures: no real LLM calls, fast retries, fresh breakers."""

import os

# Force demo API keys for all tests, no real LLM calls.
os.environ["ANTHROPIC_API_KEY"] = "for-demo-purposes-only"
os.environ["OPENAI_API_KEY"] = "for-demo-purposes-only"

from collections.abc import Iterator
from pathlib import Path

import pytest
from circuitbreaker import CircuitBreakerMonitor
from tenacity import wait_none

from journeyforge.config import Settings
from journeyforge.journey.models import (
    AcceptanceCriterion,
    Journey,
    ProceduralStep,
)
from journeyforge.llm._llm_call import _breaker_registry, guarded_llm_call


@pytest.fixture(autouse=True)
def _reset_breakers() -> None:
    """Reset per-model circuit breakers between tests."""
    _breaker_registry.clear()
    for cb in CircuitBreakerMonitor.get_circuits():
        cb.reset()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def _disable_retry_wait() -> Iterator[None]:
    """Disable tenacity wait time for fast tests."""
    original_wait = guarded_llm_call.retry.wait  # type: ignore[attr-defined]
    guarded_llm_call.retry.wait = wait_none()  # type: ignore[attr-defined]
    yield
    guarded_llm_call.retry.wait = original_wait  # type: ignore[attr-defined]


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings rooted in a temp dir with no cooldown between attempts."""
    return Settings(
        data_dir=tmp_path / "data",
        log_dir=tmp_path / "logs",
        refinement_cooldown_ms=0,
        trace_enabled=False,
    )


@pytest.fixture
def login_journey() -> Journey:
    return Journey(
        id="JRN-0001",
        title="User logs in",
        tier="smoke",
        acceptance_criteria=[
            AcceptanceCriterion(
                id="AC-1",
                title="Login succeeds",
                steps=[
                    "User navigates to /login",
                    "User enters 'alice' in 'Username' field",
                    "User clicks 'Sign in' button",
                    "User should see 'Welcome'",
                ],
            )
        ],
        procedural_steps=[
            ProceduralStep(number=1, text="Open the login page", linked_ac="AC-1"),
        ],
    )
