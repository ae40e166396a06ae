"""Tests for the model-chain LLM client."""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, patch

import pytest
from circuitbreaker import CircuitBreaker, CircuitBreakerError

from journeyforge.llm._llm_call import LLMCallResult
from journeyforge.llm.client import GenerateOptions, LiteLLMClient, TokenUsage
from journeyforge.resilience.errors import LLMError, LLMErrorKind

OPTIONS = GenerateOptions(timeout_ms=30_000, json_mode=True)


def _result(content: str, model: str = "primary") -> LLMCallResult:
    return LLMCallResult(
        content=content,
        model=model,
        prompt_tokens=200,
        completion_tokens=40,
        cost_usd=0.001,
    )


class _StatusError(Exception):
    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


def _patch_call(mock: AsyncMock) -> Any:
    return patch("journeyforge.llm.client.guarded_llm_call", new=mock)


def test_token_usage_addition() -> None:
    total = TokenUsage(10, 5, 0.01) + TokenUsage(1, 2)
    assert total == TokenUsage(11, 7, 0.01)
    assert total.total_tokens == 18


def test_empty_chain_rejected() -> None:
    with pytest.raises(ValueError, match="must not be empty"):
        LiteLLMClient([])


class TestModelChain:
    async def test_first_model_answers(self) -> None:
        mock = AsyncMock(return_value=_result("{}"))
        with _patch_call(mock):
            response = await LiteLLMClient(["primary", "backup"]).generate(
                "prompt", "system", OPTIONS
            )
        assert response.content == "{}"
        assert response.model == "primary"
        assert response.token_usage == TokenUsage(200, 40, 0.001)
        assert mock.call_count == 1
        args, kwargs = mock.call_args
        assert args[0] == "primary"
        assert args[1][0] == {"role": "system", "content": "system"}
        assert args[2] == 30
        assert kwargs["json_mode"] is True

    async def test_retryable_failure_falls_through(self) -> None:
        """A timeout on the primary model is answered by the backup."""
        mock = AsyncMock(side_effect=[TimeoutError(), _result("ok", "backup")])
        with _patch_call(mock):
            response = await LiteLLMClient(["primary", "backup"]).generate(
                "p", "s", OPTIONS
            )
        assert response.model == "backup"
        assert [c.args[0] for c in mock.call_args_list] == ["primary", "backup"]

    async def test_open_breaker_falls_through(self) -> None:
        mock = AsyncMock(
            side_effect=[
                CircuitBreakerError(CircuitBreaker(name="llm_primary")),
                _result("ok", "backup"),
            ]
        )
        with _patch_call(mock):
            response = await LiteLLMClient(["primary", "backup"]).generate(
                "p", "s", OPTIONS
            )
        assert response.content == "ok"

    async def test_non_retryable_failure_stops(self) -> None:
        mock = AsyncMock(side_effect=_StatusError("bad key", 401))
        with _patch_call(mock), pytest.raises(LLMError) as exc_info:
            await LiteLLMClient(["primary", "backup"]).generate("p", "s", OPTIONS)
        assert exc_info.value.kind == LLMErrorKind.API_ERROR
        assert mock.call_count == 1

    async def test_empty_content_tries_next_model(self) -> None:
        mock = AsyncMock(side_effect=[_result("  "), _result("ok", "backup")])
        with _patch_call(mock):
            response = await LiteLLMClient(["primary", "backup"]).generate(
                "p", "s", OPTIONS
            )
        assert response.model == "backup"

    async def test_exhausted_chain_raises_last_kind(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        mock = AsyncMock(
            side_effect=[_StatusError("overloaded", 503), _StatusError("slow", 429)]
        )
        with _patch_call(mock), pytest.raises(LLMError) as exc_info:
            await LiteLLMClient(["primary", "backup"]).generate("p", "s", OPTIONS)
        assert exc_info.value.kind == LLMErrorKind.RATE_LIMIT
        assert exc_info.value.retryable
        assert caplog.text.count("event=llm_call_failed") == 2

    async def test_all_empty_is_invalid_response(self) -> None:
        mock = AsyncMock(return_value=_result(""))
        with _patch_call(mock), pytest.raises(LLMError) as exc_info:
            await LiteLLMClient(["only"]).generate("p", "s", OPTIONS)
        assert exc_info.value.kind == LLMErrorKind.INVALID_RESPONSE
