"""Tests for the guarded litellm call: retry, breaker and usage metadata."""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, patch

import pytest
from circuitbreaker import CircuitBreakerError
from litellm.exceptions import RateLimitError as LitellmRateLimitError

from journeyforge.llm._llm_call import guarded_llm_call

MESSAGES = [{"role": "user", "content": "hi"}]


def _mock_response(content: str | None, cached: int = 0) -> Any:
    """Build a mock litellm response with usage metadata."""
    msg = type("Msg", (), {"content": content})()
    choice = type("Choice", (), {"message": msg})()
    details = type("Details", (), {"cached_tokens": cached})() if cached else None
    usage = type(
        "Usage",
        (),
        {
            "prompt_tokens": 120,
            "completion_tokens": 30,
            "prompt_tokens_details": details,
        },
    )()
    return type("Response", (), {"choices": [choice], "usage": usage})()


def _rate_error() -> LitellmRateLimitError:
    return LitellmRateLimitError(
        message="Rate limit exceeded",
        model="test",
        llm_provider="openai",
    )


class TestGuardedCall:
    async def test_returns_content_and_tokens(self) -> None:
        mock = AsyncMock(return_value=_mock_response('{"ok": true}'))
        with patch("journeyforge.llm._llm_call._acompletion", new=mock):
            result = await guarded_llm_call(
                "gpt-4o-mini", MESSAGES, 30, temperature=0.1, json_mode=True
            )
        assert result.content == '{"ok": true}'
        assert result.model == "gpt-4o-mini"
        assert result.total_tokens == 150
        assert result.cached_tokens == 0
        kwargs = mock.call_args.kwargs
        assert kwargs["timeout"] == 30
        assert kwargs["temperature"] == 0.1
        assert kwargs["response_format"] == {"type": "json_object"}

    async def test_plain_call_omits_optional_kwargs(self) -> None:
        mock = AsyncMock(return_value=_mock_response("x"))
        with patch("journeyforge.llm._llm_call._acompletion", new=mock):
            await guarded_llm_call("gpt-4o-mini", MESSAGES, 10)
        kwargs = mock.call_args.kwargs
        assert "temperature" not in kwargs
        assert "response_format" not in kwargs

    async def test_none_content_becomes_empty_string(self) -> None:
        with patch(
            "journeyforge.llm._llm_call._acompletion",
            new=AsyncMock(return_value=_mock_response(None)),
        ):
            result = await guarded_llm_call("m", MESSAGES, 10)
        assert result.content == ""

    async def test_cache_hit_is_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        with (
            caplog.at_level("INFO", logger="journeyforge.llm._llm_call"),
            patch(
                "journeyforge.llm._llm_call._acompletion",
                new=AsyncMock(return_value=_mock_response("x", cached=80)),
            ),
        ):
            result = await guarded_llm_call("m", MESSAGES, 10)
        assert result.cached_tokens == 80
        assert "event=prompt_cache_hit" in caplog.text

    async def test_cost_from_litellm_pricing(self) -> None:
        with (
            patch(
                "journeyforge.llm._llm_call._acompletion",
                new=AsyncMock(return_value=_mock_response("x")),
            ),
            patch("journeyforge.llm._llm_call._completion_cost", return_value=0.002),
        ):
            result = await guarded_llm_call("m", MESSAGES, 10)
        assert result.cost_usd == 0.002
        assert result.prompt_tokens == 120

    async def test_unpriced_model_costs_nothing(self) -> None:
        with (
            patch(
                "journeyforge.llm._llm_call._acompletion",
                new=AsyncMock(return_value=_mock_response("x")),
            ),
            patch(
                "journeyforge.llm._llm_call._completion_cost",
                side_effect=Exception("model isn't mapped yet"),
            ),
        ):
            result = await guarded_llm_call("custom/model", MESSAGES, 10)
        assert result.cost_usd == 0.0


class TestRateLimitHandling:
    async def test_retries_on_rate_limit_then_succeeds(self) -> None:
        """Two 429s then a success means three completion calls."""
        mock = AsyncMock(
            side_effect=[_rate_error(), _rate_error(), _mock_response("done")]
        )
        with patch("journeyforge.llm._llm_call._acompletion", new=mock):
            result = await guarded_llm_call("m", MESSAGES, 10)
        assert result.content == "done"
        assert mock.call_count == 3

    async def test_gives_up_after_three_attempts(self) -> None:
        mock = AsyncMock(side_effect=_rate_error())
        with (
            patch("journeyforge.llm._llm_call._acompletion", new=mock),
            pytest.raises(LitellmRateLimitError),
        ):
            await guarded_llm_call("m", MESSAGES, 10)
        assert mock.call_count == 3

    async def test_other_errors_are_not_retried(self) -> None:
        mock = AsyncMock(side_effect=ConnectionError("down"))
        with (
            patch("journeyforge.llm._llm_call._acompletion", new=mock),
            pytest.raises(ConnectionError),
        ):
            await guarded_llm_call("m", MESSAGES, 10)
        assert mock.call_count == 1

    async def test_rate_limits_do_not_open_breaker(self) -> None:
        """Backpressure never counts as an outage."""
        mock = AsyncMock(side_effect=_rate_error())
        with patch("journeyforge.llm._llm_call._acompletion", new=mock):
            for _ in range(3):
                with pytest.raises(LitellmRateLimitError):
                    await guarded_llm_call("m", MESSAGES, 10)
        assert mock.call_count == 9


class TestCircuitBreaker:
    async def test_opens_after_threshold(self) -> None:
        with patch(
            "journeyforge.llm._llm_call._acompletion",
            new_callable=AsyncMock,
            side_effect=ConnectionError("API down"),
        ):
            for _ in range(5):
                with pytest.raises(ConnectionError):
                    await guarded_llm_call("test-model", MESSAGES, 10)
            with pytest.raises(CircuitBreakerError):
                await guarded_llm_call("test-model", MESSAGES, 10)

    async def test_breakers_are_per_model(self) -> None:
        """One model's outage does not block the next model in the chain."""
        with patch(
            "journeyforge.llm._llm_call._acompletion",
            new_callable=AsyncMock,
            side_effect=ConnectionError("API down"),
        ):
            for _ in range(5):
                with pytest.raises(ConnectionError):
                    await guarded_llm_call("model-a", MESSAGES, 10)

        with patch(
            "journeyforge.llm._llm_call._acompletion",
            new=AsyncMock(return_value=_mock_response("fine")),
        ):
            result = await guarded_llm_call("model-b", MESSAGES, 10)
            with pytest.raises(CircuitBreakerError):
                await guarded_llm_call("model-a", MESSAGES, 10)
        assert result.content == "fine"
