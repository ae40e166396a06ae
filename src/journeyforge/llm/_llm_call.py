"""One litellm completion, retried on 429s and fenced by a per-model breaker.

``LiteLLMClient`` calls ``guarded_llm_call`` once per model of its chain.
Rate limits are retried here with jittered backoff; every other failure
propagates at once so the client can fall through to the next model.
A model that keeps failing opens its own breaker and is skipped until
the recovery timeout passes.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import litellm
from circuitbreaker import (  # pyright: ignore[reportUnknownVariableType]
    CircuitBreaker,
    CircuitBreakerError,
)
from litellm.exceptions import RateLimitError as LitellmRateLimitError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from journeyforge.constants import (
    CB_LLM_FAILURE_THRESHOLD,
    CB_LLM_RECOVERY_TIMEOUT,
    LLM_MAX_OUTPUT_TOKENS,
    RETRY_INITIAL_WAIT,
    RETRY_MAX_ATTEMPTS,
    RETRY_MAX_WAIT,
)

logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    _acompletion: Callable[..., Coroutine[Any, Any, Any]]
    _completion_cost: Callable[..., float]
else:
    _acompletion = litellm.acompletion
    _completion_cost = litellm.completion_cost


@dataclass(frozen=True)
class LLMCallResult:
    """Text and usage of a single completion."""

    content: str
    model: str
    prompt_tokens: int
    completion_tokens: int
    cached_tokens: int = 0
    cost_usd: float = 0.0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


def _counts_as_outage(thrown_type: type, thrown_value: BaseException) -> bool:
    return not issubclass(thrown_type, LitellmRateLimitError)


_breaker_registry: dict[str, CircuitBreaker] = {}  # pyright: ignore[reportUnknownVariableType]


def _breaker_for(model: str) -> CircuitBreaker:  # pyright: ignore[reportUnknownParameterType]
    breaker = _breaker_registry.get(model)
    if breaker is None:
        breaker = CircuitBreaker(  # pyright: ignore[reportUnknownMemberType]
            failure_threshold=CB_LLM_FAILURE_THRESHOLD,
            recovery_timeout=CB_LLM_RECOVERY_TIMEOUT,
            expected_exception=_counts_as_outage,
            name=f"llm_{model}",
        )
        _breaker_registry[model] = breaker
    return breaker


def _request(
    model: str,
    messages: list[dict[str, str]],
    timeout: int,
    temperature: float | None,
    max_tokens: int,
    json_mode: bool,
) -> dict[str, Any]:
    request: dict[str, Any] = {
        "model": model,
        "messages": messages,
        "timeout": timeout,
        "max_tokens": max_tokens,
    }
    if temperature is not None:
        request["temperature"] = temperature
    if json_mode:
        request["response_format"] = {"type": "json_object"}
    return request


def _cost(response: Any, model: str) -> float:
    """Provider price of ``response``; 0.0 for models litellm cannot price."""
    try:
        return float(_completion_cost(completion_response=response))
    except Exception as exc:
        logger.debug("event=llm_cost_unknown model=%s error=%s", model, exc)
        return 0.0


@retry(
    stop=stop_after_attempt(RETRY_MAX_ATTEMPTS),
    wait=wait_exponential_jitter(initial=RETRY_INITIAL_WAIT, max=RETRY_MAX_WAIT),
    retry=retry_if_exception_type(LitellmRateLimitError),
    reraise=True,
)
async def guarded_llm_call(
    model: str,
    messages: list[dict[str, str]],
    timeout: int,
    *,
    temperature: float | None = None,
    max_tokens: int = LLM_MAX_OUTPUT_TOKENS,
    json_mode: bool = False,
) -> LLMCallResult:
    """Complete ``messages`` with ``model``.

    Raises:
        CircuitBreakerError: The model's breaker is open.
        RateLimitError: Still rate limited after the last retry.
    """
    breaker = _breaker_for(model)
    if breaker.opened:  # pyright: ignore[reportUnknownMemberType]
        raise CircuitBreakerError(breaker)  # pyright: ignore[reportUnknownArgumentType]
    with breaker:  # pyright: ignore[reportUnknownMemberType]
        response: Any = await _acompletion(
            **_request(model, messages, timeout, temperature, max_tokens, json_mode)
        )

    usage: Any = response.usage
    details = getattr(usage, "prompt_tokens_details", None)
    cached = int(getattr(details, "cached_tokens", 0) or 0)
    prompt_tokens = int(getattr(usage, "prompt_tokens", 0) or 0)
    if cached:
        logger.info(
            "event=prompt_cache_hit model=%s cached_tokens=%d prompt_tokens=%d",
            model,
            cached,
            prompt_tokens,
        )

    return LLMCallResult(
        content=str(response.choices[0].message.content or ""),
        model=model,
        prompt_tokens=prompt_tokens,
        completion_tokens=int(getattr(usage, "completion_tokens", 0) or 0),
        cached_tokens=cached,
        cost_usd=_cost(response, model),
    )
