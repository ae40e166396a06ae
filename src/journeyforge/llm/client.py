"""LLM client contract and the litellm-backed implementation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from journeyforge.llm._llm_call import guarded_llm_call
from journeyforge.resilience.errors import LLMError, LLMErrorKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenUsage:
    """Token counts (and optional known cost) of one LLM call."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    estimated_cost_usd: float = 0.0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def __add__(self, other: TokenUsage) -> TokenUsage:
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=(
                self.completion_tokens + other.completion_tokens
            ),
            estimated_cost_usd=(
                self.estimated_cost_usd + other.estimated_cost_usd
            ),
        )


@dataclass(frozen=True)
class GenerateOptions:
    temperature: float = 0.2
    max_tokens: int = 4096
    timeout_ms: int = 60_000
    json_mode: bool = False


@dataclass(frozen=True)
class LLMResponse:
    content: str
    token_usage: TokenUsage
    model: str


class LLMClient(Protocol):
    """Request/response contract every pipeline stage awaits."""

    async def generate(
        self,
        prompt: str,
        system_prompt: str,
        options: GenerateOptions,
    ) -> LLMResponse: ...


class LiteLLMClient:
    """Walks a model chain; each model is guarded by its own breaker.

    Retryable failures (timeouts, outages, exhausted rate-limit
    retries) fall through to the next model. A non-retryable failure
    stops immediately. Exhausting the chain raises ``LLMError`` with
    the kind of the last failure.
    """

    def __init__(self, model_chain: list[str]) -> None:
        if not model_chain:
            msg = "model_chain must not be empty"
            raise ValueError(msg)
        self._models = list(model_chain)

    @property
    def models(self) -> list[str]:
        return list(self._models)

    async def generate(
        self,
        prompt: str,
        system_prompt: str,
        options: GenerateOptions,
    ) -> LLMResponse:
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": prompt},
        ]
        timeout_s = max(1, options.timeout_ms // 1000)
        last_error: LLMError | None = None

        for model in self._models:
            try:
                result = await guarded_llm_call(
                    model,
                    messages,
                    timeout_s,
                    temperature=options.temperature,
                    max_tokens=options.max_tokens,
                    json_mode=options.json_mode,
                )
            except Exception as exc:
                last_error = LLMError.from_exception(exc)
                logger.warning(
                    "event=llm_call_failed model=%s kind=%s"
                    " retryable=%s error=%s",
                    model,
                    last_error.kind.value,
                    last_error.retryable,
                    exc,
                )
                if not last_error.retryable:
                    raise last_error from exc
                continue

            if not result.content.strip():
                last_error = LLMError(
                    f"Empty response from {model}",
                    LLMErrorKind.INVALID_RESPONSE,
                )
                logger.warning("event=llm_empty_response model=%s", model)
                continue

            return LLMResponse(
                content=result.content,
                token_usage=TokenUsage(
                    prompt_tokens=result.prompt_tokens,
                    completion_tokens=result.completion_tokens,
                    estimated_cost_usd=result.cost_usd,
                ),
                model=result.model,
            )

        assert last_error is not None
        raise last_error
