"""LLM access: the client contract and its litellm implementation."""

from journeyforge.llm.client import (
    GenerateOptions,
    LiteLLMClient,
    LLMClient,
    LLMResponse,
    TokenUsage,
)

__all__ = [
    "GenerateOptions",
    "LLMClient",
    "LLMResponse",
    "LiteLLMClient",
    "TokenUsage",
]
