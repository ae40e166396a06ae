"""Error classification for LLM calls.

Classifies exceptions by kind to decide:
- whether a failed call is retried (rate limits, timeouts, outages)
- which pipeline status a journey ends in when retries are exhausted
- how long to back off when the provider says so (Retry-After)
"""

from __future__ import annotations

import asyncio
import json
from enum import Enum

from circuitbreaker import CircuitBreakerError
from pydantic import ValidationError


class LLMErrorKind(Enum):
    TIMEOUT = "TIMEOUT"  # deadline exceeded, retryable
    RATE_LIMIT = "RATE_LIMIT"  # 429, retryable after backoff
    API_ERROR = "API_ERROR"  # 4xx request/auth problem, do NOT retry
    INVALID_RESPONSE = "INVALID_RESPONSE"  # unparseable output, do NOT retry
    UNAVAILABLE = "UNAVAILABLE"  # 5xx, network, open breaker, retryable


class LLMError(Exception):
    """LLM call failure with its classified kind."""

    def __init__(
        self,
        message: str,
        kind: LLMErrorKind,
        *,
        retry_after_ms: int | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.retry_after_ms = retry_after_ms

    @property
    def retryable(self) -> bool:
        return self.kind in _RETRYABLE

    @classmethod
    def from_exception(cls, error: Exception) -> LLMError:
        """Wrap an arbitrary exception, preserving an existing LLMError."""
        if isinstance(error, LLMError):
            return error
        return cls(
            str(error) or type(error).__name__,
            classify_llm_error(error),
            retry_after_ms=retry_after_ms(error),
        )


def classify_llm_error(error: Exception) -> LLMErrorKind:
    """Classify an error to determine handling strategy.

    Checks our own wrapper first, then structured attributes
    (status_code), then exception types, then message text.
    """
    if isinstance(error, LLMError):
        return error.kind

    # 1. Structured status_code attribute (httpx, openai, litellm)
    status_code = getattr(error, "status_code", None)
    if isinstance(status_code, int):
        if status_code == 429:
            return LLMErrorKind.RATE_LIMIT
        if status_code == 408:
            return LLMErrorKind.TIMEOUT
        if 400 <= status_code < 500:
            return LLMErrorKind.API_ERROR
        if 500 <= status_code < 600:
            return LLMErrorKind.UNAVAILABLE

    # 2. Typed exceptions
    if isinstance(error, (TimeoutError, asyncio.TimeoutError)):
        return LLMErrorKind.TIMEOUT
    if isinstance(error, CircuitBreakerError):
        return LLMErrorKind.UNAVAILABLE
    if isinstance(error, (json.JSONDecodeError, ValidationError)):
        return LLMErrorKind.INVALID_RESPONSE
    if isinstance(error, ConnectionError):
        return LLMErrorKind.UNAVAILABLE

    # 3. Fall back to string matching for untyped exceptions
    msg = str(error).lower()

    if "timeout" in msg or "timed out" in msg:
        return LLMErrorKind.TIMEOUT
    if "429" in msg or "rate limit" in msg or "rate_limit" in msg:
        return LLMErrorKind.RATE_LIMIT
    if any(code in msg for code in ("500", "502", "503", "504")):
        return LLMErrorKind.UNAVAILABLE
    if "econnrefused" in msg or "connection" in msg:
        return LLMErrorKind.UNAVAILABLE
    if "invalid json" in msg or "could not parse" in msg:
        return LLMErrorKind.INVALID_RESPONSE

    return LLMErrorKind.API_ERROR


def retry_after_ms(error: Exception) -> int | None:
    """Extract a provider-suggested backoff in milliseconds, if any."""
    value = getattr(error, "retry_after", None)
    if value is None:
        response = getattr(error, "response", None)
        headers = getattr(response, "headers", None)
        if headers is not None:
            value = headers.get("retry-after")
    if value is None:
        return None
    try:
        return int(float(value) * 1000)
    except (TypeError, ValueError):
        return None


_RETRYABLE = frozenset({
    LLMErrorKind.TIMEOUT,
    LLMErrorKind.RATE_LIMIT,
    LLMErrorKind.UNAVAILABLE,
})


def is_retryable(error: Exception) -> bool:
    """Return True if the error kind supports retry."""
    return classify_llm_error(error) in _RETRYABLE
