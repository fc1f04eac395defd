"""Retry-with-backoff decorator for generation capabilities."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Sequence
from typing import TYPE_CHECKING

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from grounded_rag.errors import is_retryable_error
from grounded_rag.llm.base import GenerationInput, Generator
from grounded_rag.types import LLMResponse

if TYPE_CHECKING:
    from grounded_rag.agent.registry import ToolSpec

logger = logging.getLogger(__name__)


def _log_retry(state: RetryCallState) -> None:
    exc = state.outcome.exception() if state.outcome else None
    logger.warning(
        "generation_retry",
        extra={"attempt": state.attempt_number, "error": str(exc)},
    )


class RetryingGenerator(Generator):
    """Wraps a generator so `generate` retries with exponential backoff.

    Streams are passed through untouched: a partially consumed stream
    cannot be replayed.
    """

    def __init__(
        self,
        inner: Generator,
        *,
        max_attempts: int = 3,
        initial_delay: float = 1.0,
        max_delay: float = 10.0,
    ) -> None:
        self._inner = inner
        self._max_attempts = max_attempts
        self._initial_delay = initial_delay
        self._max_delay = max_delay

    async def generate(
        self,
        prompt: GenerationInput,
        *,
        temperature: float,
        max_tokens: int | None = None,
        tools: Sequence[ToolSpec] | None = None,
    ) -> LLMResponse:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(multiplier=self._initial_delay, max=self._max_delay),
            retry=retry_if_exception(is_retryable_error),
            before_sleep=_log_retry,
            reraise=True,
        ):
            with attempt:
                return await self._inner.generate(
                    prompt, temperature=temperature, max_tokens=max_tokens, tools=tools
                )
        raise AssertionError("unreachable")

    def generate_stream(
        self,
        prompt: GenerationInput,
        *,
        temperature: float,
        max_tokens: int | None = None,
    ) -> AsyncIterator[str]:
        return self._inner.generate_stream(
            prompt, temperature=temperature, max_tokens=max_tokens
        )
