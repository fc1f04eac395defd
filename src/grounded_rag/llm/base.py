"""Generation capability contract."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Sequence
from typing import TYPE_CHECKING

from grounded_rag.types import ChatMessage, LLMResponse

if TYPE_CHECKING:
    from grounded_rag.agent.registry import ToolSpec

GenerationInput = str | Sequence[ChatMessage]


class Generator(ABC):
    """Language-model capability consumed by the pipeline.

    `generate_stream` yields text fragments; the iterator is finite and not
    restartable.
    """

    @abstractmethod
    async def generate(
        self,
        prompt: GenerationInput,
        *,
        temperature: float,
        max_tokens: int | None = None,
        tools: Sequence[ToolSpec] | None = None,
    ) -> LLMResponse:
        """Run one completion."""

    @abstractmethod
    def generate_stream(
        self,
        prompt: GenerationInput,
        *,
        temperature: float,
        max_tokens: int | None = None,
    ) -> AsyncIterator[str]:
        """Stream a completion as text fragments."""
