"""Deterministic extractive generator for environments without a model key."""

from __future__ import annotations

import re
from collections.abc import AsyncIterator, Sequence
from typing import TYPE_CHECKING

from grounded_rag.ingest.chunker import count_tokens, split_sentences
from grounded_rag.llm.base import GenerationInput, Generator
from grounded_rag.types import INSUFFICIENT_CONTEXT, LLMResponse, TokenUsage

if TYPE_CHECKING:
    from grounded_rag.agent.registry import ToolSpec

_DOCUMENT_HEADER = re.compile(r"^\[\d+\] Source: .*\(Score: [0-9.]+\)[ \t]*$", re.MULTILINE)


class ExtractiveGenerator(Generator):
    """Answers by quoting the leading sentences of the best context passage.

    Keeps the `Generator` contract so the engine runs offline when no
    chat model is configured. It never requests tools, and answers
    `INSUFFICIENT_CONTEXT` when the prompt carries no context block.
    """

    model_name = "extractive"

    def __init__(self, max_sentences: int = 3) -> None:
        self.max_sentences = max_sentences

    async def generate(
        self,
        prompt: GenerationInput,
        *,
        temperature: float,
        max_tokens: int | None = None,
        tools: Sequence[ToolSpec] | None = None,
    ) -> LLMResponse:
        text = _prompt_text(prompt)
        answer = self._answer(text)
        usage = TokenUsage(
            prompt_tokens=count_tokens(text),
            completion_tokens=count_tokens(answer),
            total_tokens=count_tokens(text) + count_tokens(answer),
        )
        return LLMResponse(content=answer, model=self.model_name, usage=usage)

    async def generate_stream(
        self,
        prompt: GenerationInput,
        *,
        temperature: float,
        max_tokens: int | None = None,
    ) -> AsyncIterator[str]:
        words = self._answer(_prompt_text(prompt)).split(" ")
        for index, word in enumerate(words):
            yield word if index == 0 else f" {word}"

    def _answer(self, text: str) -> str:
        bodies = _DOCUMENT_HEADER.split(text)[1:]
        if not bodies:
            return INSUFFICIENT_CONTEXT
        body = bodies[0].split("\nUser: ", 1)[0].strip()
        sentences = split_sentences(body)
        return " ".join(sentences[: self.max_sentences]) or INSUFFICIENT_CONTEXT


def _prompt_text(prompt: GenerationInput) -> str:
    if isinstance(prompt, str):
        return prompt
    return "\n\n".join(message.content for message in prompt if message.role == "system")
