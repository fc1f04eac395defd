"""LLM-driven query rewriting, expansion, decomposition and HyDE."""

from __future__ import annotations

import re

from grounded_rag.config import QueryTransformConfig
from grounded_rag.llm.base import Generator
from grounded_rag.types import ChatMessage

_LIST_MARKER = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s*")

_REWRITE_PROMPT = """
Rewrite the user query below so it is specific, clear and standalone, suitable for
retrieving relevant documents from a search index. Resolve references to the
conversation history if any. Reply with the rewritten query only.
{history}
Original Query: "{query}"

Rewritten Query:
""".strip()

_EXPAND_PROMPT = """
Generate {count} different phrasings or closely related questions for the query below
to improve document retrieval coverage.
Provide only the questions, one per line. Do not number them.

Query: "{query}"

Related Questions:
""".strip()

_DECOMPOSE_PROMPT = """
Break the question below into the smallest set of self-contained sub-questions that
together answer it. If it is already atomic, repeat it unchanged.
Provide only the sub-questions, one per line. Do not number them.

Question: "{query}"

Sub-questions:
""".strip()

_HYDE_PROMPT = """
Write a short, factual passage (3-5 sentences) that would plausibly answer the
question below, as it might appear in a reference document.

Question: "{query}"

Passage:
""".strip()


class QueryTransformer:
    """Rewrites, expands and decomposes queries through the generation capability.

    All calls use the configured fixed low temperature. Generation failures
    propagate to the caller.
    """

    def __init__(self, generator: Generator, config: QueryTransformConfig | None = None) -> None:
        self.generator = generator
        self.config = config or QueryTransformConfig()

    async def rewrite(self, query: str, history: list[ChatMessage] | None = None) -> str:
        history_block = ""
        if history:
            lines = "\n".join(f"{message.role.capitalize()}: {message.content}" for message in history)
            history_block = f"\nConversation History:\n{lines}\n"
        rewritten = await self._complete(
            _REWRITE_PROMPT.format(history=history_block, query=query), max_tokens=200
        )
        return rewritten.strip().strip('"').strip() or query

    async def expand(self, query: str, max_expansions: int | None = None) -> list[str]:
        count = max_expansions or self.config.max_expansions
        content = await self._complete(
            _EXPAND_PROMPT.format(count=count, query=query), max_tokens=300
        )
        return [query, *_lines(content)][: count + 1]

    async def decompose(self, query: str) -> list[str]:
        content = await self._complete(_DECOMPOSE_PROMPT.format(query=query), max_tokens=300)
        return _lines(content) or [query]

    async def generate_hypothetical_document(self, query: str) -> str:
        content = await self._complete(_HYDE_PROMPT.format(query=query), max_tokens=300)
        return content.strip() or query

    async def _complete(self, prompt: str, *, max_tokens: int) -> str:
        response = await self.generator.generate(
            prompt, temperature=self.config.temperature, max_tokens=max_tokens
        )
        return response.content


def _lines(content: str) -> list[str]:
    lines = (_LIST_MARKER.sub("", line).strip() for line in content.splitlines())
    return [line for line in lines if line]
