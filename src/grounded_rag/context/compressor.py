"""Contextual compression of retrieved chunks."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import replace

from grounded_rag.config import CompressionConfig
from grounded_rag.ingest.chunker import count_tokens, split_sentences
from grounded_rag.ingest.embedder import Embedder
from grounded_rag.llm.base import Generator
from grounded_rag.retrieval.vector_store import cosine_similarity
from grounded_rag.types import RetrievedDocument

logger = logging.getLogger(__name__)

IRRELEVANT = "IRRELEVANT"

_EXTRACT_PROMPT = """
Extract the most relevant parts from the following context that answer the user's question.
If the context is irrelevant, respond with "IRRELEVANT".
Only extract relevant snippets, do not summarize or add commentary.

User Question: {query}

Context:
{content}

Relevant Snippets:
""".strip()


class Compressor(ABC):
    """Shrinks retrieved chunk content to the query-relevant subset.

    Implementations only touch `chunk.content` and `chunk.token_count`;
    score and source are preserved.
    """

    @abstractmethod
    async def compress(
        self, query: str, documents: list[RetrievedDocument]
    ) -> list[RetrievedDocument]:
        """Return the compressed documents, possibly fewer than given."""


class LLMCompressor(Compressor):
    """Asks the model to extract relevant snippets from each chunk concurrently.

    Chunks answered with the `IRRELEVANT` sentinel (or nothing) are dropped.
    """

    def __init__(self, generator: Generator, max_tokens_per_doc: int = 300) -> None:
        self.generator = generator
        self.max_tokens_per_doc = max_tokens_per_doc

    async def compress(
        self, query: str, documents: list[RetrievedDocument]
    ) -> list[RetrievedDocument]:
        distilled = await asyncio.gather(
            *(self._distill(query, document) for document in documents)
        )
        kept = [document for document in distilled if document is not None]
        logger.info(
            "compression_complete",
            extra={"strategy": "llm", "input": len(documents), "kept": len(kept)},
        )
        return kept

    async def _distill(
        self, query: str, document: RetrievedDocument
    ) -> RetrievedDocument | None:
        response = await self.generator.generate(
            _EXTRACT_PROMPT.format(query=query, content=document.chunk.content),
            temperature=0.0,
            max_tokens=self.max_tokens_per_doc,
        )
        content = response.content.strip()
        if not content or content == IRRELEVANT:
            return None
        return _with_content(document, content)


class EmbeddingsCompressor(Compressor):
    """Keeps the sentences most similar to the query within a token budget.

    Sentences are admitted by descending similarity and then re-ordered to
    their original positions before joining.
    """

    def __init__(self, embedder: Embedder, max_tokens_per_doc: int = 250) -> None:
        self.embedder = embedder
        self.max_tokens_per_doc = max_tokens_per_doc

    async def compress(
        self, query: str, documents: list[RetrievedDocument]
    ) -> list[RetrievedDocument]:
        query_embeddings = await self.embedder.embed([query])
        if not query_embeddings or not query_embeddings[0]:
            return documents
        query_embedding = query_embeddings[0]

        compressed: list[RetrievedDocument] = []
        for document in documents:
            sentences = split_sentences(document.chunk.content)
            if len(sentences) <= 1:
                compressed.append(document)
                continue

            sentence_embeddings = await self.embedder.embed(sentences)
            ranked = sorted(
                range(len(sentences)),
                key=lambda i: cosine_similarity(query_embedding, sentence_embeddings[i]),
                reverse=True,
            )

            selected: list[int] = []
            used = 0
            for i in ranked:
                tokens = count_tokens(sentences[i])
                if used + tokens <= self.max_tokens_per_doc:
                    selected.append(i)
                    used += tokens

            if not selected:
                compressed.append(document)
                continue
            content = " ".join(sentences[i] for i in sorted(selected))
            compressed.append(_with_content(document, content))

        logger.info(
            "compression_complete",
            extra={"strategy": "embeddings", "input": len(documents), "kept": len(compressed)},
        )
        return compressed


def create_compressor(
    config: CompressionConfig, *, generator: Generator, embedder: Embedder
) -> Compressor | None:
    if config.strategy == "llm":
        return LLMCompressor(generator, config.max_tokens_per_doc or 300)
    if config.strategy == "embeddings":
        return EmbeddingsCompressor(embedder, config.max_tokens_per_doc or 250)
    return None


def _with_content(document: RetrievedDocument, content: str) -> RetrievedDocument:
    return RetrievedDocument(
        chunk=replace(document.chunk, content=content, token_count=count_tokens(content)),
        score=document.score,
        source=document.source,
    )
