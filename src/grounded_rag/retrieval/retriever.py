"""Single-query retriever: embed, search, rerank or filter, expand parents."""

from __future__ import annotations

import logging
from dataclasses import replace

from grounded_rag.config import RetrievalConfig
from grounded_rag.errors import ChunkEmbeddingMismatchError, EmbeddingGenerationError
from grounded_rag.ingest.document_store import DocumentStore
from grounded_rag.ingest.embedder import Embedder
from grounded_rag.retrieval.fusion import Reranker
from grounded_rag.retrieval.vector_store import SearchBackend
from grounded_rag.types import DocumentChunk, RetrievedDocument, SearchHit

logger = logging.getLogger(__name__)

_RERANK_POOL_FLOOR = 20


class Retriever:
    """Turns one query into ranked `RetrievedDocument`s.

    With a reranker, an over-fetched candidate pool (`max(top_k * 4, 20)`)
    is sent to it and its order is kept as-is. Without one, candidates are
    threshold-filtered, sorted by score and cut to `top_k`. Hybrid fusion of
    vector and keyword rankings is left to the search backend.
    """

    def __init__(
        self,
        search_backend: SearchBackend,
        embedder: Embedder,
        *,
        reranker: Reranker | None = None,
        document_store: DocumentStore | None = None,
        config: RetrievalConfig | None = None,
    ) -> None:
        self.search_backend = search_backend
        self.embedder = embedder
        self.reranker = reranker
        self.document_store = document_store
        self.config = config or RetrievalConfig()

    async def retrieve(
        self,
        query: str,
        top_k: int | None = None,
        score_threshold: float | None = None,
    ) -> list[RetrievedDocument]:
        top_k = top_k or self.config.top_k
        threshold = self.config.score_threshold if score_threshold is None else score_threshold
        strategy = self.config.strategy

        query_embedding: list[float] | None = None
        if strategy in ("vector", "hybrid"):
            query_embedding = await self._embed_query(query)

        initial_k = max(top_k * 4, _RERANK_POOL_FLOOR) if self.reranker else top_k
        hits = await self.search_backend.search(
            query_embedding,
            initial_k,
            None,
            query if strategy in ("keyword", "hybrid") else None,
        )

        if self.reranker is not None and hits:
            results = await _rerank(self.reranker, query, hits, top_k, threshold)
        else:
            results = sorted(
                (_to_retrieved(hit.chunk, hit.score) for hit in hits if hit.score >= threshold),
                key=lambda item: item.score,
                reverse=True,
            )[:top_k]

        if self.config.parent_retrieval and self.document_store is not None:
            results = await _expand_parents(self.document_store, results)

        logger.info(
            "retrieval_complete",
            extra={
                "strategy": strategy,
                "candidates": len(hits),
                "results": len(results),
                "query_length": len(query),
            },
        )
        return results

    async def add_documents(
        self, chunks: list[DocumentChunk], embeddings: list[list[float]]
    ) -> None:
        if len(chunks) != len(embeddings):
            raise ChunkEmbeddingMismatchError("Number of chunks must match number of embeddings")
        await self.search_backend.add(embeddings, chunks)

    async def delete_documents(self, doc_ids: list[str]) -> None:
        await self.search_backend.delete(doc_ids)

    async def _embed_query(self, query: str) -> list[float]:
        embeddings = await self.embedder.embed([query])
        embedding = embeddings[0] if embeddings else None
        if not embedding:
            raise EmbeddingGenerationError(
                f"Failed to generate query embedding for {self.config.strategy} search"
            )
        return embedding


async def _rerank(
    reranker: Reranker, query: str, hits: list[SearchHit], top_k: int, threshold: float
) -> list[RetrievedDocument]:
    chunks = [hit.chunk for hit in hits]
    ranked = await reranker.rerank(query, chunks, top_k)
    return [
        _to_retrieved(chunks[item.index], item.score)
        for item in ranked
        if item.score >= threshold
    ]


async def _expand_parents(
    document_store: DocumentStore, results: list[RetrievedDocument]
) -> list[RetrievedDocument]:
    """Swap each chunk's content for its parent document, one entry per parent."""

    expanded: list[RetrievedDocument] = []
    seen: set[str] = set()
    for item in results:
        parent_id = str(item.chunk.metadata.get("parent_id") or item.chunk.doc_id)
        if parent_id in seen:
            continue
        seen.add(parent_id)
        parent = await document_store.get(parent_id)
        if parent is None:
            expanded.append(item)
            continue
        expanded.append(
            RetrievedDocument(
                chunk=replace(item.chunk, content=parent.content),
                score=item.score,
                source=item.source,
            )
        )
    return expanded


def _to_retrieved(chunk: DocumentChunk, score: float) -> RetrievedDocument:
    return RetrievedDocument(
        chunk=chunk,
        score=score,
        source=str(chunk.metadata.get("source") or "unknown"),
    )
