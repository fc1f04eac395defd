"""Search backend contract and the in-memory adapter."""

from __future__ import annotations

from dataclasses import dataclass
from math import sqrt
from typing import Any, Protocol

from grounded_rag.errors import ChunkEmbeddingMismatchError
from grounded_rag.retrieval.fusion import DEFAULT_RRF_K, reciprocal_rank_fusion
from grounded_rag.types import DocumentChunk, SearchHit


class SearchBackend(Protocol):
    """Minimal search contract the retriever needs."""

    async def add(self, vectors: list[list[float]], chunks: list[DocumentChunk]) -> None:
        """Insert chunk vectors."""

    async def search(
        self,
        vector: list[float] | None,
        top_k: int,
        metadata_filter: dict[str, Any] | None = None,
        query: str | None = None,
    ) -> list[SearchHit]:
        """Vector search, keyword search, or both fused with RRF."""

    async def delete(self, doc_ids: list[str]) -> None:
        """Remove every chunk belonging to the given documents."""

    async def info(self) -> dict[str, int]:
        """Return `{"count": ..., "dimensions": ...}`."""


@dataclass(slots=True)
class _StoredVector:
    chunk: DocumentChunk
    embedding: list[float]


class InMemoryVectorStore:
    """Deterministic search backend used for tests and local prototyping.

    Passing both a vector and query text runs hybrid search: the vector and
    keyword rankings are fused with Reciprocal Rank Fusion before slicing.
    """

    def __init__(self, rrf_k: int = DEFAULT_RRF_K) -> None:
        self._store: dict[str, _StoredVector] = {}
        self._rrf_k = rrf_k

    async def add(self, vectors: list[list[float]], chunks: list[DocumentChunk]) -> None:
        if len(chunks) != len(vectors):
            raise ChunkEmbeddingMismatchError("vectors and chunks must have the same length")
        for chunk, embedding in zip(chunks, vectors, strict=True):
            self._store[chunk.chunk_id] = _StoredVector(chunk=chunk, embedding=embedding)

    async def search(
        self,
        vector: list[float] | None,
        top_k: int,
        metadata_filter: dict[str, Any] | None = None,
        query: str | None = None,
    ) -> list[SearchHit]:
        candidates = [
            rec
            for rec in self._store.values()
            if _metadata_match(rec.chunk.metadata, metadata_filter)
        ]
        vector_hits = self._vector_search(vector, candidates) if vector else []
        keyword_hits = self._keyword_search(query, candidates) if query else []

        if vector and query:
            return reciprocal_rank_fusion([vector_hits, keyword_hits], k=self._rrf_k)[:top_k]
        if vector:
            return vector_hits[:top_k]
        return keyword_hits[:top_k]

    async def delete(self, doc_ids: list[str]) -> None:
        targets = set(doc_ids)
        self._store = {
            chunk_id: rec
            for chunk_id, rec in self._store.items()
            if rec.chunk.doc_id not in targets
        }

    async def info(self) -> dict[str, int]:
        first = next(iter(self._store.values()), None)
        return {
            "count": len(self._store),
            "dimensions": len(first.embedding) if first else 0,
        }

    @staticmethod
    def _vector_search(vector: list[float], candidates: list[_StoredVector]) -> list[SearchHit]:
        return sorted(
            (
                SearchHit(chunk=rec.chunk, score=cosine_similarity(vector, rec.embedding))
                for rec in candidates
            ),
            key=lambda item: item.score,
            reverse=True,
        )

    @staticmethod
    def _keyword_search(query: str, candidates: list[_StoredVector]) -> list[SearchHit]:
        words = query.lower().split()
        if not words:
            return []
        scored = []
        for rec in candidates:
            content = rec.chunk.content.lower()
            matches = sum(1 for word in words if word in content)
            if matches:
                scored.append(SearchHit(chunk=rec.chunk, score=matches / len(words)))
        return sorted(scored, key=lambda item: item.score, reverse=True)


def _metadata_match(
    metadata: dict[str, Any], metadata_filter: dict[str, Any] | None
) -> bool:
    if not metadata_filter:
        return True
    for key, value in metadata_filter.items():
        if metadata.get(key) != value:
            return False
    return True


def cosine_similarity(a: list[float], b: list[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    numerator = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = sqrt(sum(x * x for x in a))
    norm_b = sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return numerator / (norm_a * norm_b)
