"""Rank fusion, reranking and multi-query result merging."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable

from grounded_rag.types import DocumentChunk, RerankResult, RetrievedDocument, SearchHit

DEFAULT_RRF_K = 60


def reciprocal_rank_fusion(
    ranked_lists: Iterable[list[SearchHit]], k: int = DEFAULT_RRF_K
) -> list[SearchHit]:
    """Fuse ranked lists with RRF: ``score = sum(1 / (k + rank))``.

    Ranks are 1-based per list. A chunk present in several lists accumulates
    one term per list. Ties keep first-seen order.
    """

    fused: dict[str, SearchHit] = {}
    for hits in ranked_lists:
        for rank, hit in enumerate(hits, start=1):
            bonus = 1.0 / (k + rank)
            current = fused.get(hit.chunk.chunk_id)
            if current is None:
                fused[hit.chunk.chunk_id] = SearchHit(chunk=hit.chunk, score=bonus)
            else:
                current.score += bonus
    return sorted(fused.values(), key=lambda item: item.score, reverse=True)


class Reranker(ABC):
    """Reranks a candidate pool; the returned order is authoritative."""

    @abstractmethod
    async def rerank(
        self, query: str, chunks: list[DocumentChunk], top_k: int | None = None
    ) -> list[RerankResult]:
        """Return `{index, score}` pairs indexing into `chunks`."""


class KeywordOverlapReranker(Reranker):
    """Lightweight reranker using query-document lexical overlap."""

    async def rerank(
        self, query: str, chunks: list[DocumentChunk], top_k: int | None = None
    ) -> list[RerankResult]:
        query_terms = set(query.lower().split())
        rescored: list[RerankResult] = []
        for index, chunk in enumerate(chunks):
            chunk_terms = set(chunk.content.lower().split())
            overlap = len(query_terms & chunk_terms) / max(1, len(query_terms))
            rescored.append(RerankResult(index=index, score=overlap))
        ranked = sorted(rescored, key=lambda x: x.score, reverse=True)
        return ranked[:top_k] if top_k is not None else ranked


def merge_by_chunk_id(result_lists: Iterable[list[RetrievedDocument]]) -> list[RetrievedDocument]:
    """Deduplicate per-query results; the first occurrence in list order wins."""

    merged: dict[str, RetrievedDocument] = {}
    for results in result_lists:
        for item in results:
            merged.setdefault(item.chunk.chunk_id, item)
    return list(merged.values())


def cap_by_score(documents: list[RetrievedDocument], limit: int) -> list[RetrievedDocument]:
    """Best-effort diversity cap: highest scores first, stable on ties."""

    return sorted(documents, key=lambda item: item.score, reverse=True)[:limit]
