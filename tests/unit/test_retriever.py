import pytest
from fakes import EmptyEmbedder, FakeSearchBackend, KeywordEmbedder, ReversingReranker, make_chunk

from grounded_rag.config import RetrievalConfig
from grounded_rag.errors import ChunkEmbeddingMismatchError, EmbeddingGenerationError
from grounded_rag.ingest.document_store import InMemoryDocumentStore
from grounded_rag.retrieval.retriever import Retriever
from grounded_rag.types import Document, SearchHit

pytestmark = pytest.mark.anyio

VOCAB = ["encrypt", "customer", "data", "holiday"]


def _hits(*scores: float) -> list[SearchHit]:
    return [
        SearchHit(chunk=make_chunk(f"doc{i}-chunk", f"content {i}", source=f"src{i}"), score=score)
        for i, score in enumerate(scores)
    ]


async def test_threshold_filters_and_orders_results() -> None:
    backend = FakeSearchBackend(_hits(0.9, 0.75, 0.6))
    retriever = Retriever(
        backend, KeywordEmbedder(VOCAB), config=RetrievalConfig(top_k=5, score_threshold=0.7)
    )

    results = await retriever.retrieve("encrypt customer data")

    assert [item.score for item in results] == [0.9, 0.75]
    assert [item.source for item in results] == ["src0", "src1"]
    assert backend.search_calls[0]["top_k"] == 5
    assert backend.search_calls[0]["query"] is None


async def test_per_call_overrides_take_precedence() -> None:
    backend = FakeSearchBackend(_hits(0.9, 0.75, 0.6))
    retriever = Retriever(backend, KeywordEmbedder(VOCAB))

    results = await retriever.retrieve("data", top_k=1, score_threshold=0.0)

    assert [item.score for item in results] == [0.9]


async def test_reranker_order_is_kept_and_pool_is_over_fetched() -> None:
    backend = FakeSearchBackend(_hits(0.9, 0.8, 0.7))
    retriever = Retriever(
        backend,
        KeywordEmbedder(VOCAB),
        reranker=ReversingReranker([0.95, 0.5, 0.2]),
        config=RetrievalConfig(top_k=2, score_threshold=0.4),
    )

    results = await retriever.retrieve("encrypt")

    assert backend.search_calls[0]["top_k"] == 20
    assert [item.chunk.chunk_id for item in results] == ["doc2-chunk", "doc1-chunk"]
    assert [item.score for item in results] == [0.95, 0.5]


async def test_reranker_scores_below_threshold_are_dropped() -> None:
    backend = FakeSearchBackend(_hits(0.9, 0.8, 0.7))
    retriever = Retriever(
        backend,
        KeywordEmbedder(VOCAB),
        reranker=ReversingReranker([0.95, 0.5, 0.2]),
        config=RetrievalConfig(top_k=3, score_threshold=0.6),
    )

    results = await retriever.retrieve("encrypt")

    assert [item.chunk.chunk_id for item in results] == ["doc2-chunk"]


@pytest.mark.parametrize("strategy", ["vector", "hybrid"])
async def test_missing_query_embedding_is_fatal(strategy: str) -> None:
    retriever = Retriever(
        FakeSearchBackend(_hits(0.9)), EmptyEmbedder(), config=RetrievalConfig(strategy=strategy)
    )

    with pytest.raises(EmbeddingGenerationError):
        await retriever.retrieve("encrypt")


async def test_keyword_strategy_skips_embedding() -> None:
    backend = FakeSearchBackend(_hits(0.9))
    retriever = Retriever(backend, EmptyEmbedder(), config=RetrievalConfig(strategy="keyword"))

    results = await retriever.retrieve("encrypt data")

    assert len(results) == 1
    assert backend.search_calls[0] == {"vector": None, "top_k": 5, "query": "encrypt data"}


async def test_hybrid_strategy_sends_vector_and_text() -> None:
    backend = FakeSearchBackend(_hits(0.9))
    retriever = Retriever(
        backend, KeywordEmbedder(VOCAB), config=RetrievalConfig(strategy="hybrid", score_threshold=0.0)
    )

    await retriever.retrieve("customer data")

    call = backend.search_calls[0]
    assert call["vector"] == [0.0, 1.0, 1.0, 0.0]
    assert call["query"] == "customer data"


async def test_parent_expansion_collapses_chunks_of_one_document() -> None:
    store = InMemoryDocumentStore()
    await store.add([Document(doc_id="doc", content="Full parent text.", source="handbook")])
    hits = [
        SearchHit(chunk=make_chunk("doc-a", "part a", doc_id="doc", source="handbook"), score=0.9),
        SearchHit(chunk=make_chunk("doc-b", "part b", doc_id="doc", source="handbook"), score=0.8),
        SearchHit(chunk=make_chunk("other-a", "orphan", doc_id="other"), score=0.75),
    ]
    retriever = Retriever(
        FakeSearchBackend(hits),
        KeywordEmbedder(VOCAB),
        document_store=store,
        config=RetrievalConfig(parent_retrieval=True),
    )

    results = await retriever.retrieve("encrypt")

    assert [item.chunk.content for item in results] == ["Full parent text.", "orphan"]
    assert results[0].score == 0.9
    assert results[0].chunk.chunk_id == "doc-a"


async def test_parent_id_metadata_overrides_document_id() -> None:
    store = InMemoryDocumentStore()
    await store.add([Document(doc_id="parent-1", content="Parent body.", source="s")])
    hits = [
        SearchHit(
            chunk=make_chunk("c1", "child", doc_id="child-doc", metadata={"parent_id": "parent-1"}),
            score=0.9,
        )
    ]
    retriever = Retriever(
        FakeSearchBackend(hits),
        KeywordEmbedder(VOCAB),
        document_store=store,
        config=RetrievalConfig(parent_retrieval=True),
    )

    results = await retriever.retrieve("encrypt")

    assert results[0].chunk.content == "Parent body."


async def test_missing_source_metadata_falls_back_to_unknown() -> None:
    chunk = make_chunk("c1", "text")
    chunk.metadata.pop("source")
    retriever = Retriever(FakeSearchBackend([SearchHit(chunk=chunk, score=0.9)]), KeywordEmbedder(VOCAB))

    results = await retriever.retrieve("encrypt")

    assert results[0].source == "unknown"


async def test_add_documents_rejects_count_mismatch() -> None:
    retriever = Retriever(FakeSearchBackend(), KeywordEmbedder(VOCAB))

    with pytest.raises(ChunkEmbeddingMismatchError):
        await retriever.add_documents([make_chunk("c1", "text")], [])


async def test_delete_documents_forwards_to_backend() -> None:
    backend = FakeSearchBackend()
    retriever = Retriever(backend, KeywordEmbedder(VOCAB))

    await retriever.delete_documents(["doc-1"])

    assert backend.deleted == [["doc-1"]]
