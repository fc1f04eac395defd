import math

import pytest
from fakes import KeywordEmbedder

from grounded_rag.ingest.embedder import CachedEmbedder, Embedder, HashingEmbedder, RetryingEmbedder

pytestmark = pytest.mark.anyio


class FlakyEmbedder(Embedder):
    def __init__(self, failures: list[Exception]) -> None:
        self.failures = failures
        self.attempts = 0

    async def embed(self, texts: list[str]) -> list[list[float]]:
        self.attempts += 1
        if self.failures:
            raise self.failures.pop(0)
        return [[1.0] for _ in texts]

    def dimensions(self) -> int:
        return 1


async def test_hashing_embedder_is_deterministic_and_normalized() -> None:
    embedder = HashingEmbedder(dimension=32)

    first, second, empty = await embedder.embed(["alpha beta", "alpha beta", ""])

    assert first == second
    assert len(first) == embedder.dimensions() == 32
    assert math.isclose(math.sqrt(sum(v * v for v in first)), 1.0)
    assert empty == [0.0] * 32


async def test_cache_batches_misses_once_and_preserves_order() -> None:
    inner = KeywordEmbedder(["alpha", "beta"])
    cached = CachedEmbedder(inner)

    vectors = await cached.embed(["alpha", "beta", "alpha"])
    again = await cached.embed(["beta", "alpha"])

    assert inner.calls == [["alpha", "beta"]]
    assert vectors == [[1.0, 0.0], [0.0, 1.0], [1.0, 0.0]]
    assert again == [[0.0, 1.0], [1.0, 0.0]]
    assert len(cached) == 2
    assert cached.dimensions() == 2


async def test_retrying_embedder_recovers_from_transient_errors() -> None:
    inner = FlakyEmbedder([ConnectionError("reset"), TimeoutError("slow")])
    embedder = RetryingEmbedder(inner, max_attempts=3, initial_delay=0.0, max_delay=0.0)

    assert await embedder.embed(["x"]) == [[1.0]]
    assert inner.attempts == 3


async def test_retrying_embedder_does_not_retry_auth_failures() -> None:
    inner = FlakyEmbedder([PermissionError("Invalid API key provided")])
    embedder = RetryingEmbedder(inner, max_attempts=3, initial_delay=0.0, max_delay=0.0)

    with pytest.raises(PermissionError):
        await embedder.embed(["x"])
    assert inner.attempts == 1


async def test_retrying_embedder_gives_up_after_max_attempts() -> None:
    inner = FlakyEmbedder([ConnectionError("a"), ConnectionError("b"), ConnectionError("c")])
    embedder = RetryingEmbedder(inner, max_attempts=2, initial_delay=0.0, max_delay=0.0)

    with pytest.raises(ConnectionError, match="b"):
        await embedder.embed(["x"])
    assert inner.attempts == 2
