"""Embedding capability, deterministic baseline and composable wrappers."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from hashlib import blake2b
from math import sqrt
from typing import Any

from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from grounded_rag.errors import is_retryable_error
from grounded_rag.ingest.chunker import checksum

logger = logging.getLogger(__name__)


class Embedder(ABC):
    """Embedding capability used by ingest, retrieval and compression."""

    @abstractmethod
    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Return one vector per input text, in input order."""

    @abstractmethod
    def dimensions(self) -> int:
        """Vector dimensionality."""


class HashingEmbedder(Embedder):
    """Deterministic sparse-like embedding without external model calls.

    Used for local tests and offline runs. In production, wrap a real
    provider with `LangChainEmbedder`.
    """

    def __init__(self, dimension: int = 256) -> None:
        self.dimension = dimension

    async def embed(self, texts: list[str]) -> list[list[float]]:
        return [self._embed(text) for text in texts]

    def dimensions(self) -> int:
        return self.dimension

    def _embed(self, text: str) -> list[float]:
        vector = [0.0 for _ in range(self.dimension)]
        tokens = text.lower().split()
        if not tokens:
            return vector

        for token in tokens:
            digest = blake2b(token.encode("utf-8"), digest_size=8).digest()
            idx = int.from_bytes(digest[:4], "little") % self.dimension
            sign = -1.0 if digest[4] % 2 else 1.0
            vector[idx] += sign

        norm = sqrt(sum(value * value for value in vector))
        if norm == 0:
            return vector
        return [value / norm for value in vector]


class LangChainEmbedder(Embedder):
    """Adapts a LangChain `Embeddings` implementation."""

    def __init__(self, embeddings: Any, dimension: int) -> None:
        self._embeddings = embeddings
        self._dimension = dimension

    async def embed(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        vectors = await self._embeddings.aembed_documents(texts)
        return [list(vector) for vector in vectors]

    def dimensions(self) -> int:
        return self._dimension


class CachedEmbedder(Embedder):
    """Checksum-keyed cache in front of another embedder.

    The cache is append-only and shared by every caller of this instance.
    All misses of one call are sent to the inner embedder in a single batch.
    """

    def __init__(self, inner: Embedder) -> None:
        self._inner = inner
        self._cache: dict[str, list[float]] = {}

    async def embed(self, texts: list[str]) -> list[list[float]]:
        keys = [checksum(text) for text in texts]
        missing: dict[str, str] = {}
        for key, text in zip(keys, texts, strict=True):
            if key not in self._cache and key not in missing:
                missing[key] = text

        if missing:
            vectors = await self._inner.embed(list(missing.values()))
            for key, vector in zip(missing.keys(), vectors, strict=True):
                self._cache[key] = vector

        logger.debug(
            "embedding_cache_lookup",
            extra={"requested": len(texts), "misses": len(missing)},
        )
        return [self._cache[key] for key in keys]

    def dimensions(self) -> int:
        return self._inner.dimensions()

    def __len__(self) -> int:
        return len(self._cache)


class RetryingEmbedder(Embedder):
    """Retries transient embedding failures with exponential backoff."""

    def __init__(
        self,
        inner: Embedder,
        *,
        max_attempts: int = 3,
        initial_delay: float = 1.0,
        max_delay: float = 10.0,
    ) -> None:
        self._inner = inner
        self._max_attempts = max_attempts
        self._initial_delay = initial_delay
        self._max_delay = max_delay

    async def embed(self, texts: list[str]) -> list[list[float]]:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(multiplier=self._initial_delay, max=self._max_delay),
            retry=retry_if_exception(is_retryable_error),
            reraise=True,
        ):
            with attempt:
                return await self._inner.embed(texts)
        raise AssertionError("unreachable")

    def dimensions(self) -> int:
        return self._inner.dimensions()
