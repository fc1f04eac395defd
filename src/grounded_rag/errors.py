"""Exception hierarchy for the RAG pipeline."""

from __future__ import annotations


class RagError(RuntimeError):
    """Base class for pipeline failures."""


class ConfigError(RagError, ValueError):
    """Raised when a configuration file cannot be loaded."""


class EmbeddingGenerationError(RagError):
    """Raised when a required query embedding is missing or empty."""


class ChunkEmbeddingMismatchError(RagError, ValueError):
    """Raised when chunk and embedding counts differ."""


class UnknownToolError(RagError, KeyError):
    """Raised when a tool name is not registered."""

    def __str__(self) -> str:
        return RuntimeError.__str__(self)


class ToolArgumentsError(RagError, ValueError):
    """Raised when tool arguments do not match the tool's input schema."""


class GenerationError(RagError):
    """Raised when the generation backend fails."""


class NoFinalResponseError(RagError):
    """Raised when the generation loop produced no response at all."""


_NON_RETRYABLE_MARKERS = ("invalid api key", "unauthorized", "forbidden")


def is_retryable_error(exc: BaseException) -> bool:
    """Authentication-style failures are never retried."""
    message = str(exc).lower()
    return not any(marker in message for marker in _NON_RETRYABLE_MARKERS)
