"""Grounded retrieval-augmented generation engine."""

from .agent.engine import QueryStream, RAGEngine
from .config import EngineConfig
from .types import INSUFFICIENT_CONTEXT, Document, RAGResponse

__all__ = [
    "INSUFFICIENT_CONTEXT",
    "Document",
    "EngineConfig",
    "QueryStream",
    "RAGEngine",
    "RAGResponse",
]
