"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

INSUFFICIENT_CONTEXT = "INSUFFICIENT_CONTEXT"

Role = Literal["user", "assistant", "system", "tool"]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class Document:
    """A caller-owned source document before chunking."""

    doc_id: str
    content: str
    source: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class DocumentChunk:
    """A chunked section of a source document."""

    chunk_id: str
    doc_id: str
    content: str
    position: int
    token_count: int
    checksum: str
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utc_now)


@dataclass(slots=True)
class SearchHit:
    """Raw search backend result."""

    chunk: DocumentChunk
    score: float


@dataclass(slots=True)
class RerankResult:
    index: int
    score: float


@dataclass(slots=True)
class RetrievedDocument:
    """A chunk plus its retrieval-stage score and resolved source label."""

    chunk: DocumentChunk
    score: float
    source: str


@dataclass(slots=True)
class ToolCall:
    """A model-issued request to invoke a registered tool."""

    call_id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ChatMessage:
    role: Role
    content: str
    timestamp: datetime = field(default_factory=utc_now)
    tool_calls: list[ToolCall] | None = None
    tool_call_id: str | None = None


@dataclass(slots=True)
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: TokenUsage) -> TokenUsage:
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )


@dataclass(slots=True)
class EstimatedCost:
    amount: float
    currency: str
    model: str


@dataclass(slots=True)
class LLMResponse:
    """Result of one generation call."""

    content: str
    model: str
    tool_calls: list[ToolCall] | None = None
    usage: TokenUsage | None = None


@dataclass(slots=True)
class RAGContext:
    """The exact evidence set shown to the model."""

    query: str
    documents: list[RetrievedDocument]
    system_prompt: str
    history: list[ChatMessage] | None = None


@dataclass(slots=True)
class SourceReference:
    content: str
    source: str
    score: float


@dataclass(slots=True)
class RAGResponse:
    """Terminal output of one query."""

    answer: str
    sources: list[SourceReference]
    context_sufficient: bool
    usage: TokenUsage | None = None
    cost: EstimatedCost | None = None
    trace_id: str | None = None


@dataclass(slots=True)
class IngestResult:
    processed: int
    chunks: int


@dataclass(slots=True)
class ToolTrace:
    """Trace record for an executed tool call."""

    name: str
    input_payload: dict[str, Any]
    output_preview: str
    latency_ms: float
