"""Built-in tool implementations for the RAG engine."""

from __future__ import annotations

from pydantic import BaseModel, Field

from grounded_rag.agent.registry import ToolRegistry, ToolSpec
from grounded_rag.ingest.chunker import split_sentences
from grounded_rag.retrieval.retriever import Retriever

NO_RESULTS = "NO_RESULTS"


class SearchToolInput(BaseModel):
    query: str = Field(min_length=1)
    top_k: int = Field(default=5, ge=1, le=10)
    score_threshold: float | None = Field(default=None, ge=0.0, le=1.0)


class SummarizeToolInput(BaseModel):
    text: str = Field(min_length=1)
    max_sentences: int = Field(default=3, ge=1, le=10)


def register_builtin_tools(registry: ToolRegistry, retriever: Retriever) -> None:
    """Register the default tool set offered to the model.

    Tools:
    - `search_documents`: runs the retriever and returns scored snippets.
    - `summarize_text`: keeps the leading sentences of a passage.
    """

    async def _search(input_data: SearchToolInput) -> str:
        results = await retriever.retrieve(
            input_data.query,
            top_k=input_data.top_k,
            score_threshold=input_data.score_threshold,
        )
        lines = []
        for index, item in enumerate(results, start=1):
            snippet = _truncate(item.chunk.content.replace("\n", " "), 220)
            lines.append(f"[{index}] {item.source} score={item.score:.4f} {snippet}")
        if not lines:
            return NO_RESULTS
        return "\n".join(lines)

    def _summarize(input_data: SummarizeToolInput) -> str:
        return " ".join(split_sentences(input_data.text)[: input_data.max_sentences])

    registry.register(
        ToolSpec(
            name="search_documents",
            description="Search the indexed documents and return scored snippets with sources.",
            args_schema=SearchToolInput,
            handler=_search,
            tags=["retrieval", "rag"],
        )
    )
    registry.register(
        ToolSpec(
            name="summarize_text",
            description="Summarize a text passage by keeping its leading sentences.",
            args_schema=SummarizeToolInput,
            handler=_summarize,
            tags=["nlp"],
        )
    )


def _truncate(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."
