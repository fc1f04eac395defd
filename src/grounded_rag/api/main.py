"""FastAPI entrypoint for ingest/query/search endpoints."""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator
from dataclasses import asdict
from typing import Any

from fastapi import FastAPI, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from grounded_rag.agent.engine import RAGEngine
from grounded_rag.agent.tools import register_builtin_tools
from grounded_rag.config import EngineConfig
from grounded_rag.ingest.embedder import CachedEmbedder, HashingEmbedder
from grounded_rag.llm.base import Generator
from grounded_rag.llm.fallback import ExtractiveGenerator
from grounded_rag.obs.logging import configure_logging
from grounded_rag.retrieval.vector_store import InMemoryVectorStore
from grounded_rag.types import Document

logger = logging.getLogger(__name__)


def _create_generator() -> Generator:
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        return ExtractiveGenerator()

    from langchain_openai import ChatOpenAI

    from grounded_rag.llm.langchain_chat import LangChainChatGenerator
    from grounded_rag.llm.retry import RetryingGenerator

    model_name = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
    return RetryingGenerator(
        LangChainChatGenerator(ChatOpenAI(model=model_name), model_name=model_name)
    )


def build_default_engine(config: EngineConfig | None = None) -> RAGEngine:
    """In-memory engine with hashing embeddings and the built-in tools."""

    config = config or EngineConfig.from_env()
    embedder = CachedEmbedder(HashingEmbedder())
    engine = RAGEngine(
        config,
        generator=_create_generator(),
        embedder=embedder,
        search_backend=InMemoryVectorStore(rrf_k=config.retrieval.rrf_k),
    )
    register_builtin_tools(engine.tool_registry, engine.retriever)
    return engine


class DocumentPayload(BaseModel):
    id: str = Field(min_length=1)
    content: str = Field(min_length=1)
    source: str = "unknown"
    metadata: dict[str, Any] = Field(default_factory=dict)


class IngestRequest(BaseModel):
    documents: list[DocumentPayload] = Field(min_length=1)


class QueryRequest(BaseModel):
    question: str = Field(min_length=1)
    top_k: int | None = Field(default=None, ge=1, le=100)
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    session_id: str | None = None


class SearchRequest(BaseModel):
    query: str = Field(min_length=1)
    top_k: int = Field(default=5, ge=1, le=20)
    score_threshold: float | None = Field(default=None, ge=0.0, le=1.0)


class DeleteRequest(BaseModel):
    document_ids: list[str] = Field(min_length=1)


def create_app(engine: RAGEngine) -> FastAPI:
    app = FastAPI(title="Grounded RAG", version="0.1.0")

    @app.get("/health")
    async def health() -> dict[str, Any]:
        info = await engine.retriever.search_backend.info()
        return {
            "status": "ok",
            "agent": engine.config.name,
            "retrieval_strategy": engine.config.retrieval.strategy,
            "tools": [spec.name for spec in engine.tool_registry.get_all_tools()],
            "index": info,
        }

    @app.post("/ingest")
    async def ingest(request: IngestRequest) -> dict[str, Any]:
        documents = [
            Document(doc_id=item.id, content=item.content, source=item.source, metadata=item.metadata)
            for item in request.documents
        ]
        try:
            result = await engine.ingest(documents)
        except Exception as exc:
            logger.exception("ingest_request_failed")
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        return asdict(result)

    @app.post("/query")
    async def query(request: QueryRequest) -> dict[str, Any]:
        try:
            response = await engine.query(
                request.question,
                top_k=request.top_k,
                temperature=request.temperature,
                session_id=request.session_id,
            )
        except Exception as exc:
            logger.exception("query_request_failed")
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        return asdict(response)

    @app.post("/query/stream")
    async def query_stream(request: QueryRequest) -> StreamingResponse:
        stream = engine.query_stream(
            request.question,
            top_k=request.top_k,
            temperature=request.temperature,
            session_id=request.session_id,
        )

        async def _fragments() -> AsyncIterator[str]:
            try:
                async for fragment in stream:
                    yield fragment
            finally:
                stream.cancel()

        return StreamingResponse(_fragments(), media_type="text/plain; charset=utf-8")

    @app.post("/search")
    async def search(request: SearchRequest) -> dict[str, Any]:
        try:
            results = await engine.retriever.retrieve(
                request.query,
                top_k=request.top_k,
                score_threshold=request.score_threshold,
            )
        except Exception as exc:
            logger.exception("search_request_failed")
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        return {
            "items": [
                {
                    "chunk_id": item.chunk.chunk_id,
                    "doc_id": item.chunk.doc_id,
                    "source": item.source,
                    "score": item.score,
                    "content": item.chunk.content,
                    "metadata": item.chunk.metadata,
                }
                for item in results
            ]
        }

    @app.delete("/documents")
    async def delete_documents(request: DeleteRequest) -> dict[str, Any]:
        try:
            await engine.delete_documents(request.document_ids)
        except Exception as exc:
            logger.exception("delete_request_failed")
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        return {"deleted": request.document_ids}

    return app


def create_default_app() -> FastAPI:
    """Factory for `uvicorn --factory grounded_rag.api.main:create_default_app`."""

    config = EngineConfig.from_env()
    configure_logging(config.logging)
    return create_app(build_default_engine(config))
