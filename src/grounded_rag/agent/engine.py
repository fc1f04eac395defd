"""RAG engine: transform, retrieve, compress, pack, generate with tools, verify."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Sequence
from typing import Any

from pydantic import BaseModel

from grounded_rag.agent.memory import SessionMemory
from grounded_rag.agent.query_transformer import QueryTransformer
from grounded_rag.agent.registry import ToolRegistry
from grounded_rag.config import EngineConfig
from grounded_rag.context.builder import ContextBuilder
from grounded_rag.context.compressor import Compressor, create_compressor
from grounded_rag.errors import NoFinalResponseError
from grounded_rag.ingest.chunker import DocumentChunker
from grounded_rag.ingest.document_store import DocumentStore, InMemoryDocumentStore
from grounded_rag.ingest.embedder import Embedder
from grounded_rag.llm.base import Generator
from grounded_rag.obs.tracing import CostTracker, RequestContext
from grounded_rag.retrieval.fusion import Reranker, cap_by_score, merge_by_chunk_id
from grounded_rag.retrieval.retriever import Retriever
from grounded_rag.retrieval.vector_store import SearchBackend
from grounded_rag.types import (
    INSUFFICIENT_CONTEXT,
    ChatMessage,
    Document,
    IngestResult,
    LLMResponse,
    RAGContext,
    RAGResponse,
    RetrievedDocument,
    SourceReference,
    TokenUsage,
)

logger = logging.getLogger(__name__)


class _StreamFailed:
    __slots__ = ("error",)

    def __init__(self, error: BaseException) -> None:
        self.error = error


_CLOSED = object()


class QueryStream:
    """Result of `RAGEngine.query_stream`.

    Two channels: iterate the object for text fragments as they arrive, then
    await `response()` for the final `RAGResponse`. The response resolves
    only after the fragment channel has closed. A pipeline failure is raised
    from both channels.
    """

    def __init__(self) -> None:
        self._fragments: asyncio.Queue[Any] = asyncio.Queue()
        self._response: asyncio.Future[RAGResponse] = asyncio.get_running_loop().create_future()
        self._task: asyncio.Task[None] | None = None

    def __aiter__(self) -> QueryStream:
        return self

    async def __anext__(self) -> str:
        item = await self._fragments.get()
        if item is _CLOSED:
            # Keep yielding end-of-stream to repeated iteration.
            self._fragments.put_nowait(_CLOSED)
            raise StopAsyncIteration
        if isinstance(item, _StreamFailed):
            self._fragments.put_nowait(_CLOSED)
            if self._response.done():
                self._response.exception()
            raise item.error
        return item

    async def response(self) -> RAGResponse:
        return await self._response

    async def collect(self) -> tuple[str, RAGResponse]:
        """Drain the fragments and return the joined text with the response."""
        text = "".join([fragment async for fragment in self])
        return text, await self.response()

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        if not self._response.done():
            self._response.cancel()

    def _emit(self, fragment: str) -> None:
        self._fragments.put_nowait(fragment)

    def _finish(self, response: RAGResponse) -> None:
        self._fragments.put_nowait(_CLOSED)
        if not self._response.done():
            self._response.set_result(response)

    def _fail(self, error: BaseException) -> None:
        self._fragments.put_nowait(_StreamFailed(error))
        if not self._response.done():
            self._response.set_exception(error)

    def _abort(self) -> None:
        self._fragments.put_nowait(_CLOSED)
        if not self._response.done():
            self._response.cancel()


class RAGEngine:
    """Orchestrates one grounded question-answering call end to end.

    Per query the steps run strictly in sequence: history lookup, query
    transformation, concurrent retrieval fan-out, dedup and cap, optional
    compression, context packing, the bounded generate/tool loop, grounding
    verification and memory persistence. Only the retrieval fan-out and the
    tool executions of one iteration run concurrently.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        *,
        generator: Generator,
        embedder: Embedder,
        search_backend: SearchBackend,
        reranker: Reranker | None = None,
        document_store: DocumentStore | None = None,
        tool_registry: ToolRegistry | None = None,
        memory: SessionMemory | None = None,
        compressor: Compressor | None = None,
        cost_tracker: CostTracker | None = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.generator = generator
        self.embedder = embedder
        if document_store is None and self.config.retrieval.parent_retrieval:
            document_store = InMemoryDocumentStore()
        self.document_store = document_store

        self.chunker = DocumentChunker(self.config.chunking)
        self.retriever = Retriever(
            search_backend,
            embedder,
            reranker=reranker,
            document_store=document_store,
            config=self.config.retrieval,
        )
        self.transformer = QueryTransformer(generator, self.config.query_transform)
        self.compressor = compressor or create_compressor(
            self.config.compression, generator=generator, embedder=embedder
        )
        self.context_builder = ContextBuilder(self.config.agent.system_prompt)
        self.tool_registry = tool_registry or ToolRegistry()
        self.memory = memory or SessionMemory(self.config.memory)
        self.cost_tracker = cost_tracker or CostTracker()

    async def query(
        self,
        query: str,
        *,
        top_k: int | None = None,
        temperature: float | None = None,
        session_id: str | None = None,
    ) -> RAGResponse:
        ctx = RequestContext(agent_name=self.config.name, session_id=session_id)
        logger.info("query_start", extra=ctx.log_fields(query_length=len(query)))

        history = await self._history(session_id)
        documents = await self._gather_evidence(query, history, top_k, ctx)
        if not documents:
            return _insufficient(ctx)

        context = self._build_context(query, documents, history)
        messages = self.context_builder.build_messages(context)
        response, usage, _ = await self._generation_loop(messages, temperature, ctx)

        answer = _normalise_answer(response.content)
        grounded = self.context_builder.verify_grounding(answer, context)
        if not grounded:
            logger.warning("grounding_failed", extra=ctx.log_fields(answer_length=len(answer)))
            answer = INSUFFICIENT_CONTEXT
        elif session_id is not None:
            await self._persist(session_id, query, answer)

        return self._assemble(answer, context, grounded, usage, response.model, ctx)

    def query_stream(
        self,
        query: str,
        *,
        top_k: int | None = None,
        temperature: float | None = None,
        session_id: str | None = None,
    ) -> QueryStream:
        """Start a streaming query on the running event loop."""

        stream = QueryStream()
        stream._task = asyncio.create_task(
            self._run_stream(stream, query, top_k, temperature, session_id)
        )
        return stream

    async def ingest(self, documents: Sequence[Document]) -> IngestResult:
        """Chunk, embed and index each document in turn.

        A failure propagates immediately; documents indexed before it stay
        indexed.
        """

        total_chunks = 0
        for document in documents:
            chunks = self.chunker.process(document)
            embeddings = await self.embedder.embed([chunk.content for chunk in chunks])
            if self.config.retrieval.parent_retrieval and self.document_store is not None:
                await self.document_store.add([document])
            await self.retriever.add_documents(chunks, embeddings)
            total_chunks += len(chunks)

        logger.info(
            "ingest_complete",
            extra={"agent": self.config.name, "processed": len(documents), "chunks": total_chunks},
        )
        return IngestResult(processed=len(documents), chunks=total_chunks)

    async def delete_documents(self, doc_ids: list[str]) -> None:
        await self.retriever.delete_documents(doc_ids)
        if self.document_store is not None:
            await self.document_store.delete(doc_ids)
        logger.info("documents_deleted", extra={"agent": self.config.name, "count": len(doc_ids)})

    async def _run_stream(
        self,
        stream: QueryStream,
        query: str,
        top_k: int | None,
        temperature: float | None,
        session_id: str | None,
    ) -> None:
        try:
            stream._finish(
                await self._stream_pipeline(stream, query, top_k, temperature, session_id)
            )
        except asyncio.CancelledError:
            stream._abort()
            raise
        except Exception as exc:
            logger.exception("query_stream_failed", extra={"error": str(exc)})
            stream._fail(exc)

    async def _stream_pipeline(
        self,
        stream: QueryStream,
        query: str,
        top_k: int | None,
        temperature: float | None,
        session_id: str | None,
    ) -> RAGResponse:
        ctx = RequestContext(agent_name=self.config.name, session_id=session_id)
        logger.info("query_start", extra=ctx.log_fields(query_length=len(query), stream=True))

        history = await self._history(session_id)
        documents = await self._gather_evidence(query, history, top_k, ctx)
        if not documents:
            stream._emit(INSUFFICIENT_CONTEXT)
            return _insufficient(ctx)

        context = self._build_context(query, documents, history)
        messages = self.context_builder.build_messages(context)
        temperature = self._temperature(temperature)

        usage: TokenUsage | None = None
        model: str | None = None
        capped = False
        if self.tool_registry.get_all_tools():
            response, usage, capped = await self._generation_loop(messages, temperature, ctx)
            model = response.model

        if capped:
            # No further model call once the loop is exhausted.
            answer = _normalise_answer(response.content)
            if answer:
                stream._emit(answer)
        else:
            parts: list[str] = []
            async for fragment in self.generator.generate_stream(
                messages, temperature=temperature, max_tokens=self.config.agent.max_tokens
            ):
                parts.append(fragment)
                stream._emit(fragment)
            answer = _normalise_answer("".join(parts))

        grounded = self.context_builder.verify_grounding(answer, context)
        if not grounded:
            logger.warning("grounding_failed", extra=ctx.log_fields(answer_length=len(answer)))
        if session_id is not None:
            await self._persist(session_id, query, answer)
        return self._assemble(answer, context, grounded, usage, model, ctx)

    async def _history(self, session_id: str | None) -> list[ChatMessage]:
        if session_id is None:
            return []
        return await self.memory.get_history(session_id)

    async def _gather_evidence(
        self,
        query: str,
        history: list[ChatMessage],
        top_k: int | None,
        ctx: RequestContext,
    ) -> list[RetrievedDocument]:
        top_k = top_k or self.config.retrieval.top_k
        queries = await self._transform(query, history)

        # gather keeps issue order, so the merge is independent of completion order.
        per_query = await asyncio.gather(*(self._retrieve_one(q, top_k) for q in queries))
        pool = cap_by_score(merge_by_chunk_id(per_query), top_k * 2)

        if self.compressor is not None and pool:
            pool = await self.compressor.compress(query, pool)

        if not pool:
            logger.info("context_insufficient", extra=ctx.log_fields(queries=len(queries)))
        return pool

    async def _transform(self, query: str, history: list[ChatMessage]) -> list[str]:
        settings = self.config.query_transform
        queries = [query]
        if settings.rewrite:
            queries = [await self.transformer.rewrite(query, history)]
        if settings.expand:
            queries = _union(
                queries, await self.transformer.expand(queries[0], settings.max_expansions)
            )
        if settings.decompose:
            queries = _union(queries, await self.transformer.decompose(queries[0]))
        return queries

    async def _retrieve_one(self, query: str, top_k: int) -> list[RetrievedDocument]:
        if self.config.query_transform.hyde:
            query = await self.transformer.generate_hypothetical_document(query)
        return await self.retriever.retrieve(query, top_k)

    def _build_context(
        self, query: str, documents: list[RetrievedDocument], history: list[ChatMessage]
    ) -> RAGContext:
        return self.context_builder.build(
            query, documents, self.config.agent.context_max_tokens, history or None
        )

    async def _generation_loop(
        self,
        messages: list[ChatMessage],
        temperature: float | None,
        ctx: RequestContext,
    ) -> tuple[LLMResponse, TokenUsage | None, bool]:
        """Run the bounded tool loop.

        Returns the last response, the summed usage and whether the loop
        stopped at the iteration cap with tool calls still pending.
        """

        temperature = self._temperature(temperature)
        max_iterations = self.config.agent.max_iterations
        response: LLMResponse | None = None
        usage: TokenUsage | None = None
        capped = False

        for iteration in range(1, max_iterations + 1):
            response = await self._generate(messages, temperature)
            usage = _add_usage(usage, response.usage)
            if not response.tool_calls:
                break
            logger.info(
                "tool_loop_iteration",
                extra=ctx.log_fields(iteration=iteration, tool_calls=len(response.tool_calls)),
            )
            if iteration == max_iterations:
                # The last response is used as the answer even though it asks for tools.
                logger.warning(
                    "tool_loop_cap_reached", extra=ctx.log_fields(iterations=max_iterations)
                )
                capped = True
                break
            await self._run_tools(response, messages)

        if response is None:
            raise NoFinalResponseError("Failed to get final response from LLM")
        return response, usage, capped

    async def _generate(self, messages: list[ChatMessage], temperature: float) -> LLMResponse:
        return await self.generator.generate(
            messages,
            temperature=temperature,
            max_tokens=self.config.agent.max_tokens,
            tools=self.tool_registry.get_all_tools() or None,
        )

    async def _run_tools(self, response: LLMResponse, messages: list[ChatMessage]) -> None:
        calls = response.tool_calls or []
        messages.append(
            ChatMessage(role="assistant", content=response.content, tool_calls=list(calls))
        )
        results = await asyncio.gather(
            *(self.tool_registry.execute_tool(call.name, call.arguments) for call in calls)
        )
        for call, result in zip(calls, results):
            messages.append(
                ChatMessage(role="tool", content=_as_text(result), tool_call_id=call.call_id)
            )

    async def _persist(self, session_id: str, query: str, answer: str) -> None:
        await self.memory.add_message(session_id, ChatMessage(role="user", content=query))
        await self.memory.add_message(session_id, ChatMessage(role="assistant", content=answer))

    def _temperature(self, temperature: float | None) -> float:
        return self.config.agent.temperature if temperature is None else temperature

    def _assemble(
        self,
        answer: str,
        context: RAGContext,
        grounded: bool,
        usage: TokenUsage | None,
        model: str | None,
        ctx: RequestContext,
    ) -> RAGResponse:
        cost = self.cost_tracker.estimate(model, usage) if usage and model else None
        logger.info(
            "query_complete",
            extra=ctx.log_fields(
                grounded=grounded,
                sources=len(context.documents),
                duration_ms=round(ctx.duration_ms, 2),
            ),
        )
        return RAGResponse(
            answer=answer,
            sources=[
                SourceReference(content=doc.chunk.content, source=doc.source, score=doc.score)
                for doc in context.documents
            ],
            context_sufficient=grounded and answer != INSUFFICIENT_CONTEXT,
            usage=usage,
            cost=cost,
            trace_id=ctx.trace_id,
        )


def _insufficient(ctx: RequestContext) -> RAGResponse:
    return RAGResponse(
        answer=INSUFFICIENT_CONTEXT,
        sources=[],
        context_sufficient=False,
        trace_id=ctx.trace_id,
    )


def _normalise_answer(answer: str) -> str:
    if answer.strip() == INSUFFICIENT_CONTEXT:
        return INSUFFICIENT_CONTEXT
    return answer


def _union(existing: list[str], additions: list[str]) -> list[str]:
    merged = list(existing)
    for item in additions:
        if item not in merged:
            merged.append(item)
    return merged


def _add_usage(total: TokenUsage | None, usage: TokenUsage | None) -> TokenUsage | None:
    if usage is None:
        return total
    return usage if total is None else total + usage


def _as_text(result: Any) -> str:
    if isinstance(result, str):
        return result
    if isinstance(result, BaseModel):
        return result.model_dump_json()
    return json.dumps(result, default=str)
