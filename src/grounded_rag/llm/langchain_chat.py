"""Generation capability backed by a LangChain chat model."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Sequence
from typing import TYPE_CHECKING, Any

from langchain_core.messages import (
    AIMessage,
    BaseMessage,
    HumanMessage,
    SystemMessage,
    ToolMessage,
)

from grounded_rag.errors import GenerationError
from grounded_rag.llm.base import GenerationInput, Generator
from grounded_rag.types import ChatMessage, LLMResponse, TokenUsage, ToolCall

if TYPE_CHECKING:
    from grounded_rag.agent.registry import ToolSpec

logger = logging.getLogger(__name__)


class LangChainChatGenerator(Generator):
    """Adapts any LangChain `BaseChatModel` to the `Generator` contract.

    Tools are bound per call with `bind_tools`, so the wrapped model must
    support tool calling when a tool catalogue is passed.
    """

    def __init__(self, model: Any, *, model_name: str | None = None) -> None:
        self._model = model
        self.model_name = model_name or str(
            getattr(model, "model_name", None) or getattr(model, "model", None) or "unknown"
        )

    async def generate(
        self,
        prompt: GenerationInput,
        *,
        temperature: float,
        max_tokens: int | None = None,
        tools: Sequence[ToolSpec] | None = None,
    ) -> LLMResponse:
        runnable = self._model
        if tools:
            runnable = runnable.bind_tools([spec.to_langchain_tool() for spec in tools])
        try:
            message = await runnable.ainvoke(
                to_langchain_messages(prompt), **_call_kwargs(temperature, max_tokens)
            )
        except Exception as exc:
            raise GenerationError(f"{self.model_name} generation failed: {exc}") from exc

        tool_calls = [
            ToolCall(
                call_id=str(call.get("id") or f"call_{index}"),
                name=str(call["name"]),
                arguments=dict(call.get("args") or {}),
            )
            for index, call in enumerate(getattr(message, "tool_calls", None) or [])
        ]
        metadata = getattr(message, "response_metadata", None) or {}
        return LLMResponse(
            content=content_text(getattr(message, "content", "")),
            model=str(metadata.get("model_name") or self.model_name),
            tool_calls=tool_calls or None,
            usage=_usage(getattr(message, "usage_metadata", None)),
        )

    async def generate_stream(
        self,
        prompt: GenerationInput,
        *,
        temperature: float,
        max_tokens: int | None = None,
    ) -> AsyncIterator[str]:
        async for chunk in self._model.astream(
            to_langchain_messages(prompt), **_call_kwargs(temperature, max_tokens)
        ):
            text = content_text(getattr(chunk, "content", ""))
            if text:
                yield text


def to_langchain_messages(prompt: GenerationInput) -> list[BaseMessage]:
    if isinstance(prompt, str):
        return [HumanMessage(content=prompt)]
    return [_convert(message) for message in prompt]


def _convert(message: ChatMessage) -> BaseMessage:
    if message.role == "system":
        return SystemMessage(content=message.content)
    if message.role == "user":
        return HumanMessage(content=message.content)
    if message.role == "tool":
        return ToolMessage(content=message.content, tool_call_id=message.tool_call_id or "")
    return AIMessage(
        content=message.content,
        tool_calls=[
            {"name": call.name, "args": call.arguments, "id": call.call_id}
            for call in message.tool_calls or []
        ],
    )


def content_text(content: Any) -> str:
    """Flatten LangChain message content (str or content blocks) to text."""

    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict):
                if "text" in item:
                    parts.append(str(item["text"]))
            else:
                parts.append(str(item))
        return "".join(parts)
    return str(content)


def _call_kwargs(temperature: float, max_tokens: int | None) -> dict[str, Any]:
    kwargs: dict[str, Any] = {"temperature": temperature}
    if max_tokens is not None:
        kwargs["max_tokens"] = max_tokens
    return kwargs


def _usage(metadata: Any) -> TokenUsage | None:
    if not metadata:
        return None
    prompt_tokens = int(metadata.get("input_tokens", 0))
    completion_tokens = int(metadata.get("output_tokens", 0))
    return TokenUsage(
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=int(metadata.get("total_tokens", prompt_tokens + completion_tokens)),
    )
