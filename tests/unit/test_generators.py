import pytest
from fakes import FakeGenerator
from langchain_core.language_models.fake_chat_models import GenericFakeChatModel
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage, ToolMessage

from grounded_rag.errors import GenerationError
from grounded_rag.llm.fallback import ExtractiveGenerator
from grounded_rag.llm.langchain_chat import LangChainChatGenerator, content_text, to_langchain_messages
from grounded_rag.llm.retry import RetryingGenerator
from grounded_rag.types import INSUFFICIENT_CONTEXT, ChatMessage, LLMResponse, ToolCall

pytestmark = pytest.mark.anyio


async def test_langchain_generator_maps_content_and_usage() -> None:
    model = GenericFakeChatModel(
        messages=iter(
            [
                AIMessage(
                    content="Encryption is required.",
                    usage_metadata={"input_tokens": 12, "output_tokens": 4, "total_tokens": 16},
                )
            ]
        )
    )
    generator = LangChainChatGenerator(model, model_name="fake-chat")

    response = await generator.generate("What is required?", temperature=0.0)

    assert response.content == "Encryption is required."
    assert response.model == "fake-chat"
    assert response.tool_calls is None
    assert response.usage.total_tokens == 16


async def test_langchain_generator_streams_text() -> None:
    model = GenericFakeChatModel(messages=iter([AIMessage(content="hello streaming world")]))
    generator = LangChainChatGenerator(model, model_name="fake-chat")

    fragments = [fragment async for fragment in generator.generate_stream("hi", temperature=0.0)]

    assert "".join(fragments) == "hello streaming world"


async def test_langchain_generator_wraps_backend_errors() -> None:
    class BrokenModel:
        async def ainvoke(self, messages, **kwargs):
            raise ConnectionError("upstream closed")

    generator = LangChainChatGenerator(BrokenModel(), model_name="fake-chat")

    with pytest.raises(GenerationError):
        await generator.generate("hi", temperature=0.0)


def test_message_conversion_covers_tool_turns() -> None:
    messages = to_langchain_messages(
        [
            ChatMessage(role="system", content="S"),
            ChatMessage(role="user", content="q"),
            ChatMessage(
                role="assistant",
                content="",
                tool_calls=[ToolCall(call_id="c1", name="search_documents", arguments={"query": "q"})],
            ),
            ChatMessage(role="tool", content="NO_RESULTS", tool_call_id="c1"),
        ]
    )

    assert [type(message) for message in messages] == [
        SystemMessage,
        HumanMessage,
        AIMessage,
        ToolMessage,
    ]
    assert messages[2].tool_calls[0]["name"] == "search_documents"
    assert messages[3].tool_call_id == "c1"
    assert to_langchain_messages("plain")[0].content == "plain"


def test_content_text_flattens_blocks() -> None:
    assert content_text([{"type": "text", "text": "a"}, {"type": "image"}, "b"]) == "ab"


async def test_retrying_generator_retries_transient_failures() -> None:
    class Flaky(FakeGenerator):
        async def generate(self, prompt, **kwargs) -> LLMResponse:
            if len(self.calls) < 2:
                self.calls.append({"prompt": prompt})
                raise ConnectionError("temporary")
            return await super().generate(prompt, **kwargs)

    inner = Flaky(["done"])
    generator = RetryingGenerator(inner, max_attempts=3, initial_delay=0.0, max_delay=0.0)

    response = await generator.generate("q", temperature=0.1)

    assert response.content == "done"
    assert len(inner.calls) == 3


async def test_retrying_generator_fails_fast_on_auth_errors() -> None:
    inner = FakeGenerator(error=PermissionError("Unauthorized"))
    generator = RetryingGenerator(inner, max_attempts=3, initial_delay=0.0, max_delay=0.0)

    with pytest.raises(PermissionError):
        await generator.generate("q", temperature=0.1)
    assert len(inner.calls) == 1


async def test_extractive_generator_quotes_first_passage() -> None:
    generator = ExtractiveGenerator(max_sentences=1)
    messages = [
        ChatMessage(
            role="system",
            content="S\n\nContext:\n\n[1] Source: policy (Score: 0.900)\n"
            "Customer data must be encrypted. Backups run nightly.",
        ),
        ChatMessage(role="user", content="What about customer data?"),
    ]

    response = await generator.generate(messages, temperature=0.0)
    streamed = [fragment async for fragment in generator.generate_stream(messages, temperature=0.0)]

    assert response.content == "Customer data must be encrypted."
    assert "".join(streamed) == response.content
    assert response.usage.completion_tokens > 0


async def test_extractive_generator_without_context() -> None:
    response = await ExtractiveGenerator().generate("User: hi\nAssistant:", temperature=0.0)

    assert response.content == INSUFFICIENT_CONTEXT
