import pytest
from fakes import FakeGenerator

from grounded_rag.agent.query_transformer import QueryTransformer
from grounded_rag.config import QueryTransformConfig
from grounded_rag.types import ChatMessage

pytestmark = pytest.mark.anyio


async def test_rewrite_strips_quotes_and_uses_history() -> None:
    generator = FakeGenerator(['"What is the refund window for EU orders?"'])
    transformer = QueryTransformer(generator)
    history = [ChatMessage(role="user", content="We ship to the EU.")]

    rewritten = await transformer.rewrite("and refunds?", history)

    assert rewritten == "What is the refund window for EU orders?"
    assert "We ship to the EU." in generator.calls[0]["prompt"]
    assert generator.calls[0]["temperature"] == 0.0


async def test_rewrite_falls_back_to_original_on_empty_output() -> None:
    transformer = QueryTransformer(FakeGenerator(["   "]))

    assert await transformer.rewrite("refunds") == "refunds"


async def test_expand_keeps_original_first_and_caps_count() -> None:
    generator = FakeGenerator(["1. refund period\n- return window\n\nmoney back\nextra line"])
    transformer = QueryTransformer(generator, QueryTransformConfig(max_expansions=3))

    queries = await transformer.expand("refund policy")

    assert queries == ["refund policy", "refund period", "return window", "money back"]


async def test_decompose_splits_lines_and_falls_back() -> None:
    transformer = QueryTransformer(FakeGenerator(["Who founded it?\nWhen was it founded?"]))
    assert await transformer.decompose("Who founded it and when?") == [
        "Who founded it?",
        "When was it founded?",
    ]

    empty = QueryTransformer(FakeGenerator([""]))
    assert await empty.decompose("atomic question") == ["atomic question"]


async def test_hypothetical_document_uses_configured_temperature() -> None:
    generator = FakeGenerator(["Refunds are accepted within 30 days."])
    transformer = QueryTransformer(generator, QueryTransformConfig(temperature=0.2))

    passage = await transformer.generate_hypothetical_document("refund window?")

    assert passage == "Refunds are accepted within 30 days."
    assert generator.calls[0]["temperature"] == 0.2


async def test_generation_failure_propagates() -> None:
    transformer = QueryTransformer(FakeGenerator(error=RuntimeError("model offline")))

    with pytest.raises(RuntimeError, match="model offline"):
        await transformer.expand("refunds")
