from fakes import make_chunk

from grounded_rag.context.builder import ContextBuilder
from grounded_rag.ingest.chunker import count_tokens
from grounded_rag.types import INSUFFICIENT_CONTEXT, ChatMessage, RAGContext, RetrievedDocument


def _doc(chunk_id: str, content: str, source: str = "a", score: float = 0.9) -> RetrievedDocument:
    return RetrievedDocument(chunk=make_chunk(chunk_id, content, source=source), score=score, source=source)


def test_budget_admits_first_document_only() -> None:
    builder = ContextBuilder(system_prompt="S")
    docs = [_doc("d1", "x" * 40), _doc("d2", "y" * 200)]

    context = builder.build("q", docs, max_tokens=40)

    assert [doc.chunk.chunk_id for doc in context.documents] == ["d1"]
    assert count_tokens(builder.format_prompt(context)) <= 40


def test_admitted_documents_are_a_prefix_within_budget() -> None:
    builder = ContextBuilder()
    docs = [
        _doc(f"d{i}", ("word " * (5 + 7 * i)).strip(), source=f"src-{i}")
        for i in range(8)
    ]
    history = [ChatMessage(role="user", content="earlier question")]

    for budget in range(0, 600, 13):
        context = builder.build("what happened?", docs, max_tokens=budget, history=history)
        admitted = context.documents
        assert admitted == docs[: len(admitted)]
        if admitted:
            assert count_tokens(builder.format_prompt(context)) <= budget


def test_packing_stops_at_first_document_that_does_not_fit() -> None:
    builder = ContextBuilder(system_prompt="S")
    docs = [_doc("d1", "x" * 40), _doc("d2", "y" * 400), _doc("d3", "z" * 4)]

    context = builder.build("q", docs, max_tokens=60)

    assert [doc.chunk.chunk_id for doc in context.documents] == ["d1"]


def test_format_prompt_layout() -> None:
    builder = ContextBuilder(system_prompt="Be precise.")
    context = RAGContext(
        query="Where is the office?",
        documents=[_doc("d1", "The office is in Berlin.", source="handbook", score=0.8123)],
        system_prompt="Be precise.",
        history=[
            ChatMessage(role="user", content="Hi"),
            ChatMessage(role="assistant", content="Hello"),
        ],
    )

    prompt = builder.format_prompt(context)

    assert prompt.startswith("System: Be precise.\n")
    assert "[1] Source: handbook (Score: 0.812)" in prompt
    assert "Conversation History:\nUser: Hi\nAssistant: Hello" in prompt
    assert prompt.endswith("User: Where is the office?\nAssistant:")


def test_format_prompt_lists_each_source_once() -> None:
    builder = ContextBuilder()
    docs = [
        _doc("d1", "Encryption is required.", source="policy-handbook"),
        _doc("d2", "Backups run nightly.", source="ops-runbook"),
    ]

    prompt = builder.format_prompt(builder.build("q", docs, max_tokens=4000))

    assert prompt.count("policy-handbook") == 1
    assert prompt.count("ops-runbook") == 1


def test_build_messages_orders_system_history_and_query() -> None:
    builder = ContextBuilder(system_prompt="S")
    context = builder.build(
        "next?",
        [_doc("d1", "Evidence text.")],
        max_tokens=4000,
        history=[
            ChatMessage(role="user", content="first?"),
            ChatMessage(role="assistant", content="first answer"),
        ],
    )

    messages = builder.build_messages(context)

    assert [message.role for message in messages] == ["system", "user", "assistant", "user"]
    assert "Evidence text." in messages[0].content
    assert "[1] Source: a (Score: 0.900)" in messages[0].content
    assert messages[-1].content == "next?"


def test_sentinel_answer_is_always_grounded() -> None:
    builder = ContextBuilder()
    empty = RAGContext(query="q", documents=[], system_prompt="S")

    assert builder.verify_grounding(INSUFFICIENT_CONTEXT, empty) is True


def test_answer_without_documents_is_never_grounded() -> None:
    builder = ContextBuilder()
    empty = RAGContext(query="q", documents=[], system_prompt="S")

    assert builder.verify_grounding("The office is in Berlin.", empty) is False


def test_grounding_uses_word_overlap_ratio() -> None:
    builder = ContextBuilder()
    context = RAGContext(
        query="q",
        documents=[_doc("d1", "Company policy states employees must encrypt customer data at rest.")],
        system_prompt="S",
    )

    assert builder.verify_grounding("Employees must encrypt customer data.", context) is True
    assert builder.verify_grounding("Bananas grow quickly in tropical climates.", context) is False
