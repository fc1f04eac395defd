from grounded_rag.context.builder import DEFAULT_SYSTEM_PROMPT, GROUNDING_MIN_RATIO, ContextBuilder
from grounded_rag.types import INSUFFICIENT_CONTEXT, DocumentChunk, RAGContext, RetrievedDocument


def test_prompt_contains_groundedness_constraints() -> None:
    assert "ONLY use information from the context" in DEFAULT_SYSTEM_PROMPT
    assert f'respond with exactly: "{INSUFFICIENT_CONTEXT}"' in DEFAULT_SYSTEM_PROMPT


def test_sentinel_literal_is_stable() -> None:
    assert INSUFFICIENT_CONTEXT == "INSUFFICIENT_CONTEXT"
    assert GROUNDING_MIN_RATIO == 0.30


def test_grounding_threshold_is_inclusive() -> None:
    chunk = DocumentChunk(
        chunk_id="policy-0",
        doc_id="policy",
        content="employees must encrypt data",
        position=0,
        token_count=7,
        checksum="x",
    )
    context = RAGContext(
        query="q",
        documents=[RetrievedDocument(chunk=chunk, score=0.9, source="policy")],
        system_prompt=DEFAULT_SYSTEM_PROMPT,
    )
    builder = ContextBuilder()

    # 3 of 10 words are long enough and found in the evidence.
    assert builder.verify_grounding("employees must encrypt a b c d e f g", context) is True
    assert builder.verify_grounding("employees must x a b c d e f g", context) is False
