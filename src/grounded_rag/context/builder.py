"""Token-budgeted context packing, prompt formatting and grounding checks."""

from __future__ import annotations

import logging

from grounded_rag.ingest.chunker import count_tokens
from grounded_rag.types import INSUFFICIENT_CONTEXT, ChatMessage, RAGContext, RetrievedDocument

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = """
You are a helpful AI assistant that answers questions based on the provided context.
You must ONLY use information from the context to answer questions.
If the context does not contain enough information to answer the question, respond with exactly: "INSUFFICIENT_CONTEXT"
Do not use any prior knowledge or make assumptions beyond what is explicitly stated in the context.
""".strip()

GROUNDING_MIN_RATIO = 0.30
_MIN_WORD_LENGTH = 3
_CONTEXT_HEADER = "Context:"
_ROLE_LABELS = {"user": "User", "assistant": "Assistant", "system": "System", "tool": "Tool"}


class ContextBuilder:
    """Packs retrieved evidence into a bounded prompt.

    Packing is greedy and order-preserving: documents are admitted in the
    order given until the first one that does not fit, so the admitted set is
    always a prefix of the input. Every cost is an upper bound of what
    `format_prompt` renders, which keeps the formatted prompt within
    `max_tokens` as measured by `count_tokens`.
    """

    def __init__(self, system_prompt: str | None = None) -> None:
        self.system_prompt = system_prompt or DEFAULT_SYSTEM_PROMPT

    def build(
        self,
        query: str,
        documents: list[RetrievedDocument],
        max_tokens: int,
        history: list[ChatMessage] | None = None,
    ) -> RAGContext:
        empty = RAGContext(
            query=query, documents=[], system_prompt=self.system_prompt, history=history
        )
        running_total = self.fixed_overhead(empty)
        admitted: list[RetrievedDocument] = []

        for index, document in enumerate(documents, start=1):
            cost = self.document_cost(index, document)
            if running_total + cost > max_tokens:
                break
            admitted.append(document)
            running_total += cost

        if len(admitted) < len(documents):
            logger.info(
                "context_budget_reached",
                extra={
                    "admitted": len(admitted),
                    "offered": len(documents),
                    "max_tokens": max_tokens,
                },
            )
        return RAGContext(
            query=query,
            documents=admitted,
            system_prompt=self.system_prompt,
            history=history,
        )

    def fixed_overhead(self, context: RAGContext) -> int:
        """Tokens for system prompt, query, history and template decorations."""
        return count_tokens(self.format_prompt(context)) + count_tokens(f"{_CONTEXT_HEADER}\n\n")

    @staticmethod
    def document_cost(index: int, document: RetrievedDocument) -> int:
        # +1 covers the newlines joining the header and body.
        return count_tokens(_document_header(index, document)) + count_tokens(document.chunk.content) + 1

    def format_prompt(self, context: RAGContext) -> str:
        parts: list[str] = []
        if context.system_prompt:
            parts.append(f"System: {context.system_prompt}\n")

        if context.documents:
            parts.append(_CONTEXT_HEADER)
            for index, document in enumerate(context.documents, start=1):
                parts.append(_document_header(index, document))
                parts.append(f"{document.chunk.content}\n")
            parts.append("")

        if context.history:
            parts.append("Conversation History:")
            for message in context.history:
                parts.append(f"{_ROLE_LABELS[message.role]}: {message.content}")
            parts.append("")

        parts.append(f"User: {context.query}")
        parts.append("Assistant:")
        return "\n".join(parts)

    def build_messages(self, context: RAGContext) -> list[ChatMessage]:
        """Render the context as role-tagged turns for chat-style models."""

        system_parts = [context.system_prompt]
        if context.documents:
            system_parts.append(_CONTEXT_HEADER)
            for index, document in enumerate(context.documents, start=1):
                system_parts.append(
                    f"{_document_header(index, document).lstrip()}\n{document.chunk.content}"
                )

        messages = [ChatMessage(role="system", content="\n\n".join(system_parts))]
        messages.extend(
            message for message in context.history or [] if message.role in ("user", "assistant")
        )
        messages.append(ChatMessage(role="user", content=context.query))
        return messages

    def verify_grounding(self, answer: str, context: RAGContext) -> bool:
        """Word-overlap heuristic, not semantic entailment.

        Grounded when at least 30% of the answer's words are longer than
        three characters and occur in the admitted evidence.
        """

        if answer.strip() == INSUFFICIENT_CONTEXT:
            return True
        if not context.documents:
            return False

        context_text = " ".join(doc.chunk.content.lower() for doc in context.documents)
        words = answer.lower().split()
        if not words:
            return False
        matching = [
            word for word in words if len(word) > _MIN_WORD_LENGTH and word in context_text
        ]
        return len(matching) / len(words) >= GROUNDING_MIN_RATIO


def _document_header(index: int, document: RetrievedDocument) -> str:
    return f"\n[{index}] Source: {document.source} (Score: {document.score:.3f})"
