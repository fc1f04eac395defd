"""Fixed, sentence-based and paragraph-recursive chunking."""

from __future__ import annotations

import math
import re
from hashlib import sha256

from grounded_rag.config import ChunkingConfig, ChunkingStrategy
from grounded_rag.types import Document, DocumentChunk

_SENTENCE_SPLIT = re.compile(r"(?<=[.!?。！？])\s+")
_PARAGRAPH_SPLIT = re.compile(r"\n\s*\n")


def count_tokens(text: str) -> int:
    """Approximate token count (one token per four characters).

    Every token budget in the pipeline is checked with this function.
    """
    return math.ceil(len(text) / 4)


def checksum(text: str) -> str:
    return sha256(text.encode("utf-8")).hexdigest()


class DocumentChunker:
    """Splits documents into bounded, checksummed chunks.

    Strategies:
    1. ``fixed`` slides a word window sized to ``max_tokens`` (converted with
       ``words_per_token``) and advances by ``window - overlap``. Windows
       below ``min_tokens`` are discarded, except the final slice of the
       document which is always kept.
    2. ``semantic`` greedily packs whole sentences until the next one would
       exceed ``max_tokens``.
    3. ``recursive`` emits one chunk per paragraph when it fits and falls
       back to greedy packing of lines for oversized paragraphs.

    Positions are assigned only to emitted chunks, so they are always
    contiguous from 0.
    """

    def __init__(self, config: ChunkingConfig | None = None) -> None:
        self.config = config or ChunkingConfig()

    def process(
        self, document: Document, strategy: ChunkingStrategy | None = None
    ) -> list[DocumentChunk]:
        selected = strategy or self.config.strategy
        if selected == "fixed":
            pieces = self._fixed_pieces(document.content)
        elif selected == "semantic":
            pieces = self._pack(self._split_sentences(document.content), " ")
        elif selected == "recursive":
            pieces = self._recursive_pieces(document.content)
        else:
            raise ValueError(f"Unknown chunking strategy: {selected}")

        return [
            self._make_chunk(document, text, position, selected)
            for position, text in enumerate(pieces)
        ]

    def count_tokens(self, text: str) -> int:
        return count_tokens(text)

    def checksum(self, text: str) -> str:
        return checksum(text)

    def _fixed_pieces(self, text: str) -> list[str]:
        words = text.split()
        if not words:
            return []

        window = max(1, math.floor(self.config.max_tokens * self.config.words_per_token))
        overlap = math.floor(self.config.overlap_tokens * self.config.words_per_token)
        pieces: list[str] = []
        start = 0

        while start < len(words):
            end = min(start + window, len(words))
            content = " ".join(words[start:end])
            is_last = end == len(words)
            if is_last or count_tokens(content) >= self.config.min_tokens:
                pieces.append(content)
            if is_last:
                break
            next_start = end - overlap
            if next_start <= start:
                break
            start = next_start

        return pieces

    def _recursive_pieces(self, text: str) -> list[str]:
        pieces: list[str] = []
        for paragraph in self._split_paragraphs(text):
            if count_tokens(paragraph) <= self.config.max_tokens:
                pieces.append(paragraph)
                continue
            lines = [line.strip() for line in paragraph.split("\n") if line.strip()]
            pieces.extend(self._pack(lines, "\n"))
        return pieces

    def _pack(self, units: list[str], separator: str) -> list[str]:
        """Greedily accumulate units until the next one would overflow."""

        pieces: list[str] = []
        current: list[str] = []
        current_tokens = 0
        for unit in units:
            unit_tokens = count_tokens(unit)
            if current and current_tokens + unit_tokens > self.config.max_tokens:
                pieces.append(separator.join(current))
                current = []
                current_tokens = 0
            current.append(unit)
            current_tokens += unit_tokens
        if current:
            pieces.append(separator.join(current))
        return pieces

    def _make_chunk(
        self, document: Document, text: str, position: int, strategy: str
    ) -> DocumentChunk:
        return DocumentChunk(
            chunk_id=f"{document.doc_id}-{strategy}-{position:04d}",
            doc_id=document.doc_id,
            content=text,
            position=position,
            token_count=count_tokens(text),
            checksum=checksum(text),
            metadata={
                **document.metadata,
                "source": document.source,
                "chunk_strategy": strategy,
            },
        )

    @staticmethod
    def _split_paragraphs(text: str) -> list[str]:
        return [part.strip() for part in _PARAGRAPH_SPLIT.split(text) if part.strip()]

    @staticmethod
    def _split_sentences(text: str) -> list[str]:
        return [part.strip() for part in _SENTENCE_SPLIT.split(text) if part.strip()]


def split_sentences(text: str) -> list[str]:
    return DocumentChunker._split_sentences(text)
