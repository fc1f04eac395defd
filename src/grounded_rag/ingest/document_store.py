"""Parent document storage used by parent-document retrieval."""

from __future__ import annotations

from abc import ABC, abstractmethod

from grounded_rag.types import Document


class DocumentStore(ABC):
    @abstractmethod
    async def add(self, documents: list[Document]) -> None:
        """Store whole documents keyed by id."""

    @abstractmethod
    async def get(self, doc_id: str) -> Document | None:
        """Return a stored document or None."""

    @abstractmethod
    async def delete(self, doc_ids: list[str]) -> None:
        """Remove documents; unknown ids are ignored."""


class InMemoryDocumentStore(DocumentStore):
    """Dict-backed document store for tests and single-process deployments."""

    def __init__(self) -> None:
        self._documents: dict[str, Document] = {}

    async def add(self, documents: list[Document]) -> None:
        for document in documents:
            self._documents[document.doc_id] = document

    async def get(self, doc_id: str) -> Document | None:
        return self._documents.get(doc_id)

    async def delete(self, doc_ids: list[str]) -> None:
        for doc_id in doc_ids:
            self._documents.pop(doc_id, None)

    async def get_all(self) -> list[Document]:
        return list(self._documents.values())
