"""Abstract base class for document/chunk persistence backends.

A backend stores two record kinds: :class:`RAGDocument` metadata and
:class:`DocumentChunk` records carrying their embedding vectors.  Ranking
never relies on a backend index; the retriever reads candidate vectors
back and scores them itself, so adding a backend only requires
subclassing :class:`ChunkStoreBase` and implementing the abstract methods.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any

from clinical_rag.retrieval.models import DocumentChunk, MetadataFilter, RAGDocument


class ChunkStoreBase(ABC):
    """Backend-agnostic document and chunk store.

    There is no transaction discipline: every call commits on its own, so a
    failure halfway through an ingestion leaves earlier chunk batches in
    place.
    """

    # -- documents ------------------------------------------------------------

    @abstractmethod
    def add_document(self, document: RAGDocument) -> None:
        """Persist a new document record."""
        ...

    @abstractmethod
    def get_document(self, document_id: str) -> RAGDocument | None:
        ...

    @abstractmethod
    def update_document(self, document_id: str, **changes: Any) -> RAGDocument:
        """Apply *changes* to a stored document and return the new version.

        Raises
        ------
        DocumentNotFoundError
            When no document with *document_id* exists.
        """
        ...

    @abstractmethod
    def list_documents(self, filters: list[MetadataFilter] | None = None) -> list[RAGDocument]:
        """Return documents matching every filter, oldest first."""
        ...

    @abstractmethod
    def delete_document(self, document_id: str) -> None:
        ...

    # -- chunks ---------------------------------------------------------------

    @abstractmethod
    def insert_chunks(self, chunks: Sequence[DocumentChunk]) -> None:
        ...

    @abstractmethod
    def get_chunks(self, filters: list[MetadataFilter] | None = None) -> list[DocumentChunk]:
        """Return chunks (with embeddings) matching every filter."""
        ...

    @abstractmethod
    def delete_chunks(self, document_id: str) -> int:
        """Delete every chunk of *document_id* and return how many were removed."""
        ...

    # -- optional overrides ---------------------------------------------------

    def count_chunks(self, filters: list[MetadataFilter] | None = None) -> int:
        return len(self.get_chunks(filters))

    def health_check(self) -> bool:
        """Return ``True`` when the backend is reachable and ready."""
        return True
