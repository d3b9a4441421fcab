"""In-process implementation of the chunk-store abstraction."""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any

from clinical_rag.errors import DocumentNotFoundError
from clinical_rag.retrieval.base import ChunkStoreBase
from clinical_rag.retrieval.models import (
    DocumentChunk,
    MetadataFilter,
    RAGDocument,
    matches_all,
)

logger = logging.getLogger(__name__)


class InMemoryChunkStore(ChunkStoreBase):
    """Dict-backed store; iteration follows insertion order.

    Used as the default backend when no Chroma path is configured and as
    the store in tests.  Request threads share one instance, so every
    access to the record maps holds the store lock.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._documents: dict[str, RAGDocument] = {}
        self._chunks: dict[str, DocumentChunk] = {}

    def add_document(self, document: RAGDocument) -> None:
        with self._lock:
            self._documents[document.document_id] = document.model_copy(deep=True)

    def get_document(self, document_id: str) -> RAGDocument | None:
        with self._lock:
            document = self._documents.get(document_id)
        return document.model_copy(deep=True) if document is not None else None

    def update_document(self, document_id: str, **changes: Any) -> RAGDocument:
        changes.setdefault("updated_at", datetime.now(timezone.utc))
        with self._lock:
            current = self._documents.get(document_id)
            if current is None:
                raise DocumentNotFoundError(document_id)
            updated = current.model_copy(update=changes, deep=True)
            self._documents[document_id] = updated
        return updated.model_copy(deep=True)

    def list_documents(self, filters: list[MetadataFilter] | None = None) -> list[RAGDocument]:
        with self._lock:
            documents = list(self._documents.values())
        return [
            doc.model_copy(deep=True)
            for doc in documents
            if matches_all(filters, doc.filter_metadata())
        ]

    def delete_document(self, document_id: str) -> None:
        with self._lock:
            self._documents.pop(document_id, None)

    def insert_chunks(self, chunks: Sequence[DocumentChunk]) -> None:
        copies = [chunk.model_copy(deep=True) for chunk in chunks]
        with self._lock:
            for chunk in copies:
                self._chunks[chunk.chunk_id] = chunk
            total = len(self._chunks)
        logger.debug("Stored %d chunks (total %d)", len(chunks), total)

    def get_chunks(self, filters: list[MetadataFilter] | None = None) -> list[DocumentChunk]:
        with self._lock:
            chunks = list(self._chunks.values())
        return [chunk for chunk in chunks if matches_all(filters, chunk.filter_metadata())]

    def delete_chunks(self, document_id: str) -> int:
        with self._lock:
            ids = [cid for cid, chunk in self._chunks.items() if chunk.document_id == document_id]
            for cid in ids:
                del self._chunks[cid]
        return len(ids)
