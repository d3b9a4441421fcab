"""Document ingestion: store, extract, chunk, embed, persist.

    upload -> extract text -> split -> embed (batches of 5) -> chunk records

Any failure after the document record exists marks it ``error`` with the
message attached and is re-raised.  Chunks written by earlier batches are
not rolled back; a failed document is reprocessed from scratch.
"""

from __future__ import annotations

import logging
import time
import uuid
from pathlib import Path

from clinical_rag.config import Settings
from clinical_rag.config import settings as default_settings
from clinical_rag.errors import DocumentNotFoundError, StorageError
from clinical_rag.ingestion.chunker import TextSpan, split_text
from clinical_rag.ingestion.embedder import EmbedderFactory
from clinical_rag.ingestion.loader import extract_text
from clinical_rag.ingestion.storage import ObjectStorage
from clinical_rag.retrieval.base import ChunkStoreBase
from clinical_rag.retrieval.models import (
    DocumentChunk,
    DocumentStatus,
    ProcessingMetadata,
    RAGDocument,
)

logger = logging.getLogger(__name__)


class DocumentIngester:
    """Turn uploaded files into searchable chunk records.

    Parameters
    ----------
    store:
        Persists document and chunk records.
    storage:
        Keeps the raw uploaded bytes (needed for reprocessing).
    embedders:
        Supplies the tenant's embedding client.
    settings:
        Chunk size/overlap/separators, batch size and snapshot length.
    """

    def __init__(
        self,
        store: ChunkStoreBase,
        storage: ObjectStorage,
        embedders: EmbedderFactory,
        *,
        settings: Settings | None = None,
    ) -> None:
        self._store = store
        self._storage = storage
        self._embedders = embedders
        self._settings = settings or default_settings

    # -- public API -----------------------------------------------------------

    def ingest(
        self,
        file_bytes: bytes,
        *,
        filename: str,
        mime_type: str,
        tenant_id: str,
        category: str,
        uploaded_by: str = "",
    ) -> RAGDocument:
        """Store and process a new upload; returns the final document record.

        Raises whatever failed (:class:`ExtractionError`,
        :class:`ConfigurationError`, :class:`ProviderError`,
        :class:`StorageError`) after recording it on the document.
        """
        storage_name = f"{uuid.uuid4().hex}{Path(filename).suffix.lower()}"
        document = RAGDocument(
            tenant_id=tenant_id,
            category=category,
            original_filename=filename,
            file_name=storage_name,
            mime_type=mime_type,
            file_size=len(file_bytes),
            file_key=storage_name,
            status=DocumentStatus.PROCESSING,
            uploaded_by=uploaded_by,
            is_global=tenant_id == self._settings.global_tenant_id,
        )
        self._store.add_document(document)
        logger.info(
            "Created document %s (%s, %d bytes) for tenant %s",
            document.document_id,
            filename,
            len(file_bytes),
            tenant_id,
        )

        started = time.monotonic()
        try:
            stored = self._storage.upload(
                file_bytes,
                filename,
                folder=self._settings.storage_folder,
                filename=storage_name,
                content_type=mime_type,
            )
            self._store.update_document(
                document.document_id,
                file_key=stored.key,
                file_url=stored.url,
            )
            return self._process(document.document_id, file_bytes, mime_type, tenant_id, started)
        except Exception as exc:
            self._mark_error(document.document_id, exc)
            raise

    def reprocess(self, document_id: str, tenant_id: str) -> RAGDocument:
        """Re-run extraction, chunking and embedding for a stored document.

        Existing chunks are deleted first.
        """
        document = self._owned_document(document_id, tenant_id)
        started = time.monotonic()
        removed = self._store.delete_chunks(document_id)
        self._store.update_document(
            document_id,
            status=DocumentStatus.PROCESSING,
            processing_metadata=ProcessingMetadata(),
        )
        logger.info("Reprocessing document %s (removed %d chunks)", document_id, removed)
        try:
            file_bytes = self._storage.download(document.file_key)
            return self._process(document_id, file_bytes, document.mime_type, document.tenant_id, started)
        except Exception as exc:
            self._mark_error(document_id, exc)
            raise

    def delete(self, document_id: str, tenant_id: str) -> bool:
        """Delete a document, its chunks and its stored file."""
        document = self._owned_document(document_id, tenant_id)
        removed = self._store.delete_chunks(document_id)
        if document.file_key:
            try:
                self._storage.delete(document.file_key)
            except StorageError:
                logger.warning("Could not delete stored file %s", document.file_key, exc_info=True)
        self._store.delete_document(document_id)
        logger.info("Deleted document %s and %d chunks", document_id, removed)
        return True

    # -- internals ------------------------------------------------------------

    def _process(
        self,
        document_id: str,
        file_bytes: bytes,
        mime_type: str,
        tenant_id: str,
        started: float,
    ) -> RAGDocument:
        text = extract_text(file_bytes, mime_type)
        spans = split_text(
            text,
            chunk_size=self._settings.chunk_size,
            chunk_overlap=self._settings.chunk_overlap,
            separators=self._settings.chunk_separators,
        )
        embedder = self._embedders.for_tenant(tenant_id)

        written = 0
        total_chars = 0
        batch_size = self._settings.embed_batch_size
        for start in range(0, len(spans), batch_size):
            batch = spans[start : start + batch_size]
            vectors = embedder.embed_documents([span.content for span in batch])
            chunks = self._to_chunks(document_id, tenant_id, start, batch, vectors)
            self._store.insert_chunks(chunks)
            written += len(chunks)
            total_chars += sum(c.chunk_size for c in chunks)
            logger.debug("Document %s: stored %d / %d chunks", document_id, written, len(spans))

        elapsed_ms = int((time.monotonic() - started) * 1000)
        metadata = ProcessingMetadata(
            total_chunks=written,
            average_chunk_size=round(total_chars / written) if written else 0,
            embedding_model=embedder.model,
            processing_time_ms=elapsed_ms,
        )
        document = self._store.update_document(
            document_id,
            status=DocumentStatus.COMPLETED,
            extracted_text=text[: self._settings.extracted_text_snapshot_chars],
            processing_metadata=metadata,
        )
        logger.info("Document %s completed: %d chunks in %d ms", document_id, written, elapsed_ms)
        return document

    @staticmethod
    def _to_chunks(
        document_id: str,
        tenant_id: str,
        first_index: int,
        spans: list[TextSpan],
        vectors: list[list[float]],
    ) -> list[DocumentChunk]:
        if len(vectors) != len(spans):
            raise ValueError(f"Embedding count ({len(vectors)}) does not match chunk count ({len(spans)})")
        return [
            DocumentChunk(
                document_id=document_id,
                tenant_id=tenant_id,
                content=span.content,
                chunk_index=first_index + offset,
                embedding=vector,
                start_position=span.start,
                end_position=span.end,
            )
            for offset, (span, vector) in enumerate(zip(spans, vectors))
        ]

    def _mark_error(self, document_id: str, exc: Exception) -> None:
        logger.exception("Processing failed for document %s", document_id)
        try:
            self._store.update_document(
                document_id,
                status=DocumentStatus.ERROR,
                processing_metadata=ProcessingMetadata(error_message=str(exc)),
            )
        except DocumentNotFoundError:
            logger.warning("Document %s vanished before its error could be recorded", document_id)

    def _owned_document(self, document_id: str, tenant_id: str) -> RAGDocument:
        document = self._store.get_document(document_id)
        if document is None or document.tenant_id != tenant_id:
            raise DocumentNotFoundError(document_id)
        return document
