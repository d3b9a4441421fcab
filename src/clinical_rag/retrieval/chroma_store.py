"""Chroma implementation of the chunk-store abstraction.

Chroma is used as the persistence layer only.  Chunk vectors are read back
with their metadata and scored by the retriever, so ranking behaves the
same on every backend.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any

import chromadb

from clinical_rag.config import settings
from clinical_rag.errors import DocumentNotFoundError
from clinical_rag.retrieval.base import ChunkStoreBase
from clinical_rag.retrieval.models import DocumentChunk, MetadataFilter, RAGDocument

logger = logging.getLogger(__name__)

# Chroma requires a vector on every record; document records carry this one.
_PLACEHOLDER_EMBEDDING = [0.0]


def _build_chroma_where(filters: list[MetadataFilter]) -> dict[str, Any] | None:
    """Convert a list of :class:`MetadataFilter` to Chroma ``where`` syntax."""
    if not filters:
        return None

    _OP_MAP = {
        "eq": "$eq",
        "ne": "$ne",
        "gt": "$gt",
        "gte": "$gte",
        "lt": "$lt",
        "lte": "$lte",
        "in": "$in",
        "nin": "$nin",
    }

    clauses: list[dict[str, Any]] = []
    for f in filters:
        chroma_op = _OP_MAP.get(f.operator)
        if chroma_op is None:
            raise ValueError(f"Unsupported filter operator: {f.operator!r}")
        clauses.append({f.field: {chroma_op: f.value}})

    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


def _flat(metadata: dict[str, Any]) -> dict[str, Any]:
    """Chroma metadata values must be flat str/int/float/bool."""
    return {k: v for k, v in metadata.items() if isinstance(v, (str, int, float, bool))}


class ChromaChunkStore(ChunkStoreBase):
    """Chroma-backed store with one collection per record kind.

    Parameters
    ----------
    client:
        An existing Chroma client.  When *None*, a ``PersistentClient`` is
        opened at *path*, or an in-process ``EphemeralClient`` when *path*
        is empty.
    path:
        On-disk location of the Chroma database.  Defaults to
        ``settings.chroma_path`` at construction time.
    documents_collection / chunks_collection:
        Collection names; default to the configured ones.
    """

    def __init__(
        self,
        client: Any | None = None,
        *,
        path: str | None = None,
        documents_collection: str | None = None,
        chunks_collection: str | None = None,
    ) -> None:
        if path is None:
            path = settings.chroma_path
        documents_collection = documents_collection or settings.chroma_documents_collection
        chunks_collection = chunks_collection or settings.chroma_chunks_collection
        if client is None:
            client = chromadb.PersistentClient(path=path) if path else chromadb.EphemeralClient()
        self._client = client
        self._documents = client.get_or_create_collection(documents_collection)
        self._chunks = client.get_or_create_collection(
            chunks_collection,
            metadata={"hnsw:space": "cosine"},
        )

    # -- documents ------------------------------------------------------------

    def add_document(self, document: RAGDocument) -> None:
        self._write_document(document)

    def get_document(self, document_id: str) -> RAGDocument | None:
        results = self._documents.get(ids=[document_id], include=["documents"])
        docs = results.get("documents") or []
        if not docs:
            return None
        return RAGDocument.model_validate_json(docs[0])

    def update_document(self, document_id: str, **changes: Any) -> RAGDocument:
        current = self.get_document(document_id)
        if current is None:
            raise DocumentNotFoundError(document_id)
        changes.setdefault("updated_at", datetime.now(timezone.utc))
        updated = current.model_copy(update=changes)
        self._write_document(updated)
        return updated

    def list_documents(self, filters: list[MetadataFilter] | None = None) -> list[RAGDocument]:
        where = _build_chroma_where(filters) if filters else None
        results = self._documents.get(where=where, include=["documents"])
        documents = [RAGDocument.model_validate_json(raw) for raw in results.get("documents") or []]
        return sorted(documents, key=lambda d: (d.created_at, d.document_id))

    def delete_document(self, document_id: str) -> None:
        self._documents.delete(ids=[document_id])

    def _write_document(self, document: RAGDocument) -> None:
        self._documents.upsert(
            ids=[document.document_id],
            embeddings=[_PLACEHOLDER_EMBEDDING],
            documents=[document.model_dump_json()],
            metadatas=[_flat(document.filter_metadata())],
        )

    # -- chunks ---------------------------------------------------------------

    def insert_chunks(self, chunks: Sequence[DocumentChunk]) -> None:
        if not chunks:
            return
        self._chunks.upsert(
            ids=[c.chunk_id for c in chunks],
            embeddings=[list(c.embedding) for c in chunks],
            documents=[c.content for c in chunks],
            metadatas=[
                _flat(
                    {
                        **c.filter_metadata(),
                        "start_position": c.start_position,
                        "end_position": c.end_position,
                    }
                )
                for c in chunks
            ],
        )
        logger.debug("Upserted %d chunks into %s", len(chunks), self._chunks.name)

    def get_chunks(self, filters: list[MetadataFilter] | None = None) -> list[DocumentChunk]:
        where = _build_chroma_where(filters) if filters else None
        results = self._chunks.get(
            where=where,
            include=["documents", "metadatas", "embeddings"],
        )

        ids = results.get("ids") or []
        docs = results.get("documents")
        metas = results.get("metadatas")
        # Embeddings come back as numpy arrays; never test them for truthiness.
        embeddings = results.get("embeddings")
        if docs is None or metas is None or embeddings is None:
            return []

        chunks: list[DocumentChunk] = []
        for _chunk_id, content, meta, embedding in zip(ids, docs, metas, embeddings):
            meta = meta or {}
            chunks.append(
                DocumentChunk(
                    document_id=meta["document_id"],
                    tenant_id=meta["tenant_id"],
                    chunk_index=int(meta["chunk_index"]),
                    content=content or "",
                    embedding=[float(x) for x in embedding],
                    start_position=meta.get("start_position"),
                    end_position=meta.get("end_position"),
                )
            )
        return chunks

    def delete_chunks(self, document_id: str) -> int:
        results = self._chunks.get(where={"document_id": {"$eq": document_id}}, include=[])
        ids = results.get("ids") or []
        if ids:
            self._chunks.delete(ids=ids)
        return len(ids)

    def count_chunks(self, filters: list[MetadataFilter] | None = None) -> int:
        where = _build_chroma_where(filters) if filters else None
        return len(self._chunks.get(where=where, include=[]).get("ids") or [])

    def health_check(self) -> bool:
        try:
            self._client.heartbeat()
            return True
        except Exception:
            logger.warning("Chroma health-check failed", exc_info=True)
            return False
