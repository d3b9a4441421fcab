"""Service facade — the one object the HTTP layer and workers talk to.

Wiring is explicit: :func:`build_rag_service` assembles the store,
object storage, credential resolver, embedder factory, cache, ingester
and retriever from :class:`~clinical_rag.config.Settings`.  Any of them
can be passed in instead, which is how tests swap in fakes.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Sequence

from pydantic import BaseModel, Field

from clinical_rag.analysis.prompts import (
    AnalysisType,
    PatientProfile,
    build_context_block,
    build_context_summary,
    build_search_queries,
    expand_query,
)
from clinical_rag.cache import TTLCache
from clinical_rag.config import Settings
from clinical_rag.config import settings as default_settings
from clinical_rag.errors import DocumentNotFoundError
from clinical_rag.ingestion.embedder import EmbedderFactory, EmbeddingsBuilder, get_embedding_function
from clinical_rag.ingestion.pipeline import DocumentIngester
from clinical_rag.ingestion.storage import ObjectStorage, build_object_storage
from clinical_rag.providers import CredentialResolver
from clinical_rag.retrieval.base import ChunkStoreBase
from clinical_rag.retrieval.memory_store import InMemoryChunkStore
from clinical_rag.retrieval.models import (
    CategoryCount,
    DocumentStats,
    DocumentStatus,
    MetadataFilter,
    RAGDocument,
    SearchResult,
)
from clinical_rag.retrieval.retriever import SemanticRetriever

logger = logging.getLogger(__name__)


class AnalysisContext(BaseModel):
    """Evidence gathered for one analysis request."""

    analysis_type: AnalysisType
    queries: list[str] = Field(default_factory=list)
    results: list[SearchResult] = Field(default_factory=list)
    summary: str = ""


class RAGService:
    """Tenant-scoped document library and semantic search."""

    def __init__(
        self,
        store: ChunkStoreBase,
        ingester: DocumentIngester,
        retriever: SemanticRetriever,
        cache: TTLCache,
        settings: Settings | None = None,
    ) -> None:
        self.store = store
        self.ingester = ingester
        self.retriever = retriever
        self.cache = cache
        self.settings = settings or default_settings

    # -- documents ------------------------------------------------------------

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
        try:
            return self.ingester.ingest(
                file_bytes,
                filename=filename,
                mime_type=mime_type,
                tenant_id=tenant_id,
                category=category,
                uploaded_by=uploaded_by,
            )
        finally:
            # A failed ingest still leaves an error-status document behind.
            self.cache.invalidate_tenant(tenant_id)

    def reprocess(self, document_id: str, tenant_id: str) -> RAGDocument:
        try:
            return self.ingester.reprocess(document_id, tenant_id)
        finally:
            self.cache.invalidate_tenant(tenant_id)

    def delete_document(self, document_id: str, tenant_id: str) -> bool:
        deleted = self.ingester.delete(document_id, tenant_id)
        self.cache.invalidate_tenant(tenant_id)
        return deleted

    def get_document(self, document_id: str, tenant_id: str) -> RAGDocument:
        """Return the tenant's document or raise :class:`DocumentNotFoundError`."""
        document = self.store.get_document(document_id)
        if document is None or document.tenant_id != tenant_id:
            raise DocumentNotFoundError(document_id)
        return document

    def list_documents(
        self,
        tenant_id: str,
        category: str | None = None,
        status: DocumentStatus | str | None = None,
    ) -> list[RAGDocument]:
        """The tenant's documents, newest first."""
        filters = [MetadataFilter.equals("tenant_id", tenant_id)]
        if category:
            filters.append(MetadataFilter.equals("category", category))
        if status:
            filters.append(MetadataFilter.equals("status", DocumentStatus(status).value))
        documents = self.store.list_documents(filters)
        return sorted(documents, key=lambda d: d.created_at, reverse=True)

    def stats(self, tenant_id: str) -> DocumentStats:
        documents = self.store.list_documents([MetadataFilter.equals("tenant_id", tenant_id)])
        by_status = Counter(d.status for d in documents)
        by_category = Counter(d.category for d in documents)
        chunks = self.store.count_chunks([MetadataFilter.equals("tenant_id", tenant_id)])
        return DocumentStats(
            total=len(documents),
            pending=by_status[DocumentStatus.PENDING],
            processing=by_status[DocumentStatus.PROCESSING],
            completed=by_status[DocumentStatus.COMPLETED],
            error=by_status[DocumentStatus.ERROR],
            chunks=chunks,
            categories=[
                CategoryCount(category=name, count=count)
                for name, count in sorted(by_category.items())
            ],
        )

    # -- search ---------------------------------------------------------------

    def search(
        self,
        query: str,
        *,
        tenant_id: str,
        category: str | None = None,
        limit: int | None = None,
        threshold: float | None = None,
    ) -> list[SearchResult]:
        return self.retriever.search(
            query,
            tenant_id=tenant_id,
            category=category,
            limit=limit,
            threshold=threshold,
        )

    def build_context(
        self,
        query: str,
        *,
        tenant_id: str,
        category: str | None = None,
        limit: int | None = None,
        threshold: float | None = None,
    ) -> str:
        """Search and render the hits as a prompt context block."""
        results = self.search(
            query,
            tenant_id=tenant_id,
            category=category,
            limit=limit,
            threshold=threshold,
        )
        return build_context_block(results)

    def search_for_analysis(
        self,
        analysis_type: AnalysisType | str,
        tenant_id: str,
        *,
        queries: Sequence[str] | None = None,
        patient: PatientProfile | None = None,
        category: str | None = None,
        limit: int | None = None,
        threshold: float | None = None,
    ) -> AnalysisContext:
        """Gather evidence for an analysis.

        Explicit *queries* are used as given; otherwise they are derived
        from the patient profile.  Every query is expanded with the
        analysis vocabulary before it is searched.
        """
        analysis_type = AnalysisType(analysis_type)
        base_queries = list(queries) if queries else build_search_queries(analysis_type, patient)
        expanded = [expand_query(q, analysis_type) for q in base_queries if q.strip()]
        results = self.retriever.search_many(
            expanded,
            tenant_id=tenant_id,
            category=category,
            limit=limit,
            threshold=threshold,
        )
        logger.info(
            "Analysis %s for tenant %s: %d queries -> %d results",
            analysis_type.value,
            tenant_id,
            len(expanded),
            len(results),
        )
        return AnalysisContext(
            analysis_type=analysis_type,
            queries=expanded,
            results=results,
            summary=build_context_summary(results, analysis_type, patient),
        )

    def health_check(self) -> bool:
        return self.store.health_check()


def build_rag_service(
    settings: Settings | None = None,
    *,
    resolver: CredentialResolver | None = None,
    store: ChunkStoreBase | None = None,
    storage: ObjectStorage | None = None,
    cache: TTLCache | None = None,
    embeddings_builder: EmbeddingsBuilder = get_embedding_function,
) -> RAGService:
    """Assemble a :class:`RAGService` from *settings* and any overrides."""
    settings = settings or default_settings

    if store is None:
        if settings.chroma_path:
            from clinical_rag.retrieval.chroma_store import ChromaChunkStore

            store = ChromaChunkStore(
                path=settings.chroma_path,
                documents_collection=settings.chroma_documents_collection,
                chunks_collection=settings.chroma_chunks_collection,
            )
        else:
            store = InMemoryChunkStore()
    if storage is None:
        storage = build_object_storage(settings)
    if cache is None:
        cache = TTLCache(
            settings.cache_default_ttl,
            rag_ttl=settings.cache_rag_ttl,
            embedding_ttl=settings.cache_embedding_ttl,
            global_tenant_id=settings.global_tenant_id,
        )
    resolver = resolver or CredentialResolver(settings=settings)
    embedders = EmbedderFactory(resolver, builder=embeddings_builder)

    logger.info(
        "RAG service ready: store=%s storage=%s embeddings=%s/%s",
        type(store).__name__,
        type(storage).__name__,
        settings.embedding_provider,
        settings.embedding_model,
    )
    return RAGService(
        store=store,
        ingester=DocumentIngester(store, storage, embedders, settings=settings),
        retriever=SemanticRetriever(store, embedders, cache=cache, settings=settings),
        cache=cache,
        settings=settings,
    )
