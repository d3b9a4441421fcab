"""Semantic retriever — tenant-scoped cosine search over stored chunks.

This module is the **primary public interface** for retrieval.

Usage::

    from clinical_rag.retrieval.retriever import SemanticRetriever

    retriever = SemanticRetriever(store, embedders, cache=cache)
    results = retriever.search("thyroid protocol", tenant_id="clinic-1", limit=5)
    for r in results:
        print(r.source_label(), r.score, r.content[:80])

Algorithm: embed the query with the tenant's embedding model, gather the
completed documents of the tenant plus the global tenant (optionally one
category), score every chunk of those documents (linear scan, no index),
then threshold, order and truncate with :func:`~clinical_rag.retrieval.ranking.rank`.
Cost is O(candidate chunks x vector dimension) per uncached query.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING

from clinical_rag.cache import TTLCache
from clinical_rag.config import Settings
from clinical_rag.config import settings as default_settings
from clinical_rag.retrieval.base import ChunkStoreBase
from clinical_rag.retrieval.models import (
    DocumentStatus,
    MetadataFilter,
    RAGDocument,
    SearchResult,
)
from clinical_rag.retrieval.ranking import deduplicate, rank
from clinical_rag.retrieval.similarity import score_chunks

if TYPE_CHECKING:
    from clinical_rag.ingestion.embedder import EmbedderFactory

logger = logging.getLogger(__name__)


class SemanticRetriever:
    """Rank a tenant's chunks against a free-text query.

    Parameters
    ----------
    store:
        Backend holding documents and chunk vectors.
    embedders:
        Supplies the tenant's embedding client; the same model that
        embedded the chunks must embed the query.
    cache:
        Optional advisory cache for ranked results and query vectors.
    settings:
        Defaults for limit, threshold and the global tenant id.
    """

    def __init__(
        self,
        store: ChunkStoreBase,
        embedders: EmbedderFactory,
        *,
        cache: TTLCache | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._store = store
        self._embedders = embedders
        self._cache = cache
        self._settings = settings or default_settings

    # -- public API -----------------------------------------------------------

    def search(
        self,
        query: str,
        *,
        tenant_id: str,
        category: str | None = None,
        limit: int | None = None,
        threshold: float | None = None,
    ) -> list[SearchResult]:
        """Run a semantic search and return ranked results.

        Parameters
        ----------
        query:
            Natural-language query string.
        tenant_id:
            Tenant whose documents (plus the global tenant's) are searched.
        category:
            Restrict candidates to documents of this category.
        limit:
            Maximum results, clamped to ``[1, search_max_limit]``.
        threshold:
            Minimum cosine similarity, clamped to ``[0, 1]``.

        Returns
        -------
        list[SearchResult]
            Results with ``score >= threshold`` sorted non-increasing by
            score.  An empty corpus yields ``[]``.
        """
        query = query.strip()
        if not query:
            raise ValueError("query must be a non-empty string")
        limit = self._clamp_limit(limit)
        threshold = self._clamp_threshold(threshold)

        if self._cache is None:
            return self._search(query, tenant_id, category, limit, threshold)

        # Limit and threshold shape the answer, so they are part of the key.
        cache_query = f"{query}|{limit}|{threshold}"
        return self._cache.cache_rag_query(
            cache_query,
            category,
            tenant_id,
            lambda: self._search(query, tenant_id, category, limit, threshold),
        )

    def search_many(
        self,
        queries: Sequence[str],
        *,
        tenant_id: str,
        category: str | None = None,
        limit: int | None = None,
        threshold: float | None = None,
        per_query_limit: int = 5,
    ) -> list[SearchResult]:
        """Search several queries and merge the hits.

        Duplicate chunks keep their best score.  A query that fails is
        logged and skipped so one bad query does not discard the others.
        """
        limit = self._clamp_limit(limit)
        merged: list[SearchResult] = []
        for q in dict.fromkeys(q.strip() for q in queries if q and q.strip()):
            try:
                merged.extend(
                    self.search(
                        q,
                        tenant_id=tenant_id,
                        category=category,
                        limit=per_query_limit,
                        threshold=threshold,
                    )
                )
            except Exception:
                logger.warning("Search failed for %r (tenant %s)", q, tenant_id, exc_info=True)
        return deduplicate(merged)[:limit]

    def candidate_documents(self, tenant_id: str, category: str | None = None) -> list[RAGDocument]:
        """Completed documents of *tenant_id* and the global tenant."""
        tenants = list(dict.fromkeys([tenant_id, self._settings.global_tenant_id]))
        filters = [
            MetadataFilter.one_of("tenant_id", tenants),
            MetadataFilter.equals("status", DocumentStatus.COMPLETED.value),
        ]
        if category:
            filters.append(MetadataFilter.equals("category", category))
        return self._store.list_documents(filters)

    # -- internals ------------------------------------------------------------

    def _search(
        self,
        query: str,
        tenant_id: str,
        category: str | None,
        limit: int,
        threshold: float,
    ) -> list[SearchResult]:
        documents = {d.document_id: d for d in self.candidate_documents(tenant_id, category)}
        if not documents:
            logger.info("No searchable documents for tenant %s (category=%s)", tenant_id, category)
            return []

        chunks = self._store.get_chunks([MetadataFilter.one_of("document_id", list(documents))])
        if not chunks:
            return []

        query_vector = self._embed_query(query, tenant_id)
        scores = score_chunks(query_vector, [c.embedding for c in chunks])

        candidates: list[SearchResult] = []
        for chunk, score in zip(chunks, scores):
            doc = documents[chunk.document_id]
            candidates.append(
                SearchResult(
                    content=chunk.content,
                    score=score,
                    document_id=chunk.document_id,
                    file_name=doc.original_filename,
                    chunk_index=chunk.chunk_index,
                    category=doc.category,
                    tenant_id=chunk.tenant_id,
                    is_global=doc.is_global,
                    metadata={
                        "chunk_size": chunk.chunk_size,
                        "start_position": chunk.start_position,
                        "end_position": chunk.end_position,
                    },
                )
            )

        results = rank(candidates, threshold=threshold, limit=limit)
        logger.info(
            "Search tenant=%s category=%s scanned %d chunks from %d documents -> %d results",
            tenant_id,
            category,
            len(chunks),
            len(documents),
            len(results),
        )
        return results

    def _embed_query(self, query: str, tenant_id: str) -> list[float]:
        client = self._embedders.for_tenant(tenant_id)
        if self._cache is None:
            return client.embed_query(query)
        return self._cache.cache_embedding(query, lambda: client.embed_query(query), model=client.model)

    def _clamp_limit(self, limit: int | None) -> int:
        if limit is None:
            limit = self._settings.search_limit
        return max(1, min(int(limit), self._settings.search_max_limit))

    def _clamp_threshold(self, threshold: float | None) -> float:
        if threshold is None:
            threshold = self._settings.search_threshold
        return max(0.0, min(float(threshold), 1.0))
