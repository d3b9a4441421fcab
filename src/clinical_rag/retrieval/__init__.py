"""
Retrieval — chunk persistence, cosine scoring and ranking.

The store is hidden behind :class:`ChunkStoreBase` so the search code
never needs to know whether Chroma or plain memory backs it.

Public surface
--------------
- :class:`SemanticRetriever` — tenant-scoped semantic search.
- :class:`ChunkStoreBase` — abstract backend.
- :class:`InMemoryChunkStore` — process-local backend.
- :class:`ChromaChunkStore` — Chroma backend.
- :class:`RAGDocument`, :class:`DocumentChunk`, :class:`SearchResult`,
  :class:`MetadataFilter` — data models.
"""

from clinical_rag.retrieval.base import ChunkStoreBase
from clinical_rag.retrieval.memory_store import InMemoryChunkStore
from clinical_rag.retrieval.models import (
    DocumentChunk,
    DocumentStatus,
    MetadataFilter,
    RAGDocument,
    SearchResult,
)
from clinical_rag.retrieval.retriever import SemanticRetriever

__all__ = [
    "ChromaChunkStore",
    "ChunkStoreBase",
    "DocumentChunk",
    "DocumentStatus",
    "InMemoryChunkStore",
    "MetadataFilter",
    "RAGDocument",
    "SearchResult",
    "SemanticRetriever",
]


def __getattr__(name: str):  # noqa: ANN001
    """Lazy-import ChromaChunkStore to avoid pulling in chromadb at import time."""
    if name == "ChromaChunkStore":
        from clinical_rag.retrieval.chroma_store import ChromaChunkStore

        return ChromaChunkStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
