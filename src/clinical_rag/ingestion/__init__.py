"""
Ingestion — text extraction, chunking, embedding and raw-file storage.

Uploaded files are stored, their text extracted and split into
overlapping spans, and each span embedded with the tenant's model
before it is persisted as a chunk record.

Public API
----------
- :class:`DocumentIngester` — upload / reprocess / delete pipeline.
- :class:`EmbedderFactory` — per-tenant embedding clients.
- :func:`split_text` — offset-preserving text splitter.
- :func:`extract_text` — PDF and plain-text extraction.
"""

from clinical_rag.ingestion.chunker import TextSpan, split_text
from clinical_rag.ingestion.embedder import EmbedderFactory, EmbeddingClient
from clinical_rag.ingestion.loader import extract_text
from clinical_rag.ingestion.pipeline import DocumentIngester
from clinical_rag.ingestion.storage import LocalObjectStorage, ObjectStorage, S3ObjectStorage

__all__ = [
    "DocumentIngester",
    "EmbedderFactory",
    "EmbeddingClient",
    "LocalObjectStorage",
    "ObjectStorage",
    "S3ObjectStorage",
    "TextSpan",
    "extract_text",
    "split_text",
]
