"""Domain models for documents, chunks and search results."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DocumentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


class DocumentCategory(str, Enum):
    """Library categories offered by the clinic's upload form."""

    SCIENTIFIC_RESEARCH = "scientific-research"
    CLINICAL_PROTOCOLS = "clinical-protocols"
    MEDICAL_GUIDELINES = "medical-guidelines"
    CASE_STUDIES = "case-studies"
    FUNCTIONAL_MEDICINE = "functional-medicine"
    TCM = "tcm"
    PHYTOTHERAPY = "phytotherapy"
    NUTRITION = "nutrition"
    COURSE_TRANSCRIPTS = "course-transcripts"


class MetadataFilter(BaseModel):
    """Declarative metadata filter for chunk-store queries.

    Attributes
    ----------
    field:
        The metadata key to filter on (e.g. ``"tenant_id"``, ``"category"``).
    operator:
        Comparison operator — one of ``eq``, ``ne``, ``gt``, ``gte``,
        ``lt``, ``lte``, ``in``, ``nin``.
    value:
        The value (or list of values for ``in`` / ``nin``) to compare against.
    """

    field: str
    operator: str = "eq"
    value: Any = None

    # -- helpers for common filters ------------------------------------------

    @classmethod
    def equals(cls, field: str, value: Any) -> MetadataFilter:
        return cls(field=field, operator="eq", value=value)

    @classmethod
    def not_equals(cls, field: str, value: Any) -> MetadataFilter:
        return cls(field=field, operator="ne", value=value)

    @classmethod
    def one_of(cls, field: str, values: list[Any]) -> MetadataFilter:
        return cls(field=field, operator="in", value=list(values))

    def matches(self, metadata: dict[str, Any]) -> bool:
        """Evaluate the filter against a flat metadata dict in process."""
        actual = metadata.get(self.field)
        op = self.operator
        if op == "eq":
            return actual == self.value
        if op == "ne":
            return actual != self.value
        if op == "in":
            return actual in self.value
        if op == "nin":
            return actual not in self.value
        if actual is None:
            return False
        if op == "gt":
            return actual > self.value
        if op == "gte":
            return actual >= self.value
        if op == "lt":
            return actual < self.value
        if op == "lte":
            return actual <= self.value
        raise ValueError(f"Unsupported filter operator: {op!r}")


def matches_all(filters: list[MetadataFilter] | None, metadata: dict[str, Any]) -> bool:
    return all(f.matches(metadata) for f in filters or [])


class ProcessingMetadata(BaseModel):
    """Aggregate numbers recorded once a document finishes (or fails) processing."""

    total_chunks: int | None = None
    average_chunk_size: int | None = None
    embedding_model: str | None = None
    processing_time_ms: int | None = None
    error_message: str | None = None


class RAGDocument(BaseModel):
    """An uploaded source document and its processing state.

    Created ``processing`` on upload and moved to ``completed`` or
    ``error`` once chunking and embedding finish.  Only reprocessing or
    deletion touch it afterwards.
    """

    document_id: str = Field(default_factory=lambda: uuid4().hex)
    tenant_id: str
    category: str
    original_filename: str
    file_name: str = ""
    mime_type: str
    file_size: int = 0
    file_key: str = ""
    file_url: str = ""
    status: DocumentStatus = DocumentStatus.PENDING
    extracted_text: str | None = None
    processing_metadata: ProcessingMetadata = Field(default_factory=ProcessingMetadata)
    uploaded_by: str = ""
    is_global: bool = False
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    def filter_metadata(self) -> dict[str, Any]:
        """Flat view used to evaluate :class:`MetadataFilter` objects."""
        return {
            "document_id": self.document_id,
            "tenant_id": self.tenant_id,
            "category": self.category,
            "status": self.status.value,
            "uploaded_by": self.uploaded_by,
            "mime_type": self.mime_type,
        }


class DocumentChunk(BaseModel):
    """A bounded span of a document paired with its embedding vector."""

    document_id: str
    tenant_id: str
    content: str
    chunk_index: int
    embedding: list[float]
    start_position: int | None = None
    end_position: int | None = None

    @property
    def chunk_id(self) -> str:
        return f"{self.document_id}_{self.chunk_index}"

    @property
    def chunk_size(self) -> int:
        return len(self.content)

    def filter_metadata(self) -> dict[str, Any]:
        return {
            "document_id": self.document_id,
            "tenant_id": self.tenant_id,
            "chunk_index": self.chunk_index,
        }


class SearchResult(BaseModel):
    """One ranked chunk returned by semantic search."""

    content: str
    score: float
    document_id: str
    file_name: str = "unknown"
    chunk_index: int
    category: str | None = None
    tenant_id: str | None = None
    is_global: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def confidence(self) -> str:
        if self.score > 0.8:
            return "high"
        if self.score > 0.6:
            return "medium"
        return "low"

    def source_label(self) -> str:
        return self.file_name or "unknown"

    def __str__(self) -> str:  # noqa: D105
        return f"[{self.source_label()}#{self.chunk_index} {self.score:.2f}] {self.content[:120]}"


class CategoryCount(BaseModel):
    category: str
    count: int


class DocumentStats(BaseModel):
    """Per-tenant library counters."""

    total: int = 0
    pending: int = 0
    processing: int = 0
    completed: int = 0
    error: int = 0
    chunks: int = 0
    categories: list[CategoryCount] = Field(default_factory=list)
