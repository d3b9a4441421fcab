"""FastAPI application exposing the document library and semantic search."""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Annotated

from fastapi import Depends, FastAPI, File, Form, Header, Request, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from clinical_rag.errors import (
    ConfigurationError,
    DocumentNotFoundError,
    ExtractionError,
    ProviderError,
    StorageError,
)
from clinical_rag.ingestion.storage import guess_mime_type
from clinical_rag.retrieval.models import DocumentCategory, DocumentStats, DocumentStatus, RAGDocument
from clinical_rag.service import RAGService, build_rag_service

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

PREVIEW_CHARS = 500

app = FastAPI(
    title="Clinical RAG API",
    version="0.1.0",
    description="Tenant-scoped document library and semantic search.",
)


@lru_cache(maxsize=1)
def get_service() -> RAGService:
    """Process-wide service; tests replace it via ``app.dependency_overrides``."""
    return build_rag_service()


ServiceDep = Annotated[RAGService, Depends(get_service)]
TenantDep = Annotated[str, Header(alias="X-Tenant-ID")]


# ── Request / Response schemas ────────────────────────────────────────
class SearchRequest(BaseModel):
    """Semantic search parameters."""

    query: str = Field(min_length=1)
    category: str | None = None
    limit: int | None = None
    threshold: float | None = None


class SearchHit(BaseModel):
    content: str
    score: float
    confidence: str
    document_id: str
    file_name: str
    chunk_index: int
    category: str | None = None
    is_global: bool = False


class SearchResponse(BaseModel):
    query: str
    results: list[SearchHit] = []


# ── Error mapping ─────────────────────────────────────────────────────
@app.exception_handler(DocumentNotFoundError)
async def _not_found(request: Request, exc: DocumentNotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(ExtractionError)
async def _unprocessable(request: Request, exc: ExtractionError) -> JSONResponse:
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(ConfigurationError)
async def _misconfigured(request: Request, exc: ConfigurationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(ValueError)
async def _bad_request(request: Request, exc: ValueError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(ProviderError)
@app.exception_handler(StorageError)
async def _upstream(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Upstream failure on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=502, content={"detail": str(exc)})


# ── Routes ────────────────────────────────────────────────────────────
@app.get("/health")
def health(service: ServiceDep) -> dict[str, str]:
    """Liveness probe; reports whether the chunk store answers."""
    return {"status": "ok" if service.health_check() else "degraded"}


@app.post("/documents", response_model=RAGDocument, status_code=201)
def upload_document(
    service: ServiceDep,
    tenant_id: TenantDep,
    file: Annotated[UploadFile, File()],
    category: Annotated[DocumentCategory, Form()],
    user_id: Annotated[str, Header(alias="X-User-ID")] = "",
) -> RAGDocument:
    """Store, extract, chunk and embed an uploaded file."""
    filename = file.filename or "upload"
    mime_type = file.content_type or guess_mime_type(filename)
    if mime_type == "application/octet-stream":
        mime_type = guess_mime_type(filename)
    data = file.file.read()
    return service.ingest(
        data,
        filename=filename,
        mime_type=mime_type,
        tenant_id=tenant_id,
        category=category.value,
        uploaded_by=user_id,
    )


@app.get("/documents", response_model=list[RAGDocument])
def list_documents(
    service: ServiceDep,
    tenant_id: TenantDep,
    category: str | None = None,
    status: DocumentStatus | None = None,
) -> list[RAGDocument]:
    return service.list_documents(tenant_id, category=category, status=status)


@app.get("/documents/{document_id}", response_model=RAGDocument)
def get_document(document_id: str, service: ServiceDep, tenant_id: TenantDep) -> RAGDocument:
    return service.get_document(document_id, tenant_id)


@app.delete("/documents/{document_id}")
def delete_document(document_id: str, service: ServiceDep, tenant_id: TenantDep) -> dict[str, bool]:
    return {"deleted": service.delete_document(document_id, tenant_id)}


@app.post("/documents/{document_id}/reprocess", response_model=RAGDocument)
def reprocess_document(document_id: str, service: ServiceDep, tenant_id: TenantDep) -> RAGDocument:
    return service.reprocess(document_id, tenant_id)


@app.post("/search", response_model=SearchResponse)
def search(request: SearchRequest, service: ServiceDep, tenant_id: TenantDep) -> SearchResponse:
    """Rank the tenant's (and global) chunks against the query."""
    results = service.search(
        request.query,
        tenant_id=tenant_id,
        category=request.category,
        limit=request.limit,
        threshold=request.threshold,
    )
    hits = [
        SearchHit(
            content=r.content[:PREVIEW_CHARS],
            score=round(r.score, 2),
            confidence=r.confidence,
            document_id=r.document_id,
            file_name=r.source_label(),
            chunk_index=r.chunk_index,
            category=r.category,
            is_global=r.is_global,
        )
        for r in results
    ]
    return SearchResponse(query=request.query, results=hits)


@app.get("/stats", response_model=DocumentStats)
def stats(service: ServiceDep, tenant_id: TenantDep) -> DocumentStats:
    return service.stats(tenant_id)
