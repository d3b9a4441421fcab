"""Unit tests for the RAGService facade."""

from __future__ import annotations

import pytest

from clinical_rag.analysis.prompts import CONTEXT_HEADER, AnalysisType, PatientProfile
from clinical_rag.errors import DocumentNotFoundError, ExtractionError
from clinical_rag.retrieval.memory_store import InMemoryChunkStore
from clinical_rag.retrieval.models import DocumentStatus
from clinical_rag.service import RAGService, build_rag_service
from conftest import HORMONE_PARAGRAPH, TWO_PARAGRAPHS


def _ingest(service: RAGService, tenant_id: str = "t1", *, category: str = "functional-medicine", text: str = TWO_PARAGRAPHS):
    return service.ingest(
        text.encode(),
        filename=f"{category}.txt",
        mime_type="text/plain",
        tenant_id=tenant_id,
        category=category,
    )


def test_build_rag_service_defaults_to_memory_store(settings, embeddings_builder) -> None:
    service = build_rag_service(settings, embeddings_builder=embeddings_builder)
    assert isinstance(service.store, InMemoryChunkStore)
    assert service.health_check() is True


def test_ingest_invalidates_cached_empty_search(service: RAGService) -> None:
    assert service.search("hormones", tenant_id="t1") == []
    _ingest(service)
    [hit] = service.search("hormones", tenant_id="t1")
    assert hit.content == HORMONE_PARAGRAPH


def test_global_upload_invalidates_every_tenant(service: RAGService) -> None:
    assert service.search("hormones", tenant_id="t1") == []
    _ingest(service, "global")
    [hit] = service.search("hormones", tenant_id="t1")
    assert hit.is_global is True


def test_delete_invalidates_cached_results(service: RAGService) -> None:
    doc = _ingest(service)
    assert service.search("hormones", tenant_id="t1")
    service.delete_document(doc.document_id, "t1")
    assert service.search("hormones", tenant_id="t1") == []


def test_get_document_checks_tenant(service: RAGService) -> None:
    doc = _ingest(service)
    assert service.get_document(doc.document_id, "t1").document_id == doc.document_id
    with pytest.raises(DocumentNotFoundError):
        service.get_document(doc.document_id, "t2")


def test_list_documents_filters_and_orders(service: RAGService) -> None:
    first = _ingest(service, category="tcm")
    second = _ingest(service, category="nutrition")
    _ingest(service, "t2")

    assert [d.document_id for d in service.list_documents("t1")] == [second.document_id, first.document_id]
    assert [d.document_id for d in service.list_documents("t1", category="tcm")] == [first.document_id]
    assert service.list_documents("t1", status="error") == []
    assert len(service.list_documents("t1", status=DocumentStatus.COMPLETED)) == 2


def test_stats_counts_statuses_chunks_and_categories(service: RAGService) -> None:
    _ingest(service, category="tcm")
    with pytest.raises(ExtractionError):
        service.ingest(b"PK", filename="a.zip", mime_type="application/zip", tenant_id="t1", category="nutrition")

    stats = service.stats("t1")
    assert stats.total == 2
    assert stats.completed == 1
    assert stats.error == 1
    assert stats.chunks == 2
    assert [(c.category, c.count) for c in stats.categories] == [("nutrition", 1), ("tcm", 1)]


def test_build_context_renders_block(service: RAGService) -> None:
    assert service.build_context("hormones", tenant_id="t1") == ""
    _ingest(service)
    block = service.build_context("hormones", tenant_id="t1")
    assert block.startswith(CONTEXT_HEADER)
    assert "[Source 1: functional-medicine.txt]" in block


def test_search_for_analysis_expands_queries(service: RAGService) -> None:
    _ingest(service)
    context = service.search_for_analysis(AnalysisType.CHRONOLOGY, "t1", queries=["hormones"], threshold=0.3)

    assert context.queries == ["hormones chronology timeline women's health menstrual cycle hormones"]
    assert context.results[0].content == HORMONE_PARAGRAPH
    assert "HEALTH CHRONOLOGY" in context.summary


def test_search_for_analysis_derives_queries_from_patient(service: RAGService) -> None:
    patient = PatientProfile(age=50, menopausal_status="post", main_symptoms=["hot flashes"])
    context = service.search_for_analysis("treatment_plan", "t1", patient=patient)

    assert context.queries[0].startswith("menopause functional medicine")
    assert context.results == []
    assert "No specific protocol" in context.summary
