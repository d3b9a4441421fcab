"""Unit tests for the retrieval layer — models, stores, and SemanticRetriever."""

from __future__ import annotations

import sys
import threading
import uuid
from unittest.mock import MagicMock

import pytest

from clinical_rag.cache import TTLCache
from clinical_rag.config import Settings
from clinical_rag.errors import DocumentNotFoundError
from clinical_rag.ingestion.embedder import EmbedderFactory
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


# ── Helpers ─────────────────────────────────────────────────────────────


def _document(
    tenant_id: str = "t1",
    *,
    category: str = "nutrition",
    status: DocumentStatus = DocumentStatus.COMPLETED,
    original_filename: str = "protocol.pdf",
) -> RAGDocument:
    return RAGDocument(
        tenant_id=tenant_id,
        category=category,
        original_filename=original_filename,
        mime_type="application/pdf",
        status=status,
        is_global=tenant_id == "global",
    )


def _chunk(document: RAGDocument, index: int, content: str, embedding: list[float]) -> DocumentChunk:
    return DocumentChunk(
        document_id=document.document_id,
        tenant_id=document.tenant_id,
        content=content,
        chunk_index=index,
        embedding=embedding,
        start_position=0,
        end_position=len(content),
    )


def _seed(store: ChunkStoreBase, document: RAGDocument, *chunks: tuple[str, list[float]]) -> RAGDocument:
    store.add_document(document)
    store.insert_chunks([_chunk(document, i, text, vec) for i, (text, vec) in enumerate(chunks)])
    return document


# ── Models ──────────────────────────────────────────────────────────────


class TestMetadataFilter:
    def test_equals_factory(self) -> None:
        f = MetadataFilter.equals("tenant_id", "t1")
        assert f.operator == "eq"
        assert f.matches({"tenant_id": "t1"})
        assert not f.matches({"tenant_id": "t2"})

    def test_not_equals_factory(self) -> None:
        assert MetadataFilter.not_equals("status", "error").matches({"status": "completed"})

    def test_one_of_factory(self) -> None:
        f = MetadataFilter.one_of("tenant_id", ["t1", "global"])
        assert f.matches({"tenant_id": "global"})
        assert not f.matches({"tenant_id": "t2"})

    def test_comparison_on_missing_field_is_false(self) -> None:
        assert not MetadataFilter(field="chunk_index", operator="gt", value=1).matches({})

    def test_unsupported_operator_raises(self) -> None:
        with pytest.raises(ValueError):
            MetadataFilter(field="x", operator="regex", value=".*").matches({"x": "a"})


class TestModels:
    def test_chunk_id_and_size(self) -> None:
        doc = _document()
        chunk = _chunk(doc, 3, "abcd", [1.0])
        assert chunk.chunk_id == f"{doc.document_id}_3"
        assert chunk.chunk_size == 4

    def test_search_result_str_includes_label_and_content(self) -> None:
        r = SearchResult(content="Thyroid support", score=0.91, document_id="d", file_name="t.pdf", chunk_index=2)
        assert "t.pdf#2" in str(r)
        assert "Thyroid support" in str(r)

    def test_source_label_defaults_to_unknown(self) -> None:
        r = SearchResult(content="x", score=0.5, document_id="d", file_name="", chunk_index=0)
        assert r.source_label() == "unknown"


# ── Store contract (memory + Chroma) ────────────────────────────────────


@pytest.fixture(params=["memory", "chroma"])
def any_store(request) -> ChunkStoreBase:
    if request.param == "memory":
        return InMemoryChunkStore()
    chromadb = pytest.importorskip("chromadb")
    from clinical_rag.retrieval.chroma_store import ChromaChunkStore

    suffix = uuid.uuid4().hex[:8]
    return ChromaChunkStore(
        chromadb.EphemeralClient(),
        documents_collection=f"docs_{suffix}",
        chunks_collection=f"chunks_{suffix}",
    )


class TestChunkStore:
    def test_document_round_trip_and_update(self, any_store: ChunkStoreBase) -> None:
        doc = _document(status=DocumentStatus.PROCESSING)
        any_store.add_document(doc)

        updated = any_store.update_document(doc.document_id, status=DocumentStatus.COMPLETED)
        assert updated.status is DocumentStatus.COMPLETED
        assert updated.updated_at >= doc.updated_at
        assert any_store.get_document(doc.document_id).status is DocumentStatus.COMPLETED

    def test_update_missing_document_raises(self, any_store: ChunkStoreBase) -> None:
        with pytest.raises(DocumentNotFoundError):
            any_store.update_document("nope", status=DocumentStatus.ERROR)

    def test_list_documents_with_filters(self, any_store: ChunkStoreBase) -> None:
        a = _document("t1")
        b = _document("t2")
        c = _document("t1", status=DocumentStatus.ERROR)
        for d in (a, b, c):
            any_store.add_document(d)

        found = any_store.list_documents(
            [MetadataFilter.equals("tenant_id", "t1"), MetadataFilter.equals("status", "completed")]
        )
        assert [d.document_id for d in found] == [a.document_id]

    def test_chunks_insert_get_delete(self, any_store: ChunkStoreBase) -> None:
        doc = _seed(any_store, _document(), ("one", [1.0, 0.0]), ("two", [0.0, 1.0]))
        other = _seed(any_store, _document("t2"), ("three", [1.0, 1.0]))

        chunks = any_store.get_chunks([MetadataFilter.equals("document_id", doc.document_id)])
        assert sorted(c.content for c in chunks) == ["one", "two"]
        assert sorted(c.chunk_index for c in chunks) == [0, 1]
        assert any(c.embedding == pytest.approx([1.0, 0.0]) for c in chunks)
        assert any_store.count_chunks([MetadataFilter.equals("tenant_id", "t1")]) == 2

        assert any_store.delete_chunks(doc.document_id) == 2
        assert any_store.get_chunks([MetadataFilter.equals("document_id", doc.document_id)]) == []
        assert any_store.count_chunks() == 1
        assert any_store.get_chunks()[0].document_id == other.document_id

    def test_delete_document(self, any_store: ChunkStoreBase) -> None:
        doc = _document()
        any_store.add_document(doc)
        any_store.delete_document(doc.document_id)
        assert any_store.get_document(doc.document_id) is None

    def test_health_check(self, any_store: ChunkStoreBase) -> None:
        assert any_store.health_check() is True


def test_memory_store_tolerates_concurrent_writers() -> None:
    store = InMemoryChunkStore()
    errors: list[BaseException] = []

    def worker(n: int) -> None:
        try:
            for _ in range(200):
                doc = _seed(store, _document(f"t{n}"), ("a", [1.0, 0.0]), ("b", [0.0, 1.0]))
                store.get_chunks([MetadataFilter.equals("tenant_id", f"t{n}")])
                store.list_documents()
                store.delete_chunks(doc.document_id)
                store.delete_document(doc.document_id)
        except Exception as exc:
            errors.append(exc)

    previous = sys.getswitchinterval()
    sys.setswitchinterval(1e-6)
    threads = [threading.Thread(target=worker, args=(n,)) for n in range(6)]
    try:
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
    finally:
        sys.setswitchinterval(previous)

    assert errors == []
    assert store.count_chunks() == 0
    assert store.list_documents() == []


def test_chroma_store_reads_configured_names_at_construction(
    settings: Settings, monkeypatch
) -> None:
    pytest.importorskip("chromadb")
    from clinical_rag.retrieval import chroma_store

    configured = settings.model_copy(
        update={"chroma_documents_collection": "clinic_docs", "chroma_chunks_collection": "clinic_chunks"}
    )
    monkeypatch.setattr(chroma_store, "settings", configured)
    client = MagicMock()

    chroma_store.ChromaChunkStore(client)

    names = [c.args[0] for c in client.get_or_create_collection.call_args_list]
    assert names == ["clinic_docs", "clinic_chunks"]


class TestChromaWhereBuilder:
    """Tests for the MetadataFilter → Chroma where-clause converter."""

    @pytest.fixture(autouse=True)
    def _skip_if_chroma_broken(self) -> None:
        """Skip if chromadb can't be imported."""
        pytest.importorskip("chromadb")

    def test_single_filter(self) -> None:
        from clinical_rag.retrieval.chroma_store import _build_chroma_where

        where = _build_chroma_where([MetadataFilter.equals("tenant_id", "t1")])
        assert where == {"tenant_id": {"$eq": "t1"}}

    def test_multiple_filters_produce_and(self) -> None:
        from clinical_rag.retrieval.chroma_store import _build_chroma_where

        where = _build_chroma_where(
            [MetadataFilter.one_of("tenant_id", ["t1", "global"]), MetadataFilter.equals("status", "completed")]
        )
        assert where == {
            "$and": [
                {"tenant_id": {"$in": ["t1", "global"]}},
                {"status": {"$eq": "completed"}},
            ]
        }

    def test_none_when_empty(self) -> None:
        from clinical_rag.retrieval.chroma_store import _build_chroma_where

        assert _build_chroma_where([]) is None

    def test_unsupported_operator_raises(self) -> None:
        from clinical_rag.retrieval.chroma_store import _build_chroma_where

        with pytest.raises(ValueError, match="Unsupported"):
            _build_chroma_where([MetadataFilter(field="x", operator="regex", value=".*")])


# ── SemanticRetriever ───────────────────────────────────────────────────


@pytest.fixture()
def retriever(store: InMemoryChunkStore, embedders: EmbedderFactory, settings: Settings) -> SemanticRetriever:
    return SemanticRetriever(store, embedders, settings=settings)


# Vectors over the test vocabulary: hormone, estrogen, diet, nutrition, ...
HORMONE_VEC = [2.0, 1.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0]
DIET_VEC = [0.0, 0.0, 1.0, 1.0, 1.0, 0.0, 0.0, 0.0]
MIXED_VEC = [1.0, 0.0, 1.0, 0.0, 0.0, 0.0, 0.0, 0.0]


class TestSemanticRetriever:
    def test_empty_corpus_returns_empty_without_embedding(self, retriever, keyword_embeddings) -> None:
        assert retriever.search("hormones", tenant_id="t1") == []
        assert keyword_embeddings.query_calls == []

    def test_results_ranked_and_thresholded(self, retriever, store) -> None:
        doc = _seed(store, _document(), ("hormones", HORMONE_VEC), ("diet", DIET_VEC), ("mixed", MIXED_VEC))
        results = retriever.search("hormones", tenant_id="t1", threshold=0.5)

        assert [r.content for r in results] == ["hormones", "mixed"]
        assert results[0].score > results[1].score >= 0.5
        assert results[0].document_id == doc.document_id
        assert results[0].file_name == "protocol.pdf"
        assert results[0].metadata["chunk_size"] == len("hormones")

    def test_tenant_isolation_and_global_documents(self, retriever, store) -> None:
        _seed(store, _document("t1"), ("t1 hormones", HORMONE_VEC))
        _seed(store, _document("t2"), ("t2 hormones", HORMONE_VEC))
        _seed(store, _document("global", original_filename="shared.pdf"), ("shared hormones", HORMONE_VEC))

        results = retriever.search("hormones", tenant_id="t1", threshold=0.1)
        contents = {r.content for r in results}
        assert contents == {"t1 hormones", "shared hormones"}
        shared = next(r for r in results if r.content == "shared hormones")
        assert shared.is_global is True

    def test_only_completed_documents_are_searched(self, retriever, store) -> None:
        _seed(store, _document(status=DocumentStatus.ERROR), ("broken", HORMONE_VEC))
        _seed(store, _document(status=DocumentStatus.PROCESSING), ("pending", HORMONE_VEC))
        assert retriever.search("hormones", tenant_id="t1", threshold=0.0) == []

    def test_category_filter(self, retriever, store) -> None:
        _seed(store, _document(category="tcm"), ("tcm hormones", HORMONE_VEC))
        _seed(store, _document(category="nutrition"), ("nutrition hormones", HORMONE_VEC))
        results = retriever.search("hormones", tenant_id="t1", category="tcm", threshold=0.1)
        assert [r.content for r in results] == ["tcm hormones"]

    def test_limit_and_threshold_are_clamped(self, retriever, store, settings) -> None:
        _seed(store, _document(), *[(f"c{i}", HORMONE_VEC) for i in range(25)])
        assert len(retriever.search("hormones", tenant_id="t1", limit=100, threshold=0.0)) == settings.search_max_limit
        assert len(retriever.search("hormones", tenant_id="t1", limit=0, threshold=0.0)) == 1
        assert retriever.search("hormones", tenant_id="t1", threshold=5.0) == []

    def test_blank_query_raises(self, retriever) -> None:
        with pytest.raises(ValueError):
            retriever.search("   ", tenant_id="t1")

    def test_cached_search_skips_embedding(self, store, embedders, settings, cache: TTLCache, keyword_embeddings) -> None:
        retriever = SemanticRetriever(store, embedders, cache=cache, settings=settings)
        _seed(store, _document(), ("hormones", HORMONE_VEC))

        first = retriever.search("hormones", tenant_id="t1")
        second = retriever.search("Hormones ", tenant_id="t1")
        assert first == second
        assert keyword_embeddings.query_calls == ["hormones"]

    def test_search_many_merges_and_deduplicates(self, retriever, store) -> None:
        _seed(store, _document(), ("hormones", HORMONE_VEC), ("diet", DIET_VEC), ("mixed", MIXED_VEC))
        results = retriever.search_many(["hormones", "diet", "hormones estrogen", "  "], tenant_id="t1", threshold=0.3)

        keys = [(r.document_id, r.chunk_index) for r in results]
        assert len(keys) == len(set(keys))
        assert {r.content for r in results} == {"hormones", "diet", "mixed"}
        assert all(a.score >= b.score for a, b in zip(results, results[1:]))

    def test_search_many_skips_failing_queries(self, retriever, store, monkeypatch) -> None:
        _seed(store, _document(), ("hormones", HORMONE_VEC))
        original = retriever.search

        def flaky(query, **kwargs):
            if query == "boom":
                raise RuntimeError("provider down")
            return original(query, **kwargs)

        monkeypatch.setattr(retriever, "search", flaky)
        results = retriever.search_many(["boom", "hormones"], tenant_id="t1")
        assert [r.content for r in results] == ["hormones"]
