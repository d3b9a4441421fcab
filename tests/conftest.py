"""Shared pytest configuration and fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest
from langchain_core.embeddings import Embeddings

from clinical_rag.cache import TTLCache
from clinical_rag.config import Settings
from clinical_rag.ingestion.embedder import EmbedderFactory
from clinical_rag.ingestion.storage import LocalObjectStorage
from clinical_rag.providers import CredentialResolver, ProviderName
from clinical_rag.retrieval.memory_store import InMemoryChunkStore
from clinical_rag.service import RAGService, build_rag_service


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: marks tests requiring external services")


# ── Fakes ───────────────────────────────────────────────────────────────

VOCABULARY = ["hormone", "estrogen", "diet", "nutrition", "protein", "thyroid", "sleep", "stress"]


class KeywordEmbeddings(Embeddings):
    """Deterministic embeddings: one dimension per vocabulary word (occurrence count)."""

    def __init__(self, vocabulary: list[str] | None = None) -> None:
        self.vocabulary = vocabulary or VOCABULARY
        self.document_calls: list[list[str]] = []
        self.query_calls: list[str] = []

    def _vector(self, text: str) -> list[float]:
        lowered = text.lower()
        return [float(lowered.count(word)) for word in self.vocabulary]

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        self.document_calls.append(list(texts))
        return [self._vector(t) for t in texts]

    def embed_query(self, text: str) -> list[float]:
        self.query_calls.append(text)
        return self._vector(text)


class FakeClock:
    """Manually advanced time source for TTL tests."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ── Fixtures ────────────────────────────────────────────────────────────


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        embedding_provider="huggingface",
        embedding_model="keyword-test",
        openai_api_key="",
        anthropic_api_key="",
        google_api_key="",
        chunk_size=200,
        chunk_overlap=20,
        search_threshold=0.5,
        storage_endpoint_url="",
        storage_local_dir=str(tmp_path / "uploads"),
        chroma_path="",
    )


@pytest.fixture()
def keyword_embeddings() -> KeywordEmbeddings:
    return KeywordEmbeddings()


@pytest.fixture()
def embeddings_builder(keyword_embeddings: KeywordEmbeddings):
    def build(provider: ProviderName, model: str, api_key: str) -> Embeddings:
        return keyword_embeddings

    return build


@pytest.fixture()
def store() -> InMemoryChunkStore:
    return InMemoryChunkStore()


@pytest.fixture()
def storage(tmp_path: Path) -> LocalObjectStorage:
    return LocalObjectStorage(tmp_path / "files")


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def cache(clock: FakeClock) -> TTLCache:
    return TTLCache(300, clock=clock, rag_ttl=600, embedding_ttl=3600)


@pytest.fixture()
def resolver(settings: Settings) -> CredentialResolver:
    return CredentialResolver(settings=settings)


@pytest.fixture()
def embedders(resolver: CredentialResolver, embeddings_builder) -> EmbedderFactory:
    return EmbedderFactory(resolver, builder=embeddings_builder)


@pytest.fixture()
def service(
    settings: Settings,
    resolver: CredentialResolver,
    store: InMemoryChunkStore,
    storage: LocalObjectStorage,
    cache: TTLCache,
    embeddings_builder,
) -> RAGService:
    return build_rag_service(
        settings,
        resolver=resolver,
        store=store,
        storage=storage,
        cache=cache,
        embeddings_builder=embeddings_builder,
    )


HORMONE_PARAGRAPH = (
    "Hormones shape every phase of the menstrual cycle. Estrogen rises before "
    "ovulation while other hormones rise after it."
)
DIET_PARAGRAPH = (
    "A balanced diet with enough protein keeps blood sugar steady. Good "
    "nutrition also supports the liver and the gut lining."
)
TWO_PARAGRAPHS = f"{HORMONE_PARAGRAPH}\n\n{DIET_PARAGRAPH}"
