"""Embedding providers and the per-tenant embedding client factory."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING

from clinical_rag.errors import ConfigurationError, ProviderError
from clinical_rag.providers import CredentialResolver, ProviderName

if TYPE_CHECKING:
    from langchain_core.embeddings import Embeddings

logger = logging.getLogger(__name__)

EmbeddingsBuilder = Callable[[ProviderName, str, str], "Embeddings"]


def get_embedding_function(provider: ProviderName, model: str, api_key: str) -> Embeddings:
    """Return a LangChain ``Embeddings`` object for *provider*.

    Vendor SDKs are imported lazily so only the configured one needs to be
    importable.  Anthropic offers no embedding endpoint.
    """
    if provider is ProviderName.OPENAI:
        from langchain_openai import OpenAIEmbeddings

        return OpenAIEmbeddings(model=model, api_key=api_key)
    if provider is ProviderName.GOOGLE:
        from langchain_google_genai import GoogleGenerativeAIEmbeddings

        return GoogleGenerativeAIEmbeddings(model=model, google_api_key=api_key)
    if provider is ProviderName.HUGGINGFACE:
        from langchain_huggingface import HuggingFaceEmbeddings

        return HuggingFaceEmbeddings(model_name=model)
    raise ConfigurationError(f"Provider {provider.value!r} does not offer text embeddings")


class EmbeddingClient:
    """One embedding model bound to one set of credentials.

    Vendor exceptions are re-raised as :class:`ProviderError`; nothing is
    retried.
    """

    def __init__(self, embeddings: Embeddings, *, provider: ProviderName, model: str) -> None:
        self._embeddings = embeddings
        self.provider = provider
        self.model = model

    def embed_documents(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            return []
        try:
            vectors = self._embeddings.embed_documents(list(texts))
        except Exception as exc:
            raise ProviderError(self.provider.value, f"embedding request failed: {exc}") from exc
        return [list(map(float, v)) for v in vectors]

    def embed_query(self, text: str) -> list[float]:
        try:
            vector = self._embeddings.embed_query(text)
        except Exception as exc:
            raise ProviderError(self.provider.value, f"query embedding failed: {exc}") from exc
        return list(map(float, vector))


class EmbedderFactory:
    """Build (and memoise) the :class:`EmbeddingClient` each tenant uses.

    Parameters
    ----------
    resolver:
        Supplies the tenant's embedding provider/model and API key.  A
        missing key raises :class:`ConfigurationError` here, before any
        provider call.
    builder:
        ``(provider, model, api_key) -> Embeddings``; defaults to
        :func:`get_embedding_function`.  Tests inject fakes here.
    """

    def __init__(
        self,
        resolver: CredentialResolver,
        *,
        builder: EmbeddingsBuilder = get_embedding_function,
    ) -> None:
        self._resolver = resolver
        self._builder = builder
        self._clients: dict[tuple[str, ProviderName, str, str], EmbeddingClient] = {}

    def for_tenant(self, tenant_id: str) -> EmbeddingClient:
        provider, model = self._resolver.embedding_config(tenant_id)
        api_key = self._resolver.resolve_api_key(provider, tenant_id)
        cache_key = (tenant_id, provider, model, api_key)
        client = self._clients.get(cache_key)
        if client is None:
            logger.info("Initialising %s embeddings (%s) for tenant %s", provider.value, model, tenant_id)
            client = EmbeddingClient(self._builder(provider, model, api_key), provider=provider, model=model)
            self._clients[cache_key] = client
        return client

    def reset(self) -> None:
        """Forget memoised clients, e.g. after a tenant's keys change."""
        self._clients.clear()
