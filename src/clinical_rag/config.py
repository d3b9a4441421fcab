"""Shared configuration loaded from environment / .env file."""

from __future__ import annotations

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application-wide settings, populated from env vars or .env file."""

    # Chunking
    chunk_size: int = Field(default=1000, gt=0, description="Maximum characters per chunk")
    chunk_overlap: int = Field(default=200, ge=0, description="Characters shared by adjacent chunks")
    chunk_separators: list[str] = Field(
        default_factory=lambda: ["\n\n", "\n", ". ", " ", ""],
        description="Split boundaries in priority order: paragraph, line, sentence, space, character",
    )
    embed_batch_size: int = Field(
        default=5,
        gt=0,
        description="Chunks embedded and persisted per batch; bounds outbound embedding calls",
    )
    extracted_text_snapshot_chars: int = 10_000

    # Search
    search_limit: int = 10
    search_max_limit: int = 20
    search_threshold: float = 0.7
    global_tenant_id: str = Field(
        default="global",
        description="Tenant whose documents are searched on behalf of every tenant",
    )

    # Embedding
    embedding_provider: str = "openai"
    embedding_model: str = "text-embedding-3-small"

    # Provider keys (environment tier of the tenant -> global -> env lookup)
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    google_api_key: str = ""

    # Chat
    llm_provider: str = "openai"
    llm_model: str = Field(default="", description="Empty selects the provider's default model")
    llm_temperature: float = 0.7
    llm_max_tokens: int = 2000

    # Cache TTLs (seconds)
    cache_default_ttl: float = 300.0
    cache_rag_ttl: float = 600.0
    cache_embedding_ttl: float = 3600.0

    # Object storage (S3 API, e.g. MinIO). Empty endpoint -> local directory.
    storage_endpoint_url: str = ""
    storage_bucket: str = "clinical-rag-files"
    storage_access_key: str = ""
    storage_secret_key: str = ""
    storage_region: str = "us-east-1"
    storage_folder: str = "rag-documents"
    storage_local_dir: str = "./data/uploads"

    # Vector persistence. Empty path -> in-memory store.
    chroma_path: str = ""
    chroma_documents_collection: str = "rag_documents"
    chroma_chunks_collection: str = "rag_document_chunks"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @model_validator(mode="after")
    def _check_overlap(self) -> Settings:
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError(
                f"chunk_overlap ({self.chunk_overlap}) must be < chunk_size ({self.chunk_size})"
            )
        return self


# Singleton — import `settings` wherever a default is needed; inject your own
# Settings instance in tests.
settings = Settings()
