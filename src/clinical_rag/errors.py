"""Exception hierarchy shared by ingestion, retrieval and provider code.

Nothing in this package retries.  Errors surface to the caller (and, for
ingestion, are recorded on the document) so a human can re-trigger the
operation.
"""

from __future__ import annotations


class ClinicalRAGError(Exception):
    """Base class for every error raised deliberately by this package."""


class ExtractionError(ClinicalRAGError):
    """Text could not be extracted: unsupported MIME type or parser failure."""


class ConfigurationError(ClinicalRAGError):
    """A provider cannot be used because its configuration is incomplete.

    Raised before any outbound call is attempted, e.g. when no API key is
    resolvable from the tenant, the global configuration or the environment.
    """


class ProviderError(ClinicalRAGError):
    """An embedding or chat vendor call failed.

    The vendor exception is kept as ``__cause__``.
    """

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class DimensionMismatchError(ClinicalRAGError, ValueError):
    """Two embedding vectors of different lengths were compared.

    Happens when the embedding model changes after documents were ingested.
    """

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(
            f"Embedding dimension mismatch: query has {expected} dimensions, "
            f"stored chunk has {actual}. Reprocess documents embedded with a "
            "previous model."
        )
        self.expected = expected
        self.actual = actual


class DocumentNotFoundError(ClinicalRAGError, LookupError):
    """The document does not exist or belongs to another tenant."""

    def __init__(self, document_id: str) -> None:
        super().__init__(f"Document not found: {document_id}")
        self.document_id = document_id


class StorageError(ClinicalRAGError):
    """The object storage backend rejected an upload, download or delete."""
