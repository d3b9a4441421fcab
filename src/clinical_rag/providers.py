"""Vendor identifiers and API-key resolution.

Keys are looked up in three tiers: the tenant's own configuration, the
global (clinic-wide) configuration, then the environment via
:class:`~clinical_rag.config.Settings`.  When all three are empty a
:class:`~clinical_rag.errors.ConfigurationError` is raised before any
provider call is made.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from enum import Enum

from pydantic import BaseModel, Field

from clinical_rag.config import Settings
from clinical_rag.config import settings as default_settings
from clinical_rag.errors import ConfigurationError

logger = logging.getLogger(__name__)


class ProviderName(str, Enum):
    """Vendors the application can talk to."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"
    HUGGINGFACE = "huggingface"

    @classmethod
    def parse(cls, value: str | ProviderName) -> ProviderName:
        try:
            return cls(str(getattr(value, "value", value)).lower())
        except ValueError:
            supported = ", ".join(p.value for p in cls)
            raise ConfigurationError(
                f"Unsupported provider: {value!r}. Supported: {supported}"
            ) from None


# Providers that run locally and need no key.
KEYLESS_PROVIDERS = frozenset({ProviderName.HUGGINGFACE})

_ENV_KEY_FIELDS = {
    ProviderName.OPENAI: "openai_api_key",
    ProviderName.ANTHROPIC: "anthropic_api_key",
    ProviderName.GOOGLE: "google_api_key",
}


class TenantAIConfig(BaseModel):
    """Per-tenant AI configuration.

    Attributes
    ----------
    tenant_id:
        The company / organisation the configuration belongs to.
    api_keys:
        Vendor keys owned by the tenant.
    embedding_provider / embedding_model:
        Optional override of the application-wide embedding model.  One
        embedding model per tenant keeps stored and query vectors the same
        dimensionality.
    """

    tenant_id: str
    api_keys: dict[ProviderName, str] = Field(default_factory=dict)
    embedding_provider: ProviderName | None = None
    embedding_model: str | None = None


class CredentialResolver:
    """Resolve vendor keys and embedding configuration for a tenant."""

    def __init__(
        self,
        tenants: Mapping[str, TenantAIConfig] | None = None,
        global_keys: Mapping[ProviderName, str] | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._tenants: dict[str, TenantAIConfig] = dict(tenants or {})
        self._global_keys: dict[ProviderName, str] = dict(global_keys or {})
        self._settings = settings or default_settings

    def register_tenant(self, config: TenantAIConfig) -> None:
        self._tenants[config.tenant_id] = config

    def set_global_key(self, provider: ProviderName | str, api_key: str) -> None:
        self._global_keys[ProviderName.parse(provider)] = api_key

    def tenant_config(self, tenant_id: str) -> TenantAIConfig | None:
        return self._tenants.get(tenant_id)

    def resolve_api_key(self, provider: ProviderName | str, tenant_id: str) -> str:
        """Return the first non-empty key from tenant, global, then environment."""
        provider = ProviderName.parse(provider)
        if provider in KEYLESS_PROVIDERS:
            return ""

        tenant = self._tenants.get(tenant_id)
        if tenant is not None and tenant.api_keys.get(provider):
            logger.debug("Using tenant %s key for %s", tenant_id, provider.value)
            return tenant.api_keys[provider]

        if self._global_keys.get(provider):
            logger.debug("Using global key for %s (tenant %s)", provider.value, tenant_id)
            return self._global_keys[provider]

        env_key = getattr(self._settings, _ENV_KEY_FIELDS[provider], "")
        if env_key:
            logger.debug("Using environment key for %s (tenant %s)", provider.value, tenant_id)
            return env_key

        raise ConfigurationError(
            f"No {provider.value} API key configured for tenant {tenant_id!r}: "
            "set one on the tenant, in the global AI configuration, or via "
            f"the {_ENV_KEY_FIELDS[provider].upper()} environment variable"
        )

    def embedding_config(self, tenant_id: str) -> tuple[ProviderName, str]:
        """Return the ``(provider, model)`` pair used to embed for *tenant_id*."""
        tenant = self._tenants.get(tenant_id)
        provider = ProviderName.parse(self._settings.embedding_provider)
        model = self._settings.embedding_model
        if tenant is not None and tenant.embedding_provider is not None:
            provider = tenant.embedding_provider
            model = tenant.embedding_model or model
        elif tenant is not None and tenant.embedding_model:
            model = tenant.embedding_model
        return provider, model
