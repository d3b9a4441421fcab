"""LLM initialisation and dispatch — single place to swap providers.

Three chat vendors are supported: OpenAI, Anthropic and Google.  Each
reports usage and stop information in its own shape, so the reply is
first captured as a vendor-specific :data:`ProviderResult` variant and
then normalised into one :class:`Completion` before any caller sees it.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

from clinical_rag.analysis.prompts import build_analysis_prompt
from clinical_rag.config import Settings
from clinical_rag.errors import ConfigurationError, ProviderError
from clinical_rag.providers import ProviderName

if TYPE_CHECKING:
    from langchain_core.language_models.chat_models import BaseChatModel
    from langchain_core.messages import AIMessage

logger = logging.getLogger(__name__)

DEFAULT_MODELS: dict[ProviderName, str] = {
    ProviderName.OPENAI: "gpt-4o-mini",
    ProviderName.ANTHROPIC: "claude-3-5-sonnet-latest",
    ProviderName.GOOGLE: "gemini-1.5-flash",
}


class ChatConfig(BaseModel):
    """Provider, model and sampling parameters for one analysis call."""

    provider: ProviderName = ProviderName.OPENAI
    model: str = ""
    temperature: float = 0.7
    max_tokens: int = 2000

    @property
    def model_name(self) -> str:
        return self.model or DEFAULT_MODELS.get(self.provider, "")

    @classmethod
    def from_settings(cls, settings: Settings) -> ChatConfig:
        return cls(
            provider=ProviderName.parse(settings.llm_provider),
            model=settings.llm_model,
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
        )


class Completion(BaseModel):
    """Vendor-neutral chat reply."""

    text: str
    provider: ProviderName
    model: str | None = None
    finish_reason: str | None = None
    input_tokens: int | None = None
    output_tokens: int | None = None


def _message_text(message: AIMessage) -> str:
    """Flatten string or content-block message bodies into plain text."""
    content = message.content
    if isinstance(content, str):
        return content
    parts: list[str] = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


# ---------------------------------------------------------------------------
# Provider result variants
# ---------------------------------------------------------------------------


class OpenAIResult(BaseModel):
    provider: Literal["openai"] = "openai"
    text: str
    model_name: str | None = None
    finish_reason: str | None = None
    token_usage: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_message(cls, message: AIMessage) -> OpenAIResult:
        meta = message.response_metadata or {}
        return cls(
            text=_message_text(message),
            model_name=meta.get("model_name"),
            finish_reason=meta.get("finish_reason"),
            token_usage=meta.get("token_usage") or {},
        )

    def normalize(self) -> Completion:
        return Completion(
            text=self.text,
            provider=ProviderName.OPENAI,
            model=self.model_name,
            finish_reason=self.finish_reason,
            input_tokens=self.token_usage.get("prompt_tokens"),
            output_tokens=self.token_usage.get("completion_tokens"),
        )


class AnthropicResult(BaseModel):
    provider: Literal["anthropic"] = "anthropic"
    text: str
    model: str | None = None
    stop_reason: str | None = None
    usage: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_message(cls, message: AIMessage) -> AnthropicResult:
        meta = message.response_metadata or {}
        return cls(
            text=_message_text(message),
            model=meta.get("model"),
            stop_reason=meta.get("stop_reason"),
            usage=meta.get("usage") or {},
        )

    def normalize(self) -> Completion:
        return Completion(
            text=self.text,
            provider=ProviderName.ANTHROPIC,
            model=self.model,
            finish_reason=self.stop_reason,
            input_tokens=self.usage.get("input_tokens"),
            output_tokens=self.usage.get("output_tokens"),
        )


class GoogleResult(BaseModel):
    provider: Literal["google"] = "google"
    text: str
    model_name: str | None = None
    finish_reason: str | None = None
    usage_metadata: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_message(cls, message: AIMessage) -> GoogleResult:
        meta = message.response_metadata or {}
        usage = getattr(message, "usage_metadata", None) or {}
        return cls(
            text=_message_text(message),
            model_name=meta.get("model_name"),
            finish_reason=meta.get("finish_reason"),
            usage_metadata=dict(usage),
        )

    def normalize(self) -> Completion:
        return Completion(
            text=self.text,
            provider=ProviderName.GOOGLE,
            model=self.model_name,
            finish_reason=self.finish_reason,
            input_tokens=self.usage_metadata.get("input_tokens"),
            output_tokens=self.usage_metadata.get("output_tokens"),
        )


ProviderResult = Annotated[
    Union[OpenAIResult, AnthropicResult, GoogleResult],
    Field(discriminator="provider"),
]

_RESULT_TYPES: dict[ProviderName, type[OpenAIResult | AnthropicResult | GoogleResult]] = {
    ProviderName.OPENAI: OpenAIResult,
    ProviderName.ANTHROPIC: AnthropicResult,
    ProviderName.GOOGLE: GoogleResult,
}

provider_result_adapter: TypeAdapter[ProviderResult] = TypeAdapter(ProviderResult)


def result_from_message(provider: ProviderName, message: AIMessage) -> ProviderResult:
    """Capture a vendor reply as its provider-specific variant."""
    try:
        result_type = _RESULT_TYPES[provider]
    except KeyError:
        raise ConfigurationError(f"Provider {provider.value!r} has no chat models") from None
    return result_type.from_message(message)


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


def get_chat_model(config: ChatConfig, api_key: str) -> BaseChatModel:
    """Return the configured chat model.

    Vendor integrations are imported lazily so only the configured one
    needs to be importable.
    """
    if config.provider is ProviderName.OPENAI:
        from langchain_openai import ChatOpenAI

        return ChatOpenAI(
            model=config.model_name,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            api_key=api_key,
        )
    if config.provider is ProviderName.ANTHROPIC:
        from langchain_anthropic import ChatAnthropic

        return ChatAnthropic(
            model=config.model_name,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            api_key=api_key,
        )
    if config.provider is ProviderName.GOOGLE:
        from langchain_google_genai import ChatGoogleGenerativeAI

        return ChatGoogleGenerativeAI(
            model=config.model_name,
            temperature=config.temperature,
            max_output_tokens=config.max_tokens,
            google_api_key=api_key,
        )
    raise ConfigurationError(
        f"Unsupported chat provider: {config.provider.value}. Supported: openai, anthropic, google"
    )


def generate(
    config: ChatConfig,
    system_prompt: str,
    user_prompt: str,
    *,
    api_key: str = "",
    context: str = "",
    chat_model: BaseChatModel | None = None,
) -> Completion:
    """Send one system + user prompt pair and return the normalised reply.

    No timeout or retry is applied; a hung vendor call hangs the caller.
    """
    model = chat_model or get_chat_model(config, api_key)
    messages = build_analysis_prompt(system_prompt, user_prompt, context)
    logger.info("Dispatching prompt to %s (%s)", config.provider.value, config.model_name)
    try:
        message = model.invoke(messages)
    except Exception as exc:
        raise ProviderError(config.provider.value, f"chat request failed: {exc}") from exc
    return result_from_message(config.provider, message).normalize()
