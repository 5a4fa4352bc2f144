from __future__ import annotations

from dataclasses import dataclass
from functools import partial
from types import MappingProxyType
from typing import Any, AsyncIterator, Awaitable, Callable, Mapping, Optional

from llm_relay import clients
from llm_relay.adapters import (
    DIALECTS,
    AnthropicRequestAdapter,
    AnthropicResponseAdapter,
    AnthropicStreamAdapter,
    ChatCompletionsRequestAdapter,
    ChatCompletionsResponseAdapter,
    ChatCompletionsStreamAdapter,
    GeminiRequestAdapter,
    GeminiResponseAdapter,
    GeminiStreamAdapter,
    RequestAdapter,
    ResponseAdapter,
    StreamAdapter,
)
from llm_relay.clients import CreateClientOptions
from llm_relay.config import get_settings
from llm_relay.errors import UnsupportedProviderError, extract_error_message
from llm_relay.providers import INTERACTION_TYPES, Provider

__all__ = ["ProviderEntry", "REGISTRY", "get_provider_entry"]

Headers = Mapping[str, str]


def _header(headers: Headers, name: str) -> Optional[str]:
    for key, value in headers.items():
        if key.lower() == name:
            return value
    return None


def _bearer_passthrough(headers: Headers, query: Optional[Headers] = None) -> Optional[str]:
    return _header(headers, "authorization")


def _anthropic_key(headers: Headers, query: Optional[Headers] = None) -> Optional[str]:
    return _header(headers, "x-api-key") or _header(headers, "authorization")


def _gemini_key(headers: Headers, query: Optional[Headers] = None) -> Optional[str]:
    return _header(headers, "x-goog-api-key") or (query or {}).get("key")


@dataclass(frozen=True)
class ProviderEntry:
    """Everything needed to relay one vendor's traffic."""

    provider: Provider
    interaction_type: str
    request_adapter: Callable[..., RequestAdapter]
    response_adapter: Callable[[Any], ResponseAdapter]
    stream_adapter: Callable[[], StreamAdapter]
    extract_api_key: Callable[[Headers, Optional[Headers]], Optional[str]]
    create_client: Callable[[Optional[str], Optional[CreateClientOptions]], Any]
    execute: Callable[..., Awaitable[dict[str, Any]]]
    execute_stream: Callable[..., AsyncIterator[dict[str, Any]]]
    span_names: tuple[str, str]
    error_paths: tuple[str, ...]

    def get_base_url(self) -> str:
        return get_settings().base_url(self.provider)

    def get_span_name(self, streaming: bool = False) -> str:
        return self.span_names[1] if streaming else self.span_names[0]

    def extract_error_message(self, error: Any) -> str:
        return extract_error_message(error, self.error_paths)


# openai puts the error object itself in ``body``
_CHAT_COMPLETIONS_ERROR_PATHS = ("body.message", "body.error.message", "error.message")


def _chat_completions_entry(provider: Provider) -> ProviderEntry:
    dialect = DIALECTS[provider]
    span = f"{provider.value}.chat.completions"
    return ProviderEntry(
        provider=provider,
        interaction_type=INTERACTION_TYPES[provider],
        request_adapter=partial(ChatCompletionsRequestAdapter, dialect=dialect),
        response_adapter=partial(ChatCompletionsResponseAdapter, dialect=dialect),
        stream_adapter=partial(ChatCompletionsStreamAdapter, dialect),
        extract_api_key=_bearer_passthrough,
        create_client=partial(clients.create_chat_completions_client, provider),
        execute=partial(clients.execute_chat_completions, provider=provider),
        execute_stream=partial(clients.execute_chat_completions_stream, provider=provider),
        span_names=(span, span),
        error_paths=_CHAT_COMPLETIONS_ERROR_PATHS,
    )


_ENTRIES: dict[Provider, ProviderEntry] = {
    Provider.OPENAI: _chat_completions_entry(Provider.OPENAI),
    Provider.VLLM: _chat_completions_entry(Provider.VLLM),
    Provider.OLLAMA: _chat_completions_entry(Provider.OLLAMA),
    Provider.XAI: _chat_completions_entry(Provider.XAI),
    Provider.ANTHROPIC: ProviderEntry(
        provider=Provider.ANTHROPIC,
        interaction_type=INTERACTION_TYPES[Provider.ANTHROPIC],
        request_adapter=AnthropicRequestAdapter,
        response_adapter=AnthropicResponseAdapter,
        stream_adapter=AnthropicStreamAdapter,
        extract_api_key=_anthropic_key,
        create_client=clients.create_anthropic_client,
        execute=clients.execute_anthropic,
        execute_stream=clients.execute_anthropic_stream,
        span_names=("anthropic.messages", "anthropic.messages.stream"),
        error_paths=("body.error.message", "error.message", "body.message"),
    ),
    Provider.GEMINI: ProviderEntry(
        provider=Provider.GEMINI,
        interaction_type=INTERACTION_TYPES[Provider.GEMINI],
        request_adapter=GeminiRequestAdapter,
        response_adapter=GeminiResponseAdapter,
        stream_adapter=GeminiStreamAdapter,
        extract_api_key=_gemini_key,
        create_client=clients.create_gemini_client,
        execute=clients.execute_gemini,
        execute_stream=clients.execute_gemini_stream,
        span_names=("gemini.generateContent", "gemini.streamGenerateContent"),
        error_paths=("details.error.message", "error.message", "message"),
    ),
}

# read-only after import
REGISTRY: Mapping[Provider, ProviderEntry] = MappingProxyType(_ENTRIES)


def get_provider_entry(provider: Provider | str) -> ProviderEntry:
    """
    Look up the registry entry for *provider*.

    Raises:
        UnsupportedProviderError: the tag names no known vendor.
    """
    try:
        return REGISTRY[Provider(provider)]
    except (KeyError, ValueError) as exc:
        raise UnsupportedProviderError(f"Unsupported provider: {provider}", exc) from exc
