"""
Vendor SDK clients and the network calls made through them.

``execute_*`` return plain vendor-shaped dicts; ``execute_*_stream`` are
async generators of chunk dicts that close the upstream stream when the
consumer stops early. All of them take an optional ``model`` that overrides
the body; Gemini bodies name none, so callers pass the adapter's model.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Final, Optional

import httpx
from anthropic import AsyncAnthropic
from google import genai
from google.genai import types as genai_types
from openai import AsyncOpenAI

from llm_relay.adapters.chat_completions import DIALECTS
from llm_relay.config import get_settings
from llm_relay.mock import MockAnthropicClient, MockChatCompletionsClient, MockGeminiClient
from llm_relay.providers import Provider, get_api_key
from llm_relay.utils import as_payload

__all__ = [
    "CreateClientOptions",
    "RequestDuration",
    "observable_http_client",
    "strip_bearer",
    "create_chat_completions_client",
    "create_anthropic_client",
    "create_gemini_client",
    "execute_chat_completions",
    "execute_chat_completions_stream",
    "execute_anthropic",
    "execute_anthropic_stream",
    "execute_gemini",
    "execute_gemini_stream",
]

logger = logging.getLogger(__name__)

# keyword arguments ``chat.completions.create`` accepts; the rest go to extra_body
_CHAT_COMPLETIONS_KEYS: Final = frozenset(
    {
        "messages",
        "model",
        "audio",
        "frequency_penalty",
        "function_call",
        "functions",
        "logit_bias",
        "logprobs",
        "max_completion_tokens",
        "max_tokens",
        "metadata",
        "modalities",
        "n",
        "parallel_tool_calls",
        "prediction",
        "presence_penalty",
        "response_format",
        "seed",
        "service_tier",
        "stop",
        "store",
        "stream",
        "stream_options",
        "temperature",
        "tool_choice",
        "tools",
        "top_logprobs",
        "top_p",
        "user",
        "web_search_options",
    }
)

_MESSAGES_KEYS: Final = frozenset(
    {
        "max_tokens",
        "messages",
        "model",
        "metadata",
        "service_tier",
        "stop_sequences",
        "stream",
        "system",
        "temperature",
        "thinking",
        "tool_choice",
        "tools",
        "top_k",
        "top_p",
    }
)

# generateContent body fields that live in GenerateContentConfig
_GEMINI_CONFIG_KEYS: Final = (
    "systemInstruction",
    "tools",
    "toolConfig",
    "safetySettings",
    "cachedContent",
    "labels",
)

_START_EXTENSION = "llm_relay.start"


@dataclass(frozen=True)
class RequestDuration:
    provider: Provider
    method: str
    url: str
    status_code: int
    duration: float
    agent_id: Optional[str] = None
    external_agent_id: Optional[str] = None


@dataclass
class CreateClientOptions:
    mock_mode: Optional[bool] = None  # None defers to LLM_RELAY_MOCK_MODE
    base_url: Optional[str] = None
    agent_id: Optional[str] = None
    external_agent_id: Optional[str] = None
    on_request_duration: Optional[Callable[[RequestDuration], None]] = None

    def use_mock(self) -> bool:
        if self.mock_mode is not None:
            return self.mock_mode
        return get_settings().mock_mode


def strip_bearer(api_key: Optional[str]) -> Optional[str]:
    if api_key and api_key[:7].lower() == "bearer ":
        return api_key[7:].strip()
    return api_key


def _event_hooks(provider: Provider, options: CreateClientOptions) -> dict[str, list[Any]]:
    async def on_request(request: httpx.Request) -> None:
        request.extensions[_START_EXTENSION] = time.perf_counter()

    async def on_response(response: httpx.Response) -> None:
        request = response.request
        started = request.extensions.get(_START_EXTENSION)
        if started is None:
            return
        duration = time.perf_counter() - started
        logger.debug(
            "[%s] %s %s -> %d in %.3fs (agent=%s)",
            provider.value,
            request.method,
            request.url,
            response.status_code,
            duration,
            options.agent_id,
        )
        if options.on_request_duration is not None:
            options.on_request_duration(
                RequestDuration(
                    provider=provider,
                    method=request.method,
                    url=str(request.url),
                    status_code=response.status_code,
                    duration=duration,
                    agent_id=options.agent_id,
                    external_agent_id=options.external_agent_id,
                )
            )

    return {"request": [on_request], "response": [on_response]}


def observable_http_client(
    provider: Provider, options: CreateClientOptions, **client_kwargs: Any
) -> httpx.AsyncClient:
    """An ``httpx.AsyncClient`` that reports each request's duration."""
    return httpx.AsyncClient(event_hooks=_event_hooks(provider, options), **client_kwargs)


def _resolve_key(provider: Provider, api_key: Optional[str]) -> str:
    return strip_bearer(api_key) or get_api_key(provider)


def _base_url(provider: Provider, options: CreateClientOptions) -> str:
    return options.base_url or get_settings().base_url(provider)


def create_chat_completions_client(
    provider: Provider,
    api_key: Optional[str],
    options: Optional[CreateClientOptions] = None,
) -> Any:
    options = options or CreateClientOptions()
    if options.use_mock():
        logger.info("[%s] Using mock client", provider.value)
        return MockChatCompletionsClient()

    base_url = _base_url(provider, options)
    logger.info("[%s] Creating client for %s", provider.value, base_url)
    return AsyncOpenAI(
        api_key=_resolve_key(provider, api_key),
        base_url=base_url,
        http_client=observable_http_client(provider, options) if options.agent_id else None,
    )


def create_anthropic_client(
    api_key: Optional[str],
    options: Optional[CreateClientOptions] = None,
) -> Any:
    options = options or CreateClientOptions()
    provider = Provider.ANTHROPIC
    if options.use_mock():
        logger.info("[%s] Using mock client", provider.value)
        return MockAnthropicClient()

    base_url = _base_url(provider, options)
    logger.info("[%s] Creating client for %s", provider.value, base_url)
    return AsyncAnthropic(
        api_key=_resolve_key(provider, api_key),
        base_url=base_url,
        http_client=observable_http_client(provider, options) if options.agent_id else None,
    )


def create_gemini_client(
    api_key: Optional[str],
    options: Optional[CreateClientOptions] = None,
) -> Any:
    options = options or CreateClientOptions()
    provider = Provider.GEMINI
    if options.use_mock():
        logger.info("[%s] Using mock client", provider.value)
        return MockGeminiClient()

    base_url = _base_url(provider, options)
    logger.info("[%s] Creating client for %s", provider.value, base_url)
    http_options = genai_types.HttpOptions(
        base_url=base_url,
        async_client_args=(
            {"event_hooks": _event_hooks(provider, options)} if options.agent_id else None
        ),
    )
    return genai.Client(api_key=_resolve_key(provider, api_key), http_options=http_options)


def _split_known(request: dict[str, Any], known: frozenset[str]) -> dict[str, Any]:
    args = {k: v for k, v in request.items() if k in known}
    extra_body = {k: v for k, v in request.items() if k not in known and k != "extra_body"}
    extra_body.update(request.get("extra_body") or {})
    if extra_body:
        args["extra_body"] = extra_body
    return args


def _chat_completions_args(
    provider: Provider, request: dict[str, Any], stream: bool, model: Optional[str] = None
) -> dict[str, Any]:
    args = _split_known(request, _CHAT_COMPLETIONS_KEYS)
    if model:
        args["model"] = model
    args["stream"] = stream
    if stream:
        if DIALECTS[provider].include_usage_in_stream:
            args["stream_options"] = {**(args.get("stream_options") or {}), "include_usage": True}
    else:
        args.pop("stream_options", None)
    return args


async def _close_upstream(stream: Any) -> None:
    close = getattr(stream, "aclose", None) or getattr(stream, "close", None)
    if close is not None:
        await close()


async def execute_chat_completions(
    client: Any,
    request: dict[str, Any],
    *,
    provider: Provider = Provider.OPENAI,
    model: Optional[str] = None,
) -> dict[str, Any]:
    args = _chat_completions_args(provider, request, stream=False, model=model)
    logger.debug("[%s] chat.completions.create model=%s", provider.value, args.get("model"))
    response = await client.chat.completions.create(**args)
    return as_payload(response)


async def execute_chat_completions_stream(
    client: Any,
    request: dict[str, Any],
    *,
    provider: Provider = Provider.OPENAI,
    model: Optional[str] = None,
) -> AsyncIterator[dict[str, Any]]:
    args = _chat_completions_args(provider, request, stream=True, model=model)
    logger.debug("[%s] chat.completions.create (stream) model=%s", provider.value, args.get("model"))
    stream = await client.chat.completions.create(**args)
    try:
        async for chunk in stream:
            yield as_payload(chunk)
    finally:
        await _close_upstream(stream)


def _messages_args(request: dict[str, Any], stream: bool, model: Optional[str] = None) -> dict[str, Any]:
    args = _split_known(request, _MESSAGES_KEYS)
    if model:
        args["model"] = model
    args["stream"] = stream
    return args


async def execute_anthropic(
    client: Any, request: dict[str, Any], *, model: Optional[str] = None
) -> dict[str, Any]:
    args = _messages_args(request, stream=False, model=model)
    logger.debug("[anthropic] messages.create model=%s", args.get("model"))
    response = await client.messages.create(**args)
    return as_payload(response)


async def execute_anthropic_stream(
    client: Any, request: dict[str, Any], *, model: Optional[str] = None
) -> AsyncIterator[dict[str, Any]]:
    args = _messages_args(request, stream=True, model=model)
    logger.debug("[anthropic] messages.create (stream) model=%s", args.get("model"))
    stream = await client.messages.create(**args)
    try:
        async for event in stream:
            yield as_payload(event)
    finally:
        await _close_upstream(stream)


def _gemini_args(request: dict[str, Any], model: Optional[str] = None) -> dict[str, Any]:
    """
    Split a REST ``generateContent`` body into the SDK's model/contents/config.

    The REST API names the model in the URL, so *model* usually comes from
    the request adapter rather than the body.
    """
    config: dict[str, Any] = dict(request.get("generationConfig") or {})
    for key in _GEMINI_CONFIG_KEYS:
        if request.get(key) is not None:
            config[key] = request[key]
    return {
        "model": (model or request.get("model") or "").removeprefix("models/"),
        "contents": request.get("contents") or [],
        "config": config or None,
    }


async def execute_gemini(
    client: Any, request: dict[str, Any], *, model: Optional[str] = None
) -> dict[str, Any]:
    args = _gemini_args(request, model)
    logger.debug("[gemini] generateContent model=%s", args["model"])
    response = await client.aio.models.generate_content(**args)
    return as_payload(response, by_alias=True)


async def execute_gemini_stream(
    client: Any, request: dict[str, Any], *, model: Optional[str] = None
) -> AsyncIterator[dict[str, Any]]:
    args = _gemini_args(request, model)
    logger.debug("[gemini] streamGenerateContent model=%s", args["model"])
    stream = await client.aio.models.generate_content_stream(**args)
    try:
        async for chunk in stream:
            yield as_payload(chunk, by_alias=True)
    finally:
        await _close_upstream(stream)
