"""Tests for client construction and the execute helpers (mock mode, no network)."""

import asyncio
from types import SimpleNamespace

import httpx
import pytest
from anthropic import AsyncAnthropic
from openai import AsyncOpenAI

from llm_relay.clients import (
    CreateClientOptions,
    create_chat_completions_client,
    execute_chat_completions_stream,
    observable_http_client,
    strip_bearer,
)
from llm_relay.config import reset_settings
from llm_relay.mock import (
    MOCK_TEXT,
    MockAnthropicClient,
    MockChatCompletionsClient,
    MockGeminiClient,
    MockStream,
)
from llm_relay.providers import Provider
from llm_relay.registry import get_provider_entry
from llm_relay.stream_utils import aggregate_stream

MOCK = CreateClientOptions(mock_mode=True)

WEATHER_TOOL = {
    "type": "function",
    "function": {
        "name": "get_weather",
        "description": "Get the current weather",
        "parameters": {"type": "object", "properties": {"city": {"type": "string"}}},
    },
}


def chat_request(**overrides):
    request = {"model": "grok-4", "messages": [{"role": "user", "content": "Hi"}]}
    request.update(overrides)
    return request


class TestMockMode:
    """Mock clients stand in for the SDKs behind the same registry calls."""

    def test_explicit_flag(self):
        client = get_provider_entry(Provider.XAI).create_client(None, MOCK)

        assert isinstance(client, MockChatCompletionsClient)

    def test_environment_flag(self, monkeypatch):
        monkeypatch.setenv("LLM_RELAY_MOCK_MODE", "true")
        reset_settings()

        assert isinstance(get_provider_entry(Provider.ANTHROPIC).create_client(None, None), MockAnthropicClient)
        assert isinstance(get_provider_entry(Provider.GEMINI).create_client(None, None), MockGeminiClient)

    def test_flag_overrides_environment(self, monkeypatch):
        monkeypatch.setenv("LLM_RELAY_MOCK_MODE", "true")
        reset_settings()

        assert CreateClientOptions(mock_mode=False).use_mock() is False
        assert CreateClientOptions().use_mock() is True


class TestChatCompletionsExecute:
    def test_execute_returns_text(self):
        entry = get_provider_entry(Provider.XAI)
        client = entry.create_client(None, MOCK)

        response = asyncio.run(entry.execute(client, chat_request()))

        assert entry.response_adapter(response).get_text() == MOCK_TEXT
        assert client.calls[0]["stream"] is False
        assert "stream_options" not in client.calls[0]

    def test_execute_calls_first_tool(self):
        entry = get_provider_entry(Provider.OPENAI)
        client = entry.create_client(None, MOCK)

        response = asyncio.run(entry.execute(client, chat_request(tools=[WEATHER_TOOL])))
        calls = entry.response_adapter(response).get_tool_calls()

        assert [c.name for c in calls] == ["get_weather"]

    def test_unknown_keys_move_to_extra_body(self):
        entry = get_provider_entry(Provider.VLLM)
        client = entry.create_client(None, MOCK)

        asyncio.run(entry.execute(client, chat_request(top_k=20, extra_body={"min_p": 0.1})))

        call = client.calls[0]
        assert "top_k" not in call
        assert call["extra_body"] == {"top_k": 20, "min_p": 0.1}

    def test_model_keyword_overrides_body(self):
        entry = get_provider_entry(Provider.XAI)
        client = entry.create_client(None, MOCK)

        asyncio.run(entry.execute(client, chat_request(), model="grok-4-fast"))

        assert client.calls[0]["model"] == "grok-4-fast"

    @pytest.mark.parametrize(
        "provider, include_usage",
        [(Provider.OPENAI, True), (Provider.XAI, True), (Provider.VLLM, True), (Provider.OLLAMA, False)],
    )
    def test_stream_usage_option(self, provider, include_usage):
        entry = get_provider_entry(provider)
        client = entry.create_client(None, MOCK)

        response = asyncio.run(
            aggregate_stream(entry.stream_adapter(), entry.execute_stream(client, chat_request()))
        )

        call = client.calls[0]
        assert call["stream"] is True
        assert ("stream_options" in call) is include_usage
        assert response["choices"][0]["message"]["content"] == MOCK_TEXT
        assert response["usage"]["prompt_tokens"] == (12 if include_usage else 0)

    def test_stream_reaches_terminal_signal(self):
        entry = get_provider_entry(Provider.XAI)
        client = entry.create_client(None, MOCK)
        adapter = entry.stream_adapter()

        asyncio.run(aggregate_stream(adapter, entry.execute_stream(client, chat_request())))

        assert adapter.is_final() is True

    def test_early_close_closes_upstream(self):
        stream = MockStream(
            [
                {"id": "c1", "model": "grok-4", "choices": [{"index": 0, "delta": {"content": "a"}}]},
                {"id": "c1", "model": "grok-4", "choices": [{"index": 0, "delta": {"content": "b"}}]},
            ]
        )

        async def create(**kwargs):
            return stream

        client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))

        async def consume_one():
            chunks = execute_chat_completions_stream(client, chat_request(), provider=Provider.XAI)
            first = await chunks.__anext__()
            await chunks.aclose()
            return first

        first = asyncio.run(consume_one())

        assert first["choices"][0]["delta"]["content"] == "a"
        assert stream.closed is True


class TestAnthropicExecute:
    def test_execute_and_stream(self):
        entry = get_provider_entry(Provider.ANTHROPIC)
        client = entry.create_client(None, MOCK)
        request = {"model": "claude-sonnet-4-5", "max_tokens": 256, "messages": [{"role": "user", "content": "Hi"}]}

        response = asyncio.run(entry.execute(client, request))
        streamed = asyncio.run(aggregate_stream(entry.stream_adapter(), entry.execute_stream(client, request)))

        assert entry.response_adapter(response).get_text() == MOCK_TEXT
        assert entry.response_adapter(streamed).get_text() == MOCK_TEXT
        assert streamed["usage"] == {"input_tokens": 12, "output_tokens": 9}
        assert [call["stream"] for call in client.calls] == [False, True]

    def test_stream_tool_use(self):
        entry = get_provider_entry(Provider.ANTHROPIC)
        client = entry.create_client(None, MOCK)
        request = {
            "model": "claude-sonnet-4-5",
            "max_tokens": 256,
            "messages": [{"role": "user", "content": "Weather?"}],
            "tools": [{"name": "get_weather", "input_schema": {"type": "object"}}],
        }

        streamed = asyncio.run(aggregate_stream(entry.stream_adapter(), entry.execute_stream(client, request)))

        calls = entry.response_adapter(streamed).get_tool_calls()
        assert [c.name for c in calls] == ["get_weather"]
        assert streamed["stop_reason"] == "tool_use"


class TestGeminiExecute:
    MODEL = "gemini-2.5-flash"

    def gemini_request(self, **extra):
        body = {"contents": [{"role": "user", "parts": [{"text": "Hi"}]}], "generationConfig": {"temperature": 0.3}}
        body.update(extra)
        adapter = get_provider_entry(Provider.GEMINI).request_adapter(body, model=self.MODEL)
        return adapter.to_provider_request()

    def test_body_is_split_for_the_sdk(self):
        entry = get_provider_entry(Provider.GEMINI)
        client = entry.create_client(None, MOCK)
        request = self.gemini_request(systemInstruction={"parts": [{"text": "Be brief"}]})

        response = asyncio.run(entry.execute(client, request, model=self.MODEL))

        call = client.calls[0]
        assert call["model"] == "gemini-2.5-flash"
        assert call["contents"] == request["contents"]
        assert call["config"] == {"temperature": 0.3, "systemInstruction": {"parts": [{"text": "Be brief"}]}}
        assert entry.response_adapter(response).get_text() == MOCK_TEXT

    def test_staged_model_travels_in_the_body(self):
        entry = get_provider_entry(Provider.GEMINI)
        client = entry.create_client(None, MOCK)
        adapter = entry.request_adapter({"contents": []}, model=self.MODEL)
        adapter.set_model("models/gemini-2.5-pro")

        asyncio.run(entry.execute(client, adapter.to_provider_request()))

        assert client.calls[0]["model"] == "gemini-2.5-pro"

    def test_stream_with_tools(self):
        entry = get_provider_entry(Provider.GEMINI)
        client = entry.create_client(None, MOCK)
        request = self.gemini_request(tools=[{"functionDeclarations": [{"name": "get_weather"}]}])
        adapter = entry.stream_adapter()

        streamed = asyncio.run(aggregate_stream(adapter, entry.execute_stream(client, request, model=self.MODEL)))

        assert adapter.is_final() is True
        assert client.calls[0]["model"] == "gemini-2.5-flash"
        assert [c.name for c in entry.response_adapter(streamed).get_tool_calls()] == ["get_weather"]

    def test_stream_text(self):
        entry = get_provider_entry(Provider.GEMINI)
        client = entry.create_client(None, MOCK)
        chunks = entry.execute_stream(client, self.gemini_request(), model=self.MODEL)

        streamed = asyncio.run(aggregate_stream(entry.stream_adapter(), chunks))

        assert entry.response_adapter(streamed).get_text() == MOCK_TEXT


class TestRealClients:
    """SDK clients are configured without making any request."""

    def test_strip_bearer(self):
        assert strip_bearer("Bearer sk-1") == "sk-1"
        assert strip_bearer("bearer  sk-2") == "sk-2"
        assert strip_bearer("sk-3") == "sk-3"
        assert strip_bearer(None) is None

    def test_xai_client(self):
        client = create_chat_completions_client(Provider.XAI, "Bearer xai-key", CreateClientOptions(mock_mode=False))

        assert isinstance(client, AsyncOpenAI)
        assert client.api_key == "xai-key"
        assert str(client.base_url).rstrip("/") == "https://api.x.ai/v1"

    def test_keyless_vllm_client(self):
        client = create_chat_completions_client(Provider.VLLM, None, CreateClientOptions(mock_mode=False))

        assert client.api_key == "EMPTY"
        assert str(client.base_url).rstrip("/") == "http://localhost:8000/v1"

    def test_base_url_override(self):
        options = CreateClientOptions(mock_mode=False, base_url="http://proxy.internal:9000")

        client = get_provider_entry(Provider.ANTHROPIC).create_client("sk-ant", options)

        assert isinstance(client, AsyncAnthropic)
        assert client.api_key == "sk-ant"
        assert str(client.base_url).rstrip("/") == "http://proxy.internal:9000"


class TestObservableHttpClient:
    def test_reports_request_duration(self):
        durations = []
        options = CreateClientOptions(
            agent_id="agent-1",
            external_agent_id="ext-1",
            on_request_duration=durations.append,
        )
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"ok": True}))

        async def call():
            async with observable_http_client(Provider.XAI, options, transport=transport) as client:
                response = await client.get("https://api.x.ai/v1/models")
                return response.status_code

        assert asyncio.run(call()) == 200
        assert len(durations) == 1
        duration = durations[0]
        assert duration.provider is Provider.XAI
        assert (duration.method, duration.url, duration.status_code) == (
            "GET",
            "https://api.x.ai/v1/models",
            200,
        )
        assert (duration.agent_id, duration.external_agent_id) == ("agent-1", "ext-1")
        assert duration.duration >= 0
