"""
Offline stand-ins for the vendor SDK clients.

They expose the same call surface the relay uses (``chat.completions.create``,
``messages.create``, ``aio.models.generate_content[_stream]``) and answer with
canned vendor-shaped payloads, so the whole request path can run without
network access or API keys.
"""

from __future__ import annotations

import json
import time
import uuid
from types import SimpleNamespace
from typing import Any, AsyncIterator, Iterable, Optional

__all__ = [
    "MOCK_TEXT",
    "MockStream",
    "MockChatCompletionsClient",
    "MockAnthropicClient",
    "MockGeminiClient",
]

MOCK_TEXT = "This is a mock response from the relay."


class MockStream:
    """Async iterator over canned chunks that records whether it was closed."""

    def __init__(self, chunks: Iterable[dict[str, Any]]) -> None:
        self._chunks = list(chunks)
        self.closed = False

    def __aiter__(self) -> AsyncIterator[dict[str, Any]]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[dict[str, Any]]:
        for chunk in self._chunks:
            if self.closed:
                return
            yield chunk

    async def close(self) -> None:
        self.closed = True

    aclose = close


def _words(text: str) -> list[str]:
    words = text.split(" ")
    return [word if i == 0 else f" {word}" for i, word in enumerate(words)]


def _first_tool(tools: Optional[list[dict[str, Any]]]) -> Optional[dict[str, Any]]:
    return tools[0] if tools else None


class _ChatCompletions:
    def __init__(self, owner: "MockChatCompletionsClient") -> None:
        self._owner = owner

    async def create(self, **kwargs: Any) -> Any:
        self._owner.calls.append(kwargs)
        model = kwargs.get("model", "mock-model")
        completion_id = f"chatcmpl-mock-{uuid.uuid4().hex[:12]}"
        created = int(time.time())
        tool = _first_tool(kwargs.get("tools"))
        wants_tool = tool is not None and kwargs.get("tool_choice") != "none"
        # answer a tool result with text, otherwise call the first declared tool
        last_role = (kwargs.get("messages") or [{}])[-1].get("role")
        tool_call = None
        if wants_tool and last_role != "tool":
            tool_call = {
                "id": f"call_{uuid.uuid4().hex[:12]}",
                "type": "function",
                "function": {"name": tool.get("function", {}).get("name", "tool"), "arguments": "{}"},
            }
        usage = {"prompt_tokens": 12, "completion_tokens": 9, "total_tokens": 21}

        if not kwargs.get("stream"):
            message: dict[str, Any] = {"role": "assistant", "content": None if tool_call else MOCK_TEXT}
            if tool_call:
                message["tool_calls"] = [tool_call]
            return {
                "id": completion_id,
                "object": "chat.completion",
                "created": created,
                "model": model,
                "choices": [
                    {
                        "index": 0,
                        "message": message,
                        "finish_reason": "tool_calls" if tool_call else "stop",
                    }
                ],
                "usage": usage,
            }

        def chunk(delta: dict[str, Any], finish_reason: Optional[str] = None) -> dict[str, Any]:
            return {
                "id": completion_id,
                "object": "chat.completion.chunk",
                "created": created,
                "model": model,
                "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}],
            }

        chunks = [chunk({"role": "assistant", "content": ""})]
        if tool_call:
            chunks.append(chunk({"tool_calls": [{"index": 0, **tool_call}]}))
            chunks.append(chunk({}, "tool_calls"))
        else:
            chunks.extend(chunk({"content": word}) for word in _words(MOCK_TEXT))
            chunks.append(chunk({}, "stop"))
        if (kwargs.get("stream_options") or {}).get("include_usage"):
            chunks.append({**chunk({}), "choices": [], "usage": usage})
        return MockStream(chunks)


class MockChatCompletionsClient:
    """Mimics ``AsyncOpenAI`` for Chat Completions vendors."""

    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []
        self.chat = SimpleNamespace(completions=_ChatCompletions(self))


class _Messages:
    def __init__(self, owner: "MockAnthropicClient") -> None:
        self._owner = owner

    async def create(self, **kwargs: Any) -> Any:
        self._owner.calls.append(kwargs)
        model = kwargs.get("model", "mock-model")
        message_id = f"msg_mock_{uuid.uuid4().hex[:12]}"
        tool = _first_tool(kwargs.get("tools"))
        last = (kwargs.get("messages") or [{}])[-1]
        answered = isinstance(last.get("content"), list) and any(
            isinstance(block, dict) and block.get("type") == "tool_result"
            for block in last["content"]
        )
        tool_use = None
        if tool is not None and not answered:
            tool_use = {
                "type": "tool_use",
                "id": f"toolu_mock_{uuid.uuid4().hex[:12]}",
                "name": tool.get("name", "tool"),
                "input": {},
            }
        stop_reason = "tool_use" if tool_use else "end_turn"

        if not kwargs.get("stream"):
            return {
                "id": message_id,
                "type": "message",
                "role": "assistant",
                "model": model,
                "content": [tool_use] if tool_use else [{"type": "text", "text": MOCK_TEXT}],
                "stop_reason": stop_reason,
                "stop_sequence": None,
                "usage": {"input_tokens": 12, "output_tokens": 9},
            }

        events: list[dict[str, Any]] = [
            {
                "type": "message_start",
                "message": {
                    "id": message_id,
                    "type": "message",
                    "role": "assistant",
                    "model": model,
                    "content": [],
                    "stop_reason": None,
                    "usage": {"input_tokens": 12, "output_tokens": 1},
                },
            }
        ]
        if tool_use:
            events += [
                {"type": "content_block_start", "index": 0, "content_block": {**tool_use, "input": {}}},
                {
                    "type": "content_block_delta",
                    "index": 0,
                    "delta": {"type": "input_json_delta", "partial_json": json.dumps(tool_use["input"])},
                },
            ]
        else:
            events.append(
                {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}}
            )
            events += [
                {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": word}}
                for word in _words(MOCK_TEXT)
            ]
        events += [
            {"type": "content_block_stop", "index": 0},
            {
                "type": "message_delta",
                "delta": {"stop_reason": stop_reason, "stop_sequence": None},
                "usage": {"output_tokens": 9},
            },
            {"type": "message_stop"},
        ]
        return MockStream(events)


class MockAnthropicClient:
    """Mimics ``AsyncAnthropic``."""

    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []
        self.messages = _Messages(self)


class _GeminiModels:
    def __init__(self, owner: "MockGeminiClient") -> None:
        self._owner = owner

    def _candidate(self, config: Optional[dict[str, Any]]) -> dict[str, Any]:
        tools = (config or {}).get("tools") or []
        declarations = [d for tool in tools for d in tool.get("functionDeclarations") or []]
        if declarations:
            part = {"functionCall": {"name": declarations[0].get("name", "tool"), "args": {}}}
        else:
            part = {"text": MOCK_TEXT}
        return {"content": {"role": "model", "parts": [part]}, "finishReason": "STOP", "index": 0}

    async def generate_content(self, *, model: str, contents: Any, config: Any = None) -> Any:
        self._owner.calls.append({"model": model, "contents": contents, "config": config})
        return {
            "candidates": [self._candidate(config)],
            "usageMetadata": {"promptTokenCount": 12, "candidatesTokenCount": 9, "totalTokenCount": 21},
            "modelVersion": model,
            "responseId": f"mock-{uuid.uuid4().hex[:12]}",
        }

    async def generate_content_stream(self, *, model: str, contents: Any, config: Any = None) -> Any:
        self._owner.calls.append({"model": model, "contents": contents, "config": config})
        response_id = f"mock-{uuid.uuid4().hex[:12]}"
        final = self._candidate(config)
        chunks: list[dict[str, Any]] = []
        if "text" in final["content"]["parts"][0]:
            words = _words(MOCK_TEXT)
            chunks = [
                {
                    "candidates": [{"content": {"role": "model", "parts": [{"text": w}]}, "index": 0}],
                    "modelVersion": model,
                    "responseId": response_id,
                }
                for w in words[:-1]
            ]
            final["content"]["parts"] = [{"text": words[-1]}]
        chunks.append(
            {
                "candidates": [final],
                "usageMetadata": {"promptTokenCount": 12, "candidatesTokenCount": 9, "totalTokenCount": 21},
                "modelVersion": model,
                "responseId": response_id,
            }
        )
        return MockStream(chunks)


class MockGeminiClient:
    """Mimics ``google.genai.Client`` (async surface only)."""

    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []
        self.aio = SimpleNamespace(models=_GeminiModels(self))
