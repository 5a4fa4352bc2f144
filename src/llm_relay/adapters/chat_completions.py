"""
Chat Completions adapters (OpenAI and the OpenAI-compatible vendors).

OpenAI, vLLM, Ollama and x.ai share one wire format; the differences
(stream termination, usage reporting) live in a ``ChatCompletionsDialect``.
"""

from __future__ import annotations

import copy
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterator, Mapping, Optional

from llm_relay.ports import Collaborators
from llm_relay.providers import Provider
from llm_relay.tool_content import CHAT_COMPLETIONS_BLOCKS, transform_tool_result_content
from llm_relay.types import (
    ChunkProcessingResult,
    CommonMcpToolDefinition,
    CommonMessage,
    CommonToolCall,
    CommonToolResult,
    StreamAccumulatorState,
    UsageView,
)
from llm_relay.utils import as_payload, format_sse, get_path, parse_json, parse_json_object

from .base import SSE_HEADERS, BaseRequestAdapter

__all__ = [
    "Termination",
    "ChatCompletionsDialect",
    "DIALECTS",
    "ChatCompletionsRequestAdapter",
    "ChatCompletionsResponseAdapter",
    "ChatCompletionsStreamAdapter",
]


class Termination(Enum):
    """What marks a stream as complete."""

    USAGE_CHUNK = "usage_chunk"
    FINISH_REASON = "finish_reason"
    FINISH_OR_USAGE = "finish_or_usage"


@dataclass(frozen=True)
class ChatCompletionsDialect:
    provider: Provider
    termination: Termination
    include_usage_in_stream: bool = True
    tokenizer_family: str = "openai"


DIALECTS: Mapping[Provider, ChatCompletionsDialect] = {
    # usage arrives in a trailing chunk with empty choices when include_usage is set
    Provider.OPENAI: ChatCompletionsDialect(Provider.OPENAI, Termination.USAGE_CHUNK),
    Provider.XAI: ChatCompletionsDialect(Provider.XAI, Termination.USAGE_CHUNK),
    Provider.VLLM: ChatCompletionsDialect(Provider.VLLM, Termination.FINISH_OR_USAGE),
    # older Ollama builds ignore stream_options, so finish_reason is the only reliable signal
    Provider.OLLAMA: ChatCompletionsDialect(
        Provider.OLLAMA, Termination.FINISH_REASON, include_usage_in_stream=False
    ),
}


def _tool_call_name(tool_call: Mapping[str, Any]) -> Optional[str]:
    if tool_call.get("type") == "custom":
        return get_path(tool_call, "custom.name")
    return get_path(tool_call, "function.name")


def _tool_call_arguments(tool_call: Mapping[str, Any]) -> Any:
    if tool_call.get("type") == "custom":
        return get_path(tool_call, "custom.input")
    return get_path(tool_call, "function.arguments")


def _find_tool_name(messages: list[dict[str, Any]], tool_call_id: str) -> Optional[str]:
    for message in reversed(messages):
        if message.get("role") != "assistant":
            continue
        for tool_call in message.get("tool_calls") or []:
            if tool_call.get("id") == tool_call_id:
                return _tool_call_name(tool_call)
    return None


class ChatCompletionsRequestAdapter(BaseRequestAdapter):
    """Adapter over a Chat Completions request body."""

    def __init__(
        self,
        request: Mapping[str, Any],
        dialect: ChatCompletionsDialect,
        *,
        collaborators: Optional[Collaborators] = None,
    ) -> None:
        super().__init__(request, collaborators=collaborators)
        self.dialect = dialect
        self.provider = dialect.provider
        self.tokenizer_family = dialect.tokenizer_family

    def get_provider_messages(self) -> list[dict[str, Any]]:
        return self._request.get("messages") or []

    def get_messages(self) -> list[CommonMessage]:
        messages = self.get_provider_messages()
        common: list[CommonMessage] = []
        for message in messages:
            role = message.get("role")
            # "developer" is the o-series spelling of a system prompt
            if role == "developer":
                role = "system"
            entry = CommonMessage(role=role)
            if role == "tool":
                entry.tool_calls = [self._tool_result(messages, message)]
            common.append(entry)
        return common

    def get_tool_results(self) -> list[CommonToolResult]:
        messages = self.get_provider_messages()
        return [
            self._tool_result(messages, message)
            for message in messages
            if message.get("role") == "tool"
        ]

    def _tool_result(
        self, messages: list[dict[str, Any]], message: Mapping[str, Any]
    ) -> CommonToolResult:
        tool_call_id = message.get("tool_call_id", "")
        return CommonToolResult(
            id=tool_call_id,
            name=_find_tool_name(messages, tool_call_id) or "unknown",
            content=parse_json(message.get("content")),
            is_error=False,
        )

    def get_tools(self) -> list[CommonMcpToolDefinition]:
        tools: list[CommonMcpToolDefinition] = []
        for tool in self._request.get("tools") or []:
            if tool.get("type") != "function":
                continue
            function = tool.get("function") or {}
            tools.append(
                CommonMcpToolDefinition(
                    name=function.get("name", ""),
                    description=function.get("description"),
                    input_schema=function.get("parameters") or {},
                )
            )
        return tools

    def has_tools(self) -> bool:
        return len(self._request.get("tools") or []) > 0

    def _tool_result_texts(self) -> Iterator[tuple[str, str]]:
        updates = self.patch.tool_result_updates
        for message in self.get_provider_messages():
            if message.get("role") != "tool":
                continue
            tool_call_id = message.get("tool_call_id", "")
            content = updates.get(tool_call_id, message.get("content"))
            if isinstance(content, str):
                yield tool_call_id, content

    def to_provider_request(self) -> dict[str, Any]:
        request = self._copy_request()
        updates = self.patch.tool_result_updates
        observer = self.collaborators.observer
        transform = self._transform_images()
        model = self.get_model()
        supports_images = self._supports_images() if transform else True
        max_chars = self._max_image_base64_chars()

        messages: list[dict[str, Any]] = []
        for message in request.get("messages") or []:
            if message.get("role") == "tool":
                tool_call_id = message.get("tool_call_id", "")
                if tool_call_id in updates:
                    observer.tool_result_updated(tool_call_id)
                    message = {**message, "content": updates[tool_call_id]}
                elif transform:
                    converted = transform_tool_result_content(
                        message.get("content"),
                        tool_call_id=tool_call_id,
                        model=model,
                        supports_images=supports_images,
                        max_base64_chars=max_chars,
                        encoding=CHAT_COMPLETIONS_BLOCKS,
                        observer=observer,
                    )
                    if converted is not None:
                        message = {**message, "content": converted}
            messages.append(message)

        observer.request_built(self.provider.value, model, len(messages), len(updates))
        return {**request, "model": model, "messages": messages}


class ChatCompletionsResponseAdapter:
    """Adapter over a non-streaming ``chat.completion`` response."""

    def __init__(self, response: Any, dialect: ChatCompletionsDialect) -> None:
        self._response: dict[str, Any] = as_payload(response)
        self.dialect = dialect
        self.provider = dialect.provider

    def _message(self) -> Mapping[str, Any]:
        return get_path(self._response, "choices.0.message", {})

    def get_id(self) -> str:
        return self._response.get("id") or ""

    def get_model(self) -> str:
        return self._response.get("model") or ""

    def get_text(self) -> str:
        content = self._message().get("content")
        if isinstance(content, list):
            return "".join(
                part.get("text") or "" for part in content if isinstance(part, dict)
            )
        return content or ""

    def get_tool_calls(self) -> list[CommonToolCall]:
        calls: list[CommonToolCall] = []
        for tool_call in self._message().get("tool_calls") or []:
            calls.append(
                CommonToolCall(
                    id=tool_call.get("id") or "",
                    name=_tool_call_name(tool_call) or "unknown",
                    arguments=parse_json_object(_tool_call_arguments(tool_call)),
                )
            )
        return calls

    def has_tool_calls(self) -> bool:
        return len(self._message().get("tool_calls") or []) > 0

    def get_usage(self) -> UsageView:
        usage = self._response.get("usage") or {}
        return UsageView(
            input_tokens=usage.get("prompt_tokens") or 0,
            output_tokens=usage.get("completion_tokens") or 0,
        )

    def get_original_response(self) -> dict[str, Any]:
        return self._response

    def to_refusal_response(self, refusal_message: str, content_message: str) -> dict[str, Any]:
        response = copy.deepcopy(self._response)
        choices = response.get("choices") or [{"index": 0, "logprobs": None}]
        response["choices"] = [
            {
                **choices[0],
                "message": {"role": "assistant", "content": content_message, "refusal": None},
                "finish_reason": "stop",
            }
        ]
        return response


class ChatCompletionsStreamAdapter:
    """Accumulator over ``chat.completion.chunk`` events."""

    def __init__(self, dialect: ChatCompletionsDialect) -> None:
        self.dialect = dialect
        self.provider = dialect.provider
        self.state = StreamAccumulatorState()

    def is_final(self) -> bool:
        termination = self.dialect.termination
        has_usage = self.state.usage is not None
        has_stop = self.state.stop_reason is not None
        if termination is Termination.USAGE_CHUNK:
            return has_usage
        if termination is Termination.FINISH_REASON:
            return has_stop
        return has_usage or has_stop

    def process_chunk(self, chunk: Any) -> ChunkProcessingResult:
        payload: dict[str, Any] = as_payload(chunk)
        state = self.state
        if state.timing.first_chunk is None:
            state.timing.first_chunk = time.time()

        state.response_id = payload.get("id") or state.response_id
        state.model = payload.get("model") or state.model

        usage = payload.get("usage")
        if usage:
            state.usage = UsageView(
                input_tokens=usage.get("prompt_tokens") or 0,
                output_tokens=usage.get("completion_tokens") or 0,
            )

        choices = payload.get("choices") or []
        if not choices:
            return ChunkProcessingResult(is_final=self.is_final())

        choice = choices[0]
        delta = choice.get("delta") or {}
        sse_data: Optional[str] = None
        is_tool_call_chunk = False

        content = delta.get("content")
        if content:
            state.text += content
            sse_data = format_sse(payload)

        tool_call_deltas = delta.get("tool_calls")
        if tool_call_deltas:
            for position, tool_call_delta in enumerate(tool_call_deltas):
                index = tool_call_delta.get("index", position)
                function = tool_call_delta.get("function") or {}
                slot = state.slot_for(
                    index, id=tool_call_delta.get("id") or "", name=function.get("name") or ""
                )
                if tool_call_delta.get("id"):
                    slot.id = tool_call_delta["id"]
                if function.get("name"):
                    slot.name = function["name"]
                if function.get("arguments"):
                    slot.arguments += function["arguments"]
            state.raw_tool_call_events.append(payload)
            is_tool_call_chunk = True

        if choice.get("finish_reason"):
            state.stop_reason = choice["finish_reason"]

        return ChunkProcessingResult(
            sse_data=sse_data,
            is_tool_call_chunk=is_tool_call_chunk,
            is_final=self.is_final(),
        )

    def get_sse_headers(self) -> dict[str, str]:
        return dict(SSE_HEADERS)

    def _chunk(self, delta: dict[str, Any], finish_reason: Optional[str] = None) -> dict[str, Any]:
        return {
            "id": self.state.response_id or f"chatcmpl-{int(time.time() * 1000)}",
            "object": "chat.completion.chunk",
            "created": int(time.time()),
            "model": self.state.model,
            "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}],
        }

    def format_text_delta_sse(self, text: str) -> str:
        return format_sse(self._chunk({"content": text}))

    def format_complete_text_sse(self, text: str) -> list[str]:
        return [format_sse(self._chunk({"role": "assistant", "content": text}))]

    def format_end_sse(self) -> str:
        final = self._chunk({}, self.state.stop_reason or "stop")
        return format_sse(final) + format_sse("[DONE]")

    def get_raw_tool_call_events(self) -> list[str]:
        return [format_sse(event) for event in self.state.raw_tool_call_events]

    def to_provider_response(self) -> dict[str, Any]:
        state = self.state
        tool_calls = [
            {
                "id": tool_call.id,
                "type": "function",
                "function": {"name": tool_call.name, "arguments": tool_call.arguments},
            }
            for tool_call in state.tool_calls
        ]
        message: dict[str, Any] = {
            "role": "assistant",
            "content": state.text or None,
            "refusal": None,
        }
        if tool_calls:
            message["tool_calls"] = tool_calls

        usage = state.usage or UsageView()
        return {
            "id": state.response_id,
            "object": "chat.completion",
            "created": int(time.time()),
            "model": state.model,
            "choices": [
                {
                    "index": 0,
                    "message": message,
                    "logprobs": None,
                    "finish_reason": state.stop_reason or "stop",
                }
            ],
            "usage": {
                "prompt_tokens": usage.input_tokens,
                "completion_tokens": usage.output_tokens,
                "total_tokens": usage.input_tokens + usage.output_tokens,
            },
        }
