"""Anthropic Messages API adapters."""

from __future__ import annotations

import copy
import time
from typing import Any, Iterator, Mapping, Optional

from llm_relay.ports import Collaborators
from llm_relay.providers import Provider
from llm_relay.tool_content import ANTHROPIC_BLOCKS, transform_tool_result_content
from llm_relay.types import (
    ChunkProcessingResult,
    CommonMcpToolDefinition,
    CommonMessage,
    CommonToolCall,
    CommonToolResult,
    StreamAccumulatorState,
    UsageView,
)
from llm_relay.utils import as_payload, format_sse, parse_json, parse_json_object

from .base import SSE_HEADERS, BaseRequestAdapter

__all__ = [
    "AnthropicRequestAdapter",
    "AnthropicResponseAdapter",
    "AnthropicStreamAdapter",
]


def _blocks(message: Mapping[str, Any]) -> list[dict[str, Any]]:
    content = message.get("content")
    if isinstance(content, list):
        return [block for block in content if isinstance(block, dict)]
    return []


def _find_tool_name(messages: list[dict[str, Any]], tool_use_id: str) -> Optional[str]:
    for message in reversed(messages):
        if message.get("role") != "assistant":
            continue
        for block in _blocks(message):
            if block.get("type") == "tool_use" and block.get("id") == tool_use_id:
                return block.get("name")
    return None


def _result_content(content: Any) -> Any:
    # a single text block is unwrapped so policy code sees the tool's own output
    if (
        isinstance(content, list)
        and len(content) == 1
        and isinstance(content[0], dict)
        and content[0].get("type") == "text"
    ):
        return parse_json(content[0].get("text"))
    return parse_json(content)


class AnthropicRequestAdapter(BaseRequestAdapter):
    """Adapter over a ``/v1/messages`` request body."""

    provider = Provider.ANTHROPIC
    tokenizer_family = "anthropic"

    def __init__(
        self,
        request: Mapping[str, Any],
        *,
        collaborators: Optional[Collaborators] = None,
    ) -> None:
        super().__init__(request, collaborators=collaborators)

    def get_provider_messages(self) -> list[dict[str, Any]]:
        return self._request.get("messages") or []

    def _tool_result(
        self, messages: list[dict[str, Any]], block: Mapping[str, Any]
    ) -> CommonToolResult:
        tool_use_id = block.get("tool_use_id", "")
        return CommonToolResult(
            id=tool_use_id,
            name=_find_tool_name(messages, tool_use_id) or "unknown",
            content=_result_content(block.get("content")),
            is_error=bool(block.get("is_error", False)),
        )

    def get_messages(self) -> list[CommonMessage]:
        messages = self.get_provider_messages()
        common: list[CommonMessage] = []
        if self._request.get("system"):
            common.append(CommonMessage(role="system"))

        for message in messages:
            role = message.get("role")
            results = [b for b in _blocks(message) if b.get("type") == "tool_result"]
            if not results:
                common.append(CommonMessage(role=role))
                continue
            if len(results) < len(_blocks(message)):
                common.append(CommonMessage(role=role))
            for block in results:
                common.append(
                    CommonMessage(role="tool", tool_calls=[self._tool_result(messages, block)])
                )
        return common

    def get_tool_results(self) -> list[CommonToolResult]:
        messages = self.get_provider_messages()
        return [
            self._tool_result(messages, block)
            for message in messages
            for block in _blocks(message)
            if block.get("type") == "tool_result"
        ]

    def get_tools(self) -> list[CommonMcpToolDefinition]:
        tools: list[CommonMcpToolDefinition] = []
        for tool in self._request.get("tools") or []:
            # server tools (web_search, bash, ...) carry a type and no input_schema
            if "input_schema" not in tool:
                continue
            tools.append(
                CommonMcpToolDefinition(
                    name=tool.get("name", ""),
                    description=tool.get("description"),
                    input_schema=tool.get("input_schema") or {},
                )
            )
        return tools

    def _tool_result_texts(self) -> Iterator[tuple[str, str]]:
        updates = self.patch.tool_result_updates
        for message in self.get_provider_messages():
            for block in _blocks(message):
                if block.get("type") != "tool_result":
                    continue
                tool_use_id = block.get("tool_use_id", "")
                content = updates.get(tool_use_id, block.get("content"))
                if isinstance(content, list) and len(content) == 1:
                    # a lone text block is the usual MCP shape
                    only = content[0]
                    if isinstance(only, dict) and only.get("type") == "text":
                        content = only.get("text")
                if isinstance(content, str):
                    yield tool_use_id, content

    def _rewrite_tool_result(self, block: dict[str, Any]) -> dict[str, Any]:
        tool_use_id = block.get("tool_use_id", "")
        updates = self.patch.tool_result_updates
        observer = self.collaborators.observer
        if tool_use_id in updates:
            observer.tool_result_updated(tool_use_id)
            return {**block, "content": updates[tool_use_id]}
        if not self._transform_images():
            return block
        converted = transform_tool_result_content(
            block.get("content"),
            tool_call_id=tool_use_id,
            model=self.get_model(),
            supports_images=self._supports_images(),
            max_base64_chars=self._max_image_base64_chars(),
            encoding=ANTHROPIC_BLOCKS,
            observer=observer,
        )
        if converted is None:
            return block
        return {**block, "content": converted}

    def to_provider_request(self) -> dict[str, Any]:
        request = self._copy_request()
        messages: list[dict[str, Any]] = []
        for message in request.get("messages") or []:
            content = message.get("content")
            if isinstance(content, list):
                message = {
                    **message,
                    "content": [
                        self._rewrite_tool_result(block)
                        if isinstance(block, dict) and block.get("type") == "tool_result"
                        else block
                        for block in content
                    ],
                }
            messages.append(message)

        model = self.get_model()
        self.collaborators.observer.request_built(
            self.provider.value, model, len(messages), len(self.patch.tool_result_updates)
        )
        return {**request, "model": model, "messages": messages}


class AnthropicResponseAdapter:
    """Adapter over a non-streaming ``message`` response."""

    provider = Provider.ANTHROPIC

    def __init__(self, response: Any) -> None:
        self._response: dict[str, Any] = as_payload(response)

    def _content(self) -> list[dict[str, Any]]:
        return _blocks(self._response)

    def get_id(self) -> str:
        return self._response.get("id") or ""

    def get_model(self) -> str:
        return self._response.get("model") or ""

    def get_text(self) -> str:
        return "".join(
            block.get("text") or "" for block in self._content() if block.get("type") == "text"
        )

    def get_tool_calls(self) -> list[CommonToolCall]:
        return [
            CommonToolCall(
                id=block.get("id") or "",
                name=block.get("name") or "unknown",
                arguments=parse_json_object(block.get("input")),
            )
            for block in self._content()
            if block.get("type") == "tool_use"
        ]

    def has_tool_calls(self) -> bool:
        return any(block.get("type") == "tool_use" for block in self._content())

    def get_usage(self) -> UsageView:
        usage = self._response.get("usage") or {}
        return UsageView(
            input_tokens=usage.get("input_tokens") or 0,
            output_tokens=usage.get("output_tokens") or 0,
        )

    def get_original_response(self) -> dict[str, Any]:
        return self._response

    def to_refusal_response(self, refusal_message: str, content_message: str) -> dict[str, Any]:
        response = copy.deepcopy(self._response)
        response.update(
            {
                "role": "assistant",
                "content": [{"type": "text", "text": content_message}],
                "stop_reason": "end_turn",
                "stop_sequence": None,
            }
        )
        return response


class AnthropicStreamAdapter:
    """
    Accumulator over Messages API stream events.

    ``tool_use`` blocks are withheld and buffered for replay. ``message_delta``
    and ``message_stop`` are withheld as well; ``format_end_sse`` re-emits
    them once the caller has decided what to send.
    """

    provider = Provider.ANTHROPIC

    def __init__(self) -> None:
        self.state = StreamAccumulatorState()
        self._tool_blocks: set[int] = set()
        self._block_count = 0
        self._text_index: Optional[int] = None
        self._opened_index: Optional[int] = None
        self._stopped = False

    def is_final(self) -> bool:
        return self._stopped

    def _merge_usage(self, usage: Optional[Mapping[str, Any]]) -> None:
        if not usage:
            return
        current = self.state.usage or UsageView()
        input_tokens = usage.get("input_tokens")
        output_tokens = usage.get("output_tokens")
        self.state.usage = UsageView(
            input_tokens=current.input_tokens if input_tokens is None else input_tokens,
            output_tokens=current.output_tokens if output_tokens is None else output_tokens,
        )

    def process_chunk(self, chunk: Any) -> ChunkProcessingResult:
        event: dict[str, Any] = as_payload(chunk)
        state = self.state
        if state.timing.first_chunk is None:
            state.timing.first_chunk = time.time()

        kind = event.get("type")
        passthrough = True
        is_tool_call_chunk = False

        if kind == "message_start":
            message = event.get("message") or {}
            state.response_id = message.get("id") or state.response_id
            state.model = message.get("model") or state.model
            self._merge_usage(message.get("usage"))

        elif kind == "content_block_start":
            index = event.get("index", self._block_count)
            block = event.get("content_block") or {}
            self._block_count = max(self._block_count, index + 1)
            if block.get("type") == "tool_use":
                self._tool_blocks.add(index)
                state.slot_for(index, id=block.get("id") or "", name=block.get("name") or "")
                is_tool_call_chunk = True
            elif block.get("type") == "text":
                self._text_index = index
                if block.get("text"):
                    state.text += block["text"]

        elif kind == "content_block_delta":
            index = event.get("index", 0)
            delta = event.get("delta") or {}
            if delta.get("type") == "input_json_delta" or index in self._tool_blocks:
                slot = state.slot_for(index)
                slot.arguments += delta.get("partial_json") or ""
                is_tool_call_chunk = True
            elif delta.get("type") == "text_delta":
                state.text += delta.get("text") or ""

        elif kind == "content_block_stop":
            if event.get("index") == self._text_index:
                self._text_index = None
            is_tool_call_chunk = event.get("index") in self._tool_blocks

        elif kind == "message_delta":
            delta = event.get("delta") or {}
            if delta.get("stop_reason"):
                state.stop_reason = delta["stop_reason"]
            self._merge_usage(event.get("usage"))
            passthrough = False

        elif kind == "message_stop":
            self._stopped = True
            passthrough = False

        if is_tool_call_chunk:
            state.raw_tool_call_events.append(event)
            passthrough = False

        return ChunkProcessingResult(
            sse_data=format_sse(event, event=kind) if passthrough and kind else None,
            is_tool_call_chunk=is_tool_call_chunk,
            is_final=self.is_final(),
        )

    def get_sse_headers(self) -> dict[str, str]:
        return dict(SSE_HEADERS)

    def _next_block_index(self) -> int:
        index = self._block_count
        self._block_count += 1
        return index

    def _close_opened_block(self) -> str:
        """Stop the text block this adapter opened itself, if one is still open."""
        if self._opened_index is None:
            return ""
        event = {"type": "content_block_stop", "index": self._opened_index}
        if self._text_index == self._opened_index:
            self._text_index = None
        self._opened_index = None
        return format_sse(event, event="content_block_stop")

    def format_text_delta_sse(self, text: str) -> str:
        opening = ""
        if self._text_index is None:
            # clients only accept deltas for blocks they have seen start
            index = self._next_block_index()
            start = {
                "type": "content_block_start",
                "index": index,
                "content_block": {"type": "text", "text": ""},
            }
            opening = format_sse(start, event="content_block_start")
            self._text_index = self._opened_index = index
        event = {
            "type": "content_block_delta",
            "index": self._text_index,
            "delta": {"type": "text_delta", "text": text},
        }
        return opening + format_sse(event, event="content_block_delta")

    def format_complete_text_sse(self, text: str) -> list[str]:
        closing = self._close_opened_block()
        # a fresh block so it never interleaves with one already streamed
        index = self._next_block_index()
        events = [
            {
                "type": "content_block_start",
                "index": index,
                "content_block": {"type": "text", "text": ""},
            },
            {
                "type": "content_block_delta",
                "index": index,
                "delta": {"type": "text_delta", "text": text},
            },
            {"type": "content_block_stop", "index": index},
        ]
        formatted = [format_sse(event, event=event["type"]) for event in events]
        return [closing, *formatted] if closing else formatted

    def format_end_sse(self) -> str:
        usage = self.state.usage or UsageView()
        message_delta = {
            "type": "message_delta",
            "delta": {"stop_reason": self.state.stop_reason or "end_turn", "stop_sequence": None},
            "usage": {"output_tokens": usage.output_tokens},
        }
        return (
            self._close_opened_block()
            + format_sse(message_delta, event="message_delta")
            + format_sse({"type": "message_stop"}, event="message_stop")
        )

    def get_raw_tool_call_events(self) -> list[str]:
        return [
            format_sse(event, event=event.get("type")) for event in self.state.raw_tool_call_events
        ]

    def to_provider_response(self) -> dict[str, Any]:
        state = self.state
        content: list[dict[str, Any]] = []
        if state.text:
            content.append({"type": "text", "text": state.text})
        for tool_call in state.tool_calls:
            content.append(
                {
                    "type": "tool_use",
                    "id": tool_call.id,
                    "name": tool_call.name,
                    "input": parse_json_object(tool_call.arguments),
                }
            )
        usage = state.usage or UsageView()
        return {
            "id": state.response_id,
            "type": "message",
            "role": "assistant",
            "model": state.model,
            "content": content,
            "stop_reason": state.stop_reason or "end_turn",
            "stop_sequence": None,
            "usage": {
                "input_tokens": usage.input_tokens,
                "output_tokens": usage.output_tokens,
            },
        }
