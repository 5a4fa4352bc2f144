"""
Gemini ``generateContent`` adapters.

Gemini keeps the model name in the URL rather than the body, so the
request adapter accepts it (and the streaming flag) as keywords and
carries it in the materialized request under ``model``. Payloads use the
REST camelCase spelling throughout.
"""

from __future__ import annotations

import copy
import json
import time
from typing import Any, Iterator, Mapping, Optional

from llm_relay.ports import Collaborators
from llm_relay.providers import Provider
from llm_relay.tool_content import GEMINI_BLOCKS, transform_tool_result_content
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
    "GeminiRequestAdapter",
    "GeminiResponseAdapter",
    "GeminiStreamAdapter",
]

_ROLES = {"model": "assistant", "user": "user", "function": "tool"}

# keys tools conventionally wrap their output in inside functionResponse.response
_ENVELOPE_KEYS = ("result", "output", "content")


def _parts(content: Mapping[str, Any]) -> list[dict[str, Any]]:
    return [part for part in content.get("parts") or [] if isinstance(part, dict)]


def _call_id(function_call: Mapping[str, Any], position: int) -> str:
    return function_call.get("id") or f"{function_call.get('name') or 'unknown'}_{position}"


def _response_text(response: Any) -> Optional[str]:
    """The string a tool produced, as carried in ``functionResponse.response``."""
    if isinstance(response, dict):
        for key in _ENVELOPE_KEYS:
            if isinstance(response.get(key), str):
                return response[key]
        return json.dumps(response)
    if isinstance(response, str):
        return response
    return None


def _usage(metadata: Optional[Mapping[str, Any]]) -> UsageView:
    metadata = metadata or {}
    return UsageView(
        input_tokens=metadata.get("promptTokenCount") or 0,
        output_tokens=metadata.get("candidatesTokenCount") or 0,
    )


class GeminiRequestAdapter(BaseRequestAdapter):
    """Adapter over a ``generateContent`` / ``streamGenerateContent`` body."""

    provider = Provider.GEMINI
    tokenizer_family = "gemini"

    def __init__(
        self,
        request: Mapping[str, Any],
        *,
        model: Optional[str] = None,
        streaming: Optional[bool] = None,
        collaborators: Optional[Collaborators] = None,
    ) -> None:
        super().__init__(request, collaborators=collaborators)
        self._model = model
        self._streaming = streaming

    def _original_model(self) -> str:
        model = self._model or str(self._request.get("model") or "")
        return model.removeprefix("models/")

    def is_streaming(self) -> bool:
        if self._streaming is not None:
            return self._streaming
        return super().is_streaming()

    def get_provider_messages(self) -> list[dict[str, Any]]:
        return self._request.get("contents") or []

    def _resolve_ids(self) -> dict[tuple[int, int], str]:
        """
        Map ``(content index, part index)`` of every call and response to a tool call id.

        Responses without an id are matched to the latest earlier call of the
        same name that has not been answered yet.
        """
        ids: dict[tuple[int, int], str] = {}
        pending: list[tuple[str, str]] = []
        position = 0
        for c, content in enumerate(self.get_provider_messages()):
            for p, part in enumerate(_parts(content)):
                if "functionCall" in part:
                    call = part["functionCall"] or {}
                    call_id = _call_id(call, position)
                    position += 1
                    ids[(c, p)] = call_id
                    pending.append((call.get("name", ""), call_id))
                elif "functionResponse" in part:
                    response = part["functionResponse"] or {}
                    name = response.get("name", "")
                    call_id = response.get("id")
                    if call_id:
                        pending = [item for item in pending if item[1] != call_id]
                    else:
                        for i in range(len(pending) - 1, -1, -1):
                            if pending[i][0] == name:
                                call_id = pending.pop(i)[1]
                                break
                        else:
                            call_id = f"{name}_{position}"
                    ids[(c, p)] = call_id
        return ids

    def _iter_responses(self) -> Iterator[tuple[str, dict[str, Any]]]:
        ids = self._resolve_ids()
        for c, content in enumerate(self.get_provider_messages()):
            for p, part in enumerate(_parts(content)):
                if "functionResponse" in part:
                    yield ids[(c, p)], part["functionResponse"] or {}

    def _tool_result(self, call_id: str, response: Mapping[str, Any]) -> CommonToolResult:
        payload = response.get("response")
        if isinstance(payload, dict) and len(payload) == 1:
            key = next(iter(payload))
            if key in _ENVELOPE_KEYS:
                payload = payload[key]
        return CommonToolResult(
            id=call_id,
            name=response.get("name") or "unknown",
            content=parse_json(payload),
            is_error=isinstance(response.get("response"), dict) and "error" in response["response"],
        )

    def get_messages(self) -> list[CommonMessage]:
        common: list[CommonMessage] = []
        if get_path(self._request, "systemInstruction.parts"):
            common.append(CommonMessage(role="system"))

        ids = self._resolve_ids()
        for c, content in enumerate(self.get_provider_messages()):
            parts = _parts(content)
            role = _ROLES.get(content.get("role", "user"), "user")
            responses = [
                (p, part["functionResponse"] or {})
                for p, part in enumerate(parts)
                if "functionResponse" in part
            ]
            if not responses:
                common.append(CommonMessage(role=role))
                continue
            if len(responses) < len(parts):
                common.append(CommonMessage(role="user"))
            for p, response in responses:
                common.append(
                    CommonMessage(role="tool", tool_calls=[self._tool_result(ids[(c, p)], response)])
                )
        return common

    def get_tool_results(self) -> list[CommonToolResult]:
        return [self._tool_result(call_id, response) for call_id, response in self._iter_responses()]

    def get_tools(self) -> list[CommonMcpToolDefinition]:
        tools: list[CommonMcpToolDefinition] = []
        for tool in self._request.get("tools") or []:
            for declaration in tool.get("functionDeclarations") or []:
                tools.append(
                    CommonMcpToolDefinition(
                        name=declaration.get("name", ""),
                        description=declaration.get("description"),
                        input_schema=declaration.get("parameters")
                        or declaration.get("parametersJsonSchema")
                        or {},
                    )
                )
        return tools

    def _tool_result_texts(self) -> Iterator[tuple[str, str]]:
        updates = self.patch.tool_result_updates
        for call_id, response in self._iter_responses():
            if call_id in updates:
                yield call_id, updates[call_id]
                continue
            text = _response_text(response.get("response"))
            if text is not None:
                yield call_id, text

    def _rewrite_content(
        self, c: int, content: dict[str, Any], ids: Mapping[tuple[int, int], str]
    ) -> dict[str, Any]:
        updates = self.patch.tool_result_updates
        observer = self.collaborators.observer
        parts: list[dict[str, Any]] = []
        for p, part in enumerate(_parts(content)):
            if "functionResponse" not in part:
                parts.append(part)
                continue
            call_id = ids[(c, p)]
            response = part["functionResponse"] or {}
            if call_id in updates:
                observer.tool_result_updated(call_id)
                replaced = {**response, "response": {"result": updates[call_id]}}
                parts.append({**part, "functionResponse": replaced})
                continue

            payload = response.get("response")
            converted = None
            if self._transform_images() and isinstance(payload, dict):
                converted = transform_tool_result_content(
                    payload.get("content"),
                    tool_call_id=call_id,
                    model=self.get_model(),
                    supports_images=self._supports_images(),
                    max_base64_chars=self._max_image_base64_chars(),
                    encoding=GEMINI_BLOCKS,
                    observer=observer,
                )
            if converted is None:
                parts.append(part)
                continue

            # functionResponse only holds JSON; images travel as sibling parts
            texts = [block for block in converted if "text" in block]
            images = [block for block in converted if "inlineData" in block]
            rewritten = {**response, "response": {**payload, "content": texts}}
            parts.append({**part, "functionResponse": rewritten})
            parts.extend(images)
        return {**content, "parts": parts}

    def to_provider_request(self) -> dict[str, Any]:
        request = self._copy_request()
        ids = self._resolve_ids()
        contents = [
            self._rewrite_content(c, content, ids)
            for c, content in enumerate(request.get("contents") or [])
        ]
        model = self.get_model()
        self.collaborators.observer.request_built(
            self.provider.value, model, len(contents), len(self.patch.tool_result_updates)
        )
        if "contents" in request:
            request["contents"] = contents
        # the model belongs to the URL; the body only names one after set_model
        if self.patch.model is not None:
            request["model"] = model
        return request


class GeminiResponseAdapter:
    """Adapter over a ``GenerateContentResponse``; only the first candidate is read."""

    provider = Provider.GEMINI

    def __init__(self, response: Any) -> None:
        self._response: dict[str, Any] = as_payload(response, by_alias=True)

    def _parts(self) -> list[dict[str, Any]]:
        return _parts(get_path(self._response, "candidates.0.content", {}))

    def get_id(self) -> str:
        return self._response.get("responseId") or ""

    def get_model(self) -> str:
        return self._response.get("modelVersion") or ""

    def get_text(self) -> str:
        return "".join(
            part["text"]
            for part in self._parts()
            if isinstance(part.get("text"), str) and not part.get("thought")
        )

    def get_tool_calls(self) -> list[CommonToolCall]:
        calls: list[CommonToolCall] = []
        for part in self._parts():
            if "functionCall" not in part:
                continue
            call = part["functionCall"] or {}
            calls.append(
                CommonToolCall(
                    id=_call_id(call, len(calls)),
                    name=call.get("name") or "unknown",
                    arguments=parse_json_object(call.get("args")),
                )
            )
        return calls

    def has_tool_calls(self) -> bool:
        return any("functionCall" in part for part in self._parts())

    def get_usage(self) -> UsageView:
        return _usage(self._response.get("usageMetadata"))

    def get_original_response(self) -> dict[str, Any]:
        return self._response

    def to_refusal_response(self, refusal_message: str, content_message: str) -> dict[str, Any]:
        response = copy.deepcopy(self._response)
        response["candidates"] = [
            {
                "content": {"role": "model", "parts": [{"text": content_message}]},
                "finishReason": "STOP",
                "index": 0,
            }
        ]
        return response


class GeminiStreamAdapter:
    """
    Accumulator over ``streamGenerateContent`` chunks.

    Gemini never splits a function call across chunks, so each
    ``functionCall`` part opens and fills one slot at once.
    """

    provider = Provider.GEMINI

    def __init__(self) -> None:
        self.state = StreamAccumulatorState()

    def is_final(self) -> bool:
        return self.state.stop_reason is not None

    def process_chunk(self, chunk: Any) -> ChunkProcessingResult:
        payload: dict[str, Any] = as_payload(chunk, by_alias=True)
        state = self.state
        if state.timing.first_chunk is None:
            state.timing.first_chunk = time.time()

        state.response_id = payload.get("responseId") or state.response_id
        state.model = payload.get("modelVersion") or state.model
        if payload.get("usageMetadata"):
            # usage is cumulative, the latest chunk wins
            state.usage = _usage(payload["usageMetadata"])

        candidate = get_path(payload, "candidates.0", {})
        has_text = False
        is_tool_call_chunk = False
        for part in _parts(candidate.get("content") or {}):
            if "functionCall" in part:
                call = part["functionCall"] or {}
                position = len(state.tool_calls)
                slot = state.slot_for(position, id=_call_id(call, position), name=call.get("name") or "")
                slot.arguments = json.dumps(call.get("args") or {})
                is_tool_call_chunk = True
            elif isinstance(part.get("text"), str) and not part.get("thought"):
                state.text += part["text"]
                has_text = True

        if candidate.get("finishReason"):
            state.stop_reason = candidate["finishReason"]

        if is_tool_call_chunk:
            state.raw_tool_call_events.append(payload)

        return ChunkProcessingResult(
            sse_data=format_sse(payload) if has_text and not is_tool_call_chunk else None,
            is_tool_call_chunk=is_tool_call_chunk,
            is_final=self.is_final(),
        )

    def get_sse_headers(self) -> dict[str, str]:
        return dict(SSE_HEADERS)

    def _chunk(self, parts: list[dict[str, Any]], finish_reason: Optional[str] = None) -> dict[str, Any]:
        candidate: dict[str, Any] = {"content": {"role": "model", "parts": parts}, "index": 0}
        if finish_reason:
            candidate["finishReason"] = finish_reason
        chunk: dict[str, Any] = {"candidates": [candidate], "modelVersion": self.state.model}
        if self.state.response_id:
            chunk["responseId"] = self.state.response_id
        return chunk

    def format_text_delta_sse(self, text: str) -> str:
        return format_sse(self._chunk([{"text": text}]))

    def format_complete_text_sse(self, text: str) -> list[str]:
        return [format_sse(self._chunk([{"text": text}]))]

    def format_end_sse(self) -> str:
        chunk = self._chunk([{"text": ""}], self.state.stop_reason or "STOP")
        usage = self.state.usage or UsageView()
        chunk["usageMetadata"] = {
            "promptTokenCount": usage.input_tokens,
            "candidatesTokenCount": usage.output_tokens,
            "totalTokenCount": usage.input_tokens + usage.output_tokens,
        }
        return format_sse(chunk)

    def get_raw_tool_call_events(self) -> list[str]:
        return [format_sse(event) for event in self.state.raw_tool_call_events]

    def to_provider_response(self) -> dict[str, Any]:
        state = self.state
        parts: list[dict[str, Any]] = []
        if state.text:
            parts.append({"text": state.text})
        for tool_call in state.tool_calls:
            parts.append(
                {
                    "functionCall": {
                        "id": tool_call.id,
                        "name": tool_call.name,
                        "args": parse_json_object(tool_call.arguments),
                    }
                }
            )
        usage = state.usage or UsageView()
        return {
            "candidates": [
                {
                    "content": {"role": "model", "parts": parts},
                    "finishReason": state.stop_reason or "STOP",
                    "index": 0,
                }
            ],
            "usageMetadata": {
                "promptTokenCount": usage.input_tokens,
                "candidatesTokenCount": usage.output_tokens,
                "totalTokenCount": usage.input_tokens + usage.output_tokens,
            },
            "modelVersion": state.model,
            "responseId": state.response_id,
        }
