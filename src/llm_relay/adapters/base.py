"""Adapter contracts and the staged-mutation request base."""
from __future__ import annotations

import copy
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Iterator, Mapping, Optional, Protocol

from llm_relay.compression import compress_tool_results
from llm_relay.config import get_settings
from llm_relay.ports import Collaborators
from llm_relay.providers import Provider
from llm_relay.types import (
    ChunkProcessingResult,
    CommonMcpToolDefinition,
    CommonMessage,
    CommonToolCall,
    CommonToolResult,
    StreamAccumulatorState,
    ToonCompressionResult,
    UsageView,
)

__all__ = [
    "RequestAdapter",
    "ResponseAdapter",
    "StreamAdapter",
    "RequestPatch",
    "BaseRequestAdapter",
    "SSE_HEADERS",
]

SSE_HEADERS: Mapping[str, str] = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


class RequestAdapter(Protocol):
    """Read and stage changes to one vendor-native request."""

    provider: Provider

    def get_model(self) -> str: ...
    def is_streaming(self) -> bool: ...
    def get_messages(self) -> list[CommonMessage]: ...
    def get_tool_results(self) -> list[CommonToolResult]: ...
    def get_tools(self) -> list[CommonMcpToolDefinition]: ...
    def has_tools(self) -> bool: ...
    def get_provider_messages(self) -> list[dict[str, Any]]: ...
    def get_original_request(self) -> dict[str, Any]: ...
    def set_model(self, model: str) -> None: ...
    def update_tool_result(self, tool_call_id: str, new_content: str) -> None: ...
    def apply_tool_result_updates(self, updates: Mapping[str, str]) -> None: ...
    async def apply_toon_compression(self, model: str) -> ToonCompressionResult: ...
    def to_provider_request(self) -> dict[str, Any]: ...


class ResponseAdapter(Protocol):
    """Read access to the first choice of a non-streaming vendor response."""

    provider: Provider

    def get_id(self) -> str: ...
    def get_model(self) -> str: ...
    def get_text(self) -> str: ...
    def get_tool_calls(self) -> list[CommonToolCall]: ...
    def has_tool_calls(self) -> bool: ...
    def get_usage(self) -> UsageView: ...
    def get_original_response(self) -> dict[str, Any]: ...
    def to_refusal_response(self, refusal_message: str, content_message: str) -> dict[str, Any]: ...


class StreamAdapter(Protocol):
    """Accumulates one vendor stream and re-emits it in the same wire format."""

    provider: Provider
    state: StreamAccumulatorState

    def process_chunk(self, chunk: Any) -> ChunkProcessingResult: ...
    def is_final(self) -> bool: ...
    def get_sse_headers(self) -> dict[str, str]: ...
    def format_text_delta_sse(self, text: str) -> str: ...
    def format_complete_text_sse(self, text: str) -> list[str]: ...
    def format_end_sse(self) -> str: ...
    def get_raw_tool_call_events(self) -> list[str]: ...
    def to_provider_response(self) -> dict[str, Any]: ...


@dataclass
class RequestPatch:
    """Staged changes, applied on top of the untouched original request."""

    model: Optional[str] = None
    tool_result_updates: dict[str, str] = field(default_factory=dict)

    def is_empty(self) -> bool:
        return self.model is None and not self.tool_result_updates


class BaseRequestAdapter(ABC):
    """
    Shared staging logic for request adapters.

    The original request is never modified; ``set_model``,
    ``update_tool_result`` and ``apply_toon_compression`` only grow the
    patch, and ``to_provider_request`` materializes a fresh copy on every
    call.
    """

    provider: Provider
    tokenizer_family: str = "openai"

    def __init__(
        self,
        request: Mapping[str, Any],
        *,
        collaborators: Optional[Collaborators] = None,
    ) -> None:
        self._request: dict[str, Any] = dict(request)
        self.patch = RequestPatch()
        self.collaborators = collaborators or Collaborators()

    # --- read access ---------------------------------------------------
    def get_model(self) -> str:
        return self.patch.model or self._original_model()

    def _original_model(self) -> str:
        return str(self._request.get("model") or "")

    def is_streaming(self) -> bool:
        return self._request.get("stream") is True

    def has_tools(self) -> bool:
        return len(self.get_tools()) > 0

    def get_original_request(self) -> dict[str, Any]:
        return self._request

    @abstractmethod
    def get_tools(self) -> list[CommonMcpToolDefinition]: ...

    # --- staging ---------------------------------------------------------
    def set_model(self, model: str) -> None:
        self.patch.model = model

    def update_tool_result(self, tool_call_id: str, new_content: str) -> None:
        self.patch.tool_result_updates[tool_call_id] = new_content

    def apply_tool_result_updates(self, updates: Mapping[str, str]) -> None:
        self.patch.tool_result_updates.update(updates)

    async def apply_toon_compression(self, model: str) -> ToonCompressionResult:
        """
        Stage compressed replacements for every JSON tool result.

        Compression reads the effective content (original plus any staged
        update), so a later ``update_tool_result`` still wins.
        """
        replacements, result = await compress_tool_results(
            self._tool_result_texts(),
            model=model,
            tokenizer=self.collaborators.tokenizer_factory(self.tokenizer_family),
            price_table=self.collaborators.price_table,
            observer=self.collaborators.observer,
        )
        self.patch.tool_result_updates.update(replacements)
        return result

    @abstractmethod
    def _tool_result_texts(self) -> Iterator[tuple[str, str]]:
        """Yield ``(tool_call_id, effective string content)`` for string tool results."""

    # --- materialization helpers ----------------------------------------
    def _copy_request(self) -> dict[str, Any]:
        return copy.deepcopy(self._request)

    def _supports_images(self) -> bool:
        return self.collaborators.capabilities.supports_images(self.get_model())

    def _max_image_base64_chars(self) -> int:
        if self.collaborators.max_image_base64_chars is not None:
            return self.collaborators.max_image_base64_chars
        return get_settings().max_image_base64_chars

    def _transform_images(self) -> bool:
        if self.collaborators.transform_images is not None:
            return self.collaborators.transform_images
        return get_settings().transform_tool_result_images
