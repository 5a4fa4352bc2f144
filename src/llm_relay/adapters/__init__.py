"""Per-vendor request, response and stream adapters."""

from .anthropic import AnthropicRequestAdapter, AnthropicResponseAdapter, AnthropicStreamAdapter
from .base import (
    SSE_HEADERS,
    BaseRequestAdapter,
    RequestAdapter,
    RequestPatch,
    ResponseAdapter,
    StreamAdapter,
)
from .chat_completions import (
    DIALECTS,
    ChatCompletionsDialect,
    ChatCompletionsRequestAdapter,
    ChatCompletionsResponseAdapter,
    ChatCompletionsStreamAdapter,
    Termination,
)
from .gemini import GeminiRequestAdapter, GeminiResponseAdapter, GeminiStreamAdapter

__all__ = [
    "SSE_HEADERS",
    "BaseRequestAdapter",
    "RequestAdapter",
    "RequestPatch",
    "ResponseAdapter",
    "StreamAdapter",
    "DIALECTS",
    "ChatCompletionsDialect",
    "ChatCompletionsRequestAdapter",
    "ChatCompletionsResponseAdapter",
    "ChatCompletionsStreamAdapter",
    "Termination",
    "AnthropicRequestAdapter",
    "AnthropicResponseAdapter",
    "AnthropicStreamAdapter",
    "GeminiRequestAdapter",
    "GeminiResponseAdapter",
    "GeminiStreamAdapter",
]
