"""
LLM Relay - provider adapters and stream normalization for LLM proxies.
"""

import logging

from .adapters import (
    RequestAdapter,
    RequestPatch,
    ResponseAdapter,
    StreamAdapter,
)
from .clients import CreateClientOptions, RequestDuration
from .config import Settings, get_settings, reset_settings
from .errors import ConfigError, RelayError, UnsupportedProviderError, extract_error_message
from .ports import Collaborators, LoggingObserver, TransformObserver
from .providers import INTERACTION_TYPES, Provider, get_api_key
from .registry import REGISTRY, ProviderEntry, get_provider_entry
from .stream_utils import aggregate_stream, relay_stream
from .types import (
    ChunkProcessingResult,
    CommonMcpToolDefinition,
    CommonMessage,
    CommonToolCall,
    CommonToolResult,
    StreamAccumulatorState,
    ToonCompressionResult,
    UsageView,
)

logging.getLogger(__name__).addHandler(logging.NullHandler())

__version__ = "0.1.0"

__all__ = [
    "RequestAdapter",
    "RequestPatch",
    "ResponseAdapter",
    "StreamAdapter",
    "CreateClientOptions",
    "RequestDuration",
    "Settings",
    "get_settings",
    "reset_settings",
    "ConfigError",
    "RelayError",
    "UnsupportedProviderError",
    "extract_error_message",
    "Collaborators",
    "LoggingObserver",
    "TransformObserver",
    "INTERACTION_TYPES",
    "Provider",
    "get_api_key",
    "REGISTRY",
    "ProviderEntry",
    "get_provider_entry",
    "aggregate_stream",
    "relay_stream",
    "ChunkProcessingResult",
    "CommonMcpToolDefinition",
    "CommonMessage",
    "CommonToolCall",
    "CommonToolResult",
    "StreamAccumulatorState",
    "ToonCompressionResult",
    "UsageView",
]
