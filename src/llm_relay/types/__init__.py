from .common import (
    CommonMcpToolDefinition,
    CommonMessage,
    CommonToolCall,
    CommonToolResult,
    Role,
    ToonCompressionResult,
    UsageView,
)
from .stream import (
    ChunkProcessingResult,
    StreamAccumulatorState,
    StreamTiming,
    StreamToolCall,
)

__all__ = [
    "Role",
    "CommonMessage",
    "CommonToolCall",
    "CommonToolResult",
    "CommonMcpToolDefinition",
    "UsageView",
    "ToonCompressionResult",
    "ChunkProcessingResult",
    "StreamAccumulatorState",
    "StreamTiming",
    "StreamToolCall",
]
