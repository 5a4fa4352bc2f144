"""
Provider-neutral dataclasses shared by every adapter.

They are intentionally minimal: everything provider-specific lives in adapters.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Optional

__all__ = [
    "Role",
    "CommonToolCall",
    "CommonToolResult",
    "CommonMessage",
    "CommonMcpToolDefinition",
    "UsageView",
    "ToonCompressionResult",
]

Role = Literal["system", "user", "assistant", "tool"]


@dataclass(slots=True)
class CommonToolCall:
    """A model-agnostic request emitted by the LLM to call a tool."""
    id: str                     # vendor-assigned, unique within one response
    name: str
    arguments: dict[str, Any]


@dataclass(slots=True)
class CommonToolResult:
    """Outcome of a tool execution, as found in a follow-up request."""
    id: str                     # must match the originating call id
    name: str
    content: Any
    is_error: bool = False


@dataclass(slots=True)
class CommonMessage:
    """One conversation turn. Tool-role messages carry exactly one result."""
    role: Role
    tool_calls: Optional[list[CommonToolResult]] = None


@dataclass(slots=True)
class CommonMcpToolDefinition:
    name: str
    input_schema: dict[str, Any] = field(default_factory=dict)
    description: Optional[str] = None


@dataclass(slots=True, frozen=True)
class UsageView:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass(slots=True, frozen=True)
class ToonCompressionResult:
    """Token accounting for one compression pass (never persisted)."""
    tokens_before: Optional[int]
    tokens_after: Optional[int]
    cost_savings: Optional[float]
