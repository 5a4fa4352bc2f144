"""Mutable per-stream accumulator state."""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Optional

from .common import UsageView

__all__ = [
    "StreamTiming",
    "StreamToolCall",
    "StreamAccumulatorState",
    "ChunkProcessingResult",
]


@dataclass(slots=True)
class StreamTiming:
    start: float = field(default_factory=time.time)
    first_chunk: Optional[float] = None

    def time_to_first_chunk(self) -> Optional[float]:
        if self.first_chunk is None:
            return None
        return self.first_chunk - self.start


@dataclass(slots=True)
class StreamToolCall:
    """A tool call being reassembled; ``arguments`` stays a raw string until the end."""
    id: str = ""
    name: str = ""
    arguments: str = ""


@dataclass(slots=True)
class StreamAccumulatorState:
    """
    Everything observed on one streaming call.

    Owned by exactly one in-flight stream. ``tool_calls`` is append-only and
    ordered by first sighting; ``tool_call_slots`` maps the vendor's
    positional index to a position in ``tool_calls``.
    """

    response_id: str = ""
    model: str = ""
    text: str = ""
    tool_calls: list[StreamToolCall] = field(default_factory=list)
    tool_call_slots: dict[int, int] = field(default_factory=dict)
    raw_tool_call_events: list[Any] = field(default_factory=list)
    usage: Optional[UsageView] = None
    stop_reason: Optional[str] = None
    timing: StreamTiming = field(default_factory=StreamTiming)

    def slot_for(self, index: int, *, id: str = "", name: str = "") -> StreamToolCall:
        """Return the tool call at vendor *index*, opening a slot on first sight."""
        position = self.tool_call_slots.get(index)
        if position is None:
            position = len(self.tool_calls)
            self.tool_call_slots[index] = position
            self.tool_calls.append(StreamToolCall(id=id, name=name))
        return self.tool_calls[position]


@dataclass(slots=True, frozen=True)
class ChunkProcessingResult:
    sse_data: Optional[str] = None
    is_tool_call_chunk: bool = False
    is_final: bool = False
