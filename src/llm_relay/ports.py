"""
Contracts for the collaborators the relay core consumes but does not own.

Each port ships with a small default so adapters work out of the box:
an approximate tokenizer, a static price table, a pattern-based vision
capability lookup and an observer that writes to ``logging``.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional, Protocol, Sequence

__all__ = [
    "Tokenizer",
    "ApproximateTokenizer",
    "get_tokenizer",
    "TokenPrice",
    "PriceTable",
    "StaticPriceTable",
    "ModelCapabilities",
    "PatternModelCapabilities",
    "TransformObserver",
    "LoggingObserver",
    "Collaborators",
]


class Tokenizer(Protocol):
    def count_tokens(self, messages: Sequence[Mapping[str, Any]]) -> int: ...


@dataclass(frozen=True)
class ApproximateTokenizer:
    """Character-count estimate; good enough to compare two encodings of one payload."""

    family: str = "openai"
    chars_per_token: float = 4.0

    def count_tokens(self, messages: Sequence[Mapping[str, Any]]) -> int:
        total = 0
        for message in messages:
            content = message.get("content", "")
            if not isinstance(content, str):
                content = json.dumps(content, separators=(",", ":"))
            total += len(content)
        return math.ceil(total / self.chars_per_token)


def get_tokenizer(family: str) -> Tokenizer:
    return ApproximateTokenizer(family=family)


@dataclass(frozen=True)
class TokenPrice:
    model: str
    price_per_million_input: float
    price_per_million_output: float = 0.0


class PriceTable(Protocol):
    async def find_by_model(self, model: str) -> Optional[TokenPrice]: ...


@dataclass
class StaticPriceTable:
    prices: dict[str, TokenPrice] = field(default_factory=dict)

    async def find_by_model(self, model: str) -> Optional[TokenPrice]:
        return self.prices.get(model)


class ModelCapabilities(Protocol):
    def supports_images(self, model: str) -> bool: ...


# models known to reject image input; everything else is assumed vision-capable
_TEXT_ONLY_MODEL_PATTERNS: tuple[str, ...] = (
    "gpt-3.5",
    "o1-mini",
    "o3-mini",
    "text-",
    "davinci",
    "babbage",
    "grok-3",
    "grok-code",
    "deepseek",
    "codellama",
    "llama2",
    "llama3",
    "mistral",
    "mixtral",
    "qwen2.5-coder",
    "phi3",
)


@dataclass(frozen=True)
class PatternModelCapabilities:
    text_only_patterns: tuple[str, ...] = _TEXT_ONLY_MODEL_PATTERNS

    def supports_images(self, model: str) -> bool:
        name = model.lower()
        return not any(pattern in name for pattern in self.text_only_patterns)


class TransformObserver:
    """
    Receives diagnostic events from request transforms.

    The base class ignores everything; transforms call it unconditionally
    so they carry no logging of their own.
    """

    def tool_result_updated(self, tool_call_id: str) -> None:
        pass

    def images_stripped(self, tool_call_id: str, count: int, model: str) -> None:
        pass

    def image_omitted(self, tool_call_id: str, base64_length: int) -> None:
        pass

    def image_converted(self, tool_call_id: str, mime_type: str, base64_length: int) -> None:
        pass

    def compressed(self, tool_call_id: str, tokens_before: int, tokens_after: int) -> None:
        pass

    def compression_skipped(self, tool_call_id: str, reason: str) -> None:
        pass

    def compression_finished(self, compressed_count: int, cost_savings: Optional[float]) -> None:
        pass

    def request_built(self, provider: str, model: str, message_count: int, updated: int) -> None:
        pass


class LoggingObserver(TransformObserver):
    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger("llm_relay.transforms")

    def tool_result_updated(self, tool_call_id: str) -> None:
        self.logger.debug("Applied tool result update to %s", tool_call_id)

    def images_stripped(self, tool_call_id: str, count: int, model: str) -> None:
        self.logger.info(
            "Stripped %d image(s) from tool result %s (model %s does not support images)",
            count,
            tool_call_id,
            model,
        )

    def image_omitted(self, tool_call_id: str, base64_length: int) -> None:
        self.logger.info(
            "Omitted image in tool result %s due to size (~%dKB)",
            tool_call_id,
            round(base64_length * 3 / 4 / 1024),
        )

    def image_converted(self, tool_call_id: str, mime_type: str, base64_length: int) -> None:
        self.logger.debug(
            "Converted %s image in tool result %s (%d base64 chars)",
            mime_type,
            tool_call_id,
            base64_length,
        )

    def compressed(self, tool_call_id: str, tokens_before: int, tokens_after: int) -> None:
        self.logger.info(
            "Compressed tool result %s: %d -> %d tokens",
            tool_call_id,
            tokens_before,
            tokens_after,
        )

    def compression_skipped(self, tool_call_id: str, reason: str) -> None:
        self.logger.debug("Skipping compression for %s: %s", tool_call_id, reason)

    def compression_finished(self, compressed_count: int, cost_savings: Optional[float]) -> None:
        self.logger.info(
            "Compression completed: %d tool result(s), savings=%s",
            compressed_count,
            cost_savings,
        )

    def request_built(self, provider: str, model: str, message_count: int, updated: int) -> None:
        self.logger.debug(
            "[%s] Built provider request for %s (%d messages, %d tool result update(s))",
            provider,
            model,
            message_count,
            updated,
        )


@dataclass
class Collaborators:
    """Bundle of ports handed to request adapters."""

    capabilities: ModelCapabilities = field(default_factory=PatternModelCapabilities)
    tokenizer_factory: Callable[[str], Tokenizer] = get_tokenizer
    price_table: PriceTable = field(default_factory=StaticPriceTable)
    observer: TransformObserver = field(default_factory=LoggingObserver)
    max_image_base64_chars: Optional[int] = None
    transform_images: Optional[bool] = None
