"""
Token-cost compression of structured tool results.

JSON tool output is re-encoded in TOON (Token-Oriented Object Notation):
indentation instead of braces, ``key[N]{a,b}:`` headers for arrays of
uniform records and bare scalars wherever they stay unambiguous. The
result is still parseable but typically needs far fewer tokens.
"""

from __future__ import annotations

import json
from typing import Iterable, Optional

from toon_format import encode as toon_encode

from llm_relay.ports import PriceTable, Tokenizer, TransformObserver
from llm_relay.types import ToonCompressionResult

__all__ = [
    "unwrap_tool_content",
    "compress_tool_result",
    "compress_tool_results",
]


def unwrap_tool_content(text: str) -> str:
    """
    Peel an MCP text envelope off a tool result.

    ``[{"type": "text", "text": "..."}]`` and ``{"content": [<same>]}``
    both yield the inner text; anything else is returned unchanged.
    """
    try:
        parsed = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return text

    if isinstance(parsed, dict) and isinstance(parsed.get("content"), list):
        parsed = parsed["content"]
    if (
        isinstance(parsed, list)
        and len(parsed) == 1
        and isinstance(parsed[0], dict)
        and parsed[0].get("type") == "text"
        and isinstance(parsed[0].get("text"), str)
    ):
        return parsed[0]["text"]
    return text


def compress_tool_result(text: str) -> Optional[tuple[str, str]]:
    """
    Return ``(uncompressed, compressed)`` for a JSON tool result.

    ``None`` means the content is not a JSON object or array and is left alone.
    """
    unwrapped = unwrap_tool_content(text)
    try:
        parsed = json.loads(unwrapped)
    except (json.JSONDecodeError, ValueError):
        return None
    if not isinstance(parsed, (dict, list)):
        return None
    return unwrapped, toon_encode(parsed)


async def compress_tool_results(
    items: Iterable[tuple[str, str]],
    *,
    model: str,
    tokenizer: Tokenizer,
    price_table: PriceTable,
    observer: Optional[TransformObserver] = None,
) -> tuple[dict[str, str], ToonCompressionResult]:
    """
    Compress ``(tool_call_id, content)`` pairs.

    Returns the replacement contents keyed by tool call id plus the token
    accounting. Cost savings need a price entry for *model* and a positive
    token difference; otherwise they stay ``None``.
    """
    observer = observer or TransformObserver()
    replacements: dict[str, str] = {}
    tokens_before = 0
    tokens_after = 0

    for tool_call_id, content in items:
        result = compress_tool_result(content)
        if result is None:
            observer.compression_skipped(tool_call_id, "content is not JSON")
            continue
        uncompressed, compressed = result
        before = tokenizer.count_tokens([{"role": "user", "content": uncompressed}])
        after = tokenizer.count_tokens([{"role": "user", "content": compressed}])
        observer.compressed(tool_call_id, before, after)
        tokens_before += before
        tokens_after += after
        replacements[tool_call_id] = compressed

    cost_savings: Optional[float] = None
    if replacements and tokens_before > tokens_after:
        price = await price_table.find_by_model(model)
        if price is not None:
            cost_savings = (tokens_before - tokens_after) * price.price_per_million_input / 1_000_000

    observer.compression_finished(len(replacements), cost_savings)
    return replacements, ToonCompressionResult(
        tokens_before=tokens_before if replacements else None,
        tokens_after=tokens_after if replacements else None,
        cost_savings=cost_savings,
    )
