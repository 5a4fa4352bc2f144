"""
Tool-result content transform shared by every vendor.

MCP tools may return arrays of content blocks, including base64 images.
Before a request goes upstream each image block is either dropped (model
cannot see images), replaced by a placeholder (payload too large) or
re-encoded into the vendor's inline-image shape. Decisions are made per
block and block order is kept.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Callable, Optional

from llm_relay.ports import TransformObserver

__all__ = [
    "IMAGE_TOO_LARGE_PLACEHOLDER",
    "BlockEncoding",
    "CHAT_COMPLETIONS_BLOCKS",
    "ANTHROPIC_BLOCKS",
    "GEMINI_BLOCKS",
    "is_mcp_image_block",
    "has_image_content",
    "is_image_too_large",
    "stripped_images_placeholder",
    "transform_tool_result_content",
]

IMAGE_TOO_LARGE_PLACEHOLDER = "[Image omitted due to size]"
DEFAULT_IMAGE_MIME_TYPE = "image/png"


def stripped_images_placeholder(count: int) -> str:
    return f"[{count} image(s) removed - model does not support image inputs]"


@dataclass(frozen=True)
class BlockEncoding:
    """How one vendor spells a text block and an inline base64 image."""

    text: Callable[[str], dict[str, Any]]
    image: Callable[[str, str], dict[str, Any]]


CHAT_COMPLETIONS_BLOCKS = BlockEncoding(
    text=lambda text: {"type": "text", "text": text},
    image=lambda mime, data: {
        "type": "image_url",
        "image_url": {"url": f"data:{mime};base64,{data}"},
    },
)

ANTHROPIC_BLOCKS = BlockEncoding(
    text=lambda text: {"type": "text", "text": text},
    image=lambda mime, data: {
        "type": "image",
        "source": {"type": "base64", "media_type": mime, "data": data},
    },
)

GEMINI_BLOCKS = BlockEncoding(
    text=lambda text: {"text": text},
    image=lambda mime, data: {"inlineData": {"mimeType": mime, "data": data}},
)


def is_mcp_image_block(item: Any) -> bool:
    return (
        isinstance(item, dict)
        and item.get("type") == "image"
        and isinstance(item.get("data"), str)
    )


def has_image_content(content: Any) -> bool:
    return isinstance(content, list) and any(is_mcp_image_block(item) for item in content)


def is_image_too_large(block: dict[str, Any], max_base64_chars: int) -> bool:
    data = block.get("data")
    return isinstance(data, str) and len(data) > max_base64_chars


def _text_of(block: dict[str, Any]) -> str:
    text = block.get("text")
    return text if isinstance(text, str) else json.dumps(text)


def transform_tool_result_content(
    content: Any,
    *,
    tool_call_id: str,
    model: str,
    supports_images: bool,
    max_base64_chars: int,
    encoding: BlockEncoding,
    observer: Optional[TransformObserver] = None,
) -> Optional[list[dict[str, Any]]]:
    """
    Rewrite one tool result's content blocks for the target vendor.

    Returns the new block list, or ``None`` when the content is not a block
    array carrying images and should be left exactly as it is.
    """
    if not has_image_content(content):
        return None

    observer = observer or TransformObserver()
    blocks: list[dict[str, Any]] = []
    stripped = 0

    for item in content:
        if isinstance(item, str):
            blocks.append(encoding.text(item))
            continue
        if not isinstance(item, dict):
            continue

        if is_mcp_image_block(item):
            data = item["data"]
            # oversized images get the size placeholder whatever the model
            if is_image_too_large(item, max_base64_chars):
                observer.image_omitted(tool_call_id, len(data))
                blocks.append(encoding.text(IMAGE_TOO_LARGE_PLACEHOLDER))
            elif not supports_images:
                stripped += 1
            else:
                mime_type = item.get("mimeType") or DEFAULT_IMAGE_MIME_TYPE
                observer.image_converted(tool_call_id, mime_type, len(data))
                blocks.append(encoding.image(mime_type, data))
        elif item.get("type") == "text" and "text" in item:
            blocks.append(encoding.text(_text_of(item)))
        else:
            # unknown block kinds (resources, links) survive as JSON text
            blocks.append(encoding.text(json.dumps(item)))

    if stripped:
        observer.images_stripped(tool_call_id, stripped, model)
        blocks.append(encoding.text(stripped_images_placeholder(stripped)))

    return blocks
