"""Small helpers shared by adapters, clients and the registry."""

from __future__ import annotations

import json
from typing import Any, Optional

__all__ = [
    "get_path",
    "as_payload",
    "parse_json_object",
    "parse_json",
    "format_sse",
]

_MISSING = object()


def get_path(obj: Any, path: str, default: Any = None) -> Any:
    """
    Extract a value from a nested object using a dot-notation path.

    Works across SDK models (attribute access), plain dicts and lists,
    so the same lookup serves raw JSON bodies and typed SDK objects.

    Args:
        obj: Object to search
        path: Dot-notation path like "choices.0.message.content"
        default: Default value if path doesn't exist

    Returns:
        The extracted value or default
    """
    if obj is None:
        return default

    current = obj
    for part in path.split("."):
        if part.isdigit():
            # Handle array indexing
            try:
                current = current[int(part)]
            except (IndexError, KeyError, TypeError):
                return default
        elif isinstance(current, dict):
            current = current.get(part, _MISSING)
            if current is _MISSING:
                return default
        elif hasattr(current, part):
            current = getattr(current, part)
        else:
            return default
    return default if current is None else current


def as_payload(obj: Any, *, by_alias: bool = False) -> Any:
    """
    Turn an SDK model into its JSON-shaped dict; plain data passes through.

    Only fields the vendor actually sent are kept, explicit nulls included,
    so relayed chunks match the wire. ``by_alias`` is needed for google-genai
    models, whose wire names are camelCase aliases of snake_case fields.
    """
    dump = getattr(obj, "model_dump", None)
    if callable(dump):
        return dump(mode="json", by_alias=by_alias, exclude_unset=True)
    return obj


def parse_json(text: Any) -> Any:
    """Parse a JSON string, returning the input unchanged when it is not JSON."""
    if not isinstance(text, str):
        return text
    try:
        return json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return text


def parse_json_object(raw: Any) -> dict[str, Any]:
    """
    Parse tool-call arguments into a dict.

    Malformed or non-object arguments become ``{}``; the model's intent is
    lost but the call still flows through to policy evaluation.
    """
    if isinstance(raw, dict):
        return raw
    if not isinstance(raw, str) or not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except (json.JSONDecodeError, ValueError):
        return {}
    return parsed if isinstance(parsed, dict) else {}


def format_sse(data: Any, event: Optional[str] = None) -> str:
    """Frame one server-sent event; dicts are JSON-encoded compactly."""
    body = data if isinstance(data, str) else json.dumps(data, separators=(",", ":"))
    if event:
        return f"event: {event}\ndata: {body}\n\n"
    return f"data: {body}\n\n"
