"""
Relay-level exceptions and the vendor error-envelope normalizer.

Provider SDKs raise rich exception hierarchies; callers of this package only
ever see a plain string (via ``extract_error_message``) or a ``RelayError``.
"""

from __future__ import annotations

from typing import Any, Optional, Sequence

from llm_relay.utils import get_path

__all__ = [
    "RelayError",
    "UnsupportedProviderError",
    "ConfigError",
    "DEFAULT_ERROR_MESSAGE",
    "extract_error_message",
]

DEFAULT_ERROR_MESSAGE = "Internal server error"


class RelayError(RuntimeError):
    """Public relay-level exception.

    Attributes:
        original_exc: The underlying exception, if any.
    """

    original_exc: Optional[Exception]

    def __init__(self, message: str, original_exc: Optional[Exception] = None) -> None:
        super().__init__(message)
        self.original_exc = original_exc
        if original_exc is not None:
            self.__cause__ = original_exc


class UnsupportedProviderError(RelayError, ValueError):
    """Raised when a provider tag has no registry entry."""


class ConfigError(RelayError):
    """Raised when environment configuration cannot be parsed."""


def extract_error_message(
    error: Any,
    paths: Sequence[str],
    default: str = DEFAULT_ERROR_MESSAGE,
) -> str:
    """
    Normalize a vendor error into a plain string.

    Each dot-notation path is tried in order against the error (attributes
    and mapping keys alike); the first string found wins. Exceptions without
    a recognized envelope fall back to their own message, anything else to
    ``default``.
    """
    for path in paths:
        value = get_path(error, path)
        if isinstance(value, str) and value:
            return value

    if isinstance(error, Exception):
        message = getattr(error, "message", None)
        if isinstance(message, str) and message:
            return message
        text = str(error)
        if text:
            return text

    return default
