"""
Environment-backed settings for the relay core.

Values are read once (after ``load_dotenv``) and cached; tests call
``reset_settings()`` after patching the environment.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Final, Mapping, Optional

from dotenv import load_dotenv

from llm_relay.errors import ConfigError
from llm_relay.providers import Provider

__all__ = ["Settings", "DEFAULT_BASE_URLS", "get_settings", "reset_settings", "load_settings"]

DEFAULT_BASE_URLS: Final[dict[Provider, str]] = {
    Provider.OPENAI: "https://api.openai.com/v1",
    Provider.ANTHROPIC: "https://api.anthropic.com",
    Provider.GEMINI: "https://generativelanguage.googleapis.com",
    Provider.VLLM: "http://localhost:8000/v1",
    Provider.OLLAMA: "http://localhost:11434/v1",
    Provider.XAI: "https://api.x.ai/v1",
}

_BASE_URL_ENV: Final[dict[Provider, str]] = {
    provider: f"{provider.value.upper()}_BASE_URL" for provider in Provider
}

# roughly 75KB of decoded image data
DEFAULT_MAX_IMAGE_BASE64_CHARS: Final = 100_000

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


@dataclass(frozen=True)
class Settings:
    """Resolved relay configuration."""

    base_urls: Mapping[Provider, str] = field(default_factory=lambda: dict(DEFAULT_BASE_URLS))
    max_image_base64_chars: int = DEFAULT_MAX_IMAGE_BASE64_CHARS
    transform_tool_result_images: bool = True
    mock_mode: bool = False

    def base_url(self, provider: Provider) -> str:
        return self.base_urls.get(provider, DEFAULT_BASE_URLS[provider])


def _parse_bool(name: str, raw: Optional[str], default: bool) -> bool:
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ConfigError(f"{name} must be a boolean, got {raw!r}")


def _parse_int(name: str, raw: Optional[str], default: int) -> int:
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}", exc) from exc
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {value}")
    return value


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Build ``Settings`` from *environ* (defaults to ``os.environ``)."""
    env = os.environ if environ is None else environ

    base_urls = dict(DEFAULT_BASE_URLS)
    for provider, var in _BASE_URL_ENV.items():
        override = env.get(var)
        if override:
            base_urls[provider] = override.rstrip("/")

    return Settings(
        base_urls=base_urls,
        max_image_base64_chars=_parse_int(
            "LLM_RELAY_MAX_IMAGE_BASE64_CHARS",
            env.get("LLM_RELAY_MAX_IMAGE_BASE64_CHARS"),
            DEFAULT_MAX_IMAGE_BASE64_CHARS,
        ),
        transform_tool_result_images=_parse_bool(
            "LLM_RELAY_TRANSFORM_TOOL_RESULT_IMAGES",
            env.get("LLM_RELAY_TRANSFORM_TOOL_RESULT_IMAGES"),
            True,
        ),
        mock_mode=_parse_bool("LLM_RELAY_MOCK_MODE", env.get("LLM_RELAY_MOCK_MODE"), False),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    load_dotenv()
    return load_settings()


def reset_settings() -> None:
    get_settings.cache_clear()
