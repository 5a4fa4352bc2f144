from __future__ import annotations

import os
from enum import StrEnum
from typing import Final

from dotenv import load_dotenv

load_dotenv()


class Provider(StrEnum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GEMINI = "gemini"
    VLLM = "vllm"
    OLLAMA = "ollama"
    XAI = "xai"


# telemetry grouping used by interaction records
INTERACTION_TYPES: Final[dict[Provider, str]] = {
    Provider.OPENAI: "openai:chatCompletions",
    Provider.ANTHROPIC: "anthropic:messages",
    Provider.GEMINI: "gemini:generateContent",
    Provider.VLLM: "vllm:chatCompletions",
    Provider.OLLAMA: "ollama:chatCompletions",
    Provider.XAI: "xai:chatCompletions",
}

DISPLAY_NAMES: Final[dict[Provider, str]] = {
    Provider.OPENAI: "OpenAI",
    Provider.ANTHROPIC: "Anthropic",
    Provider.GEMINI: "Gemini",
    Provider.VLLM: "vLLM",
    Provider.OLLAMA: "Ollama",
    Provider.XAI: "x.ai (Grok)",
}

_ENV_VARS: Final[dict[Provider, str]] = {
    Provider.OPENAI: "OPENAI_API_KEY",
    Provider.ANTHROPIC: "ANTHROPIC_API_KEY",
    Provider.GEMINI: "GEMINI_API_KEY",
    Provider.VLLM: "VLLM_API_KEY",
    Provider.OLLAMA: "OLLAMA_API_KEY",
    Provider.XAI: "XAI_API_KEY",
}

# self-hosted servers usually run without auth
KEYLESS_PROVIDERS: Final[frozenset[Provider]] = frozenset({Provider.VLLM, Provider.OLLAMA})


def get_api_key(provider: Provider) -> str:
    """Return the API key for *provider* or raise RuntimeError.

    vLLM and Ollama fall back to the ``EMPTY`` placeholder the OpenAI SDK
    accepts when no key is configured.
    """
    try:
        env_var = _ENV_VARS[provider]
    except KeyError:
        raise RuntimeError(f"No config for {provider!s}") from None

    try:
        return os.environ[env_var]
    except KeyError as exc:
        if provider in KEYLESS_PROVIDERS:
            return "EMPTY"
        raise RuntimeError(f"{env_var} missing") from exc


__all__ = [
    "Provider",
    "INTERACTION_TYPES",
    "DISPLAY_NAMES",
    "KEYLESS_PROVIDERS",
    "get_api_key",
]
