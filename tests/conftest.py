"""Shared fixtures and payload builders."""

import pytest

from llm_relay.config import reset_settings
from llm_relay.ports import Collaborators, TransformObserver

_ENV_VARS = (
    "LLM_RELAY_MAX_IMAGE_BASE64_CHARS",
    "LLM_RELAY_TRANSFORM_TOOL_RESULT_IMAGES",
    "LLM_RELAY_MOCK_MODE",
    "OPENAI_BASE_URL",
    "ANTHROPIC_BASE_URL",
    "GEMINI_BASE_URL",
    "VLLM_BASE_URL",
    "OLLAMA_BASE_URL",
    "XAI_BASE_URL",
    "VLLM_API_KEY",
    "OLLAMA_API_KEY",
)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Run every test against default settings."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    reset_settings()
    yield
    reset_settings()


class RecordingObserver(TransformObserver):
    """Collects transform events as ``(name, *args)`` tuples."""

    def __init__(self):
        self.events = []

    def tool_result_updated(self, tool_call_id):
        self.events.append(("tool_result_updated", tool_call_id))

    def images_stripped(self, tool_call_id, count, model):
        self.events.append(("images_stripped", tool_call_id, count, model))

    def image_omitted(self, tool_call_id, base64_length):
        self.events.append(("image_omitted", tool_call_id, base64_length))

    def image_converted(self, tool_call_id, mime_type, base64_length):
        self.events.append(("image_converted", tool_call_id, mime_type, base64_length))

    def compressed(self, tool_call_id, tokens_before, tokens_after):
        self.events.append(("compressed", tool_call_id, tokens_before, tokens_after))

    def compression_skipped(self, tool_call_id, reason):
        self.events.append(("compression_skipped", tool_call_id))

    def names(self):
        return [event[0] for event in self.events]


@pytest.fixture
def observer():
    return RecordingObserver()


@pytest.fixture
def collaborators(observer):
    return Collaborators(observer=observer)


SMALL_IMAGE = {"type": "image", "data": "abc123", "mimeType": "image/png"}
LARGE_IMAGE = {"type": "image", "data": "A" * 140_000, "mimeType": "image/png"}
