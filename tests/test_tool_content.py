"""Tests for the shared tool-result image transform."""

import pytest

from llm_relay.tool_content import (
    ANTHROPIC_BLOCKS,
    CHAT_COMPLETIONS_BLOCKS,
    GEMINI_BLOCKS,
    IMAGE_TOO_LARGE_PLACEHOLDER,
    has_image_content,
    is_image_too_large,
    transform_tool_result_content,
)

IMAGE = {"type": "image", "data": "abc123", "mimeType": "image/png"}


def transform(content, supports_images=True, encoding=CHAT_COMPLETIONS_BLOCKS, observer=None):
    return transform_tool_result_content(
        content,
        tool_call_id="call_1",
        model="some-model",
        supports_images=supports_images,
        max_base64_chars=100_000,
        encoding=encoding,
        observer=observer,
    )


class TestTransformToolResultContent:
    """Per-block decisions for image-bearing tool results."""

    def test_string_content_is_untouched(self):
        assert transform("plain text") is None

    def test_blocks_without_images_are_untouched(self):
        assert transform([{"type": "text", "text": "only text"}]) is None

    def test_order_is_preserved(self):
        content = [
            {"type": "text", "text": "before"},
            IMAGE,
            "bare string",
            {"type": "text", "text": "after"},
        ]

        assert transform(content) == [
            {"type": "text", "text": "before"},
            {"type": "image_url", "image_url": {"url": "data:image/png;base64,abc123"}},
            {"type": "text", "text": "bare string"},
            {"type": "text", "text": "after"},
        ]

    def test_missing_mime_type_defaults_to_png(self):
        content = [{"type": "image", "data": "abc123"}]

        assert transform(content, encoding=ANTHROPIC_BLOCKS) == [
            {"type": "image", "source": {"type": "base64", "media_type": "image/png", "data": "abc123"}}
        ]

    def test_strip_appends_one_placeholder(self, observer):
        content = [IMAGE, {"type": "text", "text": "caption"}, IMAGE]

        result = transform(content, supports_images=False, observer=observer)

        assert result == [
            {"type": "text", "text": "caption"},
            {"type": "text", "text": "[2 image(s) removed - model does not support image inputs]"},
        ]
        assert observer.names() == ["images_stripped"]

    @pytest.mark.parametrize("supports_images", [True, False])
    def test_oversized_image_placeholder(self, supports_images, observer):
        content = [{"type": "image", "data": "A" * 140_000, "mimeType": "image/png"}]

        result = transform(content, supports_images=supports_images, observer=observer)

        assert result == [{"type": "text", "text": IMAGE_TOO_LARGE_PLACEHOLDER}]
        assert observer.events == [("image_omitted", "call_1", 140_000)]

    def test_unknown_blocks_become_json_text(self):
        content = [IMAGE, {"type": "resource", "uri": "file:///a"}]

        result = transform(content, encoding=GEMINI_BLOCKS)

        assert result == [
            {"inlineData": {"mimeType": "image/png", "data": "abc123"}},
            {"text": '{"type": "resource", "uri": "file:///a"}'},
        ]

    def test_non_string_text_is_json_encoded(self):
        content = [{"type": "text", "text": {"k": 1}}, IMAGE]

        assert transform(content)[0] == {"type": "text", "text": '{"k": 1}'}


class TestImageHelpers:
    def test_has_image_content(self):
        assert has_image_content([IMAGE]) is True
        assert has_image_content([{"type": "image", "data": 42}]) is False
        assert has_image_content("text") is False

    def test_threshold_is_strictly_greater(self):
        assert is_image_too_large({"data": "A" * 10}, 10) is False
        assert is_image_too_large({"data": "A" * 11}, 10) is True
