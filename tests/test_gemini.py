"""Tests for the Gemini generateContent adapters."""

import asyncio
import copy
import json

import pytest
from google.genai import types as genai_types

from llm_relay.adapters import GeminiRequestAdapter, GeminiResponseAdapter, GeminiStreamAdapter
from llm_relay.ports import Collaborators, StaticPriceTable, TokenPrice
from llm_relay.types import UsageView

TOOL_JSON = '{"items":[{"id":1,"name":"a"},{"id":2,"name":"b"}]}'


class TextOnly:
    def supports_images(self, model):
        return False


def generate_request(response=None):
    return {
        "systemInstruction": {"parts": [{"text": "You are helpful"}]},
        "contents": [
            {"role": "user", "parts": [{"text": "What's the weather in Paris?"}]},
            {"role": "model", "parts": [{"functionCall": {"name": "get_weather", "args": {"city": "Paris"}}}]},
            {
                "role": "user",
                "parts": [
                    {
                        "functionResponse": {
                            "name": "get_weather",
                            "response": response or {"result": '{"temperature":70}'},
                        }
                    }
                ],
            },
        ],
        "tools": [
            {
                "functionDeclarations": [
                    {
                        "name": "get_weather",
                        "description": "Get the current weather",
                        "parameters": {"type": "OBJECT", "properties": {"city": {"type": "STRING"}}},
                    }
                ]
            }
        ],
        "generationConfig": {"temperature": 0.2},
    }


class TestGeminiRequestAdapter:
    """Reading and staging changes on a generateContent body."""

    def test_model_and_streaming_come_from_keywords(self):
        adapter = GeminiRequestAdapter(generate_request(), model="models/gemini-2.5-flash", streaming=True)

        assert adapter.get_model() == "gemini-2.5-flash"
        assert adapter.is_streaming() is True
        assert GeminiRequestAdapter(generate_request()).is_streaming() is False

    def test_messages(self):
        adapter = GeminiRequestAdapter(generate_request(), model="gemini-2.5-flash")
        messages = adapter.get_messages()

        assert [m.role for m in messages] == ["system", "user", "assistant", "tool"]
        result = messages[-1].tool_calls[0]
        assert result.id == "get_weather_0"
        assert result.name == "get_weather"
        assert result.content == {"temperature": 70}

    def test_explicit_ids_are_used(self):
        request = generate_request()
        request["contents"][1]["parts"][0]["functionCall"]["id"] = "fc_9"
        request["contents"][2]["parts"][0]["functionResponse"]["id"] = "fc_9"

        results = GeminiRequestAdapter(request, model="gemini-2.5-flash").get_tool_results()

        assert [r.id for r in results] == ["fc_9"]

    def test_plain_object_response_is_kept_whole(self):
        adapter = GeminiRequestAdapter(generate_request({"temperature": 70}), model="gemini-2.5-flash")

        assert adapter.get_tool_results()[0].content == {"temperature": 70}

    def test_get_tools(self):
        tools = GeminiRequestAdapter(generate_request(), model="gemini-2.5-flash").get_tools()

        assert [t.name for t in tools] == ["get_weather"]
        assert tools[0].description == "Get the current weather"
        assert tools[0].input_schema["type"] == "OBJECT"

    def test_update_tool_result_and_model(self):
        request = generate_request()
        original = copy.deepcopy(request)
        adapter = GeminiRequestAdapter(request, model="gemini-2.5-flash")
        adapter.update_tool_result("get_weather_0", '{"temperature":75}')
        adapter.set_model("gemini-2.5-pro")

        result = adapter.to_provider_request()

        assert result["model"] == "gemini-2.5-pro"
        response = result["contents"][2]["parts"][0]["functionResponse"]
        assert response["name"] == "get_weather"
        assert response["response"] == {"result": '{"temperature":75}'}
        assert request == original

    def test_no_mutations_round_trips_body(self):
        request = generate_request()
        result = GeminiRequestAdapter(request, model="gemini-2.5-flash").to_provider_request()

        assert result == request
        assert "model" not in result

    def test_images_become_inline_data_parts(self, collaborators):
        response = {
            "content": [
                {"type": "text", "text": "shot"},
                {"type": "image", "data": "abc123", "mimeType": "image/png"},
            ]
        }
        adapter = GeminiRequestAdapter(
            generate_request(response), model="gemini-2.5-flash", collaborators=collaborators
        )

        parts = adapter.to_provider_request()["contents"][2]["parts"]

        assert parts[0]["functionResponse"]["response"] == {"content": [{"text": "shot"}]}
        assert parts[1] == {"inlineData": {"mimeType": "image/png", "data": "abc123"}}

    def test_text_only_model_strips_images(self, observer):
        response = {
            "content": [
                {"type": "text", "text": "shot"},
                {"type": "image", "data": "abc123", "mimeType": "image/png"},
            ]
        }
        adapter = GeminiRequestAdapter(
            generate_request(response),
            model="gemini-2.5-flash",
            collaborators=Collaborators(capabilities=TextOnly(), observer=observer),
        )

        parts = adapter.to_provider_request()["contents"][2]["parts"]

        assert parts == [
            {
                "functionResponse": {
                    "name": "get_weather",
                    "response": {
                        "content": [
                            {"text": "shot"},
                            {"text": "[1 image(s) removed - model does not support image inputs]"},
                        ]
                    },
                }
            }
        ]
        assert ("images_stripped", "get_weather_0", 1, "gemini-2.5-flash") in observer.events

    def test_toon_compression_rewrites_result_envelope(self, observer):
        prices = StaticPriceTable({"gemini-2.5-flash": TokenPrice("gemini-2.5-flash", 0.3)})
        request = generate_request({"result": TOOL_JSON})
        original = copy.deepcopy(request)
        adapter = GeminiRequestAdapter(
            request,
            model="gemini-2.5-flash",
            collaborators=Collaborators(price_table=prices, observer=observer),
        )

        result = asyncio.run(adapter.apply_toon_compression("gemini-2.5-flash"))

        assert (result.tokens_before, result.tokens_after) == (13, 8)
        assert result.cost_savings == pytest.approx(5 * 0.3 / 1_000_000)
        response = adapter.to_provider_request()["contents"][2]["parts"][0]["functionResponse"]
        assert response["response"] == {"result": "items[2]{id,name}:\n  1,a\n  2,b"}
        assert ("compressed", "get_weather_0", 13, 8) in observer.events
        assert request == original



def gemini_response(parts, usage=None, finish_reason="STOP"):
    response = {
        "candidates": [
            {"content": {"role": "model", "parts": parts}, "finishReason": finish_reason, "index": 0}
        ],
        "modelVersion": "gemini-2.5-flash",
        "responseId": "resp-1",
    }
    if usage is not None:
        response["usageMetadata"] = usage
    return response


class TestGeminiResponseAdapter:
    """Reading a non-streaming GenerateContentResponse."""

    def test_text_and_tool_calls(self):
        adapter = GeminiResponseAdapter(
            gemini_response(
                [
                    {"text": "Checking"},
                    {"functionCall": {"name": "f", "args": {"a": 1}}},
                    {"functionCall": {"id": "fc_2", "name": "g", "args": {}}},
                ],
                usage={"promptTokenCount": 40, "candidatesTokenCount": 8, "totalTokenCount": 48},
            )
        )

        assert adapter.get_id() == "resp-1"
        assert adapter.get_model() == "gemini-2.5-flash"
        assert adapter.get_text() == "Checking"
        calls = adapter.get_tool_calls()
        assert [c.id for c in calls] == ["f_0", "fc_2"]
        assert calls[0].arguments == {"a": 1}
        assert adapter.get_usage() == UsageView(input_tokens=40, output_tokens=8)

    def test_usage_defaults_to_zero(self):
        adapter = GeminiResponseAdapter(gemini_response([{"text": "hi"}]))

        assert adapter.get_usage() == UsageView(input_tokens=0, output_tokens=0)

    def test_no_candidates(self):
        adapter = GeminiResponseAdapter({"promptFeedback": {"blockReason": "SAFETY"}})

        assert adapter.get_text() == ""
        assert adapter.get_tool_calls() == []
        assert adapter.has_tool_calls() is False

    def test_refusal_response(self):
        usage = {"promptTokenCount": 40, "candidatesTokenCount": 8, "totalTokenCount": 48}
        adapter = GeminiResponseAdapter(
            gemini_response([{"functionCall": {"name": "rm", "args": {}}}], usage=usage)
        )

        refusal = adapter.to_refusal_response("blocked", "I can't do that.")

        assert refusal["responseId"] == "resp-1"
        assert refusal["usageMetadata"] == usage
        candidate = refusal["candidates"][0]
        assert candidate["content"]["parts"] == [{"text": "I can't do that."}]
        assert candidate["finishReason"] == "STOP"

    def test_accepts_sdk_objects(self):
        sdk_response = genai_types.GenerateContentResponse(
            candidates=[
                genai_types.Candidate(
                    content=genai_types.Content(role="model", parts=[genai_types.Part(text="Hello")]),
                    finish_reason=genai_types.FinishReason.STOP,
                )
            ],
            model_version="gemini-2.5-flash",
        )

        adapter = GeminiResponseAdapter(sdk_response)

        assert adapter.get_text() == "Hello"
        assert adapter.get_model() == "gemini-2.5-flash"


def stream_chunk(parts, finish_reason=None, usage=None):
    candidate = {"content": {"role": "model", "parts": parts}, "index": 0}
    if finish_reason:
        candidate["finishReason"] = finish_reason
    chunk = {"candidates": [candidate], "modelVersion": "gemini-2.5-flash", "responseId": "resp-s1"}
    if usage:
        chunk["usageMetadata"] = usage
    return chunk


class TestGeminiStreamAdapter:
    """Accumulating streamGenerateContent chunks."""

    def test_text_then_function_call(self):
        adapter = GeminiStreamAdapter()
        usage = {"promptTokenCount": 40, "candidatesTokenCount": 8, "totalTokenCount": 48}

        first = adapter.process_chunk(stream_chunk([{"text": "Hel"}]))
        second = adapter.process_chunk(stream_chunk([{"text": "lo"}]))
        last = adapter.process_chunk(
            stream_chunk([{"functionCall": {"name": "f", "args": {"a": 1}}}], "STOP", usage)
        )

        assert first.sse_data.startswith("data: ")
        assert second.is_final is False
        assert last.is_tool_call_chunk is True
        assert last.sse_data is None
        assert last.is_final is True

        state = adapter.state
        assert state.text == "Hello"
        assert state.usage == UsageView(input_tokens=40, output_tokens=8)
        assert state.tool_calls[0].id == "f_0"
        assert json.loads(state.tool_calls[0].arguments) == {"a": 1}
        assert len(adapter.get_raw_tool_call_events()) == 1

    def test_not_final_without_finish_reason(self):
        adapter = GeminiStreamAdapter()
        adapter.process_chunk(stream_chunk([{"text": "partial"}]))

        assert adapter.is_final() is False

    def test_to_provider_response(self):
        adapter = GeminiStreamAdapter()
        adapter.process_chunk(stream_chunk([{"text": "Hi"}]))
        adapter.process_chunk(stream_chunk([{"functionCall": {"name": "f", "args": {"a": 1}}}], "STOP"))

        response = adapter.to_provider_response()

        assert response["candidates"][0]["content"]["parts"] == [
            {"text": "Hi"},
            {"functionCall": {"id": "f_0", "name": "f", "args": {"a": 1}}},
        ]
        assert response["usageMetadata"]["totalTokenCount"] == 0
        assert GeminiResponseAdapter(response).get_tool_calls()[0].arguments == {"a": 1}

    def test_end_marker_carries_stop(self):
        adapter = GeminiStreamAdapter()
        adapter.process_chunk(stream_chunk([{"text": "Hi"}]))

        end = json.loads(adapter.format_end_sse()[len("data: "):])
        complete = adapter.format_complete_text_sse("Declined.")

        assert end["candidates"][0]["finishReason"] == "STOP"
        assert json.loads(complete[0][len("data: "):])["candidates"][0]["content"]["parts"] == [
            {"text": "Declined."}
        ]
