from __future__ import annotations

import argparse
import asyncio
import logging

from llm_relay import CreateClientOptions, Provider, get_provider_entry, relay_stream

logger = logging.getLogger(__name__)
logging.basicConfig(level=logging.INFO)

WEATHER_TOOL: dict[str, object] = {
    "type": "function",
    "function": {
        "name": "get_weather",
        "description": "Get the current weather in a given location",
        "parameters": {
            "type": "object",
            "properties": {"location": {"type": "string"}},
            "required": ["location"],
        },
    },
}


def chat_request(model: str, stream: bool = False) -> dict[str, object]:
    return {
        "model": model,
        "stream": stream,
        "messages": [
            {"role": "system", "content": "You are a helpful assistant."},
            {"role": "user", "content": "What's the weather in Paris?"},
            {
                "role": "assistant",
                "content": None,
                "tool_calls": [
                    {
                        "id": "call_123",
                        "type": "function",
                        "function": {"name": "get_weather", "arguments": '{"location": "Paris"}'},
                    }
                ],
            },
            {
                "role": "tool",
                "tool_call_id": "call_123",
                "content": '{"forecast": [{"day": "mon", "temp": 21}, {"day": "tue", "temp": 19}]}',
            },
        ],
        "tools": [WEATHER_TOOL],
    }


async def non_streaming(provider: Provider, model: str, options: CreateClientOptions) -> None:
    entry = get_provider_entry(provider)
    adapter = entry.request_adapter(chat_request(model))

    savings = await adapter.apply_toon_compression(model)
    logger.info("compression: %s -> %s tokens", savings.tokens_before, savings.tokens_after)

    client = entry.create_client(None, options)
    try:
        response = entry.response_adapter(await entry.execute(client, adapter.to_provider_request()))
    except Exception as exc:
        logger.error("request failed: %s", entry.extract_error_message(exc))
        return

    print("Text: ", response.get_text())
    print("Tool calls: ", response.get_tool_calls())
    print("Usage: ", response.get_usage())


async def streaming(provider: Provider, model: str, options: CreateClientOptions) -> None:
    entry = get_provider_entry(provider)
    request = entry.request_adapter(chat_request(model, stream=True)).to_provider_request()
    client = entry.create_client(None, options)
    stream_adapter = entry.stream_adapter()

    async for result in relay_stream(stream_adapter, entry.execute_stream(client, request)):
        if result.sse_data:
            print(result.sse_data, end="")
    print(stream_adapter.format_end_sse(), end="")
    print("Final: ", stream_adapter.is_final(), repr(stream_adapter.state.text))


def main() -> None:
    parser = argparse.ArgumentParser(description="Relay one Chat Completions exchange.")
    parser.add_argument("--provider", default="xai", choices=["openai", "vllm", "ollama", "xai"])
    parser.add_argument("--model", default="grok-4")
    parser.add_argument("--live", action="store_true", help="call the real vendor instead of the mock")
    args = parser.parse_args()

    options = CreateClientOptions(mock_mode=not args.live)
    provider = Provider(args.provider)
    asyncio.run(non_streaming(provider, args.model, options))
    asyncio.run(streaming(provider, args.model, options))


if __name__ == "__main__":
    main()
