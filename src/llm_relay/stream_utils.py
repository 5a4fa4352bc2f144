"""Shared streaming utilities for every vendor adapter."""
from __future__ import annotations

import logging
from typing import Any, AsyncGenerator, AsyncIterable, AsyncIterator

from llm_relay.adapters.base import StreamAdapter
from llm_relay.types import ChunkProcessingResult

__all__ = ["relay_stream", "aggregate_stream"]

logger = logging.getLogger(__name__)


async def _close(chunks: AsyncIterable[Any]) -> None:
    close = getattr(chunks, "aclose", None)
    if close is not None:
        await close()


async def relay_stream(
    adapter: StreamAdapter,
    chunks: AsyncIterable[Any],
) -> AsyncGenerator[ChunkProcessingResult, None]:
    """
    Feed vendor chunks to *adapter* in arrival order and yield each result.

    Closing this generator (the client went away) closes *chunks* too, so
    the vendor stream is not consumed any further.
    """
    try:
        async for chunk in chunks:
            yield adapter.process_chunk(chunk)
    finally:
        await _close(chunks)
        if not adapter.is_final():
            logger.debug("[%s] Stream ended before its terminal signal", adapter.provider.value)


async def aggregate_stream(adapter: StreamAdapter, chunks: AsyncIterator[Any]) -> dict[str, Any]:
    """
    Consume a whole vendor stream and return it as one non-streaming response.

    Args:
        adapter: A fresh stream adapter for the vendor that produced *chunks*
        chunks: Vendor stream chunks (SDK objects or dicts)

    Returns:
        The vendor-shaped response built from the final accumulator state
    """
    async for _ in relay_stream(adapter, chunks):
        pass
    return adapter.to_provider_response()
