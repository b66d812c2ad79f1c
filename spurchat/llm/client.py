"""Async model clients: Claude for completions/streaming, OpenAI for embeddings."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING, Any

import anthropic

from spurchat.config import settings

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from openai import AsyncOpenAI

logger = logging.getLogger(__name__)

_client: anthropic.AsyncAnthropic | None = None
_embedding_client: AsyncOpenAI | None = None


def _get_client() -> anthropic.AsyncAnthropic:
    """Lazily initialize the Anthropic client."""
    global _client  # noqa: PLW0603
    if _client is None:
        _client = anthropic.AsyncAnthropic(api_key=settings.anthropic_api_key)
    return _client


def _get_embedding_client() -> AsyncOpenAI:
    """Return a lazily-initialised AsyncOpenAI singleton."""
    global _embedding_client  # noqa: PLW0603
    if _embedding_client is None:
        from openai import AsyncOpenAI

        _embedding_client = AsyncOpenAI(api_key=settings.openai_api_key)
    return _embedding_client


async def complete_text(
    messages: list[dict[str, Any]],
    *,
    system: str | None = None,
    model: str | None = None,
    max_tokens: int = 1024,
    temperature: float | None = None,
) -> str:
    """Single-shot Claude call: no streaming, no history handling.

    Used for small side tasks (conversation titles, query classification).
    """
    client = _get_client()
    kwargs: dict[str, Any] = {
        "model": model or settings.utility_model,
        "max_tokens": max_tokens,
        "messages": messages,
    }
    if system is not None:
        kwargs["system"] = system
    if temperature is not None:
        kwargs["temperature"] = temperature
    response = await client.messages.create(**kwargs)
    return "".join(block.text for block in response.content if block.type == "text")


async def stream_text(
    messages: list[dict[str, Any]],
    *,
    system: str,
    model: str | None = None,
    max_tokens: int | None = None,
    timeout: float | None = None,
) -> AsyncIterator[str]:
    """Yield text increments from a streamed Claude response.

    The whole upstream leg (opening the stream and every chunk) shares one
    deadline of *timeout* seconds (default ``stream_timeout_seconds``).
    When it expires the upstream stream is closed and ``TimeoutError`` is
    raised. Time the caller spends between chunks counts toward the
    deadline but is never interrupted by it.
    """
    client = _get_client()
    kwargs: dict[str, Any] = {
        "model": model or settings.chat_model,
        "max_tokens": max_tokens or settings.max_response_tokens,
        "system": system,
        "messages": messages,
    }
    limit = timeout if timeout is not None else settings.stream_timeout_seconds
    deadline = asyncio.get_running_loop().time() + limit

    logger.debug("Streaming %d message(s) to %s", len(messages), kwargs["model"])

    async with contextlib.AsyncExitStack() as stack:
        async with asyncio.timeout_at(deadline):
            stream = await stack.enter_async_context(client.messages.stream(**kwargs))

        chunks = aiter(stream.text_stream)
        while True:
            try:
                async with asyncio.timeout_at(deadline):
                    text = await anext(chunks)
            except StopAsyncIteration:
                break
            except TimeoutError:
                logger.warning("Model stream exceeded %.0fs deadline, aborting", limit)
                raise
            if text:
                yield text


async def embed_text(text: str) -> list[float]:
    """Compute one embedding vector for *text*."""
    client = _get_embedding_client()
    response = await client.embeddings.create(model=settings.embedding_model, input=text)
    return list(response.data[0].embedding)
