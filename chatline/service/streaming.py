"""
Streaming adapter: backend chunk formats in, canonical events out.

Every transport hands back an EventStream: a single-pass async iterator of
StreamEvent("text", content=...) / StreamEvent("stop", reason=...). The stream
ends after the first stop event (or when the backend closes the connection)
and closing it early releases the underlying HTTP connection.

Chunk shapes understood:
  - message-style SSE payloads: content_block_delta / message_delta
  - chat-completion chunks (openai SDK objects or plain dicts):
    choices[0].delta.content / choices[0].finish_reason
Anything else is skipped.
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator

from chatline.service.base import StreamEvent

logger = logging.getLogger(__name__)

SSE_DONE = "[DONE]"


class EventStream:
    """
    Lazy, finite, non-restartable sequence of StreamEvents.

    Usage:
        async with service.stream(request) as stream:
            async for event in stream:
                ...
    """

    def __init__(self, source: AsyncIterator[StreamEvent]):
        self._source = source
        self._done = False
        self.finish_reason: str | None = None

    @property
    def done(self) -> bool:
        return self._done

    def __aiter__(self) -> "EventStream":
        return self

    async def __anext__(self) -> StreamEvent:
        if self._done:
            raise StopAsyncIteration
        try:
            event = await self._source.__anext__()
        except StopAsyncIteration:
            self._done = True
            raise
        except Exception:
            await self.aclose()
            raise
        if event.type == "stop":
            self.finish_reason = event.reason
            await self.aclose()
        return event

    async def aclose(self) -> None:
        """Stop consuming and release the connection. Safe to call twice."""
        if self._done:
            return
        self._done = True
        closer = getattr(self._source, "aclose", None)
        if closer is not None:
            await closer()

    async def __aenter__(self) -> "EventStream":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def text(self) -> str:
        """Drain the stream and return the concatenated text."""
        parts = [event.content async for event in self if event.type == "text"]
        return "".join(parts)


def _get(obj: Any, key: str) -> Any:
    """Field access that works for both dict chunks and SDK objects."""
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(key)
    return getattr(obj, key, None)


def parse_sse_data(line: str) -> dict | str | None:
    """
    Parse one SSE line.
    Returns the decoded JSON payload, SSE_DONE for the terminator,
    or None for comments, event names, blank lines and junk.
    """
    line = line.strip()
    if not line.startswith("data:"):
        return None
    data = line[len("data:"):].strip()
    if data == SSE_DONE:
        return SSE_DONE
    try:
        payload = json.loads(data)
    except json.JSONDecodeError:
        logger.debug("Skipping unparseable SSE payload: %s", data[:100])
        return None
    return payload if isinstance(payload, dict) else None


async def sse_payloads(lines: AsyncIterator[str]) -> AsyncIterator[dict]:
    """Decode an SSE line stream into JSON payloads, stopping at [DONE]."""
    async for line in lines:
        payload = parse_sse_data(line)
        if payload == SSE_DONE:
            return
        if payload is not None:
            yield payload


def message_event(chunk: Any) -> StreamEvent | None:
    """Map one message-style chunk to an event, or None if not recognized."""
    chunk_type = _get(chunk, "type")
    delta = _get(chunk, "delta")
    if chunk_type == "content_block_delta":
        text = _get(delta, "text")
        if text:
            return StreamEvent("text", content=text)
    elif chunk_type == "message_delta":
        reason = _get(delta, "stop_reason")
        if reason:
            return StreamEvent("stop", reason=reason)
    return None


def completion_chunk_events(chunk: Any) -> list[StreamEvent]:
    """Map one chat-completion chunk to zero, one or two events (text then stop)."""
    choices = _get(chunk, "choices") or []
    if not choices:
        return []
    choice = choices[0]
    events = []
    text = _get(_get(choice, "delta"), "content")
    if text:
        events.append(StreamEvent("text", content=text))
    reason = _get(choice, "finish_reason")
    if reason:
        events.append(StreamEvent("stop", reason=reason))
    return events


async def message_events(chunks: AsyncIterator[Any]) -> AsyncIterator[StreamEvent]:
    async for chunk in chunks:
        event = message_event(chunk)
        if event is not None:
            yield event


async def completion_events(chunks: AsyncIterator[Any]) -> AsyncIterator[StreamEvent]:
    async for chunk in chunks:
        for event in completion_chunk_events(chunk):
            yield event
