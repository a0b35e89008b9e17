"""
Structured-message transport: the preferred path.

Speaks the messages API shape (content blocks, stop_reason, input/output
token usage) at {base_url}/text/v1/messages.
"""

from __future__ import annotations

import logging
import time
from contextlib import aclosing

import httpx

from chatline.service.base import BaseTransport, CanonicalResponse, ChatRequest, Usage
from chatline.service.streaming import EventStream, message_events, sse_payloads

logger = logging.getLogger(__name__)

API_VERSION = "2023-06-01"


def message_to_canonical(data: dict, transport: str = "") -> CanonicalResponse:
    """Normalize a messages API JSON body."""
    blocks = data.get("content") or []
    text = "".join(
        block.get("text", "") for block in blocks
        if isinstance(block, dict) and block.get("type", "text") == "text"
    )
    usage = data.get("usage") or {}
    return CanonicalResponse(
        content=text,
        model=data.get("model", ""),
        usage=Usage(
            input_tokens=usage.get("input_tokens", 0) or 0,
            output_tokens=usage.get("output_tokens", 0) or 0,
        ),
        finish_reason=data.get("stop_reason"),
        transport=transport,
    )


class MessagesTransport(BaseTransport):
    """Messages API over httpx."""

    name = "messages"

    def _headers(self) -> dict:
        return {
            "x-api-key": self.api_key,
            "anthropic-version": API_VERSION,
            "Content-Type": "application/json",
        }

    @staticmethod
    def build_body(request: ChatRequest) -> dict:
        """
        Messages API body. System-role turns move to the top-level `system`
        field; the API rejects them inside `messages`.
        """
        system_parts = [request.system] if request.system else []
        messages = []
        for msg in request.messages:
            if msg.get("role") == "system":
                system_parts.append(msg.get("content", ""))
            else:
                messages.append({"role": msg["role"], "content": msg.get("content", "")})

        body = {
            "model": request.resolved_model(),
            "messages": messages,
            "max_tokens": request.resolved_max_tokens(),
            "temperature": request.resolved_temperature(),
            "stream": request.stream,
        }
        optional = {
            "system": "\n\n".join(system_parts) or None,
            "stop_sequences": request.stop_sequences,
            "top_p": request.top_p,
            "top_k": request.top_k,
        }
        body.update({k: v for k, v in optional.items() if v is not None})
        return body

    async def send(self, request: ChatRequest) -> CanonicalResponse:
        t0 = time.monotonic()
        body = self.build_body(request)
        body["stream"] = False
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(
                    f"{self.base_url}/text/v1/messages",
                    json=body,
                    headers=self._headers(),
                )
                resp.raise_for_status()
                data = resp.json()
        except Exception as e:
            logger.warning("Messages transport request failed: %s", e)
            raise

        logger.debug(
            "Messages transport answered for model '%s' in %.0fms",
            body["model"], (time.monotonic() - t0) * 1000,
        )
        return message_to_canonical(data, transport=self.name)

    def stream(self, request: ChatRequest) -> EventStream:
        return EventStream(self._stream_events(request))

    async def _stream_events(self, request: ChatRequest):
        body = self.build_body(request)
        body["stream"] = True
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                async with client.stream(
                    "POST",
                    f"{self.base_url}/text/v1/messages",
                    json=body,
                    headers=self._headers(),
                ) as resp:
                    if resp.status_code >= 400:
                        await resp.aread()
                    resp.raise_for_status()
                    async with aclosing(message_events(sse_payloads(resp.aiter_lines()))) as events:
                        async for event in events:
                            yield event
        except httpx.TimeoutException:
            logger.warning("Messages transport stream timed out")
            raise
        except httpx.HTTPError as e:
            logger.warning("Messages transport stream failed: %s", e)
            raise
