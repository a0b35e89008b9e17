"""
Raw HTTP transport: direct POSTs to an OpenAI-style /chat/completions endpoint.

Also serves the plain REST lookups the client needs (/models, /account),
so it is constructed even when another transport handles chat requests.
"""

from __future__ import annotations

import logging
import time
from contextlib import aclosing

import httpx

from chatline.service.base import BaseTransport, CanonicalResponse, ChatRequest, Usage
from chatline.service.streaming import EventStream, completion_events, sse_payloads

logger = logging.getLogger(__name__)


def completion_to_canonical(data: dict, transport: str = "") -> CanonicalResponse:
    """Normalize a chat-completions JSON body."""
    choices = data.get("choices") or [{}]
    choice = choices[0]
    usage = data.get("usage") or {}
    return CanonicalResponse(
        content=(choice.get("message") or {}).get("content") or "",
        model=data.get("model", ""),
        usage=Usage(
            input_tokens=usage.get("prompt_tokens", usage.get("input_tokens", 0)) or 0,
            output_tokens=usage.get("completion_tokens", usage.get("output_tokens", 0)) or 0,
        ),
        finish_reason=choice.get("finish_reason"),
        transport=transport,
    )


class HTTPTransport(BaseTransport):
    """Chat completions over a bare httpx client with a bearer token."""

    name = "http"

    @property
    def api_url(self) -> str:
        return f"{self.base_url}/text/v1"

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def send(self, request: ChatRequest) -> CanonicalResponse:
        """Forward a non-streaming request."""
        t0 = time.monotonic()
        body = request.completion_body()
        body["stream"] = False
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(
                    f"{self.api_url}/chat/completions",
                    json=body,
                    headers=self._headers(),
                )
                resp.raise_for_status()
                data = resp.json()
        except Exception as e:
            logger.warning("HTTP transport request failed: %s", e)
            raise

        logger.debug(
            "HTTP transport answered for model '%s' in %.0fms",
            body["model"], (time.monotonic() - t0) * 1000,
        )
        return completion_to_canonical(data, transport=self.name)

    def stream(self, request: ChatRequest) -> EventStream:
        return EventStream(self._stream_events(request))

    async def _stream_events(self, request: ChatRequest):
        body = request.completion_body()
        body["stream"] = True
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                async with client.stream(
                    "POST",
                    f"{self.api_url}/chat/completions",
                    json=body,
                    headers=self._headers(),
                ) as resp:
                    if resp.status_code >= 400:
                        await resp.aread()
                    resp.raise_for_status()
                    async with aclosing(completion_events(sse_payloads(resp.aiter_lines()))) as events:
                        async for event in events:
                            yield event
        except httpx.TimeoutException:
            logger.warning("HTTP transport stream timed out")
            raise
        except httpx.HTTPError as e:
            logger.warning("HTTP transport stream failed: %s", e)
            raise

    async def get(self, path: str) -> dict:
        """GET a JSON resource under the API root (e.g. /models, /account)."""
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.get(f"{self.api_url}{path}", headers=self._headers())
            resp.raise_for_status()
            return resp.json()
