"""
Completion-oriented transport built on the openai SDK's async client.
"""

from __future__ import annotations

import logging
from contextlib import aclosing

from openai import AsyncOpenAI

from chatline.service.base import BaseTransport, CanonicalResponse, ChatRequest, Usage
from chatline.service.streaming import EventStream, completion_events

logger = logging.getLogger(__name__)


def _kwargs(request: ChatRequest, stream: bool) -> dict:
    body = request.completion_body()
    body["stream"] = stream
    # top_k is not part of the SDK signature; pass it through untouched
    top_k = body.pop("top_k", None)
    if top_k is not None:
        body["extra_body"] = {"top_k": top_k}
    return body


class OpenAIClientTransport(BaseTransport):
    """Chat completions via openai.AsyncOpenAI pointed at {base_url}/text/v1."""

    name = "openai"

    def __init__(self, api_key: str, base_url: str, timeout: float = 30, client=None):
        super().__init__(api_key, base_url, timeout)
        self.client = client or AsyncOpenAI(
            api_key=api_key,
            base_url=f"{self.base_url}/text/v1",
            timeout=timeout,
            max_retries=0,
        )

    async def send(self, request: ChatRequest) -> CanonicalResponse:
        try:
            response = await self.client.chat.completions.create(**_kwargs(request, stream=False))
        except Exception as e:
            logger.warning("OpenAI client transport request failed: %s", e)
            raise

        choice = response.choices[0]
        usage = response.usage
        return CanonicalResponse(
            content=choice.message.content or "",
            model=response.model,
            usage=Usage(
                input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
                output_tokens=getattr(usage, "completion_tokens", 0) or 0,
            ),
            finish_reason=choice.finish_reason,
            transport=self.name,
        )

    def stream(self, request: ChatRequest) -> EventStream:
        return EventStream(self._stream_events(request))

    async def _stream_events(self, request: ChatRequest):
        try:
            chunks = await self.client.chat.completions.create(**_kwargs(request, stream=True))
        except Exception as e:
            logger.warning("OpenAI client transport stream failed: %s", e)
            raise
        try:
            async with aclosing(completion_events(chunks)) as events:
                async for event in events:
                    yield event
        finally:
            await chunks.close()
