"""
Base transport abstraction.
All transports implement this interface so the service can treat them uniformly:
one ChatRequest in, one CanonicalResponse (or an EventStream) out.
"""

from __future__ import annotations

import abc
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import httpx

if TYPE_CHECKING:
    from chatline.service.streaming import EventStream

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "minimax-m2"
DEFAULT_MAX_TOKENS = 2048
DEFAULT_TEMPERATURE = 0.7
DEFAULT_TIMEOUT = 30


@dataclass
class ChatRequest:
    """Uniform request accepted by every transport."""
    messages: list[dict] = field(default_factory=list)
    model: str | None = None
    max_tokens: int | None = None
    temperature: float | None = None
    stream: bool = False
    stop_sequences: list[str] | None = None
    system: str | None = None
    top_p: float | None = None
    top_k: int | None = None
    frequency_penalty: float | None = None
    presence_penalty: float | None = None

    def resolved_model(self) -> str:
        return self.model or DEFAULT_MODEL

    def resolved_max_tokens(self) -> int:
        return self.max_tokens if self.max_tokens is not None else DEFAULT_MAX_TOKENS

    def resolved_temperature(self) -> float:
        return self.temperature if self.temperature is not None else DEFAULT_TEMPERATURE

    def completion_body(self) -> dict:
        """Body for a /chat/completions endpoint. Unset optional fields are omitted."""
        body = {
            "model": self.resolved_model(),
            "messages": self.messages,
            "max_tokens": self.resolved_max_tokens(),
            "temperature": self.resolved_temperature(),
            "stream": self.stream,
        }
        optional = {
            "stop": self.stop_sequences,
            "top_p": self.top_p,
            "top_k": self.top_k,
            "frequency_penalty": self.frequency_penalty,
            "presence_penalty": self.presence_penalty,
        }
        body.update({k: v for k, v in optional.items() if v is not None})
        return body


@dataclass
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0

    def to_dict(self) -> dict:
        return {"input_tokens": self.input_tokens, "output_tokens": self.output_tokens}


@dataclass
class CanonicalResponse:
    """Backend-agnostic response. Produced per request, then discarded."""
    content: str = ""
    role: str = "assistant"
    model: str = ""
    usage: Usage = field(default_factory=Usage)
    finish_reason: str | None = None
    transport: str = ""

    def to_dict(self) -> dict:
        return {
            "content": self.content,
            "role": self.role,
            "model": self.model,
            "usage": self.usage.to_dict(),
            "finish_reason": self.finish_reason,
        }


@dataclass
class StreamEvent:
    """One incremental unit of a streamed response: type is "text" or "stop"."""
    type: str
    content: str = ""
    reason: str | None = None


class BaseTransport(abc.ABC):
    """
    Abstract base for the three backend call paths.
    Transports raise on failure; mapping to ChatError happens in the service.
    """

    name = "base"

    def __init__(self, api_key: str, base_url: str, timeout: float = DEFAULT_TIMEOUT):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    @abc.abstractmethod
    async def send(self, request: ChatRequest) -> CanonicalResponse:
        """Send a non-streaming request and normalize the reply."""
        ...

    @abc.abstractmethod
    def stream(self, request: ChatRequest) -> EventStream:
        """
        Return a lazy EventStream for a streaming request.
        No I/O happens until the stream is first iterated.
        """
        ...

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} base_url={self.base_url!r}>"


def is_valid_api_key(api_key) -> bool:
    return isinstance(api_key, str) and len(api_key) > 0


def is_valid_url(url) -> bool:
    """True for an absolute http(s) URL with a host."""
    if not isinstance(url, str) or not url:
        return False
    try:
        parsed = httpx.URL(url)
    except (httpx.InvalidURL, TypeError, ValueError):
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.host)
