"""
Chat service: one uniform request in, one canonical response out.

Three transports can carry a chat request. The preference order is fixed:

    messages  →  openai  →  http

configure() picks the first one that is enabled and keeps it. There is no
failover: if the selected transport raises, the error is mapped to a
ChatError and propagates to the caller.
"""

from __future__ import annotations

import logging
from typing import AsyncIterator

import httpx
import openai

from chatline.errors import (
    ChatError,
    ConfigurationError,
    NetworkError,
    UNEXPECTED_ERROR_MESSAGE,
    error_for_status,
)
from chatline.service.base import (
    DEFAULT_TIMEOUT,
    BaseTransport,
    CanonicalResponse,
    ChatRequest,
    is_valid_api_key,
    is_valid_url,
)
from chatline.service.http import HTTPTransport
from chatline.service.messages import MessagesTransport
from chatline.service.openai_client import OpenAIClientTransport
from chatline.service.streaming import EventStream

logger = logging.getLogger(__name__)

# Transport name → class
TRANSPORTS: dict[str, type[BaseTransport]] = {
    "messages": MessagesTransport,
    "openai": OpenAIClientTransport,
    "http": HTTPTransport,
}
PREFERENCE = ("messages", "openai", "http")

KNOWN_MODELS = [
    {"id": "minimax-m2", "object": "model", "created": 1642018789, "owned_by": "minimax"},
    {"id": "minimax-m2-stable", "object": "model", "created": 1642018789, "owned_by": "minimax"},
]


def _raw_message(body) -> str:
    """Pull the backend's own error text out of an error body."""
    if isinstance(body, dict):
        message = body.get("message")
        if isinstance(message, str) and message:
            return message
        error = body.get("error")
        if isinstance(error, dict):
            return _raw_message(error)
        if isinstance(error, str):
            return error
    elif isinstance(body, str):
        return body
    return ""


def _response_message(response: httpx.Response) -> str:
    try:
        return _raw_message(response.json())
    except Exception:
        try:
            return response.text[:200]
        except Exception:
            return ""


class ChatService:
    """Normalizes the configured transport into CanonicalResponse / EventStream."""

    def __init__(self):
        self.transport: BaseTransport | None = None
        self.rest: HTTPTransport | None = None
        self.is_configured = False

    def configure(
        self,
        api_key: str,
        base_url: str,
        transports: list[str] | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> "ChatService":
        """Validate credentials and select the transport. Fails fast."""
        if not is_valid_api_key(api_key) or not base_url:
            raise ConfigurationError("API key and base URL are required")
        if not is_valid_url(base_url):
            raise ConfigurationError(f"Invalid base URL: {base_url}")

        enabled = list(PREFERENCE) if transports is None else list(transports)
        for name in enabled:
            if name not in TRANSPORTS:
                logger.warning("Unknown transport '%s', skipping", name)

        selected = next((name for name in PREFERENCE if name in enabled), None)
        if selected is None:
            raise ConfigurationError("No transport configured")

        self.transport = TRANSPORTS[selected](api_key, base_url, timeout=timeout)
        if isinstance(self.transport, HTTPTransport):
            self.rest = self.transport
        else:
            self.rest = HTTPTransport(api_key, base_url, timeout=timeout)
        self.is_configured = True
        logger.info("Chat service configured: transport=%s base_url=%s", selected, base_url)
        return self

    def _require_configured(self, message: str = "Chat service not initialized") -> None:
        if not self.is_configured or self.transport is None:
            raise ConfigurationError(message)

    async def send(self, request: ChatRequest) -> CanonicalResponse | EventStream:
        """
        Send a chat request.
        Returns a CanonicalResponse, or a lazy EventStream when request.stream is set.
        """
        self._require_configured()
        if request.stream:
            return self.stream(request)
        try:
            return await self.transport.send(request)
        except Exception as e:
            logger.error("Error sending message via '%s': %s", self.transport.name, e)
            raise self.handle_error(e) from e

    def stream(self, request: ChatRequest) -> EventStream:
        """Lazy stream of text/stop events; errors surface as ChatError during iteration."""
        self._require_configured()
        request.stream = True
        return EventStream(self._guarded(self.transport.stream(request)))

    async def _guarded(self, inner: EventStream) -> AsyncIterator:
        try:
            async for event in inner:
                yield event
        except Exception as e:
            logger.error("Stream from '%s' failed: %s", self.transport.name, e)
            raise self.handle_error(e) from e
        finally:
            await inner.aclose()

    async def list_models(self) -> list[dict]:
        """GET /models, or the built-in list when not configured."""
        if not self.is_configured:
            return [dict(m) for m in KNOWN_MODELS]
        try:
            data = await self.rest.get("/models")
        except Exception as e:
            logger.error("Error fetching models: %s", e)
            raise self.handle_error(e) from e
        return data.get("data", [])

    async def get_account(self) -> dict:
        self._require_configured("Service not initialized")
        try:
            return await self.rest.get("/account")
        except Exception as e:
            logger.error("Error fetching account info: %s", e)
            raise self.handle_error(e) from e

    @staticmethod
    async def test_connection(
        api_key: str,
        base_url: str,
        transports: list[str] | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> dict:
        """Probe /account with throwaway credentials. Never touches a live service."""
        try:
            probe = ChatService().configure(api_key, base_url, transports, timeout)
            await probe.get_account()
        except ChatError as e:
            return {"success": False, "message": e.message}
        return {"success": True, "message": "Connection successful"}

    @staticmethod
    def handle_error(exc: Exception) -> ChatError:
        """Map any transport exception onto the ChatError taxonomy."""
        if isinstance(exc, ChatError):
            return exc
        if isinstance(exc, httpx.HTTPStatusError):
            return error_for_status(exc.response.status_code, _response_message(exc.response))
        if isinstance(exc, openai.APIStatusError):
            return error_for_status(exc.status_code, _raw_message(exc.body) or exc.message)
        if isinstance(exc, (httpx.TransportError, openai.APIConnectionError)):
            return NetworkError()
        return ChatError(str(exc) or UNEXPECTED_ERROR_MESSAGE)
