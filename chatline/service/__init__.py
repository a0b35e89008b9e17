"""
Service layer for chatline.
One request shape, three interchangeable transports, one canonical response.
"""
from chatline.service.base import (
    BaseTransport,
    CanonicalResponse,
    ChatRequest,
    StreamEvent,
    Usage,
)
from chatline.service.http import HTTPTransport
from chatline.service.messages import MessagesTransport
from chatline.service.openai_client import OpenAIClientTransport
from chatline.service.service import ChatService
from chatline.service.streaming import EventStream

__all__ = [
    "BaseTransport",
    "CanonicalResponse",
    "ChatRequest",
    "ChatService",
    "EventStream",
    "HTTPTransport",
    "MessagesTransport",
    "OpenAIClientTransport",
    "StreamEvent",
    "Usage",
]
