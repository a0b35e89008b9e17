"""
Data models for conversations.
Persisted and exported as JSON with camelCase keys (createdAt, maxTokens, ...).
"""

from __future__ import annotations
import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import uuid4

DEFAULT_TITLE = "New Conversation"
DEFAULT_MODEL = "minimax-m2"
DEFAULT_CONVERSATION_SETTINGS = {"temperature": 0.7, "maxTokens": 2048}


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_id() -> str:
    return str(uuid4())


@dataclass
class Message:
    """A single message in a conversation."""
    id: str = field(default_factory=new_id)
    role: str = "user"       # "user" | "assistant"
    content: str = ""
    timestamp: str = field(default_factory=now_iso)
    extra: dict = field(default_factory=dict)   # model, usage, finish_reason, ...

    FIELDS = ("id", "role", "content", "timestamp")

    def to_dict(self) -> dict:
        return {
            **self.extra,
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp,
        }

    def to_openai_format(self) -> dict:
        """The role/content pair sent to the backend."""
        return {"role": self.role, "content": self.content}

    def update(self, updates: dict) -> None:
        for key, value in updates.items():
            if key in self.FIELDS:
                setattr(self, key, value)
            else:
                self.extra[key] = value

    @classmethod
    def from_dict(cls, data: dict) -> Message:
        """Build from a snapshot dict, generating id/timestamp when absent."""
        return cls(
            id=data.get("id") or new_id(),
            role=data.get("role", "user"),
            content=data.get("content") or "",
            timestamp=data.get("timestamp") or now_iso(),
            extra={k: v for k, v in data.items() if k not in cls.FIELDS},
        )


@dataclass
class Conversation:
    """An ordered thread of messages with its own model and settings."""
    id: str = field(default_factory=new_id)
    title: str = DEFAULT_TITLE
    messages: list[Message] = field(default_factory=list)
    created_at: str = field(default_factory=now_iso)
    updated_at: str = field(default_factory=now_iso)
    model: str = DEFAULT_MODEL
    settings: dict = field(default_factory=lambda: dict(DEFAULT_CONVERSATION_SETTINGS))

    def touch(self) -> None:
        self.updated_at = now_iso()

    def find_message(self, message_id: str) -> Message | None:
        return next((m for m in self.messages if m.id == message_id), None)

    def index_of(self, message_id: str) -> int:
        for i, m in enumerate(self.messages):
            if m.id == message_id:
                return i
        return -1

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "messages": [m.to_dict() for m in self.messages],
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "model": self.model,
            "settings": copy.deepcopy(self.settings),
        }

    def to_openai_format(self) -> list[dict]:
        return [m.to_openai_format() for m in self.messages]

    @classmethod
    def from_dict(cls, data: dict) -> Conversation:
        return cls(
            id=data.get("id") or new_id(),
            title=data.get("title") or DEFAULT_TITLE,
            messages=[Message.from_dict(m) for m in data.get("messages") or []],
            created_at=data.get("createdAt") or now_iso(),
            updated_at=data.get("updatedAt") or now_iso(),
            model=data.get("model") or DEFAULT_MODEL,
            settings={**DEFAULT_CONVERSATION_SETTINGS, **(data.get("settings") or {})},
        )
