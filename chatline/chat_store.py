"""
Conversation store: owns every conversation thread, the current-thread
pointer and all message mutations.

State is plain Python objects held by one ConversationStore instance, passed
explicitly to whatever needs it. Persistence goes to LocalStorage under the
"conversations" key, on demand (save_conversations) and from an optional
autosave task.

Sends against one conversation are serialized by a per-conversation
asyncio.Lock; different conversations do not block each other.
"""

from __future__ import annotations

import asyncio
import contextlib
import copy
import dataclasses
import json
import logging
from typing import AsyncIterator, Callable

from chatline.errors import MalformedDataError
from chatline.service.base import CanonicalResponse, ChatRequest, StreamEvent
from chatline.storage.kv_store import CONVERSATIONS_KEY, LocalStorage
from chatline.storage.models import (
    DEFAULT_CONVERSATION_SETTINGS,
    DEFAULT_MODEL,
    DEFAULT_TITLE,
    Conversation,
    Message,
    new_id,
    now_iso,
)

logger = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 50
EXPORT_VERSION = "1.0"
AUTOSAVE_INTERVAL = 30
MESSAGE_ROLES = ("user", "assistant")

# Keyword options a caller may pass through to ChatRequest
REQUEST_OPTIONS = frozenset(
    f.name for f in dataclasses.fields(ChatRequest) if f.name not in ("messages", "stream")
)


def derive_title(content: str) -> str:
    if len(content) > TITLE_MAX_LENGTH:
        return content[:TITLE_MAX_LENGTH] + "..."
    return content


def _round_half_up(value: float) -> int:
    return int(value + 0.5)


class ConversationStore:
    """All conversation state plus the actions that mutate it."""

    def __init__(
        self,
        storage: LocalStorage,
        service,
        defaults: Callable[[], dict] | None = None,
    ):
        self.storage = storage
        self.service = service
        self._defaults = defaults
        self.conversations: list[Conversation] = []
        self.current_conversation_id: str | None = None
        self.is_loading = False
        self.error: str | None = None
        self._locks: dict[str, asyncio.Lock] = {}
        self._autosave_task: asyncio.Task | None = None

    # ─ Getters ──────────────────────────────────────────────────────────────

    @property
    def current_conversation(self) -> Conversation | None:
        return self.get_conversation(self.current_conversation_id)

    @property
    def current_messages(self) -> list[Message]:
        conversation = self.current_conversation
        return conversation.messages if conversation else []

    @property
    def conversation_count(self) -> int:
        return len(self.conversations)

    def get_conversation(self, conversation_id: str | None) -> Conversation | None:
        if conversation_id is None:
            return None
        return next((c for c in self.conversations if c.id == conversation_id), None)

    # ─ Conversation lifecycle ───────────────────────────────────────────────

    def _conversation_defaults(self) -> dict:
        defaults = {"model": DEFAULT_MODEL, "settings": dict(DEFAULT_CONVERSATION_SETTINGS)}
        if self._defaults is not None:
            override = self._defaults() or {}
            defaults["model"] = override.get("model") or defaults["model"]
            defaults["settings"].update(override.get("settings") or {})
        return defaults

    def create_new_conversation(self, title: str = DEFAULT_TITLE) -> Conversation:
        """Prepend a fresh conversation and make it current."""
        defaults = self._conversation_defaults()
        conversation = Conversation(
            title=title,
            model=defaults["model"],
            settings=defaults["settings"],
        )
        self.conversations.insert(0, conversation)
        self.current_conversation_id = conversation.id
        logger.debug("Created conversation %s", conversation.id)
        return conversation

    def set_current_conversation(self, conversation_id: str) -> None:
        if self.get_conversation(conversation_id) is not None:
            self.current_conversation_id = conversation_id

    def _ensure_current(self) -> Conversation:
        conversation = self.current_conversation
        if conversation is None:
            conversation = self.create_new_conversation()
        return conversation

    def clear_current_conversation(self) -> None:
        conversation = self.current_conversation
        if conversation is None:
            return
        conversation.messages = []
        conversation.title = DEFAULT_TITLE
        conversation.touch()

    def delete_conversation(self, conversation_id: str) -> None:
        conversation = self.get_conversation(conversation_id)
        if conversation is None:
            return
        self.conversations.remove(conversation)
        self._locks.pop(conversation_id, None)

        if self.current_conversation_id == conversation_id:
            if self.conversations:
                self.current_conversation_id = self.conversations[0].id
            else:
                self.current_conversation_id = None
                self.create_new_conversation()

    def update_conversation_settings(self, settings: dict) -> None:
        conversation = self.current_conversation
        if conversation is None:
            return
        conversation.settings.update(settings)
        conversation.touch()

    def duplicate_conversation(self, conversation_id: str) -> Conversation | None:
        """Deep copy under a new id; every message gets a new id too."""
        original = self.get_conversation(conversation_id)
        if original is None:
            return None

        duplicate = copy.deepcopy(original)
        duplicate.id = new_id()
        duplicate.title = original.title + " (Copy)"
        duplicate.created_at = duplicate.updated_at = now_iso()
        for message in duplicate.messages:
            message.id = new_id()

        self.conversations.insert(0, duplicate)
        return duplicate

    # ─ Messages ─────────────────────────────────────────────────────────────

    def _append(self, conversation: Conversation, message: Message) -> Message:
        conversation.messages.append(message)
        conversation.touch()
        if len(conversation.messages) == 1 and message.role == "user":
            conversation.title = derive_title(message.content)
        return message

    def add_message(self, message: Message | dict) -> Message:
        """Append to the current conversation (created on demand)."""
        conversation = self._ensure_current()
        if isinstance(message, dict):
            message = Message.from_dict(message)
        else:
            message.id = message.id or new_id()
            message.timestamp = message.timestamp or now_iso()
        return self._append(conversation, message)

    def remove_message(self, message_id: str) -> None:
        conversation = self.current_conversation
        if conversation is None:
            return
        index = conversation.index_of(message_id)
        if index != -1:
            del conversation.messages[index]
            conversation.touch()

    def update_message(self, message_id: str, updates: dict) -> None:
        conversation = self.current_conversation
        if conversation is None:
            return
        message = conversation.find_message(message_id)
        if message is not None:
            message.update(updates)
            conversation.touch()

    # ─ Sending ──────────────────────────────────────────────────────────────

    def _lock_for(self, conversation_id: str) -> asyncio.Lock:
        lock = self._locks.get(conversation_id)
        if lock is None:
            lock = self._locks[conversation_id] = asyncio.Lock()
        return lock

    @staticmethod
    def _build_request(
        conversation: Conversation,
        history: list[dict],
        options: dict,
        stream: bool = False,
    ) -> ChatRequest:
        """Explicit options win over the conversation's own model/settings. Unknown keys are dropped."""
        unknown = sorted(set(options) - REQUEST_OPTIONS)
        if unknown:
            logger.warning("Ignoring unknown request options: %s", ", ".join(unknown))
        options = {k: v for k, v in options.items() if k in REQUEST_OPTIONS}
        model = options.pop("model", None)
        max_tokens = options.pop("max_tokens", None)
        temperature = options.pop("temperature", None)
        return ChatRequest(
            messages=history,
            model=model or conversation.model,
            max_tokens=max_tokens if max_tokens is not None else conversation.settings.get("maxTokens"),
            temperature=temperature if temperature is not None else conversation.settings.get("temperature"),
            stream=stream,
            **options,
        )

    def _record_error(self, exc: Exception) -> None:
        self.error = getattr(exc, "message", None) or str(exc) or "Failed to send message"
        logger.error("Error sending message: %s", self.error)

    async def _complete(
        self, conversation: Conversation, history: list[dict], options: dict
    ) -> CanonicalResponse:
        request = self._build_request(conversation, history, options)
        self.is_loading = True
        self.error = None
        try:
            return await self.service.send(request)
        except Exception as e:
            self._record_error(e)
            raise
        finally:
            self.is_loading = False

    async def send_message(self, content: str, **options) -> str:
        """
        Send the current conversation's history plus `content` as a new user
        turn and return the assistant's text. The message list is not touched;
        callers that want both turns recorded use chat().
        """
        conversation = self._ensure_current()
        async with self._lock_for(conversation.id):
            history = conversation.to_openai_format()
            history.append({"role": "user", "content": content})
            response = await self._complete(conversation, history, options)
        return response.content

    @staticmethod
    def _assistant_message(response: CanonicalResponse) -> Message:
        return Message(
            role="assistant",
            content=response.content,
            extra={
                "model": response.model,
                "usage": response.usage.to_dict(),
                "finish_reason": response.finish_reason,
            },
        )

    async def chat(self, content: str, **options) -> Message:
        """Record the user turn, send, record the reply. Returns the reply."""
        conversation = self._ensure_current()
        async with self._lock_for(conversation.id):
            history = conversation.to_openai_format()
            history.append({"role": "user", "content": content})
            self._append(conversation, Message(role="user", content=content))
            response = await self._complete(conversation, history, options)
            return self._append(conversation, self._assistant_message(response))

    async def stream_chat(self, content: str, **options) -> AsyncIterator[StreamEvent]:
        """
        Streaming form of chat(): yields text/stop events as they arrive and
        records the assistant reply once the stream finishes. A consumer that
        stops early leaves only the user turn recorded.
        """
        conversation = self._ensure_current()
        async with self._lock_for(conversation.id):
            history = conversation.to_openai_format()
            history.append({"role": "user", "content": content})
            self._append(conversation, Message(role="user", content=content))
            request = self._build_request(conversation, history, options, stream=True)

            parts: list[str] = []
            reason = None
            self.is_loading = True
            self.error = None
            try:
                async with self.service.stream(request) as events:
                    async for event in events:
                        if event.type == "text":
                            parts.append(event.content)
                        elif event.type == "stop":
                            reason = event.reason
                        yield event
            except Exception as e:
                self._record_error(e)
                raise
            finally:
                self.is_loading = False

            self._append(conversation, Message(
                role="assistant",
                content="".join(parts),
                extra={"model": request.resolved_model(), "finish_reason": reason},
            ))

    async def retry_message(self, message_id: str) -> str | None:
        """
        Replay a user message: drop the assistant replies that followed it (up
        to the next user turn), resend it with the history that preceded it,
        and put the new reply right after it.
        """
        conversation = self.current_conversation
        if conversation is None:
            return None

        async with self._lock_for(conversation.id):
            # Positions can shift while waiting for the lock
            index = conversation.index_of(message_id)
            if index == -1 or conversation.messages[index].role != "user":
                return None
            target = conversation.messages[index]

            end = index + 1
            while end < len(conversation.messages) and conversation.messages[end].role != "user":
                end += 1
            kept = [m for m in conversation.messages[index + 1:end] if m.role != "assistant"]
            conversation.messages[index + 1:end] = kept
            conversation.touch()

            history = [m.to_openai_format() for m in conversation.messages[:index]]
            history.append({"role": "user", "content": target.content})
            response = await self._complete(conversation, history, {})

            reply = self._assistant_message(response)
            position = conversation.index_of(target.id)
            if position == -1:
                conversation.messages.append(reply)
            else:
                conversation.messages.insert(position + 1, reply)
            conversation.touch()
        return response.content

    # ─ Export / import / search ─────────────────────────────────────────────

    def export_conversation(self, conversation_id: str) -> dict | None:
        conversation = self.get_conversation(conversation_id)
        if conversation is None:
            return None
        return {**conversation.to_dict(), "exportedAt": now_iso(), "version": EXPORT_VERSION}

    def import_conversation(self, data: dict) -> Conversation:
        """Prepend a conversation built from a snapshot. Raises MalformedDataError."""
        problem = None
        if not isinstance(data, dict) or not isinstance(data.get("messages"), list):
            problem = "Invalid conversation data: a 'messages' list is required"
        elif not all(isinstance(m, dict) for m in data["messages"]):
            problem = "Invalid conversation data: every message must be an object"
        elif not all(m.get("role") in MESSAGE_ROLES for m in data["messages"]):
            problem = "Invalid conversation data: message role must be 'user' or 'assistant'"
        elif not all(isinstance(m.get("content"), str) for m in data["messages"]):
            problem = "Invalid conversation data: message content must be a string"
        if problem:
            self.error = "Failed to import conversation: " + problem
            raise MalformedDataError(problem)

        conversation = Conversation(
            title=data.get("title") or "Imported Conversation",
            messages=[Message.from_dict(m) for m in data["messages"]],
            model=data.get("model") or DEFAULT_MODEL,
            settings={**DEFAULT_CONVERSATION_SETTINGS, **(data.get("settings") or {})},
        )
        self.conversations.insert(0, conversation)
        logger.info("Imported conversation %s (%d messages)", conversation.id, len(conversation.messages))
        return conversation

    def search_messages(self, query: str) -> list[dict]:
        """Case-insensitive substring search across every conversation."""
        if not query or not query.strip():
            return []
        term = query.lower()
        results = []
        for conversation in self.conversations:
            for message in conversation.messages:
                if term in message.content.lower():
                    results.append({
                        "conversation_id": conversation.id,
                        "conversation_title": conversation.title,
                        "message_id": message.id,
                        "message": message,
                        "match": message.content,
                    })
        return results

    def get_message_stats(self) -> dict:
        total = sum(len(c.messages) for c in self.conversations)
        user = sum(1 for c in self.conversations for m in c.messages if m.role == "user")
        assistant = sum(1 for c in self.conversations for m in c.messages if m.role == "assistant")
        count = len(self.conversations)
        return {
            "total_conversations": count,
            "total_messages": total,
            "user_messages": user,
            "assistant_messages": assistant,
            "average_messages_per_conversation": _round_half_up(total / count) if count else 0,
        }

    # ─ Persistence ──────────────────────────────────────────────────────────

    def load_conversations(self) -> None:
        """Read the persisted collection. Any failure resets to empty state."""
        try:
            raw = self.storage.get_item(CONVERSATIONS_KEY)
            if raw:
                data = json.loads(raw)
                self.conversations = [Conversation.from_dict(c) for c in data.get("conversations") or []]
                current = data.get("currentConversationId")
                self.current_conversation_id = current if self.get_conversation(current) else None
                logger.info("Loaded %d conversations", len(self.conversations))
        except Exception as e:
            logger.error("Error loading conversations: %s", e)
            self.conversations = []
            self.current_conversation_id = None

    def save_conversations(self) -> None:
        """Write the whole collection. Failures are logged, never raised."""
        try:
            data = {
                "conversations": [c.to_dict() for c in self.conversations],
                "currentConversationId": self.current_conversation_id,
                "lastSaved": now_iso(),
            }
            self.storage.set_item(CONVERSATIONS_KEY, json.dumps(data, ensure_ascii=False))
            logger.debug("Saved %d conversations", len(self.conversations))
        except Exception as e:
            logger.error("Error saving conversations: %s", e)

    def initialize(self) -> None:
        if not self.conversations:
            self.create_new_conversation()
        elif self.current_conversation is None:
            self.current_conversation_id = self.conversations[0].id

    def start_autosave(self, interval: float = AUTOSAVE_INTERVAL) -> asyncio.Task:
        """Save every `interval` seconds until stop_autosave(). Needs a running loop."""
        if self._autosave_task is None or self._autosave_task.done():
            self._autosave_task = asyncio.get_running_loop().create_task(self._autosave_loop(interval))
        return self._autosave_task

    async def _autosave_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            self.save_conversations()

    async def stop_autosave(self) -> None:
        task, self._autosave_task = self._autosave_task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
