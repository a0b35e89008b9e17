"""
Local persistence for chatline: a key-value file plus the conversation models.
"""
from chatline.storage.kv_store import CONVERSATIONS_KEY, SETTINGS_KEY, THEME_KEY, LocalStorage
from chatline.storage.models import Conversation, Message

__all__ = [
    "CONVERSATIONS_KEY",
    "SETTINGS_KEY",
    "THEME_KEY",
    "Conversation",
    "LocalStorage",
    "Message",
]
