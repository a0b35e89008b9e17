"""
Application state: the one object that wires storage, settings, the chat
service and the conversation store together.

Nothing in chatline looks state up globally; build an AppState once and hand
it (or the pieces it holds) to whoever needs it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from chatline.chat_store import AUTOSAVE_INTERVAL, ConversationStore
from chatline.config import is_production
from chatline.errors import ConfigurationError
from chatline.service.base import DEFAULT_TIMEOUT
from chatline.service.service import ChatService
from chatline.settings_store import DEFAULT_SETTINGS, SettingsStore
from chatline.storage.kv_store import LocalStorage

logger = logging.getLogger(__name__)


@dataclass
class AppState:
    cfg: dict
    storage: LocalStorage
    settings: SettingsStore
    service: ChatService
    chats: ConversationStore

    def _credential(self, key: str) -> str:
        value = self.settings.get_setting(key)
        fallback = self.cfg.get("service", {}).get(key)
        # A value still at its default yields to config/env
        if fallback and value == DEFAULT_SETTINGS[key]:
            return fallback
        return value or fallback or ""

    def credentials(self) -> tuple[str, str]:
        """Persisted settings first, config/env as fallback."""
        return self._credential("api_key"), self._credential("base_url")

    def configure_service(self) -> bool:
        """(Re)configure the chat service from current credentials. False if incomplete."""
        api_key, base_url = self.credentials()
        svc_cfg = self.cfg.get("service", {})
        try:
            self.service.configure(
                api_key,
                base_url,
                transports=svc_cfg.get("transports"),
                timeout=svc_cfg.get("timeout", DEFAULT_TIMEOUT),
            )
        except ConfigurationError as e:
            logger.warning("Chat service not configured: %s", e.message)
            return False
        return True

    def model_options(self) -> dict:
        """Sampling parameters from settings, for send/chat calls."""
        params = self.settings.get_model_params()
        return {
            "top_p": params["top_p"],
            "top_k": params["top_k"],
            "frequency_penalty": params["frequency_penalty"],
            "presence_penalty": params["presence_penalty"],
        }

    @property
    def autosave_interval(self) -> float:
        return self.cfg.get("storage", {}).get("autosave_interval", AUTOSAVE_INTERVAL)

    def clear_all_data(self) -> dict:
        result = self.settings.clear_all_data()
        if result["success"]:
            self.chats.conversations = []
            self.chats.current_conversation_id = None
            self.chats.initialize()
        return result


def build_app_state(cfg: dict) -> AppState:
    """Load settings and conversations, then configure the service if possible."""
    storage = LocalStorage(cfg["storage"]["path"])
    settings = SettingsStore(storage, production=is_production(cfg))
    settings.initialize()

    service = ChatService()
    chats = ConversationStore(storage, service, defaults=settings.conversation_defaults)
    chats.load_conversations()
    chats.initialize()

    state = AppState(cfg=cfg, storage=storage, settings=settings, service=service, chats=chats)
    state.configure_service()
    return state
