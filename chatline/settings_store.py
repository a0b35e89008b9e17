"""
Settings store: one flat record of API credentials, model defaults and
UI/chat/privacy/advanced preferences.

Persisted as JSON under the "settings" key; the theme preference is kept
separately under "theme". In production the API key is never written out.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

from chatline.service.base import is_valid_url
from chatline.storage.kv_store import CONVERSATIONS_KEY, SETTINGS_KEY, THEME_KEY, LocalStorage

logger = logging.getLogger(__name__)

STORAGE_QUOTA = 10 * 1024 * 1024  # 10 MiB
EXPORT_VERSION = "1.0.0"
REDACTED = "[REDACTED]"
THEMES = ("light", "dark")

DEFAULT_SETTINGS: dict = {
    # API
    "api_key": "",
    "base_url": "https://api.minimax.chat/v1",
    "default_model": "minimax-m2",
    # Model
    "max_tokens": 2048,
    "temperature": 0.7,
    "top_p": 1.0,
    "top_k": 40,
    "frequency_penalty": 0.0,
    "presence_penalty": 0.0,
    # UI
    "theme": "light",
    "language": "en",
    "font_size": "medium",
    "show_timestamps": True,
    "show_message_actions": True,
    "auto_scroll": True,
    "compact_mode": False,
    # Chat
    "auto_save": True,
    "max_conversations": 100,
    "max_messages_per_conversation": 1000,
    "auto_title": True,
    "confirm_delete": True,
    # Privacy
    "share_data": False,
    "analytics_enabled": True,
    "error_reporting": True,
    # Advanced
    "debug_mode": False,
    "log_level": "info",
    "stream_responses": True,
    "show_thinking": False,
}

# field → (low, high, label)
NUMERIC_RANGES = {
    "max_tokens": (1, 4096, "Max tokens"),
    "temperature": (0, 2, "Temperature"),
    "top_p": (0, 1, "Top P"),
    "top_k": (1, 100, "Top K"),
    "max_conversations": (1, 1000, "Max conversations"),
    "max_messages_per_conversation": (1, 10000, "Max messages per conversation"),
}


def _in_range(value, low, high) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return low <= value <= high


class SettingsStore:
    """Holds the settings record and keeps it in sync with LocalStorage."""

    def __init__(self, storage: LocalStorage, production: bool = False):
        self.storage = storage
        self.production = production
        self.settings: dict = dict(DEFAULT_SETTINGS)
        self.is_initialized = False
        self.is_loading = False
        self.error: str | None = None

    # ─ Getters ──────────────────────────────────────────────────────────────

    @property
    def is_dark_theme(self) -> bool:
        return self.settings["theme"] == "dark"

    @property
    def current_theme(self) -> str:
        return self.settings["theme"]

    @property
    def is_api_configured(self) -> bool:
        return bool(self.settings.get("api_key") and self.settings.get("base_url"))

    def get_setting(self, key: str, default=None):
        value = self.settings.get(key)
        return default if value is None else value

    def get_api_config(self) -> dict:
        return {
            "api_key": self.settings["api_key"],
            "base_url": self.settings["base_url"],
            "default_model": self.settings["default_model"],
        }

    def get_model_params(self) -> dict:
        return {
            "max_tokens": self.settings["max_tokens"],
            "temperature": self.settings["temperature"],
            "top_p": self.settings["top_p"],
            "top_k": self.settings["top_k"],
            "frequency_penalty": self.settings["frequency_penalty"],
            "presence_penalty": self.settings["presence_penalty"],
        }

    def get_ui_config(self) -> dict:
        keys = ("theme", "language", "font_size", "show_timestamps",
                "show_message_actions", "auto_scroll", "compact_mode")
        return {k: self.settings[k] for k in keys}

    def conversation_defaults(self) -> dict:
        """Model and sampling defaults handed to new conversations."""
        return {
            "model": self.settings["default_model"],
            "settings": {
                "temperature": self.settings["temperature"],
                "maxTokens": self.settings["max_tokens"],
            },
        }

    # ─ Mutations ────────────────────────────────────────────────────────────

    def update_settings(self, new_settings: dict) -> None:
        self.settings.update(new_settings)
        self.save_settings()

    def update_setting(self, key: str, value) -> None:
        """Set one known key. Unknown keys are ignored."""
        if key in self.settings:
            self.settings[key] = value
            self.save_settings()

    def reset_settings(self) -> None:
        self.settings = dict(DEFAULT_SETTINGS)
        self.save_settings()

    def set_theme(self, theme: str) -> None:
        if theme not in THEMES:
            return
        self.settings["theme"] = theme
        try:
            self.storage.set_item(THEME_KEY, theme)
        except Exception as e:
            logger.error("Error saving theme preference: %s", e)
        self.save_settings()

    def toggle_theme(self) -> None:
        self.set_theme("dark" if self.settings["theme"] == "light" else "light")

    # ─ Persistence ──────────────────────────────────────────────────────────

    def initialize(self) -> None:
        if not self.is_initialized:
            self.load_settings()

    def load_settings(self) -> None:
        """Persisted record over defaults; unreadable data falls back to defaults."""
        self.is_loading = True
        self.error = None
        try:
            raw = self.storage.get_item(SETTINGS_KEY)
            if raw:
                parsed = json.loads(raw)
                if not isinstance(parsed, dict):
                    raise ValueError("settings record is not an object")
                self.settings = {**DEFAULT_SETTINGS, **parsed}
            self._load_theme_preference()
            self.is_initialized = True
        except Exception as e:
            logger.error("Error loading settings: %s", e)
            self.error = "Failed to load settings"
            self.settings = dict(DEFAULT_SETTINGS)
        finally:
            self.is_loading = False

    def _load_theme_preference(self) -> None:
        theme = self.storage.get_item(THEME_KEY)
        if theme in THEMES:
            self.settings["theme"] = theme

    def save_settings(self) -> None:
        try:
            safe = dict(self.settings)
            if self.production:
                safe["api_key"] = ""
            self.storage.set_item(SETTINGS_KEY, json.dumps(safe))
        except Exception as e:
            logger.error("Error saving settings: %s", e)

    # ─ Validation / import / export ─────────────────────────────────────────

    def validate_settings(self) -> list[str]:
        """Every violated constraint, as a readable message. Empty means valid."""
        errors = []
        if not self.settings.get("api_key"):
            errors.append("API key is required")

        base_url = self.settings.get("base_url")
        if not base_url:
            errors.append("Base URL is required")
        elif not is_valid_url(base_url):
            errors.append("Invalid base URL format")

        for key, (low, high, label) in NUMERIC_RANGES.items():
            if not _in_range(self.settings.get(key), low, high):
                errors.append(f"{label} must be between {low} and {high}")
        return errors

    def export_settings(self) -> dict:
        settings = dict(self.settings)
        if settings.get("api_key"):
            settings["api_key"] = REDACTED
        return {
            "version": EXPORT_VERSION,
            "exportedAt": datetime.now(timezone.utc).isoformat(),
            "settings": settings,
        }

    def import_settings(self, data) -> dict:
        if not isinstance(data, dict) or not isinstance(data.get("settings"), dict):
            return {"success": False, "message": "Failed to import settings: Invalid settings data"}

        incoming = dict(data["settings"])
        # An exported file never carries a usable key
        if incoming.get("api_key") == REDACTED:
            incoming.pop("api_key")
        self.settings = {**self.settings, **incoming}
        self.save_settings()
        return {"success": True, "message": "Settings imported successfully"}

    def get_storage_usage(self) -> dict:
        breakdown = {"settings": 0, "conversations": 0, "theme": 0}
        try:
            breakdown = {
                "settings": len(self.storage.get_item(SETTINGS_KEY) or ""),
                "conversations": len(self.storage.get_item(CONVERSATIONS_KEY) or ""),
                "theme": len(self.storage.get_item(THEME_KEY) or ""),
            }
        except Exception as e:
            logger.error("Error calculating storage usage: %s", e)
        used = sum(breakdown.values())
        return {
            "used": used,
            "max": STORAGE_QUOTA,
            "percentage": used / STORAGE_QUOTA * 100,
            "breakdown": breakdown,
        }

    def clear_all_data(self) -> dict:
        try:
            for key in (SETTINGS_KEY, CONVERSATIONS_KEY, THEME_KEY):
                self.storage.remove_item(key)
        except Exception as e:
            logger.error("Error clearing data: %s", e)
            return {"success": False, "message": f"Failed to clear data: {e}"}
        self.settings = dict(DEFAULT_SETTINGS)
        return {"success": True, "message": "All data cleared successfully"}
