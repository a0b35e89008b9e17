"""
Tests for the settings store: defaults, persistence, theme, validation,
import/export and data clearing.
"""

import json

import pytest

from chatline.settings_store import DEFAULT_SETTINGS, REDACTED, SettingsStore
from chatline.storage.kv_store import CONVERSATIONS_KEY, SETTINGS_KEY, THEME_KEY, LocalStorage


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(str(tmp_path / "chatline.db"))


@pytest.fixture
def settings(storage):
    s = SettingsStore(storage)
    s.initialize()
    return s


# ---------------------------------------------------------------------------
# Defaults and getters
# ---------------------------------------------------------------------------

def test_defaults_on_empty_storage(settings):
    assert settings.settings == DEFAULT_SETTINGS
    assert settings.is_initialized
    assert settings.current_theme == "light"
    assert not settings.is_dark_theme
    assert not settings.is_api_configured


def test_grouped_getters(settings):
    settings.update_settings({"api_key": "sk-test", "top_k": 20})
    assert settings.is_api_configured
    assert settings.get_api_config() == {
        "api_key": "sk-test",
        "base_url": "https://api.minimax.chat/v1",
        "default_model": "minimax-m2",
    }
    assert settings.get_model_params()["top_k"] == 20
    assert set(settings.get_ui_config()) == {
        "theme", "language", "font_size", "show_timestamps",
        "show_message_actions", "auto_scroll", "compact_mode",
    }
    assert settings.get_setting("missing", "fallback") == "fallback"


def test_conversation_defaults(settings):
    settings.update_settings({"default_model": "minimax-m2-stable", "temperature": 0.3})
    assert settings.conversation_defaults() == {
        "model": "minimax-m2-stable",
        "settings": {"temperature": 0.3, "maxTokens": 2048},
    }


# ---------------------------------------------------------------------------
# Mutations and persistence
# ---------------------------------------------------------------------------

def test_update_setting_ignores_unknown_keys(settings, storage):
    settings.update_setting("temperature", 1.1)
    settings.update_setting("no_such_key", 1)
    assert settings.settings["temperature"] == 1.1
    assert "no_such_key" not in settings.settings
    assert json.loads(storage.get_item(SETTINGS_KEY))["temperature"] == 1.1


def test_load_merges_over_defaults(storage):
    storage.set_item(SETTINGS_KEY, json.dumps({"max_tokens": 512}))
    s = SettingsStore(storage)
    s.load_settings()
    assert s.settings["max_tokens"] == 512
    assert s.settings["temperature"] == DEFAULT_SETTINGS["temperature"]
    assert s.error is None


def test_load_corrupt_record_falls_back(storage):
    storage.set_item(SETTINGS_KEY, "{broken")
    s = SettingsStore(storage)
    s.load_settings()
    assert s.settings == DEFAULT_SETTINGS
    assert s.error == "Failed to load settings"
    assert s.is_loading is False


def test_reset_settings(settings):
    settings.update_settings({"max_tokens": 10})
    settings.reset_settings()
    assert settings.settings == DEFAULT_SETTINGS


def test_production_never_persists_api_key(storage):
    s = SettingsStore(storage, production=True)
    s.update_settings({"api_key": "sk-secret"})
    assert s.settings["api_key"] == "sk-secret"
    assert json.loads(storage.get_item(SETTINGS_KEY))["api_key"] == ""


def test_development_persists_api_key(settings, storage):
    settings.update_settings({"api_key": "sk-dev"})
    assert json.loads(storage.get_item(SETTINGS_KEY))["api_key"] == "sk-dev"


# ---------------------------------------------------------------------------
# Theme
# ---------------------------------------------------------------------------

def test_theme_toggle_persists(settings, storage):
    settings.toggle_theme()
    assert settings.is_dark_theme
    assert storage.get_item(THEME_KEY) == "dark"

    settings.set_theme("purple")
    assert settings.current_theme == "dark"


def test_theme_key_overrides_settings_record(storage):
    storage.set_item(SETTINGS_KEY, json.dumps({"theme": "light"}))
    storage.set_item(THEME_KEY, "dark")
    s = SettingsStore(storage)
    s.initialize()
    assert s.current_theme == "dark"


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def test_validate_reports_every_violation(settings):
    settings.settings.update({"api_key": "", "base_url": "not-a-url", "max_tokens": 5000})
    errors = settings.validate_settings()
    assert len(errors) >= 3
    assert "API key is required" in errors
    assert "Invalid base URL format" in errors
    assert "Max tokens must be between 1 and 4096" in errors


def test_validate_clean_settings(settings):
    settings.settings["api_key"] = "sk-test"
    assert settings.validate_settings() == []


@pytest.mark.parametrize("key,value,message", [
    ("temperature", 2.5, "Temperature must be between 0 and 2"),
    ("top_p", -0.1, "Top P must be between 0 and 1"),
    ("top_k", 0, "Top K must be between 1 and 100"),
    ("max_conversations", 1001, "Max conversations must be between 1 and 1000"),
    ("max_messages_per_conversation", "many", "Max messages per conversation must be between 1 and 10000"),
])
def test_validate_ranges(settings, key, value, message):
    settings.settings.update({"api_key": "sk-test", key: value})
    assert settings.validate_settings() == [message]


def test_validate_missing_base_url(settings):
    settings.settings.update({"api_key": "sk-test", "base_url": ""})
    assert settings.validate_settings() == ["Base URL is required"]


# ---------------------------------------------------------------------------
# Import / export / usage / clear
# ---------------------------------------------------------------------------

def test_export_redacts_api_key(settings):
    settings.update_settings({"api_key": "sk-secret"})
    exported = settings.export_settings()
    assert exported["settings"]["api_key"] == REDACTED
    assert exported["version"] == "1.0.0"
    assert "exportedAt" in exported
    assert settings.settings["api_key"] == "sk-secret"


def test_import_keeps_existing_key_over_redacted(settings):
    settings.update_settings({"api_key": "sk-secret"})
    exported = settings.export_settings()
    exported["settings"]["max_tokens"] = 1024

    result = settings.import_settings(exported)
    assert result == {"success": True, "message": "Settings imported successfully"}
    assert settings.settings["api_key"] == "sk-secret"
    assert settings.settings["max_tokens"] == 1024


@pytest.mark.parametrize("data", [None, {}, {"settings": "nope"}, "string"])
def test_import_invalid(settings, data):
    result = settings.import_settings(data)
    assert result["success"] is False
    assert result["message"].startswith("Failed to import settings")


def test_storage_usage(settings, storage):
    storage.set_item(CONVERSATIONS_KEY, "x" * 100)
    usage = settings.get_storage_usage()
    assert usage["breakdown"]["conversations"] == 100
    assert usage["breakdown"]["settings"] > 0
    assert usage["used"] == sum(usage["breakdown"].values())
    assert usage["max"] == 10 * 1024 * 1024
    assert 0 < usage["percentage"] < 1


def test_clear_all_data(settings, storage):
    settings.update_settings({"api_key": "sk-test"})
    settings.set_theme("dark")
    storage.set_item(CONVERSATIONS_KEY, "{}")

    result = settings.clear_all_data()
    assert result["success"] is True
    assert settings.settings == DEFAULT_SETTINGS
    for key in (SETTINGS_KEY, CONVERSATIONS_KEY, THEME_KEY):
        assert storage.get_item(key) is None
