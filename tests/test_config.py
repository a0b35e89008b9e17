"""
Tests for config loading, env-var resolution and app-state wiring.
"""

import pytest

from chatline import config
from chatline.app import build_app_state
from chatline.config import _walk_and_resolve, is_production, load_config


@pytest.fixture(autouse=True)
def fresh_config(monkeypatch):
    monkeypatch.setattr(config, "_config", None)


def _write_config(tmp_path, body):
    path = tmp_path / "config.yaml"
    path.write_text(body)
    return path


def test_env_vars_resolved(monkeypatch):
    monkeypatch.setenv("CHATLINE_TEST_KEY", "sk-env")
    monkeypatch.delenv("CHATLINE_TEST_MISSING", raising=False)
    resolved = _walk_and_resolve({
        "service": {"api_key": "${CHATLINE_TEST_KEY}", "base_url": "${CHATLINE_TEST_MISSING}"},
        "list": ["${CHATLINE_TEST_KEY}", 3],
    })
    assert resolved == {
        "service": {"api_key": "sk-env", "base_url": ""},
        "list": ["sk-env", 3],
    }


def test_load_fills_defaults(tmp_path):
    path = _write_config(tmp_path, "service:\n  timeout: 5\n")
    cfg = load_config(path)
    assert cfg["service"]["timeout"] == 5
    assert cfg["service"]["transports"] == ["messages", "openai", "http"]
    assert cfg["storage"]["autosave_interval"] == 30
    assert cfg["app"]["environment"] == "development"


def test_load_is_cached(tmp_path):
    first = load_config(_write_config(tmp_path, "app:\n  environment: production\n"))
    assert load_config() is first
    assert config.get_config() is first
    assert is_production(first)


def test_missing_config_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.yaml")


def test_build_app_state_uses_config_credentials(tmp_path):
    path = _write_config(tmp_path, (
        f"storage:\n  path: {tmp_path / 'data.db'}\n"
        "service:\n"
        "  api_key: sk-config\n"
        "  base_url: https://api.example.test/v1\n"
        "  transports: [http]\n"
    ))
    state = build_app_state(load_config(path))

    assert state.service.is_configured
    assert state.service.transport.name == "http"
    assert state.chats.conversation_count == 1
    assert state.credentials() == ("sk-config", "https://api.example.test/v1")


def test_settings_credentials_win_over_config(tmp_path):
    path = _write_config(tmp_path, (
        f"storage:\n  path: {tmp_path / 'data.db'}\n"
        "service:\n  api_key: sk-config\n"
    ))
    state = build_app_state(load_config(path))
    state.settings.update_settings({"api_key": "sk-settings", "base_url": "https://other.test"})

    assert state.configure_service()
    assert state.credentials() == ("sk-settings", "https://other.test")
    assert state.service.transport.api_key == "sk-settings"


def test_unconfigured_service_is_reported(tmp_path):
    path = _write_config(tmp_path, f"storage:\n  path: {tmp_path / 'data.db'}\n")
    state = build_app_state(load_config(path))
    assert not state.service.is_configured
    assert state.configure_service() is False
