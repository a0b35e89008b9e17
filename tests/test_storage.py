"""
Tests for the SQLite key-value store and the conversation data models.
"""

import pytest

from chatline.storage import Conversation, LocalStorage, Message


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(str(tmp_path / "nested" / "chatline.db"))


# ---------------------------------------------------------------------------
# LocalStorage
# ---------------------------------------------------------------------------

def test_creates_parent_directory(tmp_path, storage):
    assert (tmp_path / "nested" / "chatline.db").exists()


def test_set_get_overwrite(storage):
    assert storage.get_item("settings") is None
    storage.set_item("settings", '{"a": 1}')
    assert storage.get_item("settings") == '{"a": 1}'
    storage.set_item("settings", '{"a": 2}')
    assert storage.get_item("settings") == '{"a": 2}'


def test_remove_keys_clear(storage):
    storage.set_item("theme", "dark")
    storage.set_item("conversations", "{}")
    assert storage.keys() == ["conversations", "theme"]

    storage.remove_item("theme")
    storage.remove_item("theme")
    assert storage.keys() == ["conversations"]

    storage.clear()
    assert storage.keys() == []


def test_values_survive_reopen(tmp_path):
    path = str(tmp_path / "db.sqlite")
    LocalStorage(path).set_item("theme", "dark")
    assert LocalStorage(path).get_item("theme") == "dark"


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------

def test_message_from_dict_fills_missing_fields():
    msg = Message.from_dict({"role": "assistant", "content": "hi", "model": "minimax-m2"})
    assert msg.id
    assert msg.timestamp
    assert msg.to_dict()["model"] == "minimax-m2"
    assert msg.to_openai_format() == {"role": "assistant", "content": "hi"}


def test_message_to_dict_core_fields_win_over_extra():
    msg = Message(id="m1", role="user", content="x", extra={"id": "stale"})
    assert msg.to_dict()["id"] == "m1"


def test_conversation_camel_case_round_trip():
    conv = Conversation(title="T", messages=[Message(role="user", content="q")])
    data = conv.to_dict()
    assert {"createdAt", "updatedAt"} <= data.keys()
    assert data["settings"] == {"temperature": 0.7, "maxTokens": 2048}

    back = Conversation.from_dict(data)
    assert back.id == conv.id
    assert back.created_at == conv.created_at
    assert back.messages[0].content == "q"


def test_conversation_from_partial_dict():
    conv = Conversation.from_dict({"settings": {"temperature": 1.5}})
    assert conv.title == "New Conversation"
    assert conv.model == "minimax-m2"
    assert conv.settings == {"temperature": 1.5, "maxTokens": 2048}


def test_conversation_lookup():
    a, b = Message(content="a"), Message(content="b")
    conv = Conversation(messages=[a, b])
    assert conv.find_message(b.id) is b
    assert conv.index_of(b.id) == 1
    assert conv.index_of("missing") == -1
    assert conv.find_message("missing") is None
