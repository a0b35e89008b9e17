"""
Tests for export/import formatting and the filename helpers.
"""

import json

import pytest

from chatline.errors import MalformedDataError
from chatline.export import (
    export_all_conversations,
    export_conversation,
    format_content_as_markdown,
    format_for_path,
    generate_export_filename,
    normalize_format,
    parse_conversation,
    sanitize_filename,
    validate_export_data,
)
from chatline.storage.models import Conversation, Message


@pytest.fixture
def conversation():
    return Conversation(
        title="Trip planning",
        model="minimax-m2",
        messages=[
            Message(role="user", content="Where should I go?", timestamp="2024-05-01T10:00:00+00:00"),
            Message(role="assistant", content="Try Lisbon.\n\nIt is sunny.", timestamp="2024-05-01T10:00:05+00:00"),
        ],
    )


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------

def test_json_export_is_full_snapshot(conversation):
    data = json.loads(export_conversation(conversation, "json"))
    assert data["id"] == conversation.id
    assert data["title"] == "Trip planning"
    assert data["version"] == "1.0.0"
    assert len(data["messages"]) == 2
    assert data["messages"][0]["timestamp"] == "2024-05-01T10:00:00+00:00"


def test_unknown_format_falls_back_to_json(conversation):
    assert json.loads(export_conversation(conversation, "yaml"))["title"] == "Trip planning"
    assert normalize_format("md") == "markdown"
    assert normalize_format("TEXT") == "txt"
    assert normalize_format(None) == "json"


def test_text_export_layout(conversation):
    text = export_conversation(conversation, "txt")
    lines = text.splitlines()
    assert lines[0] == "Conversation: Trip planning"
    assert lines[1] == "Model: minimax-m2"
    assert "=" * 50 in lines
    assert "[User] 2024-05-01T10:00:00+00:00" in lines
    assert "[Assistant] 2024-05-01T10:00:05+00:00" in lines


def test_markdown_export_layout(conversation):
    md = export_conversation(conversation, "markdown")
    assert md.startswith("# Trip planning")
    assert "**Model:** minimax-m2" in md
    assert "## 👤 **User**" in md
    assert "## 🤖 **Assistant**" in md
    assert "*2024-05-01T10:00:00+00:00*" in md


def test_export_all(conversation):
    data = json.loads(export_all_conversations([conversation, Conversation(title="Other")]))
    assert data["count"] == 2
    assert [c["title"] for c in data["conversations"]] == ["Trip planning", "Other"]


def test_format_content_as_markdown():
    content = "* one\n* two\n```python\n\nprint('x')\n\n```"
    assert format_content_as_markdown(content) == "- one\n- two\n```python\nprint('x')\n```"


# ---------------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------------

def test_text_round_trip(conversation):
    parsed = parse_conversation(export_conversation(conversation, "txt"), "txt")
    assert parsed["title"] == "Trip planning"
    assert parsed["model"] == "minimax-m2"
    assert [(m["role"], m["content"]) for m in parsed["messages"]] == [
        ("user", "Where should I go?"),
        ("assistant", "Try Lisbon.\n\nIt is sunny."),
    ]
    assert parsed["messages"][0]["timestamp"] == "2024-05-01T10:00:00+00:00"


def test_markdown_round_trip(conversation):
    parsed = parse_conversation(export_conversation(conversation, "markdown"), "md")
    assert parsed["title"] == "Trip planning"
    assert [(m["role"], m["content"]) for m in parsed["messages"]] == [
        ("user", "Where should I go?"),
        ("assistant", "Try Lisbon.\n\nIt is sunny."),
    ]
    assert parsed["messages"][1]["timestamp"] == "2024-05-01T10:00:05+00:00"


def test_markdown_plain_headers():
    md = "# Notes\n\n## User\n\nhello\n\n---\n\n## Assistant\n\nhi\n"
    parsed = parse_conversation(md, "markdown")
    assert [(m["role"], m["content"]) for m in parsed["messages"]] == [("user", "hello"), ("assistant", "hi")]


def test_parse_text_without_messages():
    parsed = parse_conversation("just some notes", "txt")
    assert parsed["messages"] == []
    assert parsed["title"] == "Imported Text Conversation"


@pytest.mark.parametrize("data", ["{broken", "[1, 2]"])
def test_parse_bad_json(data):
    with pytest.raises(MalformedDataError):
        parse_conversation(data, "json")


def test_validate_export_data():
    assert validate_export_data(None) == ["No data provided"]
    assert validate_export_data({"foo": 1}) == ["Invalid export format"]
    assert validate_export_data({"conversations": []}) == ["No conversations in export data"]
    assert validate_export_data({"messages": "x"}) == ["Messages must be an array"]
    assert validate_export_data({"messages": []}) == ["Conversation has no messages"]
    assert validate_export_data({"messages": [{"role": "user", "content": "x"}]}) == []


# ---------------------------------------------------------------------------
# Filenames
# ---------------------------------------------------------------------------

def test_generate_export_filename():
    assert generate_export_filename("conversation", "markdown").startswith("conversation-")
    assert generate_export_filename("conversation", "markdown").endswith(".md")
    assert generate_export_filename("all").startswith("chatline-backup-")


def test_sanitize_filename():
    assert sanitize_filename('My: "Chat"  / Notes') == "my_chat_notes"
    assert len(sanitize_filename("x" * 300)) == 100


def test_format_for_path():
    assert format_for_path("a.MD") == "markdown"
    assert format_for_path("a.txt") == "txt"
    assert format_for_path("a.json") == "json"
