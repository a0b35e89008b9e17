"""
Export / import of conversations as JSON, plain text or Markdown.

JSON is a full-fidelity snapshot. Text and Markdown are meant for people;
parsing them back is best-effort line matching and loses ids and settings.

Text layout:
    Conversation: <title>
    Model: <model>
    Created: <iso>
    Exported: <iso>

    ==================================================

    [User] <iso timestamp>
    <content>

Markdown layout:
    # <title>
    **Model:** ...
    ---
    ## 👤 **User**
    *<iso timestamp>*
    <content>
    ---
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone

from chatline.errors import MalformedDataError
from chatline.storage.models import DEFAULT_CONVERSATION_SETTINGS, Conversation, new_id, now_iso

logger = logging.getLogger(__name__)

EXPORT_VERSION = "1.0.0"
FORMATS = ("json", "txt", "markdown")
EXTENSIONS = {"json": "json", "txt": "txt", "markdown": "md"}
SEPARATOR = "=" * 50

ROLE_LABELS = {"user": "User", "assistant": "Assistant"}
MD_ROLE_HEADERS = {"user": "## 👤 **User**", "assistant": "## 🤖 **Assistant**"}

_TEXT_HEADER_RE = re.compile(r"^\[(User|Assistant)\]\s*(.*)$")
_MD_HEADER_RE = re.compile(r"^##\s+(?:\S+\s+)?\**(User|Assistant)\**\s*$")
_MD_TIMESTAMP_RE = re.compile(r"^\*([^*]+)\*\s*$")
_TITLE_LINE_RE = re.compile(r"^Conversation:\s*(.+)$")
_MODEL_LINE_RE = re.compile(r"^Model:\s*(.+)$")
_MD_TITLE_RE = re.compile(r"^#\s+(.+)$")
_MD_MODEL_RE = re.compile(r"^\*\*Model:\*\*\s*(.+)$")


def normalize_format(fmt: str | None) -> str:
    fmt = (fmt or "json").lower()
    if fmt in ("md", "markdown"):
        return "markdown"
    if fmt in ("txt", "text"):
        return "txt"
    return "json"


def _snapshot(conversation: Conversation | dict) -> dict:
    data = conversation.to_dict() if isinstance(conversation, Conversation) else dict(conversation)
    return {
        "id": data.get("id"),
        "title": data.get("title"),
        "model": data.get("model"),
        "settings": data.get("settings"),
        "messages": data.get("messages") or [],
        "createdAt": data.get("createdAt"),
        "updatedAt": data.get("updatedAt"),
        "exportedAt": now_iso(),
        "version": EXPORT_VERSION,
    }


def export_conversation(conversation: Conversation | dict, fmt: str = "json") -> str:
    """Render one conversation. Unknown formats fall back to JSON."""
    data = _snapshot(conversation)
    fmt = normalize_format(fmt)
    if fmt == "txt":
        return format_as_text(data)
    if fmt == "markdown":
        return format_as_markdown(data)
    return json.dumps(data, indent=2, ensure_ascii=False)


def export_all_conversations(conversations: list[Conversation | dict]) -> str:
    """Bulk JSON backup of every conversation."""
    items = [c.to_dict() if isinstance(c, Conversation) else c for c in conversations]
    return json.dumps({
        "conversations": items,
        "exportedAt": now_iso(),
        "version": EXPORT_VERSION,
        "count": len(items),
    }, indent=2, ensure_ascii=False)


def format_as_text(data: dict) -> str:
    lines = [
        f"Conversation: {data['title']}",
        f"Model: {data['model']}",
        f"Created: {data['createdAt']}",
        f"Exported: {data['exportedAt']}",
        "",
        SEPARATOR,
        "",
    ]
    for message in data["messages"]:
        role = ROLE_LABELS.get(message.get("role"), "Assistant")
        lines.append(f"[{role}] {message.get('timestamp', '')}")
        lines.append(message.get("content", ""))
        lines.append("")
    return "\n".join(lines) + "\n"


def format_as_markdown(data: dict) -> str:
    parts = [
        f"# {data['title']}\n",
        f"**Model:** {data['model']}",
        f"**Created:** {data['createdAt']}",
        f"**Exported:** {data['exportedAt']}\n",
        "---\n",
    ]
    for message in data["messages"]:
        header = MD_ROLE_HEADERS.get(message.get("role"), MD_ROLE_HEADERS["assistant"])
        parts.append(f"{header}\n")
        parts.append(f"*{message.get('timestamp', '')}*\n")
        parts.append(f"{format_content_as_markdown(message.get('content', ''))}\n")
        parts.append("---\n")
    return "\n".join(parts)


def format_content_as_markdown(content: str) -> str:
    """Tidy fenced code blocks and turn `* item` bullets into `- item`."""
    formatted = re.sub(
        r"```(\w+)?\n([\s\S]*?)```",
        lambda m: f"```{m.group(1) or ''}\n{m.group(2).strip()}\n```",
        content,
    )
    return re.sub(r"^\* (.+)$", r"- \1", formatted, flags=re.MULTILINE)


# ---------------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------------

def _empty_conversation(title: str) -> dict:
    now = now_iso()
    return {
        "id": new_id(),
        "title": title,
        "model": "unknown",
        "settings": dict(DEFAULT_CONVERSATION_SETTINGS),
        "messages": [],
        "createdAt": now,
        "updatedAt": now,
    }


def _new_message(role: str, timestamp: str | None) -> dict:
    return {"id": new_id(), "role": role, "content": "", "timestamp": timestamp or now_iso()}


def _finish(message: dict | None, body: list[str], into: list[dict]) -> None:
    if message is None:
        return
    while body and not body[-1].strip():
        body.pop()
    while body and not body[0].strip():
        body.pop(0)
    message["content"] = "\n".join(body)
    into.append(message)


def parse_text_conversation(text: str) -> dict:
    conversation = _empty_conversation("Imported Text Conversation")
    current, body = None, []
    in_header = True

    for line in text.split("\n"):
        header = _TEXT_HEADER_RE.match(line)
        if header:
            _finish(current, body, conversation["messages"])
            current = _new_message(header.group(1).lower(), header.group(2).strip())
            body = []
            in_header = False
        elif in_header:
            title = _TITLE_LINE_RE.match(line)
            model = _MODEL_LINE_RE.match(line)
            if title:
                conversation["title"] = title.group(1).strip()
            elif model:
                conversation["model"] = model.group(1).strip()
        elif current is not None:
            body.append(line)

    _finish(current, body, conversation["messages"])
    return conversation


def parse_markdown_conversation(markdown: str) -> dict:
    conversation = _empty_conversation("Imported Markdown Conversation")
    current, body = None, []
    expect_timestamp = False

    for line in markdown.split("\n"):
        header = _MD_HEADER_RE.match(line)
        if header:
            _finish(current, body, conversation["messages"])
            current = _new_message(header.group(1).lower(), None)
            body = []
            expect_timestamp = True
            continue

        if current is None:
            title = _MD_TITLE_RE.match(line)
            model = _MD_MODEL_RE.match(line)
            if title:
                conversation["title"] = title.group(1).strip()
            elif model:
                conversation["model"] = model.group(1).strip()
            continue

        if line.strip() == "---":
            _finish(current, body, conversation["messages"])
            current, body = None, []
            continue

        stamp = _MD_TIMESTAMP_RE.match(line)
        if expect_timestamp and stamp:
            current["timestamp"] = stamp.group(1).strip()
            expect_timestamp = False
            continue
        if line.strip():
            expect_timestamp = False
        body.append(line)

    _finish(current, body, conversation["messages"])
    return conversation


def parse_conversation(data: str, fmt: str = "json") -> dict:
    """Parse exported data back into a conversation snapshot dict."""
    fmt = normalize_format(fmt)
    if fmt == "txt":
        return parse_text_conversation(data)
    if fmt == "markdown":
        return parse_markdown_conversation(data)
    try:
        parsed = json.loads(data)
    except json.JSONDecodeError as e:
        logger.error("Error importing conversation: %s", e)
        raise MalformedDataError(f"Invalid JSON: {e.msg} (line {e.lineno})") from e
    if not isinstance(parsed, dict):
        raise MalformedDataError("Invalid export format: expected a JSON object")
    return parsed


def validate_export_data(data) -> list[str]:
    """Problems with a parsed export (bulk or single). Empty means valid."""
    if not data:
        return ["No data provided"]
    if not isinstance(data, dict):
        return ["Invalid export format"]

    errors = []
    if isinstance(data.get("conversations"), list):
        if not data["conversations"]:
            errors.append("No conversations in export data")
    elif "messages" in data:
        if not isinstance(data["messages"], list):
            errors.append("Messages must be an array")
        elif not data["messages"]:
            errors.append("Conversation has no messages")
    else:
        errors.append("Invalid export format")
    return errors


def generate_export_filename(kind: str, fmt: str = "json") -> str:
    day = datetime.now(timezone.utc).strftime("%Y-%m-%d")
    extension = EXTENSIONS[normalize_format(fmt)]
    if kind == "conversation":
        return f"conversation-{day}.{extension}"
    return f"chatline-backup-{day}.{extension}"


def sanitize_filename(filename: str) -> str:
    name = re.sub(r'[<>:"/\\|?*]', "_", filename)
    name = re.sub(r"\s+", "_", name)
    name = re.sub(r"_{2,}", "_", name)
    return name.lower()[:100]


def format_for_path(path: str) -> str:
    """Guess the export format from a file extension."""
    lowered = path.lower()
    if lowered.endswith((".md", ".markdown")):
        return "markdown"
    if lowered.endswith(".txt"):
        return "txt"
    return "json"
