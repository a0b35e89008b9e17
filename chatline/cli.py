#!/usr/bin/env python3
"""
chatline CLI: talk to a hosted LLM from the terminal.

Every command has a short name and a few aliases:

    COMMAND         ALIASES         WHAT IT DOES
    -------         -------         ----------------------------------
    chat            talk, repl      Interactive chat in the current conversation
    send            ask             One-shot message, prints the reply
    list            ls              List conversations
    use             switch          Make a conversation current
    delete          rm              Delete a conversation
    duplicate       dup, copy       Copy a conversation
    search          find            Search message text across conversations
    export          dump            Export a conversation (json/txt/markdown)
    import          load            Import a conversation file
    stats           info            Message counts and storage usage
    models                          List models the backend offers
    ping            status          Test the configured credentials
    settings        prefs           Show / change / validate settings
    clear-data      wipe            Erase all local data
    banner                          Print the banner
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

import yaml

__version__ = "0.3.0"

BANNER = r"""
    ┌──────────────────────────────────────────┐
    │   ___ _  _   _ _____ _    ___ _  _ ___   │
    │  / __| || | /_\_   _| |  |_ _| \| | __|  │
    │ | (__| __ |/ _ \| | | |__ | || .` | _|   │
    │  \___|_||_/_/ \_\_| |____|___|_|\_|___|  │
    │                                          │
    │   keep the line open.          v""" + __version__ + r"""    │
    └──────────────────────────────────────────┘
"""


def _setup_logging(cfg: dict):
    log_cfg = cfg.get("logging", {})
    level = getattr(logging, str(log_cfg.get("level", "INFO")).upper(), logging.INFO)
    log_file = log_cfg.get("file")

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )


def _state(args):
    """Load config, logging and the app state for a command."""
    from chatline.app import build_app_state
    from chatline.config import get_config, load_config

    cfg = load_config(Path(args.config)) if args.config else get_config()
    _setup_logging(cfg)
    state = build_app_state(cfg)
    if state.settings.get_setting("debug_mode", False):
        logging.getLogger().setLevel(logging.DEBUG)
    return state


def _require_service(state) -> bool:
    if state.service.is_configured:
        return True
    print("  ✗  API not configured. Set MINIMAX_API_KEY or run:")
    print("     chatline settings set api_key <key>")
    return False


def _short(text: str, width: int = 200) -> str:
    text = text.replace("\n", " ")
    return text[:width] + "..." if len(text) > width else text


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

async def _repl(state, args):
    from chatline.errors import ChatError

    chats = state.chats
    if args.conversation:
        chats.set_current_conversation(args.conversation)
    stream = state.settings.get_setting("stream_responses", True) and not args.no_stream
    options = state.model_options()
    if args.model:
        options["model"] = args.model

    conversation = chats.current_conversation
    print(f"  ☎  {conversation.title}  ({conversation.model})")
    print("     /new  /retry  /clear  /exit\n")

    chats.start_autosave(state.autosave_interval)
    try:
        while True:
            try:
                line = (await asyncio.to_thread(input, "  you> ")).strip()
            except EOFError:
                break
            if not line:
                continue
            if line in ("/exit", "/quit", "/q"):
                break
            if line == "/new":
                chats.create_new_conversation()
                print("  ✓  new conversation\n")
                continue
            if line == "/clear":
                chats.clear_current_conversation()
                print("  ✓  cleared\n")
                continue

            try:
                if line == "/retry":
                    last_user = next((m for m in reversed(chats.current_messages) if m.role == "user"), None)
                    if last_user is None:
                        print("  nothing to retry\n")
                        continue
                    reply = await chats.retry_message(last_user.id)
                    print(f"\n  bot> {reply}\n")
                elif stream:
                    print("\n  bot> ", end="", flush=True)
                    async for event in chats.stream_chat(line, **options):
                        if event.type == "text":
                            print(event.content, end="", flush=True)
                    print("\n")
                else:
                    reply = await chats.chat(line, **options)
                    print(f"\n  bot> {reply.content}\n")
            except ChatError as e:
                print(f"\n  ✗  {e.message}\n")
    except KeyboardInterrupt:
        pass
    finally:
        await chats.stop_autosave()
        chats.save_conversations()
        print("  [line closed]")


def cmd_chat(args):
    """Interactive chat."""
    state = _state(args)
    if not _require_service(state):
        return 1
    print(BANNER)
    asyncio.run(_repl(state, args))
    return 0


def cmd_send(args):
    """One-shot message."""
    from chatline.errors import ChatError

    state = _state(args)
    if not _require_service(state):
        return 1
    chats = state.chats
    if args.conversation:
        chats.set_current_conversation(args.conversation)
    if args.new:
        chats.create_new_conversation()

    options = state.model_options()
    if args.model:
        options["model"] = args.model
    try:
        reply = asyncio.run(chats.chat(" ".join(args.message), **options))
    except ChatError as e:
        print(f"  ✗  {e.message}", file=sys.stderr)
        return 1
    finally:
        chats.save_conversations()
    print(reply.content)
    return 0


def cmd_list(args):
    """List conversations."""
    chats = _state(args).chats
    for conversation in chats.conversations:
        marker = "▶" if conversation.id == chats.current_conversation_id else " "
        print(f"  {marker} {conversation.id}  {len(conversation.messages):>4} msgs  "
              f"{conversation.updated_at[:19]}  {conversation.title}")
    return 0


def cmd_use(args):
    state = _state(args)
    state.chats.set_current_conversation(args.id)
    if state.chats.current_conversation_id != args.id:
        print(f"  ✗  No conversation {args.id}")
        return 1
    state.chats.save_conversations()
    print(f"  ✓  Now on: {state.chats.current_conversation.title}")
    return 0


def cmd_delete(args):
    state = _state(args)
    if state.settings.get_setting("confirm_delete", True) and not args.yes:
        print("  ✗  Refusing without --yes (confirm_delete is on)")
        return 1
    state.chats.delete_conversation(args.id)
    state.chats.save_conversations()
    print(f"  ✓  Deleted {args.id}")
    return 0


def cmd_duplicate(args):
    state = _state(args)
    copy = state.chats.duplicate_conversation(args.id)
    if copy is None:
        print(f"  ✗  No conversation {args.id}")
        return 1
    state.chats.save_conversations()
    print(f"  ✓  {copy.id}  {copy.title}")
    return 0


def cmd_search(args):
    """Substring search over every conversation."""
    chats = _state(args).chats
    query = " ".join(args.query)
    print(f"  🔍 Searching for: '{query}'")
    print("  " + "─" * 56)

    results = chats.search_messages(query)
    if args.role:
        results = [r for r in results if r["message"].role == args.role]
    if not results:
        print("  No matches.")
        return 0

    for i, hit in enumerate(results[: args.results], 1):
        role = hit["message"].role
        role_color = "\033[96m" if role == "user" else "\033[93m"
        reset = "\033[0m"
        print(f"\n  [{i}] {role_color}{role.upper()}{reset} | {hit['conversation_title']}")
        print(f"      conv: {hit['conversation_id']}")
        print(f"      {_short(hit['match'])}")
    return 0


def cmd_export(args):
    """Export one conversation, or everything with --all."""
    from chatline.export import (
        export_all_conversations,
        export_conversation,
        generate_export_filename,
    )

    chats = _state(args).chats
    if args.all:
        output = args.output or generate_export_filename("all", "json")
        text = export_all_conversations(chats.conversations)
        count = chats.conversation_count
    else:
        conversation = chats.get_conversation(args.id) if args.id else chats.current_conversation
        if conversation is None:
            print(f"  ✗  No conversation {args.id}")
            return 1
        output = args.output or generate_export_filename("conversation", args.format)
        text = export_conversation(conversation, args.format)
        count = 1

    with open(output, "w", encoding="utf-8") as f:
        f.write(text)
    print(f"  📦 Exported {count} conversation(s) to {output}")
    return 0


def cmd_import(args):
    """Import a conversation from a json/txt/markdown file."""
    from chatline.errors import MalformedDataError
    from chatline.export import format_for_path, parse_conversation

    state = _state(args)
    fmt = args.format or format_for_path(args.path)
    try:
        with open(args.path, encoding="utf-8") as f:
            data = parse_conversation(f.read(), fmt)
        bundle = data.get("conversations") if isinstance(data.get("conversations"), list) else [data]
        imported = [state.chats.import_conversation(item) for item in bundle]
    except (OSError, MalformedDataError) as e:
        print(f"  ✗  Import failed: {getattr(e, 'message', e)}")
        return 1
    state.chats.save_conversations()
    for conversation in imported:
        print(f"  ✓  {conversation.id}  {len(conversation.messages)} msgs  {conversation.title}")
    return 0


def cmd_stats(args):
    """Show stats at a glance."""
    state = _state(args)
    stats = state.chats.get_message_stats()
    usage = state.settings.get_storage_usage()
    api_key, base_url = state.credentials()

    print(BANNER)
    print("  Configuration")
    print(f"  ├─ Base URL:  {base_url or '(unset)'}")
    print(f"  ├─ API key:   {'set' if api_key else 'missing'}")
    print(f"  ├─ Transport: {state.service.transport.name if state.service.transport else '(none)'}")
    print(f"  └─ Storage:   {state.cfg['storage']['path']}")
    print()
    print("  Conversations")
    print(f"  ├─ Conversations: {stats['total_conversations']}")
    print(f"  ├─ Messages:      {stats['total_messages']}")
    print(f"  ├─ User msgs:     {stats['user_messages']}")
    print(f"  ├─ Asst msgs:     {stats['assistant_messages']}")
    print(f"  └─ Avg / conv:    {stats['average_messages_per_conversation']}")
    print()
    print("  Storage")
    breakdown = usage["breakdown"]
    print(f"  ├─ Settings:      {breakdown['settings']:,} chars")
    print(f"  ├─ Conversations: {breakdown['conversations']:,} chars")
    print(f"  └─ Used:          {usage['used']:,} / {usage['max']:,} ({usage['percentage']:.2f}%)")
    return 0


def cmd_models(args):
    from chatline.errors import ChatError

    state = _state(args)
    try:
        models = asyncio.run(state.service.list_models())
    except ChatError as e:
        print(f"  ✗  {e.message}")
        return 1
    for model in models:
        print(f"  • {model.get('id', '?')}  ({model.get('owned_by', '?')})")
    return 0


def cmd_ping(args):
    """Test the configured credentials against /account."""
    from chatline.service.service import ChatService

    state = _state(args)
    api_key, base_url = state.credentials()
    svc_cfg = state.cfg.get("service", {})
    result = asyncio.run(ChatService.test_connection(
        api_key, base_url, svc_cfg.get("transports"), svc_cfg.get("timeout", 30),
    ))
    mark = "☎" if result["success"] else "✗"
    print(f"  {mark}  {result['message']}  ({base_url})")
    return 0 if result["success"] else 1


def cmd_settings(args):
    """Show / set / reset / validate / export / import settings, or change theme."""
    state = _state(args)
    settings = state.settings
    action = args.action

    if action == "show":
        shown = settings.export_settings()["settings"]
        for key, value in shown.items():
            print(f"  {key:<30} {value!r}")
    elif action == "set":
        if len(args.values) != 2:
            print("  usage: chatline settings set <key> <value>")
            return 1
        key, raw = args.values
        if key not in settings.settings:
            print(f"  ✗  Unknown setting '{key}'")
            return 1
        settings.update_setting(key, yaml.safe_load(raw))
        print(f"  ✓  {key} = {settings.get_setting(key)!r}")
    elif action == "reset":
        settings.reset_settings()
        print("  ✓  Settings restored to defaults")
    elif action == "validate":
        errors = settings.validate_settings()
        if not errors:
            print("  ✓  Settings are valid")
            return 0
        for error in errors:
            print(f"  ✗  {error}")
        return 1
    elif action == "export":
        text = json.dumps(settings.export_settings(), indent=2)
        if args.values:
            Path(args.values[0]).write_text(text, encoding="utf-8")
            print(f"  📦 Settings written to {args.values[0]}")
        else:
            print(text)
    elif action == "import":
        if not args.values:
            print("  usage: chatline settings import <file>")
            return 1
        try:
            data = json.loads(Path(args.values[0]).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            print(f"  ✗  Failed to import settings: {e}")
            return 1
        result = settings.import_settings(data)
        print(f"  {'✓' if result['success'] else '✗'}  {result['message']}")
        return 0 if result["success"] else 1
    elif action == "theme":
        choice = args.values[0] if args.values else "toggle"
        if choice == "toggle":
            settings.toggle_theme()
        else:
            settings.set_theme(choice)
        print(f"  ✓  theme = {settings.current_theme}")
    return 0


def cmd_clear_data(args):
    state = _state(args)
    if not args.yes:
        print("  ✗  This erases every conversation and setting. Re-run with --yes.")
        return 1
    result = state.clear_all_data()
    print(f"  {'✓' if result['success'] else '✗'}  {result['message']}")
    return 0 if result["success"] else 1


def cmd_banner(args):
    """Print the banner."""
    print(BANNER)
    return 0


# ---------------------------------------------------------------------------
# Parser with aliases
# ---------------------------------------------------------------------------

def _add_command(subparsers, names, help_text, func, setup_fn=None):
    """Register a command under its name plus aliases."""
    p = subparsers.add_parser(names[0], help=help_text, aliases=names[1:])
    p.set_defaults(func=func)
    if setup_fn:
        setup_fn(p)
    return p


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chatline",
        description="chatline — talk to a hosted LLM from the terminal.",
        epilog="Run 'chatline <command> --help' for command-specific options.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", "-V", action="version", version=f"chatline {__version__}")
    parser.add_argument("--config", default=None, help="Path to config.yaml")

    sub = parser.add_subparsers(dest="command", metavar="<command>")

    def setup_chat(p):
        p.add_argument("--conversation", "-c", default=None, help="Conversation id to continue")
        p.add_argument("--model", "-m", default=None, help="Override the conversation model")
        p.add_argument("--no-stream", action="store_true", help="Wait for full replies")

    _add_command(sub, ["chat", "talk", "repl"], "Interactive chat", cmd_chat, setup_chat)

    def setup_send(p):
        p.add_argument("message", nargs="+", help="Message text")
        p.add_argument("--conversation", "-c", default=None, help="Conversation id")
        p.add_argument("--new", action="store_true", help="Start a new conversation first")
        p.add_argument("--model", "-m", default=None, help="Override the conversation model")

    _add_command(sub, ["send", "ask"], "Send one message and print the reply", cmd_send, setup_send)
    _add_command(sub, ["list", "ls"], "List conversations", cmd_list)

    def setup_id(p):
        p.add_argument("id", help="Conversation id")

    _add_command(sub, ["use", "switch"], "Make a conversation current", cmd_use, setup_id)

    def setup_delete(p):
        setup_id(p)
        p.add_argument("--yes", "-y", action="store_true", help="Skip confirmation")

    _add_command(sub, ["delete", "rm"], "Delete a conversation", cmd_delete, setup_delete)
    _add_command(sub, ["duplicate", "dup", "copy"], "Copy a conversation", cmd_duplicate, setup_id)

    def setup_search(p):
        p.add_argument("query", nargs="+", help="Search text")
        p.add_argument("--results", "-n", type=int, default=20, help="Max results to show")
        p.add_argument("--role", "-r", choices=["user", "assistant"], default=None, help="Filter by role")

    _add_command(sub, ["search", "find"], "Search messages", cmd_search, setup_search)

    def setup_export(p):
        p.add_argument("--id", default=None, help="Conversation id (default: current)")
        p.add_argument("--format", "-f", choices=["json", "txt", "markdown"], default="json")
        p.add_argument("--output", "-o", default=None, help="Output file")
        p.add_argument("--all", action="store_true", help="Export every conversation as JSON")

    _add_command(sub, ["export", "dump"], "Export conversations", cmd_export, setup_export)

    def setup_import(p):
        p.add_argument("path", help="File to import")
        p.add_argument("--format", "-f", choices=["json", "txt", "markdown"], default=None,
                       help="Format (default: from file extension)")

    _add_command(sub, ["import", "load"], "Import a conversation", cmd_import, setup_import)
    _add_command(sub, ["stats", "info"], "Show stats at a glance", cmd_stats)
    _add_command(sub, ["models"], "List available models", cmd_models)
    _add_command(sub, ["ping", "status"], "Test the API connection", cmd_ping)

    def setup_settings(p):
        p.add_argument("action", choices=["show", "set", "reset", "validate", "export", "import", "theme"])
        p.add_argument("values", nargs="*", help="set: KEY VALUE | export/import: FILE | theme: light|dark|toggle")

    _add_command(sub, ["settings", "prefs"], "Show or change settings", cmd_settings, setup_settings)

    def setup_clear(p):
        p.add_argument("--yes", "-y", action="store_true", help="Really erase everything")

    _add_command(sub, ["clear-data", "wipe"], "Erase all local data", cmd_clear_data, setup_clear)
    _add_command(sub, ["banner"], "Print the banner", cmd_banner)
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        cmd_banner(args)
        parser.print_help()
        return 0
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
