"""Command-line interface for chat analytics."""

import argparse
import json
from dataclasses import asdict
from datetime import datetime
from pathlib import Path

from chat_analytics.filters import TimeFilter
from chat_analytics.ingest import import_data, load_parse_result
from chat_analytics.queries import (
    get_available_years,
    get_daily_activity,
    get_hourly_activity,
    get_member_activity,
    get_member_name_history,
    get_message_type_distribution,
    get_time_range,
)
from chat_analytics.search import (
    get_conversation_between,
    get_message_context,
    get_messages_after,
    get_messages_before,
    get_recent_messages,
    search_messages,
)
from chat_analytics.storage import SessionStore

# Formatter registry: list of (predicate, formatter) tuples
# Each predicate checks if this formatter can handle the data
# Order matters - first match wins
_FORMATTERS: list[tuple[callable, callable]] = []


def _register_formatter(predicate: callable):
    """Decorator to register a formatter with its predicate."""

    def decorator(formatter: callable):
        _FORMATTERS.append((predicate, formatter))
        return formatter

    return decorator


def _format_ts(ts: int | None) -> str:
    if ts is None:
        return "now"
    return datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M:%S")


def _format_message(msg: dict) -> str:
    content = (msg.get("content") or "").replace("\n", " ")[:80]
    return f"  #{msg['id']} [{_format_ts(msg['timestamp'])}] {msg['sender_name']}: {content}"


@_register_formatter(lambda d: "sessions" in d and "count" in d)
def _format_sessions(data: dict) -> list[str]:
    lines = [f"Sessions: {data['count']}", ""]
    for s in data["sessions"]:
        lines.append(
            f"  {s['id']}  {s['name']} ({s['platform']}, {s['type']}) "
            f"- {s['message_count']} messages, {s['member_count']} members, "
            f"imported {_format_ts(s['imported_at'])}"
        )
    return lines


@_register_formatter(lambda d: "imported_at" in d and "message_count" in d)
def _format_session(data: dict) -> list[str]:
    return [
        f"Session: {data['id']}",
        f"Name: {data['name']}",
        f"Platform: {data['platform']} ({data['type']})",
        f"Imported: {_format_ts(data['imported_at'])}",
        f"Messages: {data['message_count']}",
        f"Members: {data['member_count']}",
        f"Path: {data['db_path']}",
    ]


@_register_formatter(lambda d: "members" in d)
def _format_members(data: dict) -> list[str]:
    lines = ["Member activity:"]
    for m in data["members"]:
        lines.append(
            f"  [{m['member_id']}] {m['name']}: {m['message_count']} ({m['percentage']}%)"
        )
    return lines


@_register_formatter(lambda d: "hours" in d)
def _format_hours(data: dict) -> list[str]:
    peak = max((h["message_count"] for h in data["hours"]), default=0)
    lines = ["Messages by hour:"]
    for h in data["hours"]:
        bar = "#" * (round(h["message_count"] / peak * 40) if peak else 0)
        lines.append(f"  {h['hour']:02d}:00 {h['message_count']:>6} {bar}")
    return lines


@_register_formatter(lambda d: "days" in d)
def _format_days(data: dict) -> list[str]:
    lines = ["Messages by day:"]
    for d in data["days"]:
        lines.append(f"  {d['date']}: {d['message_count']}")
    return lines


@_register_formatter(lambda d: "types" in d)
def _format_types(data: dict) -> list[str]:
    lines = ["Message types:"]
    for t in data["types"]:
        lines.append(f"  type {t['type']}: {t['count']}")
    return lines


@_register_formatter(lambda d: "range" in d)
def _format_range(data: dict) -> list[str]:
    if data["range"] is None:
        return ["No messages"]
    return [
        f"First message: {_format_ts(data['range']['start'])}",
        f"Last message: {_format_ts(data['range']['end'])}",
    ]


@_register_formatter(lambda d: "years" in d)
def _format_years(data: dict) -> list[str]:
    return ["Years: " + (", ".join(str(y) for y in data["years"]) or "none")]


@_register_formatter(lambda d: "history" in d)
def _format_history(data: dict) -> list[str]:
    lines = [f"Nickname history for member {data['member_id']}:"]
    for h in data["history"]:
        lines.append(f"  {h['name']}: {_format_ts(h['start_ts'])} -> {_format_ts(h['end_ts'])}")
    return lines


@_register_formatter(lambda d: "name_a" in d)
def _format_conversation(data: dict) -> list[str]:
    lines = [
        f"Conversation: {data['name_a']} & {data['name_b']}",
        f"Showing {len(data['messages'])} of {data['total']}",
        "",
    ]
    lines.extend(_format_message(m) for m in data["messages"])
    return lines


@_register_formatter(lambda d: "has_more" in d)
def _format_page(data: dict) -> list[str]:
    lines = [_format_message(m) for m in data["messages"]]
    if data["has_more"]:
        lines.append("  ... more available")
    return lines or ["No messages"]


@_register_formatter(lambda d: "messages" in d and "total" in d)
def _format_messages(data: dict) -> list[str]:
    lines = [f"Showing {len(data['messages'])} of {data['total']}", ""]
    lines.extend(_format_message(m) for m in data["messages"])
    return lines


@_register_formatter(lambda d: "messages" in d)
def _format_context(data: dict) -> list[str]:
    return [_format_message(m) for m in data["messages"]] or ["No messages"]


@_register_formatter(lambda d: "deleted" in d)
def _format_delete(data: dict) -> list[str]:
    if data["deleted"]:
        return [f"Deleted session {data['session_id']}"]
    return [f"Session {data['session_id']} not found"]


def format_output(data: dict, json_output: bool = False) -> str:
    """Format output as JSON or human-readable."""
    if json_output:
        return json.dumps(data, indent=2, default=str, ensure_ascii=False)

    # Find matching formatter from registry
    for predicate, formatter in _FORMATTERS:
        if predicate(data):
            return "\n".join(formatter(data))

    # Fallback to JSON if no formatter matches
    return json.dumps(data, indent=2, default=str, ensure_ascii=False)


def parse_timestamp(value: str) -> int:
    """Parse epoch seconds or an ISO date/datetime (local time)."""
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return int(datetime.fromisoformat(value).timestamp())
    except ValueError:
        raise argparse.ArgumentTypeError(
            f"invalid time {value!r}: use epoch seconds or YYYY-MM-DD[THH:MM:SS]"
        ) from None


def _store(args) -> SessionStore:
    return SessionStore(db_dir=args.db_dir)


def _filter(args) -> TimeFilter | None:
    if args.start is None and args.end is None:
        return None
    return TimeFilter(start_ts=args.start, end_ts=args.end)


def cmd_sessions(args):
    """List imported sessions."""
    summaries = _store(args).list_sessions()
    result = {"count": len(summaries), "sessions": [asdict(s) for s in summaries]}
    print(format_output(result, args.json))


def cmd_show(args):
    """Show one session."""
    summary = _store(args).get_session(args.session_id)
    if summary is None:
        print(format_output({"status": "not_found", "session_id": args.session_id}, args.json))
        return
    print(format_output(asdict(summary), args.json))


def cmd_import(args):
    """Import a normalized transcript JSON file."""
    sessions = _store(args)
    session_id = import_data(sessions, load_parse_result(Path(args.file)))
    print(format_output(asdict(sessions.summarize(session_id)), args.json))


def cmd_delete(args):
    """Delete a session."""
    deleted = _store(args).delete(args.session_id)
    print(format_output({"session_id": args.session_id, "deleted": deleted}, args.json))


def cmd_members(args):
    """Show member activity ranking."""
    members = get_member_activity(_store(args), args.session_id, _filter(args))
    print(format_output({"session_id": args.session_id, "members": members}, args.json))


def cmd_hourly(args):
    hours = get_hourly_activity(_store(args), args.session_id, _filter(args))
    print(format_output({"session_id": args.session_id, "hours": hours}, args.json))


def cmd_daily(args):
    days = get_daily_activity(_store(args), args.session_id, _filter(args))
    print(format_output({"session_id": args.session_id, "days": days}, args.json))


def cmd_types(args):
    types = get_message_type_distribution(_store(args), args.session_id, _filter(args))
    print(format_output({"session_id": args.session_id, "types": types}, args.json))


def cmd_range(args):
    time_range = get_time_range(_store(args), args.session_id)
    print(format_output({"session_id": args.session_id, "range": time_range}, args.json))


def cmd_years(args):
    years = get_available_years(_store(args), args.session_id)
    print(format_output({"session_id": args.session_id, "years": years}, args.json))


def cmd_history(args):
    """Show a member's nickname history."""
    history = get_member_name_history(_store(args), args.session_id, args.member_id)
    result = {"session_id": args.session_id, "member_id": args.member_id, "history": history}
    print(format_output(result, args.json))


def cmd_recent(args):
    result = get_recent_messages(_store(args), args.session_id, _filter(args), limit=args.limit)
    print(format_output(result, args.json))


def cmd_search(args):
    """Search messages by keywords."""
    result = search_messages(
        _store(args),
        args.session_id,
        args.keywords,
        _filter(args),
        limit=args.limit,
        offset=args.offset,
        sender_id=args.sender,
    )
    print(format_output(result, args.json))


def cmd_context(args):
    messages = get_message_context(_store(args), args.session_id, args.message_ids, args.size)
    print(format_output({"session_id": args.session_id, "messages": messages}, args.json))


def cmd_between(args):
    result = get_conversation_between(
        _store(args), args.session_id, args.member_a, args.member_b, _filter(args), limit=args.limit
    )
    print(format_output(result, args.json))


def cmd_before(args):
    result = get_messages_before(
        _store(args),
        args.session_id,
        args.message_id,
        limit=args.limit,
        time_filter=_filter(args),
        sender_id=args.sender,
        keywords=args.keyword,
    )
    print(format_output(result, args.json))


def cmd_after(args):
    result = get_messages_after(
        _store(args),
        args.session_id,
        args.message_id,
        limit=args.limit,
        time_filter=_filter(args),
        sender_id=args.sender,
        keywords=args.keyword,
    )
    print(format_output(result, args.json))


def _add_time_filter(sub):
    sub.add_argument("--start", type=parse_timestamp, help="Inclusive start (epoch or ISO)")
    sub.add_argument("--end", type=parse_timestamp, help="Inclusive end (epoch or ISO)")


def main():
    """CLI entry point."""
    epilog = """
Examples:
  chat-analytics-cli import export.json           # Import a parsed transcript
  chat-analytics-cli sessions                     # List sessions
  chat-analytics-cli members SESSION --start 2024-01-01
  chat-analytics-cli search SESSION hello hi      # Messages containing any keyword
  chat-analytics-cli context SESSION 42 --size 5  # Messages around #42

All commands support --json for machine-readable output.
Data location: ~/.chat-analytics/databases (override with CHAT_ANALYTICS_DIR)
"""
    parser = argparse.ArgumentParser(
        description="Chat Analytics CLI - Import chat transcripts and analyze them",
        prog="chat-analytics-cli",
        epilog=epilog,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--json", action="store_true", help="Output as JSON")
    parser.add_argument("--db-dir", help="Session directory (default: CHAT_ANALYTICS_DIR)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # sessions
    sub = subparsers.add_parser("sessions", help="List imported sessions")
    sub.set_defaults(func=cmd_sessions)

    # show
    sub = subparsers.add_parser("show", help="Show one session")
    sub.add_argument("session_id")
    sub.set_defaults(func=cmd_show)

    # import
    sub = subparsers.add_parser("import", help="Import a normalized transcript JSON file")
    sub.add_argument("file", help="Path to parse result JSON")
    sub.set_defaults(func=cmd_import)

    # delete
    sub = subparsers.add_parser("delete", help="Delete a session")
    sub.add_argument("session_id")
    sub.set_defaults(func=cmd_delete)

    # analytics
    for name, func, help_text in (
        ("members", cmd_members, "Member activity ranking"),
        ("hourly", cmd_hourly, "Messages by hour of day"),
        ("daily", cmd_daily, "Messages by date"),
        ("types", cmd_types, "Message type distribution"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("session_id")
        _add_time_filter(sub)
        sub.set_defaults(func=func)

    sub = subparsers.add_parser("range", help="First and last message time")
    sub.add_argument("session_id")
    sub.set_defaults(func=cmd_range)

    sub = subparsers.add_parser("years", help="Years with messages")
    sub.add_argument("session_id")
    sub.set_defaults(func=cmd_years)

    sub = subparsers.add_parser("history", help="Member nickname history")
    sub.add_argument("session_id")
    sub.add_argument("member_id", type=int)
    sub.set_defaults(func=cmd_history)

    # recent
    sub = subparsers.add_parser("recent", help="Latest text messages")
    sub.add_argument("session_id")
    sub.add_argument("--limit", type=int, default=100, help="Max messages (default: 100)")
    _add_time_filter(sub)
    sub.set_defaults(func=cmd_recent)

    # search
    sub = subparsers.add_parser("search", help="Search messages by keywords")
    sub.add_argument("session_id")
    sub.add_argument("keywords", nargs="*", help="Keywords (any match)")
    sub.add_argument("--sender", type=int, help="Member id filter")
    sub.add_argument("--limit", type=int, default=20, help="Page size (default: 20)")
    sub.add_argument("--offset", type=int, default=0, help="Matches to skip (default: 0)")
    _add_time_filter(sub)
    sub.set_defaults(func=cmd_search)

    # context
    sub = subparsers.add_parser("context", help="Messages around message ids")
    sub.add_argument("session_id")
    sub.add_argument("message_ids", nargs="+", type=int)
    sub.add_argument("--size", type=int, default=20, help="Messages each side (default: 20)")
    sub.set_defaults(func=cmd_context)

    # between
    sub = subparsers.add_parser("between", help="Messages exchanged by two members")
    sub.add_argument("session_id")
    sub.add_argument("member_a", type=int)
    sub.add_argument("member_b", type=int)
    sub.add_argument("--limit", type=int, default=100, help="Max messages (default: 100)")
    _add_time_filter(sub)
    sub.set_defaults(func=cmd_between)

    # before / after
    for name, func, help_text in (
        ("before", cmd_before, "Page of messages before a message id"),
        ("after", cmd_after, "Page of messages after a message id"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("session_id")
        sub.add_argument("message_id", type=int)
        sub.add_argument("--limit", type=int, default=50, help="Page size (default: 50)")
        sub.add_argument("--sender", type=int, help="Member id filter")
        sub.add_argument("--keyword", action="append", help="Keyword filter (repeatable, any match)")
        _add_time_filter(sub)
        sub.set_defaults(func=func)

    args = parser.parse_args()
    args.func(args)


if __name__ == "__main__":
    main()
