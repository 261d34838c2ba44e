"""MCP Chat Analytics Server.

Exposes imported chat sessions as tools:
- list_sessions / get_session / delete_session: Session directory
- import_transcript: Import a normalized parse result JSON file
- member_activity / hourly_activity / daily_activity / message_types:
  Activity analytics with optional time range
- time_range / available_years / member_name_history: Session bounds and
  nickname history
- recent_messages / search_messages / message_context /
  conversation_between / messages_before / messages_after: Search and
  navigation
- get_status: Directory and session stats
"""

import logging
import os
from dataclasses import asdict
from pathlib import Path

from fastmcp import FastMCP

from chat_analytics import ingest, queries, search
from chat_analytics.filters import TimeFilter
from chat_analytics.storage import SessionStore

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("chat-analytics")
if os.environ.get("DEV_MODE"):
    logger.setLevel(logging.DEBUG)

# Initialize MCP server
mcp = FastMCP("chat-analytics")

# Session directory (CHAT_ANALYTICS_DIR)
sessions = SessionStore()


def _time_filter(start_ts: int | None, end_ts: int | None) -> TimeFilter | None:
    if start_ts is None and end_ts is None:
        return None
    return TimeFilter(start_ts=start_ts, end_ts=end_ts)


@mcp.tool()
def get_status() -> dict:
    """Get session directory stats.

    Returns:
        Status info including directory, session count and total messages
    """
    summaries = sessions.list_sessions()
    return {
        "status": "ok",
        "db_dir": str(sessions.db_dir),
        "system_sender": sessions.system_sender,
        "session_count": len(summaries),
        "message_count": sum(s.message_count for s in summaries),
    }


@mcp.tool()
def list_sessions() -> dict:
    """List imported sessions, most recently imported first."""
    summaries = sessions.list_sessions()
    return {"count": len(summaries), "sessions": [asdict(s) for s in summaries]}


@mcp.tool()
def get_session(session_id: str) -> dict:
    """Get one session's summary (name, platform, counts)."""
    summary = sessions.get_session(session_id)
    if summary is None:
        return {"status": "not_found", "session_id": session_id}
    return {"status": "ok", **asdict(summary)}


@mcp.tool()
def delete_session(session_id: str) -> dict:
    """Delete a session database and its side files."""
    return {"session_id": session_id, "deleted": sessions.delete(session_id)}


@mcp.tool()
def import_transcript(path: str) -> dict:
    """Import a normalized transcript (meta, members, messages) JSON file.

    Args:
        path: Path to the JSON file

    Returns:
        The new session's summary
    """
    parse_result = ingest.load_parse_result(Path(path).expanduser())
    session_id = ingest.import_data(sessions, parse_result)
    return {"status": "ok", **asdict(sessions.summarize(session_id))}


@mcp.tool()
def member_activity(
    session_id: str, start_ts: int | None = None, end_ts: int | None = None
) -> dict:
    """Get members ranked by message count with percentage of the total.

    Args:
        session_id: Session to query
        start_ts: Optional inclusive lower bound (epoch seconds)
        end_ts: Optional inclusive upper bound (epoch seconds)
    """
    members = queries.get_member_activity(sessions, session_id, _time_filter(start_ts, end_ts))
    return {"session_id": session_id, "members": members}


@mcp.tool()
def hourly_activity(
    session_id: str, start_ts: int | None = None, end_ts: int | None = None
) -> dict:
    """Get message counts for each local hour of day (0-23)."""
    hours = queries.get_hourly_activity(sessions, session_id, _time_filter(start_ts, end_ts))
    return {"session_id": session_id, "hours": hours}


@mcp.tool()
def daily_activity(
    session_id: str, start_ts: int | None = None, end_ts: int | None = None
) -> dict:
    """Get message counts per local calendar date."""
    days = queries.get_daily_activity(sessions, session_id, _time_filter(start_ts, end_ts))
    return {"session_id": session_id, "days": days}


@mcp.tool()
def message_types(
    session_id: str, start_ts: int | None = None, end_ts: int | None = None
) -> dict:
    """Get message counts per message type code."""
    types = queries.get_message_type_distribution(
        sessions, session_id, _time_filter(start_ts, end_ts)
    )
    return {"session_id": session_id, "types": types}


@mcp.tool()
def time_range(session_id: str) -> dict:
    """Get the first and last message timestamps of a session."""
    return {"session_id": session_id, "range": queries.get_time_range(sessions, session_id)}


@mcp.tool()
def available_years(session_id: str) -> dict:
    """Get the years that contain messages, newest first."""
    return {"session_id": session_id, "years": queries.get_available_years(sessions, session_id)}


@mcp.tool()
def member_name_history(session_id: str, member_id: int) -> dict:
    """Get a member's nickname history, newest first."""
    history = queries.get_member_name_history(sessions, session_id, member_id)
    return {"session_id": session_id, "member_id": member_id, "history": history}


@mcp.tool()
def recent_messages(
    session_id: str,
    limit: int = 100,
    start_ts: int | None = None,
    end_ts: int | None = None,
) -> dict:
    """Get the latest text messages in chronological order."""
    return search.get_recent_messages(
        sessions, session_id, _time_filter(start_ts, end_ts), limit=limit
    )


@mcp.tool()
def search_messages(
    session_id: str,
    keywords: list[str],
    limit: int = 20,
    offset: int = 0,
    sender_id: int | None = None,
    start_ts: int | None = None,
    end_ts: int | None = None,
) -> dict:
    """Search messages containing any keyword, newest first.

    Args:
        session_id: Session to query
        keywords: Substrings to match (any); empty matches all messages
        limit: Page size (default: 20)
        offset: Matches to skip (default: 0)
        sender_id: Optional member id filter
        start_ts: Optional inclusive lower bound (epoch seconds)
        end_ts: Optional inclusive upper bound (epoch seconds)
    """
    return search.search_messages(
        sessions,
        session_id,
        keywords,
        _time_filter(start_ts, end_ts),
        limit=limit,
        offset=offset,
        sender_id=sender_id,
    )


@mcp.tool()
def message_context(session_id: str, message_ids: list[int], context_size: int = 20) -> dict:
    """Get the messages around one or more messages, ordered by id."""
    messages = search.get_message_context(sessions, session_id, message_ids, context_size)
    return {"session_id": session_id, "count": len(messages), "messages": messages}


@mcp.tool()
def conversation_between(
    session_id: str,
    member_a: int,
    member_b: int,
    limit: int = 100,
    start_ts: int | None = None,
    end_ts: int | None = None,
) -> dict:
    """Get recent messages exchanged by two members in chronological order."""
    return search.get_conversation_between(
        sessions, session_id, member_a, member_b, _time_filter(start_ts, end_ts), limit=limit
    )


@mcp.tool()
def messages_before(
    session_id: str,
    before_id: int,
    limit: int = 50,
    sender_id: int | None = None,
    keywords: list[str] | None = None,
    start_ts: int | None = None,
    end_ts: int | None = None,
) -> dict:
    """Get the page of messages just before a message id (ascending)."""
    return search.get_messages_before(
        sessions,
        session_id,
        before_id,
        limit=limit,
        time_filter=_time_filter(start_ts, end_ts),
        sender_id=sender_id,
        keywords=keywords,
    )


@mcp.tool()
def messages_after(
    session_id: str,
    after_id: int,
    limit: int = 50,
    sender_id: int | None = None,
    keywords: list[str] | None = None,
    start_ts: int | None = None,
    end_ts: int | None = None,
) -> dict:
    """Get the page of messages just after a message id (ascending)."""
    return search.get_messages_after(
        sessions,
        session_id,
        after_id,
        limit=limit,
        time_filter=_time_filter(start_ts, end_ts),
        sender_id=sender_id,
        keywords=keywords,
    )


def create_app():
    """Create the ASGI app for uvicorn."""
    # stateless_http=True allows resilience to server restarts
    return mcp.http_app(stateless_http=True)


def main():
    """Run the MCP server."""
    import uvicorn

    port = int(os.environ.get("PORT", 8082))
    host = os.environ.get("HOST", "127.0.0.1")

    print(f"Starting Chat Analytics on {host}:{port}")
    print(f"Session directory: {sessions.db_dir}")

    uvicorn.run(create_app(), host=host, port=port)


if __name__ == "__main__":
    main()
