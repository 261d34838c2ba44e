"""Activity analytics over an imported session.

All queries are read-only, exclude the system sender and return empty or
neutral results when the session does not exist.
"""

from __future__ import annotations

import math

from chat_analytics.filters import TimeFilter, WhereClause
from chat_analytics.storage import SessionStore


def _message_filter(sessions: SessionStore, time_filter: TimeFilter | None) -> WhereClause:
    """Time range plus system sender exclusion, shared by every aggregation."""
    return WhereClause().time_range(time_filter).exclude_sender(sessions.system_sender)


def _percentage(count: int, total: int) -> float:
    """Share of total as 0-100 rounded half-up to two decimals."""
    if total <= 0:
        return 0.0
    return math.floor(count / total * 10000 + 0.5) / 100


def get_member_activity(
    sessions: SessionStore,
    session_id: str,
    time_filter: TimeFilter | None = None,
) -> list[dict]:
    """Get per-member message counts ranked by activity.

    Args:
        sessions: Session directory
        session_id: Session to query
        time_filter: Optional inclusive timestamp bounds

    Returns:
        List of dicts with member_id, platform_id, name, message_count and
        percentage (0-100, two decimals) of the filtered total, most active
        first. Members without messages in range are omitted.
    """
    storage = sessions.open(session_id)
    if storage is None:
        return []

    where_clause, params = _message_filter(sessions, time_filter).build()

    with storage.snapshot() as conn:
        total = conn.execute(
            f"""
            SELECT COUNT(*) AS count
            FROM message msg
            JOIN member m ON msg.sender_id = m.id
            WHERE {where_clause}
            """,
            params,
        ).fetchone()["count"]

        rows = conn.execute(
            f"""
            SELECT m.id, m.platform_id, m.name, COUNT(msg.id) AS message_count
            FROM message msg
            JOIN member m ON msg.sender_id = m.id
            WHERE {where_clause}
            GROUP BY m.id
            ORDER BY message_count DESC, m.id ASC
            """,
            params,
        ).fetchall()

    return [
        {
            "member_id": row["id"],
            "platform_id": row["platform_id"],
            "name": row["name"],
            "message_count": row["message_count"],
            "percentage": _percentage(row["message_count"], total),
        }
        for row in rows
    ]


def get_hourly_activity(
    sessions: SessionStore,
    session_id: str,
    time_filter: TimeFilter | None = None,
) -> list[dict]:
    """Get message counts per local hour of day.

    Always returns 24 entries (hour 0-23), zero-filled, unless the session
    does not exist.
    """
    storage = sessions.open(session_id)
    if storage is None:
        return []

    where_clause, params = _message_filter(sessions, time_filter).build()
    rows = storage.execute_query(
        f"""
        SELECT
            CAST(strftime('%H', msg.ts, 'unixepoch', 'localtime') AS INTEGER) AS hour,
            COUNT(*) AS message_count
        FROM message msg
        JOIN member m ON msg.sender_id = m.id
        WHERE {where_clause}
        GROUP BY hour
        """,
        params,
    )

    counts = {row["hour"]: row["message_count"] for row in rows}
    return [{"hour": h, "message_count": counts.get(h, 0)} for h in range(24)]


def get_daily_activity(
    sessions: SessionStore,
    session_id: str,
    time_filter: TimeFilter | None = None,
) -> list[dict]:
    """Get message counts per local calendar date (YYYY-MM-DD), oldest first."""
    storage = sessions.open(session_id)
    if storage is None:
        return []

    where_clause, params = _message_filter(sessions, time_filter).build()
    rows = storage.execute_query(
        f"""
        SELECT
            strftime('%Y-%m-%d', msg.ts, 'unixepoch', 'localtime') AS date,
            COUNT(*) AS message_count
        FROM message msg
        JOIN member m ON msg.sender_id = m.id
        WHERE {where_clause}
        GROUP BY date
        ORDER BY date
        """,
        params,
    )

    return [{"date": row["date"], "message_count": row["message_count"]} for row in rows]


def get_message_type_distribution(
    sessions: SessionStore,
    session_id: str,
    time_filter: TimeFilter | None = None,
) -> list[dict]:
    """Get message counts per type code, most frequent first."""
    storage = sessions.open(session_id)
    if storage is None:
        return []

    where_clause, params = _message_filter(sessions, time_filter).build()
    rows = storage.execute_query(
        f"""
        SELECT msg.type, COUNT(*) AS count
        FROM message msg
        JOIN member m ON msg.sender_id = m.id
        WHERE {where_clause}
        GROUP BY msg.type
        ORDER BY count DESC, msg.type ASC
        """,
        params,
    )

    return [{"type": row["type"], "count": row["count"]} for row in rows]


def get_time_range(sessions: SessionStore, session_id: str) -> dict | None:
    """Get the earliest and latest message timestamps.

    Covers every message, including the system sender's. Returns None for a
    missing or empty session.
    """
    storage = sessions.open(session_id)
    if storage is None:
        return None

    row = storage.execute_query("SELECT MIN(ts) AS start_ts, MAX(ts) AS end_ts FROM message")[0]
    if row["start_ts"] is None or row["end_ts"] is None:
        return None
    return {"start": row["start_ts"], "end": row["end_ts"]}


def get_available_years(sessions: SessionStore, session_id: str) -> list[int]:
    """Get the local-time years that have messages, newest first."""
    storage = sessions.open(session_id)
    if storage is None:
        return []

    rows = storage.execute_query(
        """
        SELECT DISTINCT CAST(strftime('%Y', ts, 'unixepoch', 'localtime') AS INTEGER) AS year
        FROM message
        ORDER BY year DESC
        """
    )
    return [row["year"] for row in rows]


def get_member_name_history(sessions: SessionStore, session_id: str, member_id: int) -> list[dict]:
    """Get a member's nickname intervals, newest first.

    end_ts is None for the nickname currently in use.
    """
    storage = sessions.open(session_id)
    if storage is None:
        return []

    return [
        {"name": entry.name, "start_ts": entry.start_ts, "end_ts": entry.end_ts}
        for entry in storage.get_name_history(member_id)
    ]
