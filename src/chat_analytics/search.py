"""Keyword search and message navigation within a session."""

from __future__ import annotations

from chat_analytics.filters import TimeFilter, WhereClause
from chat_analytics.storage import MESSAGE_TYPE_TEXT, SessionStore

MESSAGE_SELECT = """
    SELECT
        msg.id,
        msg.sender_id,
        m.name AS sender_name,
        m.platform_id AS sender_platform_id,
        msg.content,
        msg.ts AS timestamp,
        msg.type
    FROM message msg
    JOIN member m ON msg.sender_id = m.id
"""


def _row_to_message(row) -> dict:
    return {
        "id": row["id"],
        "sender_id": row["sender_id"],
        "sender_name": row["sender_name"],
        "sender_platform_id": row["sender_platform_id"],
        "content": row["content"],
        "timestamp": row["timestamp"],
        "type": row["type"],
    }


def _check_non_negative(**values: int):
    for name, value in values.items():
        if value < 0:
            raise ValueError(f"{name} must be >= 0, got {value}")


def get_recent_messages(
    sessions: SessionStore,
    session_id: str,
    time_filter: TimeFilter | None = None,
    limit: int = 100,
) -> dict:
    """Get the most recent text messages, returned oldest first.

    Only non-empty plain text messages from non-system senders are
    considered.

    Returns:
        Dict with messages (chronological) and total (all matches in range)
    """
    _check_non_negative(limit=limit)
    storage = sessions.open(session_id)
    if storage is None:
        return {"messages": [], "total": 0}

    where_clause, params = (
        WhereClause()
        .time_range(time_filter)
        .exclude_sender(sessions.system_sender)
        .where("msg.type = ?", MESSAGE_TYPE_TEXT)
        .non_empty()
        .build()
    )

    with storage.snapshot() as conn:
        total = conn.execute(
            f"""
            SELECT COUNT(*) AS total
            FROM message msg
            JOIN member m ON msg.sender_id = m.id
            WHERE {where_clause}
            """,
            params,
        ).fetchone()["total"]
        rows = conn.execute(
            f"{MESSAGE_SELECT} WHERE {where_clause} ORDER BY msg.ts DESC, msg.id DESC LIMIT ?",
            (*params, limit),
        ).fetchall()

    messages = [_row_to_message(row) for row in rows]
    messages.reverse()
    return {"messages": messages, "total": total}


def search_messages(
    sessions: SessionStore,
    session_id: str,
    keywords: list[str],
    time_filter: TimeFilter | None = None,
    limit: int = 20,
    offset: int = 0,
    sender_id: int | None = None,
) -> dict:
    """Search messages containing any of the keywords, newest first.

    Args:
        sessions: Session directory
        session_id: Session to query
        keywords: Substrings to match (OR); an empty list matches everything
        time_filter: Optional inclusive timestamp bounds
        limit: Page size
        offset: Number of matches to skip
        sender_id: Optional member id to restrict to

    Returns:
        Dict with messages (one page) and total (unpaginated match count)
    """
    _check_non_negative(limit=limit, offset=offset)
    storage = sessions.open(session_id)
    if storage is None:
        return {"messages": [], "total": 0}

    where_clause, params = (
        WhereClause()
        .any_substring(keywords)
        .time_range(time_filter)
        .exclude_sender(sessions.system_sender)
        .sender(sender_id)
        .build()
    )

    with storage.snapshot() as conn:
        total = conn.execute(
            f"""
            SELECT COUNT(*) AS total
            FROM message msg
            JOIN member m ON msg.sender_id = m.id
            WHERE {where_clause}
            """,
            params,
        ).fetchone()["total"]
        rows = conn.execute(
            f"{MESSAGE_SELECT} WHERE {where_clause} ORDER BY msg.ts DESC, msg.id DESC LIMIT ? OFFSET ?",
            (*params, limit, offset),
        ).fetchall()

    return {"messages": [_row_to_message(row) for row in rows], "total": total}


def get_message_context(
    sessions: SessionStore,
    session_id: str,
    message_ids: int | list[int],
    context_size: int = 20,
) -> list[dict]:
    """Get messages surrounding one or more target messages.

    Neighbourhoods are taken by message id (insertion order), not by
    timestamp: each target contributes itself, the context_size messages
    with the next smaller ids and the context_size messages with the next
    larger ids. No sender, type or content filtering is applied.

    Returns:
        Deduplicated messages sorted by id ascending
    """
    _check_non_negative(context_size=context_size)
    ids = [message_ids] if isinstance(message_ids, int) else list(message_ids)
    if not ids:
        return []

    storage = sessions.open(session_id)
    if storage is None:
        return []

    with storage.snapshot() as conn:
        context_ids = set()
        for message_id in ids:
            context_ids.add(message_id)
            before = conn.execute(
                "SELECT id FROM message WHERE id < ? ORDER BY id DESC LIMIT ?",
                (message_id, context_size),
            ).fetchall()
            after = conn.execute(
                "SELECT id FROM message WHERE id > ? ORDER BY id ASC LIMIT ?",
                (message_id, context_size),
            ).fetchall()
            context_ids.update(row["id"] for row in before)
            context_ids.update(row["id"] for row in after)

        id_list = sorted(context_ids)
        placeholders = ", ".join("?" for _ in id_list)
        rows = conn.execute(
            f"{MESSAGE_SELECT} WHERE msg.id IN ({placeholders}) ORDER BY msg.id ASC",
            id_list,
        ).fetchall()

    return [_row_to_message(row) for row in rows]


def get_conversation_between(
    sessions: SessionStore,
    session_id: str,
    member_a: int,
    member_b: int,
    time_filter: TimeFilter | None = None,
    limit: int = 100,
) -> dict:
    """Get the latest non-empty messages sent by either of two members.

    Messages are selected newest first and returned in chronological order.
    If either member does not exist the result is empty with blank names.

    Returns:
        Dict with messages, total, name_a and name_b
    """
    _check_non_negative(limit=limit)
    empty = {"messages": [], "total": 0, "name_a": "", "name_b": ""}
    storage = sessions.open(session_id)
    if storage is None:
        return empty

    first = storage.get_member(member_a)
    second = storage.get_member(member_b)
    if first is None or second is None:
        return empty

    where_clause, params = (
        WhereClause()
        .where("msg.sender_id IN (?, ?)", member_a, member_b)
        .time_range(time_filter)
        .non_empty()
        .build()
    )

    with storage.snapshot() as conn:
        total = conn.execute(
            f"SELECT COUNT(*) AS total FROM message msg WHERE {where_clause}",
            params,
        ).fetchone()["total"]
        rows = conn.execute(
            f"{MESSAGE_SELECT} WHERE {where_clause} ORDER BY msg.ts DESC, msg.id DESC LIMIT ?",
            (*params, limit),
        ).fetchall()

    messages = [_row_to_message(row) for row in rows]
    messages.reverse()
    return {"messages": messages, "total": total, "name_a": first.name, "name_b": second.name}


def _page_filter(
    sessions: SessionStore,
    time_filter: TimeFilter | None,
    sender_id: int | None,
    keywords: list[str] | None,
) -> WhereClause:
    return (
        WhereClause()
        .time_range(time_filter)
        .exclude_sender(sessions.system_sender)
        .sender(sender_id)
        .any_substring(keywords)
    )


def _fetch_page(storage, clause: WhereClause, order: str, limit: int) -> dict:
    where_clause, params = clause.build()
    # One extra row tells whether another page exists
    rows = storage.execute_query(
        f"{MESSAGE_SELECT} WHERE {where_clause} ORDER BY msg.id {order} LIMIT ?",
        (*params, limit + 1),
    )
    has_more = len(rows) > limit
    messages = [_row_to_message(row) for row in rows[:limit]]
    if order == "DESC":
        messages.reverse()
    return {"messages": messages, "has_more": has_more}


def get_messages_before(
    sessions: SessionStore,
    session_id: str,
    before_id: int,
    limit: int = 50,
    time_filter: TimeFilter | None = None,
    sender_id: int | None = None,
    keywords: list[str] | None = None,
) -> dict:
    """Get the page of messages immediately preceding a message id.

    Returns the limit matching messages with the largest ids below
    before_id, in ascending id order, and whether older matches remain.
    """
    _check_non_negative(limit=limit)
    storage = sessions.open(session_id)
    if storage is None:
        return {"messages": [], "has_more": False}

    clause = _page_filter(sessions, time_filter, sender_id, keywords).where("msg.id < ?", before_id)
    return _fetch_page(storage, clause, "DESC", limit)


def get_messages_after(
    sessions: SessionStore,
    session_id: str,
    after_id: int,
    limit: int = 50,
    time_filter: TimeFilter | None = None,
    sender_id: int | None = None,
    keywords: list[str] | None = None,
) -> dict:
    """Get the page of messages immediately following a message id.

    Returns the limit matching messages with the smallest ids above
    after_id, in ascending id order, and whether newer matches remain.
    """
    _check_non_negative(limit=limit)
    storage = sessions.open(session_id)
    if storage is None:
        return {"messages": [], "has_more": False}

    clause = _page_filter(sessions, time_filter, sender_id, keywords).where("msg.id > ?", after_id)
    return _fetch_page(storage, clause, "ASC", limit)
