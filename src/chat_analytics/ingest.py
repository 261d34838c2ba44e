"""Import of parsed chat transcripts into a new session store."""

import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path

from chat_analytics.exceptions import InvalidParseResultError, TransactionFailureError
from chat_analytics.storage import SessionStore

logger = logging.getLogger("chat-analytics")


@dataclass
class ParsedMeta:
    """Conversation-level fields produced by a transcript parser."""

    name: str
    platform: str
    type: str


@dataclass
class ParsedMember:
    platform_id: str
    name: str


@dataclass
class ParsedMessage:
    """A message as produced by a transcript parser."""

    sender_platform_id: str
    timestamp: int
    type: int
    content: str | None = None
    sender_name: str | None = None  # Nickname at send time, if the export has one


@dataclass
class ParseResult:
    """Normalized parser output: one conversation."""

    meta: ParsedMeta
    members: list[ParsedMember] = field(default_factory=list)
    messages: list[ParsedMessage] = field(default_factory=list)


@dataclass
class _NicknameTracker:
    current_name: str
    last_seen_ts: int


def _require(raw: dict, *keys: str, where: str):
    """Return the first present key's value, raising if none is present."""
    if not isinstance(raw, dict):
        raise InvalidParseResultError(f"{where}: expected an object")
    for key in keys:
        if key in raw and raw[key] is not None:
            return raw[key]
    raise InvalidParseResultError(f"{where}: missing required field '{keys[0]}'", field=keys[0])


def _list(raw: dict, key: str) -> list:
    """Return an optional list field, an absent key meaning empty."""
    value = raw.get(key, [])
    if not isinstance(value, list):
        raise InvalidParseResultError(f"{key}: expected a list", field=key)
    return value


def _to_int(value, where: str, field_name: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise InvalidParseResultError(f"{where}: invalid {field_name}: {e}", field=field_name) from e


def parse_result_from_dict(raw: dict) -> ParseResult:
    """Build a ParseResult from the normalized dict structure.

    Accepts snake_case keys and the camelCase keys emitted by the
    transcript parsers (platformId, senderPlatformId, senderName).

    Raises:
        InvalidParseResultError: A required field is missing or has the wrong type
    """
    if not isinstance(raw, dict):
        raise InvalidParseResultError("Parse result must be an object")

    meta_raw = _require(raw, "meta", where="parse result")
    meta = ParsedMeta(
        name=str(_require(meta_raw, "name", where="meta")),
        platform=str(_require(meta_raw, "platform", where="meta")),
        type=str(_require(meta_raw, "type", where="meta")),
    )

    members = [
        ParsedMember(
            platform_id=str(_require(m, "platform_id", "platformId", where=f"members[{i}]")),
            name=str(_require(m, "name", where=f"members[{i}]")),
        )
        for i, m in enumerate(_list(raw, "members"))
    ]

    messages = []
    for i, m in enumerate(_list(raw, "messages")):
        where = f"messages[{i}]"
        if not isinstance(m, dict):
            raise InvalidParseResultError(f"{where}: expected an object")
        raw_ts = _require(m, "timestamp", "ts", where=where)
        timestamp = _to_int(raw_ts, where=where, field_name="timestamp")
        msg_type = _to_int(m.get("type", 0), where=where, field_name="type")
        sender_name = m.get("sender_name", m.get("senderName"))
        messages.append(
            ParsedMessage(
                sender_platform_id=str(
                    _require(m, "sender_platform_id", "senderPlatformId", where=where)
                ),
                timestamp=timestamp,
                type=msg_type,
                content=m.get("content"),
                sender_name=str(sender_name) if sender_name is not None else None,
            )
        )

    return ParseResult(meta=meta, members=members, messages=messages)


def load_parse_result(file_path: Path) -> ParseResult:
    """Load a normalized parse result from a JSON file."""
    with open(file_path, encoding="utf-8") as f:
        try:
            raw = json.load(f)
        except json.JSONDecodeError as e:
            raise InvalidParseResultError(f"Invalid JSON in {file_path}: {e}") from e
    return parse_result_from_dict(raw)


def import_data(sessions: SessionStore, parse_result: ParseResult) -> str:
    """Import a parse result into a brand-new session.

    Messages are written in timestamp order (stable for equal timestamps,
    so the input order breaks ties) and each sender's nickname intervals
    are rebuilt from that order. The whole import is one transaction: on
    failure nothing is committed and the session file is removed.

    Args:
        sessions: Session directory to create the store in
        parse_result: Normalized parser output

    Returns:
        The new session id

    Raises:
        StoreCreationFailedError: The session file could not be created
        TransactionFailureError: The import failed and was rolled back
    """
    session_id = sessions.generate_session_id()
    storage = sessions.create(session_id)
    logger.info(
        f"Importing {len(parse_result.messages)} messages from "
        f"{len(parse_result.members)} members into {session_id}"
    )

    try:
        with storage.transaction() as conn:
            stats = _write_import(conn, parse_result)
    except Exception as e:
        logger.error(f"Import into {session_id} failed, rolling back: {e}")
        sessions.delete(session_id)
        raise TransactionFailureError(session_id, e) from e
    except BaseException:
        # Interrupted (KeyboardInterrupt, SystemExit): remove the file, re-raise as is
        logger.warning(f"Import into {session_id} interrupted, removing session file")
        sessions.delete(session_id)
        raise

    logger.info(
        f"Imported {session_id}: {stats['messages']} messages, "
        f"{stats['name_changes']} nickname changes, {stats['skipped']} skipped"
    )
    return session_id


def _write_import(conn, parse_result: ParseResult) -> dict:
    """Write all rows of an import on an open transaction."""
    conn.execute(
        "INSERT INTO meta (name, platform, type, imported_at) VALUES (?, ?, ?, ?)",
        (
            parse_result.meta.name,
            parse_result.meta.platform,
            parse_result.meta.type,
            int(time.time()),
        ),
    )

    # platform_id -> member.id, members keep their parse-time name until the walk
    member_ids: dict[str, int] = {}
    initial_names: dict[str, str] = {}
    for member in parse_result.members:
        conn.execute(
            "INSERT OR IGNORE INTO member (platform_id, name) VALUES (?, ?)",
            (member.platform_id, member.name),
        )
        row = conn.execute(
            "SELECT id FROM member WHERE platform_id = ?", (member.platform_id,)
        ).fetchone()
        member_ids[member.platform_id] = row["id"]
        initial_names.setdefault(member.platform_id, member.name)

    # sorted() is stable: equal timestamps keep their input order
    ordered = sorted(parse_result.messages, key=lambda m: m.timestamp)

    trackers: dict[str, _NicknameTracker] = {}
    message_rows = []
    name_changes = 0
    skipped = 0

    for msg in ordered:
        sender_id = member_ids.get(msg.sender_platform_id)
        if sender_id is None:
            logger.debug(f"Skipping message from unknown sender {msg.sender_platform_id}")
            skipped += 1
            continue

        name = msg.sender_name if msg.sender_name is not None else initial_names[msg.sender_platform_id]
        tracker = trackers.get(msg.sender_platform_id)

        if tracker is None:
            trackers[msg.sender_platform_id] = _NicknameTracker(name, msg.timestamp)
            conn.execute(
                "INSERT INTO member_name_history (member_id, name, start_ts, end_ts) VALUES (?, ?, ?, NULL)",
                (sender_id, name, msg.timestamp),
            )
        elif tracker.current_name != name:
            conn.execute(
                "UPDATE member_name_history SET end_ts = ? WHERE member_id = ? AND end_ts IS NULL",
                (msg.timestamp, sender_id),
            )
            conn.execute(
                "INSERT INTO member_name_history (member_id, name, start_ts, end_ts) VALUES (?, ?, ?, NULL)",
                (sender_id, name, msg.timestamp),
            )
            tracker.current_name = name
            tracker.last_seen_ts = msg.timestamp
            name_changes += 1
        else:
            tracker.last_seen_ts = msg.timestamp

        message_rows.append((sender_id, msg.timestamp, msg.type, msg.content))

    # Insertion order gives message ids in timestamp order
    conn.executemany(
        "INSERT INTO message (sender_id, ts, type, content) VALUES (?, ?, ?, ?)",
        message_rows,
    )

    for platform_id, tracker in trackers.items():
        conn.execute(
            "UPDATE member SET name = ? WHERE id = ?",
            (tracker.current_name, member_ids[platform_id]),
        )

    return {"messages": len(message_rows), "name_changes": name_changes, "skipped": skipped}
