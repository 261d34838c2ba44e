"""Pytest configuration and shared fixtures."""

import tempfile
from pathlib import Path

import pytest

from chat_analytics.ingest import ParsedMember, ParsedMessage, ParsedMeta, ParseResult, import_data
from chat_analytics.storage import SessionStore

from sample_data import BASE_TS, DAY, HOUR, NEW_YEAR_TS, SYSTEM


@pytest.fixture
def sessions():
    """Create a session directory in a temporary location.

    This is the base fixture for all storage-dependent tests.
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        yield SessionStore(db_dir=Path(tmpdir) / "databases", system_sender=SYSTEM)


def _msg(platform_id, name, ts, content, msg_type=0):
    return ParsedMessage(
        sender_platform_id=platform_id,
        sender_name=name,
        timestamp=ts,
        type=msg_type,
        content=content,
    )


@pytest.fixture
def sample_parse_result():
    """A group chat across two years, given to the importer out of order.

    After import, message ids follow timestamp order:
    1  u1 Alice     09:00 day 1   "good morning everyone"
    2  u2 Bob       09:01 day 1   "morning!"
    3  sys          09:02 day 1   "Bob joined the group"
    4  u1 Alice     10:00 day 1   "lunch plans?"
    5  u3 Carol     10:01 day 1   ""            (empty text)
    6  u3 Carol     10:02 day 1   None          (type 1, image)
    7  u2 Bobby     09:00 day 2   "new nickname, who dis"
    8  u1 Alice     11:00 day 2   "100% sure"
    9  u1 Alice W.  2025-01-05    "happy new year"

    Member ids: u1=1, u2=2, u3=3, sys=4, u4=5 (u4 never sends).
    """
    ordered = [
        _msg("u1", "Alice", BASE_TS, "good morning everyone"),
        _msg("u2", "Bob", BASE_TS + 60, "morning!"),
        _msg("sys", SYSTEM, BASE_TS + 120, "Bob joined the group"),
        _msg("u1", "Alice", BASE_TS + HOUR, "lunch plans?"),
        _msg("u3", "Carol", BASE_TS + HOUR + 60, ""),
        _msg("u3", "Carol", BASE_TS + HOUR + 120, None, msg_type=1),
        _msg("u2", "Bobby", BASE_TS + DAY, "new nickname, who dis"),
        _msg("u1", "Alice", BASE_TS + DAY + 2 * HOUR, "100% sure"),
        _msg("u1", "Alice W.", NEW_YEAR_TS, "happy new year"),
    ]
    shuffled = [ordered[i] for i in (7, 0, 8, 3, 1, 6, 2, 5, 4)]

    return ParseResult(
        meta=ParsedMeta(name="Weekend Hikers", platform="qq", type="group"),
        members=[
            ParsedMember(platform_id="u1", name="Alice"),
            ParsedMember(platform_id="u2", name="Bob"),
            ParsedMember(platform_id="u3", name="Carol"),
            ParsedMember(platform_id="sys", name=SYSTEM),
            ParsedMember(platform_id="u4", name="Dave"),
        ],
        messages=shuffled,
    )


@pytest.fixture
def imported_session(sessions, sample_parse_result):
    """Session id of the imported sample chat."""
    return import_data(sessions, sample_parse_result)


@pytest.fixture
def scenario_parse_result():
    """X renames Alice -> Alicia at ts=200, Y stays Bob."""
    return ParseResult(
        meta=ParsedMeta(name="Pair", platform="wechat", type="group"),
        members=[
            ParsedMember(platform_id="x", name="Alice"),
            ParsedMember(platform_id="y", name="Bob"),
        ],
        messages=[
            _msg("x", "Alice", 100, "hi"),
            _msg("x", "Alicia", 200, "renamed"),
            _msg("x", "Alicia", 300, "still me"),
            _msg("y", "Bob", 150, "hello"),
        ],
    )
