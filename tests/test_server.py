"""Tests for the MCP server."""

import json

import pytest

from chat_analytics import server

from sample_data import BASE_TS, NEW_YEAR_TS

# Uses fixtures from conftest.py: sessions, imported_session


@pytest.fixture
def server_sessions(sessions, monkeypatch):
    """Point the server's session directory at the test store."""
    monkeypatch.setattr(server, "sessions", sessions)
    return sessions


def test_get_status(server_sessions, imported_session):
    """Test that get_status returns expected fields."""
    # FastMCP wraps functions - access the underlying fn
    result = server.get_status.fn()
    assert result["status"] == "ok"
    assert result["db_dir"] == str(server_sessions.db_dir)
    assert result["session_count"] == 1
    assert result["message_count"] == 8


def test_list_and_get_session(server_sessions, imported_session):
    """Test session listing and lookup tools."""
    listed = server.list_sessions.fn()
    assert listed["count"] == 1
    assert listed["sessions"][0]["id"] == imported_session

    found = server.get_session.fn(session_id=imported_session)
    assert found["status"] == "ok"
    assert found["name"] == "Weekend Hikers"

    assert server.get_session.fn(session_id="nope") == {"status": "not_found", "session_id": "nope"}


def test_import_and_delete(server_sessions, tmp_path):
    """Test importing a transcript file then deleting the session."""
    path = tmp_path / "export.json"
    path.write_text(
        json.dumps(
            {
                "meta": {"name": "Duo", "platform": "qq", "type": "private"},
                "members": [{"platformId": "a", "name": "A"}],
                "messages": [{"senderPlatformId": "a", "timestamp": 1, "type": 0, "content": "hi"}],
            }
        )
    )
    imported = server.import_transcript.fn(path=str(path))
    assert imported["status"] == "ok"
    assert imported["message_count"] == 1

    deleted = server.delete_session.fn(session_id=imported["id"])
    assert deleted == {"session_id": imported["id"], "deleted": True}
    assert server.list_sessions.fn()["count"] == 0


def test_analytics_tools(server_sessions, imported_session):
    """Test analytics tools wrap query results with the session id."""
    members = server.member_activity.fn(session_id=imported_session)
    assert members["session_id"] == imported_session
    assert [m["percentage"] for m in members["members"]] == [50.0, 25.0, 25.0]

    assert len(server.hourly_activity.fn(session_id=imported_session)["hours"]) == 24
    assert len(server.daily_activity.fn(session_id=imported_session)["days"]) == 3
    assert server.message_types.fn(session_id=imported_session)["types"][1] == {"type": 1, "count": 1}
    assert server.time_range.fn(session_id=imported_session)["range"] == {
        "start": BASE_TS,
        "end": NEW_YEAR_TS,
    }
    assert server.available_years.fn(session_id=imported_session)["years"] == [2025, 2024]
    history = server.member_name_history.fn(session_id=imported_session, member_id=1)["history"]
    assert history[0]["name"] == "Alice W."


def test_time_bounds(server_sessions, imported_session):
    """Test start_ts/end_ts arguments become a time filter."""
    result = server.member_activity.fn(session_id=imported_session, end_ts=BASE_TS + 60)
    assert [(m["platform_id"], m["message_count"]) for m in result["members"]] == [("u1", 1), ("u2", 1)]


def test_message_tools(server_sessions, imported_session):
    """Test search and navigation tools."""
    assert server.recent_messages.fn(session_id=imported_session)["total"] == 6
    assert server.search_messages.fn(session_id=imported_session, keywords=["morning"])["total"] == 2

    context = server.message_context.fn(session_id=imported_session, message_ids=[5], context_size=1)
    assert context["count"] == 3

    between = server.conversation_between.fn(session_id=imported_session, member_a=1, member_b=2)
    assert between["name_a"] == "Alice W."

    before = server.messages_before.fn(session_id=imported_session, before_id=9, limit=3)
    assert [m["id"] for m in before["messages"]] == [6, 7, 8]
    after = server.messages_after.fn(session_id=imported_session, after_id=0, keywords=["morning"])
    assert [m["id"] for m in after["messages"]] == [1, 2]


def test_missing_session_is_neutral(server_sessions):
    """Test tools on an unknown session return empty results."""
    assert server.member_activity.fn(session_id="nope")["members"] == []
    assert server.time_range.fn(session_id="nope")["range"] is None
    assert server.recent_messages.fn(session_id="nope") == {"messages": [], "total": 0}
