"""Tests for transcript import and nickname history reconstruction."""

import itertools
import json

import pytest

from chat_analytics import ingest
from chat_analytics.exceptions import (
    InvalidParseResultError,
    StoreCreationFailedError,
    TransactionFailureError,
)
from chat_analytics.ingest import (
    ParsedMember,
    ParsedMessage,
    ParsedMeta,
    ParseResult,
    import_data,
    load_parse_result,
    parse_result_from_dict,
)
from chat_analytics.storage import SessionStore

from sample_data import BASE_TS, NEW_YEAR_TS, DAY, SYSTEM

# Uses fixtures from conftest.py: sessions, sample_parse_result, imported_session,
# scenario_parse_result


def _history(storage, platform_id):
    """Nickname intervals of one member as (name, start, end), oldest first."""
    member = next(m for m in storage.get_members() if m.platform_id == platform_id)
    return [(h.name, h.start_ts, h.end_ts) for h in reversed(storage.get_name_history(member.id))]


class TestImportRoundTrip:
    """Tests that imported rows match the parse result."""

    def test_row_counts(self, sessions, imported_session):
        """Test every member and message is stored."""
        storage = sessions.open(imported_session)
        assert storage.count_members() == 5
        assert storage.count_messages() == 9

    def test_meta_row(self, sessions, imported_session):
        """Test meta is stored verbatim with an import timestamp."""
        meta = sessions.open(imported_session).get_meta()
        assert meta.name == "Weekend Hikers"
        assert meta.platform == "qq"
        assert meta.type == "group"
        assert meta.imported_at > NEW_YEAR_TS

    def test_messages_sorted_by_timestamp(self, sessions, imported_session):
        """Test message ids follow timestamp order, not input order."""
        messages = sessions.open(imported_session).get_messages()
        assert [m.id for m in messages] == list(range(1, 10))
        timestamps = [m.ts for m in messages]
        assert timestamps == sorted(timestamps)

    def test_senders_resolved(self, sessions, imported_session, sample_parse_result):
        """Test each message's sender maps back to its platform id."""
        storage = sessions.open(imported_session)
        platform_by_id = {m.id: m.platform_id for m in storage.get_members()}
        stored = [(platform_by_id[m.sender_id], m.ts) for m in storage.get_messages()]
        expected = sorted(
            ((m.sender_platform_id, m.timestamp) for m in sample_parse_result.messages),
            key=lambda pair: pair[1],
        )
        assert stored == expected

    def test_empty_content_kept(self, sessions, imported_session):
        """Test empty and missing content is stored, not rejected."""
        messages = sessions.open(imported_session).get_messages()
        assert messages[4].content == ""
        assert messages[5].content is None
        assert messages[5].type == 1

    def test_unknown_sender_skipped(self, sessions):
        """Test messages from senders missing in the member list are dropped."""
        result = ParseResult(
            meta=ParsedMeta(name="chat", platform="qq", type="private"),
            members=[ParsedMember(platform_id="a", name="A")],
            messages=[
                ParsedMessage(sender_platform_id="a", sender_name="A", timestamp=1, type=0, content="x"),
                ParsedMessage(sender_platform_id="ghost", sender_name="G", timestamp=2, type=0, content="y"),
            ],
        )
        session_id = import_data(sessions, result)
        storage = sessions.open(session_id)
        assert storage.count_messages() == 1
        assert storage.count_members() == 1

    def test_duplicate_member_keeps_first(self, sessions):
        """Test a repeated platform id inserts one member with the first name."""
        result = ParseResult(
            meta=ParsedMeta(name="chat", platform="qq", type="group"),
            members=[
                ParsedMember(platform_id="a", name="First"),
                ParsedMember(platform_id="a", name="Second"),
            ],
        )
        session_id = import_data(sessions, result)
        members = sessions.open(session_id).get_members()
        assert [(m.platform_id, m.name) for m in members] == [("a", "First")]

    def test_each_import_is_new_session(self, sessions, sample_parse_result):
        """Test importing twice creates two sessions."""
        first = import_data(sessions, sample_parse_result)
        second = import_data(sessions, sample_parse_result)
        assert first != second
        assert len(sessions.list_sessions()) == 2


class TestNicknameHistory:
    """Tests for nickname interval reconstruction."""

    def test_concrete_scenario(self, sessions, scenario_parse_result):
        """Test Alice -> Alicia closes the first interval at the rename."""
        storage = sessions.open(import_data(sessions, scenario_parse_result))
        assert _history(storage, "x") == [("Alice", 100, 200), ("Alicia", 200, None)]
        assert _history(storage, "y") == [("Bob", 150, None)]

    def test_final_name_is_latest(self, sessions, imported_session):
        """Test member names are the last observed nickname."""
        names = {m.platform_id: m.name for m in sessions.open(imported_session).get_members()}
        assert names == {
            "u1": "Alice W.",
            "u2": "Bobby",
            "u3": "Carol",
            "sys": SYSTEM,
            "u4": "Dave",
        }

    def test_silent_member_has_no_history(self, sessions, imported_session):
        """Test a member who never sends keeps no intervals."""
        assert _history(sessions.open(imported_session), "u4") == []

    def test_sample_intervals(self, sessions, imported_session):
        """Test intervals for members with and without renames."""
        storage = sessions.open(imported_session)
        assert _history(storage, "u1") == [
            ("Alice", BASE_TS, NEW_YEAR_TS),
            ("Alice W.", NEW_YEAR_TS, None),
        ]
        assert _history(storage, "u2") == [
            ("Bob", BASE_TS + 60, BASE_TS + DAY),
            ("Bobby", BASE_TS + DAY, None),
        ]
        assert _history(storage, "u3") == [("Carol", BASE_TS + 3660, None)]

    def test_interval_invariant(self, sessions, imported_session):
        """Test intervals are ordered, non-overlapping, with one open interval last."""
        storage = sessions.open(imported_session)
        for member in storage.get_members():
            history = list(reversed(storage.get_name_history(member.id)))
            if not history:
                continue
            assert [h.end_ts for h in history].count(None) == 1
            assert history[-1].end_ts is None
            assert history[-1].name == member.name
            for earlier, later in zip(history, history[1:]):
                assert earlier.end_ts is not None
                assert earlier.start_ts <= earlier.end_ts <= later.start_ts

    def test_rename_back_opens_new_interval(self, sessions):
        """Test returning to an earlier nickname is a new interval."""
        result = ParseResult(
            meta=ParsedMeta(name="chat", platform="qq", type="group"),
            members=[ParsedMember(platform_id="a", name="A")],
            messages=[
                ParsedMessage(sender_platform_id="a", sender_name=name, timestamp=ts, type=0, content="x")
                for name, ts in (("A", 10), ("B", 20), ("A", 30))
            ],
        )
        storage = sessions.open(import_data(sessions, result))
        assert _history(storage, "a") == [("A", 10, 20), ("B", 20, 30), ("A", 30, None)]

    def test_missing_sender_name_uses_member_name(self, sessions):
        """Test messages without a nickname use the member's parse-time name."""
        result = ParseResult(
            meta=ParsedMeta(name="chat", platform="qq", type="private"),
            members=[ParsedMember(platform_id="a", name="Anna")],
            messages=[ParsedMessage(sender_platform_id="a", timestamp=5, type=0, content="x")],
        )
        storage = sessions.open(import_data(sessions, result))
        assert _history(storage, "a") == [("Anna", 5, None)]

    def test_input_order_independent(self, sessions, scenario_parse_result):
        """Test any permutation of distinct timestamps yields the same history."""
        outcomes = set()
        for perm in itertools.permutations(scenario_parse_result.messages):
            result = ParseResult(
                meta=scenario_parse_result.meta,
                members=scenario_parse_result.members,
                messages=list(perm),
            )
            storage = sessions.open(import_data(sessions, result))
            names = tuple(sorted((m.platform_id, m.name) for m in storage.get_members()))
            outcomes.add((tuple(_history(storage, "x")), tuple(_history(storage, "y")), names))
        assert len(outcomes) == 1

    def test_timestamp_tie_follows_input_order(self, sessions):
        """Test equal timestamps are resolved by input order (stable sort)."""

        def run(order):
            result = ParseResult(
                meta=ParsedMeta(name="chat", platform="qq", type="group"),
                members=[ParsedMember(platform_id="a", name="A")],
                messages=[
                    ParsedMessage(sender_platform_id="a", sender_name=n, timestamp=50, type=0, content=n)
                    for n in order
                ],
            )
            storage = sessions.open(import_data(sessions, result))
            return _history(storage, "a"), storage.get_members()[0].name

        assert run(["P", "Q"]) == ([("P", 50, 50), ("Q", 50, None)], "Q")
        assert run(["Q", "P"]) == ([("Q", 50, 50), ("P", 50, None)], "P")


class TestImportAtomicity:
    """Tests that failed imports leave nothing behind."""

    def test_failure_rolls_back_and_removes_file(self, sessions, sample_parse_result):
        """Test a failing row aborts the whole import."""
        sample_parse_result.messages.append(
            ParsedMessage(
                sender_platform_id="u1",
                sender_name="Alice",
                timestamp=NEW_YEAR_TS + 1,
                type=0,
                content=object(),  # not bindable
            )
        )
        with pytest.raises(TransactionFailureError) as exc_info:
            import_data(sessions, sample_parse_result)

        session_id = exc_info.value.session_id
        assert exc_info.value.cause is not None
        assert not sessions.exists(session_id)
        assert list(sessions.db_dir.iterdir()) == []
        assert sessions.list_sessions() == []

    def test_interrupt_removes_file(self, sessions, sample_parse_result, monkeypatch):
        """Test an interrupt mid-write propagates unchanged and leaves no file."""
        write_import = ingest._write_import

        def interrupted(conn, parse_result):
            write_import(conn, parse_result)
            raise KeyboardInterrupt

        monkeypatch.setattr(ingest, "_write_import", interrupted)
        with pytest.raises(KeyboardInterrupt):
            import_data(sessions, sample_parse_result)

        assert list(sessions.db_dir.glob("*.db")) == []
        assert list(sessions.db_dir.iterdir()) == []

    def test_creation_failure(self, tmp_path, sample_parse_result):
        """Test an unusable directory surfaces StoreCreationFailedError."""
        blocker = tmp_path / "file"
        blocker.write_text("x")
        with pytest.raises(StoreCreationFailedError):
            import_data(SessionStore(db_dir=blocker), sample_parse_result)


class TestParseResultLoading:
    """Tests for building parse results from dicts and JSON files."""

    def test_from_camel_case(self):
        """Test the parser's camelCase keys are accepted."""
        result = parse_result_from_dict(
            {
                "meta": {"name": "chat", "platform": "wechat", "type": "private"},
                "members": [{"platformId": "a", "name": "A"}],
                "messages": [
                    {"senderPlatformId": "a", "senderName": "A", "timestamp": 1, "type": 0, "content": "hi"}
                ],
            }
        )
        assert result.members[0].platform_id == "a"
        assert result.messages[0].sender_platform_id == "a"
        assert result.messages[0].sender_name == "A"

    def test_from_snake_case(self):
        """Test snake_case keys are accepted."""
        result = parse_result_from_dict(
            {
                "meta": {"name": "chat", "platform": "qq", "type": "group"},
                "members": [{"platform_id": "a", "name": "A"}],
                "messages": [{"sender_platform_id": "a", "timestamp": "7", "type": 2}],
            }
        )
        assert result.messages[0].timestamp == 7
        assert result.messages[0].type == 2
        assert result.messages[0].content is None
        assert result.messages[0].sender_name is None

    def test_missing_meta(self):
        """Test missing meta is a contract violation."""
        with pytest.raises(InvalidParseResultError):
            parse_result_from_dict({"members": [], "messages": []})

    def test_missing_sender(self):
        """Test a message without a sender id is rejected with the field name."""
        with pytest.raises(InvalidParseResultError) as exc_info:
            parse_result_from_dict(
                {"meta": {"name": "c", "platform": "qq", "type": "group"}, "messages": [{"timestamp": 1}]}
            )
        assert exc_info.value.field == "sender_platform_id"

    def test_bad_timestamp(self):
        """Test a non-numeric timestamp is rejected."""
        with pytest.raises(ValueError):
            parse_result_from_dict(
                {
                    "meta": {"name": "c", "platform": "qq", "type": "group"},
                    "messages": [{"sender_platform_id": "a", "timestamp": "yesterday"}],
                }
            )

    def test_load_json_file(self, tmp_path):
        """Test loading from a UTF-8 JSON file."""
        path = tmp_path / "chat.json"
        path.write_text(
            json.dumps(
                {
                    "meta": {"name": "家庭群", "platform": "qq", "type": "group"},
                    "members": [{"platformId": "a", "name": "妈妈"}],
                    "messages": [],
                },
                ensure_ascii=False,
            ),
            encoding="utf-8",
        )
        result = load_parse_result(path)
        assert result.meta.name == "家庭群"
        assert result.members[0].name == "妈妈"

    def test_load_invalid_json(self, tmp_path):
        """Test malformed JSON raises InvalidParseResultError."""
        path = tmp_path / "chat.json"
        path.write_text("{not json")
        with pytest.raises(InvalidParseResultError):
            load_parse_result(path)

    def test_bad_type_names_type_field(self):
        """Test a non-numeric type is reported against the type field."""
        with pytest.raises(InvalidParseResultError) as exc_info:
            parse_result_from_dict(
                {
                    "meta": {"name": "c", "platform": "qq", "type": "group"},
                    "messages": [{"sender_platform_id": "a", "timestamp": 1, "type": "text"}],
                }
            )
        assert exc_info.value.field == "type"

    def test_bad_timestamp_names_timestamp_field(self):
        """Test a non-numeric timestamp is reported against the timestamp field."""
        with pytest.raises(InvalidParseResultError) as exc_info:
            parse_result_from_dict(
                {
                    "meta": {"name": "c", "platform": "qq", "type": "group"},
                    "messages": [{"sender_platform_id": "a", "timestamp": "soon"}],
                }
            )
        assert exc_info.value.field == "timestamp"

    @pytest.mark.parametrize("key", ["members", "messages"])
    def test_null_or_non_list_collections(self, key):
        """Test members/messages that are not lists are rejected."""
        for value in (None, {"a": 1}, "abc"):
            with pytest.raises(InvalidParseResultError) as exc_info:
                parse_result_from_dict(
                    {"meta": {"name": "c", "platform": "qq", "type": "group"}, key: value}
                )
            assert exc_info.value.field == key

    def test_missing_collections_are_empty(self):
        """Test absent members and messages mean an empty chat."""
        result = parse_result_from_dict({"meta": {"name": "c", "platform": "qq", "type": "group"}})
        assert result.members == []
        assert result.messages == []
