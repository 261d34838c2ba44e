"""SQLite storage for imported chat sessions.

Each imported conversation lives in its own database file inside the
session directory. ``SessionStore`` manages that directory and
``SQLiteStorage`` wraps a single session file.
"""

import logging
import os
import re
import sqlite3
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from chat_analytics.exceptions import (
    CorruptSessionError,
    SessionExistsError,
    SessionNotFoundError,
    StoreCreationFailedError,
)

logger = logging.getLogger("chat-analytics")

# Default location for session databases
DEFAULT_DB_DIR = Path.home() / ".chat-analytics" / "databases"

# Sender name used by the platforms for generated notices
DEFAULT_SYSTEM_SENDER = "系统消息"

# Message type code for plain text
MESSAGE_TYPE_TEXT = 0

DB_SUFFIX = ".db"
SIDE_FILE_SUFFIXES = ("-wal", "-shm")

_SESSION_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")

SCHEMA = """
    -- Conversation metadata (single row)
    CREATE TABLE IF NOT EXISTS meta (
        name TEXT NOT NULL,
        platform TEXT NOT NULL,
        type TEXT NOT NULL,
        imported_at INTEGER NOT NULL
    );

    CREATE TABLE IF NOT EXISTS member (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        platform_id TEXT NOT NULL UNIQUE,
        name TEXT NOT NULL
    );

    -- Nickname intervals [start_ts, end_ts), end_ts NULL while current
    CREATE TABLE IF NOT EXISTS member_name_history (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        member_id INTEGER NOT NULL,
        name TEXT NOT NULL,
        start_ts INTEGER NOT NULL,
        end_ts INTEGER,
        FOREIGN KEY(member_id) REFERENCES member(id)
    );

    CREATE TABLE IF NOT EXISTS message (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        sender_id INTEGER NOT NULL,
        ts INTEGER NOT NULL,
        type INTEGER NOT NULL,
        content TEXT,
        FOREIGN KEY(sender_id) REFERENCES member(id)
    );

    CREATE INDEX IF NOT EXISTS idx_message_ts ON message(ts);
    CREATE INDEX IF NOT EXISTS idx_message_sender ON message(sender_id);
    CREATE INDEX IF NOT EXISTS idx_member_name_history_member_id ON member_name_history(member_id);
"""

REQUIRED_TABLES = ("meta", "member", "member_name_history", "message")


@dataclass
class SessionMeta:
    """Conversation-level metadata stored in the meta row."""

    name: str
    platform: str
    type: str  # 'private', 'group', ...
    imported_at: int


@dataclass
class Member:
    """A conversation participant."""

    id: int
    platform_id: str
    name: str  # Most recently observed nickname


@dataclass
class NameHistoryEntry:
    """One nickname interval of a member."""

    id: int
    member_id: int
    name: str
    start_ts: int
    end_ts: int | None = None  # None while the nickname is current


@dataclass
class Message:
    """A stored message row."""

    id: int
    sender_id: int
    ts: int
    type: int
    content: str | None = None


@dataclass
class SessionSummary:
    """Listing entry for an imported session."""

    id: str
    name: str
    platform: str
    type: str
    imported_at: int
    message_count: int
    member_count: int
    db_path: str


class SQLiteStorage:
    """A single session database file."""

    def __init__(self, db_path: str | Path, read_only: bool = False):
        self.db_path = Path(db_path)
        self.read_only = read_only

    @contextmanager
    def _connect(self, autocommit: bool = False):
        """Context manager for database connections."""
        conn = sqlite3.connect(self.db_path, isolation_level=None if autocommit else "")
        conn.row_factory = sqlite3.Row
        try:
            if self.read_only:
                conn.execute("PRAGMA query_only = ON")
            yield conn
            if not autocommit and not self.read_only:
                conn.commit()
        finally:
            conn.close()

    def initialize_schema(self):
        """Enable write-ahead logging and create tables and indexes."""
        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.executescript(SCHEMA)

    @contextmanager
    def transaction(self):
        """Run a block as one write transaction.

        Commits when the block finishes and rolls back on any exception,
        which is then re-raised.
        """
        if self.read_only:
            raise PermissionError(f"Storage opened read-only: {self.db_path}")
        with self._connect(autocommit=True) as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    @contextmanager
    def snapshot(self):
        """Yield a connection holding one read transaction.

        Every statement in the block sees the same committed state.
        """
        with self._connect(autocommit=True) as conn:
            conn.execute("BEGIN")
            try:
                yield conn
            finally:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")

    def execute_query(
        self, sql: str, params: tuple | list = (), conn: sqlite3.Connection | None = None
    ) -> list[sqlite3.Row]:
        """Execute a SQL query and return all results.

        Args:
            sql: SQL query string
            params: Query parameters (tuple or list)
            conn: Connection to run on, e.g. from snapshot(); a new one if omitted

        Returns:
            List of sqlite3.Row objects
        """
        if conn is not None:
            return conn.execute(sql, params).fetchall()
        with self._connect() as conn:
            return conn.execute(sql, params).fetchall()

    def has_schema(self) -> bool:
        """Check that the file is a SQLite database with all session tables.

        Raises sqlite3.DatabaseError if the file is not a database.
        """
        placeholders = ", ".join("?" for _ in REQUIRED_TABLES)
        rows = self.execute_query(
            f"SELECT name FROM sqlite_master WHERE type = 'table' AND name IN ({placeholders})",
            REQUIRED_TABLES,
        )
        return len(rows) == len(REQUIRED_TABLES)

    # Row accessors

    def get_meta(self, conn: sqlite3.Connection | None = None) -> SessionMeta | None:
        rows = self.execute_query(
            "SELECT name, platform, type, imported_at FROM meta LIMIT 1", conn=conn
        )
        if not rows:
            return None
        row = rows[0]
        return SessionMeta(
            name=row["name"],
            platform=row["platform"],
            type=row["type"],
            imported_at=row["imported_at"],
        )

    def count_messages(
        self, exclude_sender: str | None = None, conn: sqlite3.Connection | None = None
    ) -> int:
        """Count messages, optionally excluding one sender name."""
        if exclude_sender is None:
            rows = self.execute_query("SELECT COUNT(*) AS count FROM message", conn=conn)
        else:
            rows = self.execute_query(
                """
                SELECT COUNT(*) AS count
                FROM message msg
                JOIN member m ON msg.sender_id = m.id
                WHERE m.name != ?
                """,
                (exclude_sender,),
                conn=conn,
            )
        return rows[0]["count"]

    def count_members(
        self, exclude_sender: str | None = None, conn: sqlite3.Connection | None = None
    ) -> int:
        """Count members, optionally excluding one sender name."""
        if exclude_sender is None:
            rows = self.execute_query("SELECT COUNT(*) AS count FROM member", conn=conn)
        else:
            rows = self.execute_query(
                "SELECT COUNT(*) AS count FROM member WHERE name != ?", (exclude_sender,), conn=conn
            )
        return rows[0]["count"]

    def get_member(self, member_id: int) -> Member | None:
        rows = self.execute_query(
            "SELECT id, platform_id, name FROM member WHERE id = ?", (member_id,)
        )
        if not rows:
            return None
        return Member(id=rows[0]["id"], platform_id=rows[0]["platform_id"], name=rows[0]["name"])

    def get_members(self) -> list[Member]:
        rows = self.execute_query("SELECT id, platform_id, name FROM member ORDER BY id")
        return [Member(id=r["id"], platform_id=r["platform_id"], name=r["name"]) for r in rows]

    def get_name_history(self, member_id: int) -> list[NameHistoryEntry]:
        """Get a member's nickname intervals, newest start first."""
        rows = self.execute_query(
            """
            SELECT id, member_id, name, start_ts, end_ts
            FROM member_name_history
            WHERE member_id = ?
            ORDER BY start_ts DESC, id DESC
            """,
            (member_id,),
        )
        return [
            NameHistoryEntry(
                id=r["id"],
                member_id=r["member_id"],
                name=r["name"],
                start_ts=r["start_ts"],
                end_ts=r["end_ts"],
            )
            for r in rows
        ]

    def get_messages(self) -> list[Message]:
        """Get all messages in insertion (id) order."""
        rows = self.execute_query("SELECT id, sender_id, ts, type, content FROM message ORDER BY id")
        return [
            Message(id=r["id"], sender_id=r["sender_id"], ts=r["ts"], type=r["type"], content=r["content"])
            for r in rows
        ]


class SessionStore:
    """Directory of per-session database files."""

    def __init__(self, db_dir: str | Path | None = None, system_sender: str | None = None):
        """Initialize with optional custom directory and system sender name."""
        if db_dir is None:
            db_dir = os.environ.get("CHAT_ANALYTICS_DIR", str(DEFAULT_DB_DIR))
        if system_sender is None:
            system_sender = os.environ.get("CHAT_ANALYTICS_SYSTEM_SENDER", DEFAULT_SYSTEM_SENDER)

        self._db_dir = Path(db_dir)
        self.system_sender = system_sender

    @property
    def db_dir(self) -> Path:
        """The session directory, created on first access."""
        self._db_dir.mkdir(parents=True, exist_ok=True)
        return self._db_dir

    @staticmethod
    def generate_session_id() -> str:
        """Generate a new session id: creation time in ms plus a random suffix."""
        return f"chat_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}"

    @staticmethod
    def is_valid_session_id(session_id: str) -> bool:
        """Check that a session id maps to a file inside the session directory."""
        return bool(session_id) and _SESSION_ID_RE.match(session_id) is not None

    def db_path(self, session_id: str) -> Path:
        """Get the database file path for a session id.

        Raises ValueError for ids that cannot name a session file.
        """
        if not self.is_valid_session_id(session_id):
            raise ValueError(f"Invalid session id: {session_id!r}")
        return self._db_dir / f"{session_id}{DB_SUFFIX}"

    def exists(self, session_id: str) -> bool:
        if not self.is_valid_session_id(session_id):
            return False
        return self.db_path(session_id).exists()

    def create(self, session_id: str) -> SQLiteStorage:
        """Create a new session file with the schema applied.

        Raises:
            SessionExistsError: A file for this session id already exists
            StoreCreationFailedError: The file or schema could not be created
        """
        path = self.db_path(session_id)
        if path.exists():
            raise SessionExistsError(session_id)

        try:
            self._db_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreCreationFailedError(session_id, str(path), e) from e

        try:
            # O_EXCL makes the existence check and creation one step
            fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            os.close(fd)
        except FileExistsError:
            raise SessionExistsError(session_id) from None
        except OSError as e:
            raise StoreCreationFailedError(session_id, str(path), e) from e

        storage = SQLiteStorage(path)
        try:
            storage.initialize_schema()
        except sqlite3.Error as e:
            self._remove_files(path)
            raise StoreCreationFailedError(session_id, str(path), e) from e

        logger.debug(f"Created session store {path}")
        return storage

    def open(self, session_id: str) -> SQLiteStorage | None:
        """Open an existing session for reading.

        Returns None if the file is missing, is not a database, or lacks
        the session tables. Ids that cannot name a session file are
        treated as missing.
        """
        if not self.exists(session_id):
            return None
        path = self.db_path(session_id)

        storage = SQLiteStorage(path, read_only=True)
        try:
            if not storage.has_schema():
                logger.warning(f"Session {session_id} is missing tables, ignoring")
                return None
        except sqlite3.DatabaseError as e:
            logger.warning(f"Could not open session {session_id}: {e}")
            return None
        return storage

    def delete(self, session_id: str) -> bool:
        """Delete a session file and its WAL side files.

        Returns False if the session file was already absent or could not
        be removed.
        """
        if not self.is_valid_session_id(session_id):
            return False
        path = self.db_path(session_id)
        existed = path.exists()
        try:
            self._remove_files(path)
        except OSError as e:
            logger.error(f"Failed to delete session {session_id}: {e}")
            return False
        return existed

    def _remove_files(self, path: Path):
        for candidate in (path, *(Path(f"{path}{suffix}") for suffix in SIDE_FILE_SUFFIXES)):
            candidate.unlink(missing_ok=True)

    def summarize(self, session_id: str) -> SessionSummary:
        """Build the summary for one session.

        Message and member counts exclude the system sender.

        Raises:
            SessionNotFoundError: No file for this session id
            CorruptSessionError: The file is unreadable or has no meta row
        """
        if not self.exists(session_id):
            raise SessionNotFoundError(session_id)
        path = self.db_path(session_id)

        storage = SQLiteStorage(path, read_only=True)
        try:
            with storage.snapshot() as conn:
                meta = storage.get_meta(conn)
                if meta is None:
                    raise CorruptSessionError(session_id, "missing meta row")
                message_count = storage.count_messages(self.system_sender, conn)
                member_count = storage.count_members(self.system_sender, conn)
        except sqlite3.Error as e:
            raise CorruptSessionError(session_id, str(e)) from e

        return SessionSummary(
            id=session_id,
            name=meta.name,
            platform=meta.platform,
            type=meta.type,
            imported_at=meta.imported_at,
            message_count=message_count,
            member_count=member_count,
            db_path=str(path),
        )

    def get_session(self, session_id: str) -> SessionSummary | None:
        """Get one session summary, or None if missing or unreadable."""
        try:
            return self.summarize(session_id)
        except (SessionNotFoundError, CorruptSessionError):
            return None

    def list_sessions(self) -> list[SessionSummary]:
        """List all readable sessions, most recently imported first.

        Unreadable session files are logged and skipped.
        """
        if not self._db_dir.is_dir():
            return []

        sessions = []
        for db_file in sorted(self._db_dir.glob(f"*{DB_SUFFIX}")):
            session_id = db_file.name[: -len(DB_SUFFIX)]
            try:
                sessions.append(self.summarize(session_id))
            except CorruptSessionError as e:
                logger.warning(f"Skipping session: {e.message}")
            except SessionNotFoundError:
                continue
            except ValueError:
                logger.debug(f"Ignoring unrelated file {db_file.name}")

        sessions.sort(key=lambda s: s.imported_at, reverse=True)
        return sessions
