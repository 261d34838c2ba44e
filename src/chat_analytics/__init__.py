"""Chat Analytics - per-conversation SQLite store for imported chat transcripts."""

from importlib.metadata import version

try:
    __version__ = version("chat-analytics")
except Exception:
    __version__ = "0.1.0"  # Fallback for development

# Re-export public API
from chat_analytics.exceptions import (
    ChatAnalyticsError,
    CorruptSessionError,
    InvalidParseResultError,
    SessionExistsError,
    SessionNotFoundError,
    StoreCreationFailedError,
    TransactionFailureError,
)
from chat_analytics.filters import TimeFilter
from chat_analytics.ingest import ParsedMember, ParsedMessage, ParsedMeta, ParseResult, import_data
from chat_analytics.storage import (
    Member,
    Message,
    NameHistoryEntry,
    SessionMeta,
    SessionStore,
    SessionSummary,
    SQLiteStorage,
)

__all__ = [
    # Version
    "__version__",
    # Storage
    "SessionStore",
    "SQLiteStorage",
    "SessionMeta",
    "SessionSummary",
    "Member",
    "Message",
    "NameHistoryEntry",
    # Import
    "ParseResult",
    "ParsedMeta",
    "ParsedMember",
    "ParsedMessage",
    "import_data",
    # Queries
    "TimeFilter",
    # Errors
    "ChatAnalyticsError",
    "SessionNotFoundError",
    "SessionExistsError",
    "StoreCreationFailedError",
    "TransactionFailureError",
    "CorruptSessionError",
    "InvalidParseResultError",
]
