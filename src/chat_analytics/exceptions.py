"""
Exceptions raised by the chat analytics store.

Read queries never raise for missing sessions or empty data; these
exceptions cover session creation, import and explicit lookups.
"""


class ChatAnalyticsError(Exception):
    """Base exception for all chat analytics errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class SessionNotFoundError(ChatAnalyticsError):
    """Raised when a session database file does not exist."""

    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}", {"session_id": session_id})
        self.session_id = session_id


class SessionExistsError(ChatAnalyticsError):
    """Raised when trying to create a session that already exists."""

    def __init__(self, session_id: str):
        super().__init__(f"Session already exists: {session_id}", {"session_id": session_id})
        self.session_id = session_id


class StoreCreationFailedError(ChatAnalyticsError):
    """Raised when the session database file cannot be created."""

    def __init__(self, session_id: str, path: str | None = None, cause: Exception | None = None):
        details = {"session_id": session_id}
        if path:
            details["path"] = path
        if cause:
            details["cause"] = str(cause)
        super().__init__(f"Could not create session store: {session_id}", details)
        self.session_id = session_id
        self.cause = cause


class TransactionFailureError(ChatAnalyticsError):
    """Raised when the import transaction fails and has been rolled back."""

    def __init__(self, session_id: str, cause: Exception | None = None):
        details = {"session_id": session_id}
        if cause:
            details["cause"] = str(cause)
        super().__init__(f"Import into session {session_id} failed and was rolled back", details)
        self.session_id = session_id
        self.cause = cause


class CorruptSessionError(ChatAnalyticsError):
    """Raised when a session file cannot be read or lacks its meta row."""

    def __init__(self, session_id: str, reason: str):
        super().__init__(
            f"Session {session_id} is unreadable: {reason}",
            {"session_id": session_id, "reason": reason},
        )
        self.session_id = session_id
        self.reason = reason


class InvalidParseResultError(ChatAnalyticsError, ValueError):
    """Raised when import input does not match the normalized structure."""

    def __init__(self, message: str, field: str | None = None):
        details = {}
        if field:
            details["field"] = field
        super().__init__(message, details)
        self.field = field
