"""Error Handling Utilities

This module defines the exception taxonomy shared by the vote engine, the chat
stream assembler and the chat client, and the NoticeCollector that turns caught
failures into transient user-visible notices.

Failures from remote calls are caught where the call is made and surfaced as
notices; they are never left to propagate to a global handler.
"""

import json
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


class CampusPulseError(Exception):
    """Base exception for all Campus Pulse errors."""
    pass


class ConfigurationError(CampusPulseError):
    """Raised when required settings (env vars, .env entries) are missing."""
    pass


class AuthRequired(CampusPulseError):
    """Raised when an action needs an authenticated user and none is present.

    The API's require_session dependency raises it; app.py renders it as a 401
    AUTH_REQUIRED envelope.
    """
    pass


class RemoteMutationFailed(CampusPulseError):
    """Base class for failed remote calls that surface as notices, not HTTP errors.

    ChatEndpointError is the concrete case raised by the chat client; vote
    failures reach the engine as the store's own exceptions.
    """
    pass


class ChatEndpointError(RemoteMutationFailed):
    """Raised when the chat endpoint answers with a non-success status.

    Attributes:
        status_code: HTTP status returned by the endpoint
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class StreamTransportError(CampusPulseError):
    """Raised when the chat stream fails at the network level mid-stream."""
    pass


class MalformedFrame(CampusPulseError):
    """Raised when a stream data line cannot be parsed as JSON.

    The parser recovers from this locally by re-buffering the line; it is
    only raised to callers that parse single payloads directly.
    """
    pass


# Supported notice types
NOTICE_TYPE_SIGN_IN_REQUIRED = "sign_in_required"
NOTICE_TYPE_VOTE_FAILED = "vote_failed"
NOTICE_TYPE_CHAT_FAILED = "chat_failed"

VALID_NOTICE_TYPES = {
    NOTICE_TYPE_SIGN_IN_REQUIRED,
    NOTICE_TYPE_VOTE_FAILED,
    NOTICE_TYPE_CHAT_FAILED,
}


class NoticeCollector:
    """Thread-safe collector for transient, non-blocking user notices.

    Accumulates notice events with type, message, timestamp, and context.
    The presentation layer drains them and shows each one as a toast.

    Example:
        >>> notices = NoticeCollector()
        >>> notices.append(
        ...     "vote_failed",
        ...     "database is locked",
        ...     {"target_kind": "post", "target_id": "p-1"}
        ... )
        >>> notices.to_json()
        '[{"type": "vote_failed", "message": "database is locked", "timestamp": "...", "context": {...}}]'
    """

    def __init__(self):
        """Initialize an empty notice collector."""
        self._notices: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    def append(self, notice_type: str, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        """Add a notice with type, message, timestamp, and context.

        Args:
            notice_type: One of VALID_NOTICE_TYPES
            message: Human-readable description shown to the user
            context: Additional structured data (target, conversation id, status)

        Raises:
            ValueError: If notice_type is not in VALID_NOTICE_TYPES
        """
        if notice_type not in VALID_NOTICE_TYPES:
            raise ValueError(
                f"Invalid notice_type '{notice_type}'. "
                f"Must be one of: {', '.join(sorted(VALID_NOTICE_TYPES))}"
            )

        notice = {
            "type": notice_type,
            "message": message,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "context": context or {},
        }

        with self._lock:
            self._notices.append(notice)

    @property
    def notices(self) -> List[Dict[str, Any]]:
        """Snapshot copy of the collected notices."""
        with self._lock:
            return list(self._notices)

    def types(self) -> List[str]:
        """Notice types in the order they were raised."""
        with self._lock:
            return [n["type"] for n in self._notices]

    def drain(self) -> List[Dict[str, Any]]:
        """Return all notices and clear the collector."""
        with self._lock:
            drained = self._notices
            self._notices = []
            return drained

    def to_json(self) -> Optional[str]:
        """Serialize notices to a JSON array string, or None if there are none."""
        with self._lock:
            if not self._notices:
                return None
            return json.dumps(self._notices)

    def __len__(self) -> int:
        with self._lock:
            return len(self._notices)
