"""Typed exception hierarchy for streamgate."""

from __future__ import annotations


class StreamgateError(Exception):
    """Base class for all streamgate errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ConfigError(StreamgateError):
    """Raised for configuration issues (missing credential, invalid JSON, validation failure)."""


class LoadError(StreamgateError):
    """Raised when a file backing the configuration cannot be loaded."""


class SessionExistsError(StreamgateError):
    """Raised when a session id is registered twice."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Session already registered: {session_id}")


class TransportClosedError(StreamgateError):
    """Raised when writing to a transport whose channel is no longer open."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Transport for session {session_id} is not open")


class InvalidMessageError(StreamgateError):
    """Raised when an inbound request body is not a valid protocol message."""
