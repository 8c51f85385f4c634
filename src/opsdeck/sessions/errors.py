"""Errors raised by the session registry and control surface."""

from __future__ import annotations


class SessionError(Exception):
    """Base class for session failures."""

    def __init__(self, message: str, session_id: str = "") -> None:
        super().__init__(message)
        self.session_id = session_id


class SessionNotFound(SessionError):
    """Raised for an unknown or already removed session id."""


class SessionDead(SessionError):
    """Raised when acting on a session whose process has exited."""


class RunInProgress(SessionError):
    """Raised when a single-instance run (doctor) is already active."""
