"""Process sessions for opsdeck.

A session is one owned child process plus the broadcaster of its
output. The registry tracks sessions, the reaper evicts abandoned ones
and the control surface is the command set the HTTP layer calls.
"""

from opsdeck.sessions.control import ControlSurface
from opsdeck.sessions.errors import (
    RunInProgress,
    SessionDead,
    SessionError,
    SessionNotFound,
)
from opsdeck.sessions.reaper import LifecycleReaper
from opsdeck.sessions.registry import SessionRegistry
from opsdeck.sessions.session import Session

__all__ = [
    "ControlSurface",
    "LifecycleReaper",
    "RunInProgress",
    "Session",
    "SessionDead",
    "SessionError",
    "SessionNotFound",
    "SessionRegistry",
]
