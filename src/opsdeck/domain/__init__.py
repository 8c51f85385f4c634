"""Domain models for opsdeck.

This package contains the wire frames streamed to viewers, the launch
parameters for child processes and the session summaries returned by
the control surface. All models use Pydantic v2 for validation and
serialization.
"""

from opsdeck.domain.models import (
    CommandSpec,
    DoneFrame,
    ErrorFrame,
    ExitFrame,
    ExitReason,
    Frame,
    LogFrame,
    OutputFrame,
    PingFrame,
    QrFrame,
    SessionInfo,
    SessionKind,
    StatusFrame,
    is_terminal,
)

__all__ = [
    "CommandSpec",
    "DoneFrame",
    "ErrorFrame",
    "ExitFrame",
    "ExitReason",
    "Frame",
    "LogFrame",
    "OutputFrame",
    "PingFrame",
    "QrFrame",
    "SessionInfo",
    "SessionKind",
    "StatusFrame",
    "is_terminal",
]
