"""Core domain models for the opsdeck system.

These models represent the data flowing through a process session: the
launch parameters of the child process, the frames it produces (and the
control frames the streaming layer adds), and the summaries reported
by the control surface.
"""

from __future__ import annotations

import enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class SessionKind(str, enum.Enum):
    """What a session was started for."""

    TERMINAL = "terminal"  # Interactive login shell in a PTY
    DOCTOR = "doctor"  # Diagnostic / repair run of the runtime CLI
    PAIRING = "pairing"  # QR code device pairing login


class ExitReason(str, enum.Enum):
    """Why a process stopped."""

    EXITED = "exited"  # Process exited on its own
    KILLED = "killed"  # Explicit kill from the control surface
    REAPED = "reaped"  # Removed by the lifecycle reaper
    TIMEOUT = "timeout"  # Ran past its configured timeout


# ---------------------------------------------------------------------------
# Launch parameters
# ---------------------------------------------------------------------------


class CommandSpec(BaseModel):
    """Immutable launch parameters for one child process."""

    model_config = ConfigDict(frozen=True)

    argv: list[str] = Field(min_length=1, description="Program and arguments")
    cwd: str | None = Field(default=None, description="Working directory (None = inherit)")
    env: dict[str, str] = Field(
        default_factory=dict, description="Variables layered over the parent environment"
    )
    pty: bool = Field(default=False, description="Run inside a pseudo-terminal")
    stdin: bool = Field(default=True, description="Keep an input pipe open (pipes only)")
    cols: int = Field(default=80, ge=2, le=500)
    rows: int = Field(default=24, ge=2, le=200)
    timeout: float | None = Field(
        default=None, gt=0, description="Terminate the process after this many seconds"
    )
    banner: str | None = Field(
        default=None, description="Text emitted as the first output frame"
    )
    terminal_frame: Literal["exit", "done"] = Field(
        default="exit", description="Frame type announcing process exit"
    )
    qr_debounce: float | None = Field(
        default=None,
        ge=0,
        description="Coalesce stdout into qr frames after this much silence",
    )


# ---------------------------------------------------------------------------
# Wire frames (discriminated union)
# ---------------------------------------------------------------------------


class OutputFrame(BaseModel):
    """One chunk of process output, raw (may contain control sequences)."""

    model_config = ConfigDict(frozen=True)

    type: Literal["output"] = "output"
    text: str


class StatusFrame(BaseModel):
    """Liveness snapshot sent once when a viewer attaches."""

    model_config = ConfigDict(frozen=True)

    type: Literal["status"] = "status"
    alive: bool


class PingFrame(BaseModel):
    """Keepalive with no payload."""

    model_config = ConfigDict(frozen=True)

    type: Literal["ping"] = "ping"


class ExitFrame(BaseModel):
    """Terminal frame: the process exited, was killed, reaped or timed out."""

    model_config = ConfigDict(frozen=True)

    type: Literal["exit"] = "exit"
    code: int | None = Field(default=None, description="Exit code; negative for a signal")
    reason: ExitReason = ExitReason.EXITED
    text: str = ""


class DoneFrame(BaseModel):
    """Terminal frame used by pairing runs."""

    model_config = ConfigDict(frozen=True)

    type: Literal["done"] = "done"
    code: int | None = None
    text: str = ""


class ErrorFrame(BaseModel):
    """Terminal frame: OS-level failure after the process was spawned."""

    model_config = ConfigDict(frozen=True)

    type: Literal["error"] = "error"
    text: str


class QrFrame(BaseModel):
    """A debounced block of pairing stdout (QR code ASCII art)."""

    model_config = ConfigDict(frozen=True)

    type: Literal["qr"] = "qr"
    text: str


class LogFrame(BaseModel):
    """A non-empty line block of pairing stderr."""

    model_config = ConfigDict(frozen=True)

    type: Literal["log"] = "log"
    text: str


Frame = Annotated[
    Union[
        OutputFrame,
        StatusFrame,
        PingFrame,
        ExitFrame,
        DoneFrame,
        ErrorFrame,
        QrFrame,
        LogFrame,
    ],
    Field(discriminator="type"),
]

frame_adapter: TypeAdapter[Frame] = TypeAdapter(Frame)

TERMINAL_FRAME_TYPES = frozenset({"exit", "done", "error"})


def is_terminal(frame: BaseModel) -> bool:
    """Whether no further frames follow this one on its session."""
    return getattr(frame, "type", None) in TERMINAL_FRAME_TYPES


# ---------------------------------------------------------------------------
# Control surface models
# ---------------------------------------------------------------------------


class SessionInfo(BaseModel):
    """Summary of one registered session."""

    model_config = ConfigDict(frozen=True)

    id: str
    kind: SessionKind
    alive: bool
    created_at: float = Field(description="Wall-clock creation time (epoch seconds)")
    age_seconds: int = Field(ge=0)
