"""A session: one owned child process plus the broadcaster of its output."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

from opsdeck.domain.models import (
    CommandSpec,
    DoneFrame,
    ErrorFrame,
    ExitFrame,
    ExitReason,
    LogFrame,
    OutputFrame,
    QrFrame,
    SessionInfo,
    SessionKind,
)
from opsdeck.process import ChildProcess, spawn_process
from opsdeck.streaming.broadcaster import DEFAULT_CAPACITY, OutputBroadcaster

logger = logging.getLogger(__name__)


def describe_exit(code: int | None, reason: ExitReason, timeout: float | None = None) -> str:
    """Human-readable last line for an exit frame."""
    if reason is ExitReason.KILLED:
        return "[Session killed]"
    if reason is ExitReason.REAPED:
        return "[Session reaped]"
    if reason is ExitReason.TIMEOUT:
        return f"[Timed out after {timeout:g}s]" if timeout else "[Timed out]"
    if code is None or code == 0:
        return "[Session ended]"
    if code < 0:
        return f"[Session ended by signal {-code}]"
    return f"[Session ended with code {code}]"


class Session:
    """The unit of lifetime for one spawned process.

    Owns exactly one ChildProcess and one OutputBroadcaster. Process
    events are turned into frames here: output chunks become ``output``
    frames (or ``qr``/``log`` frames for pairing runs) and the exit
    becomes exactly one terminal frame, after which the broadcaster is
    closed.
    """

    def __init__(
        self,
        session_id: str,
        kind: SessionKind,
        spec: CommandSpec,
        capacity: int = DEFAULT_CAPACITY,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.id = session_id
        self.kind = kind
        self.spec = spec
        self.broadcaster = OutputBroadcaster(capacity)
        self.process: ChildProcess | None = None
        self.created_at = time.time()
        self._clock = clock
        self.created_monotonic = clock()
        self.last_activity = self.created_monotonic
        self._qr_buffer = ""
        self._qr_timer: asyncio.TimerHandle | None = None

    @property
    def alive(self) -> bool:
        return self.process is not None and self.process.alive

    @property
    def working_directory(self) -> str | None:
        return self.spec.cwd

    def age(self, now: float | None = None) -> float:
        now = self._clock() if now is None else now
        return max(0.0, now - self.created_monotonic)

    def idle_for(self, now: float | None = None) -> float:
        now = self._clock() if now is None else now
        return max(0.0, now - self.last_activity)

    def touch(self) -> None:
        self.last_activity = self._clock()

    def info(self, now: float | None = None) -> SessionInfo:
        return SessionInfo(
            id=self.id,
            kind=self.kind,
            alive=self.alive,
            created_at=self.created_at,
            age_seconds=round(self.age(now)),
        )

    async def start(self, kill_grace: float = 2.0) -> None:
        """Emit the banner and spawn the process (SpawnError propagates)."""
        if self.spec.banner:
            self.broadcaster.append(OutputFrame(text=self.spec.banner))
        self.process = await spawn_process(
            self.spec,
            on_output=self._handle_output,
            on_exit=self._handle_exit,
            kill_grace=kill_grace,
        )

    def terminate(self, reason: ExitReason = ExitReason.KILLED) -> None:
        """Best-effort stop; the exit frame follows when the process dies."""
        if self.process is not None:
            self.process.terminate(reason)

    def _handle_output(self, text: str, stream: str) -> None:
        self.touch()
        if self.spec.qr_debounce is None:
            self.broadcaster.append(OutputFrame(text=text))
            return

        # QR codes arrive in several writes; send them as one frame
        # once stdout has been quiet for the debounce period.
        if stream == "stdout":
            self._qr_buffer += text
            if self._qr_timer is not None:
                self._qr_timer.cancel()
            self._qr_timer = asyncio.get_running_loop().call_later(
                self.spec.qr_debounce, self._flush_qr
            )
        else:
            stripped = text.strip()
            if stripped:
                self.broadcaster.append(LogFrame(text=stripped))

    def _flush_qr(self) -> None:
        if self._qr_timer is not None:
            self._qr_timer.cancel()
            self._qr_timer = None
        if self._qr_buffer.strip():
            self.broadcaster.append(QrFrame(text=self._qr_buffer))
        self._qr_buffer = ""

    def _handle_exit(self, code: int | None, error: BaseException | None) -> None:
        self._flush_qr()
        reason = self.process.exit_reason if self.process is not None else ExitReason.EXITED

        if error is not None:
            frame = ErrorFrame(text=str(error) or type(error).__name__)
        elif self.spec.terminal_frame == "done":
            text = "Login successful" if code == 0 else f"Process exited with code {code}"
            frame = DoneFrame(code=code, text=text)
        else:
            frame = ExitFrame(
                code=code,
                reason=reason,
                text=describe_exit(code, reason, self.spec.timeout),
            )

        logger.info("Session %s (%s) finished: %s", self.id, self.kind.value, frame.type)
        self.broadcaster.append(frame)
        self.broadcaster.close()
