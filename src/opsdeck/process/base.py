"""Abstract base class for owned child processes.

A ChildProcess starts one OS process in its own process group, turns
its output into text and reports exactly one exit event. Concrete
subclasses decide how the process is wired up (pipes or a PTY).
"""

from __future__ import annotations

import asyncio
import codecs
import logging
import os
import signal
from abc import ABC, abstractmethod
from typing import Callable

from opsdeck.domain.models import CommandSpec, ExitReason

logger = logging.getLogger(__name__)

# How long to keep reading output after the process has exited
DRAIN_GRACE = 1.0

OutputCallback = Callable[[str, str], None]
ExitCallback = Callable[[int | None, BaseException | None], None]


def make_decoder() -> codecs.IncrementalDecoder:
    """UTF-8 decoder that survives multi-byte characters split across reads."""
    return codecs.getincrementaldecoder("utf-8")(errors="replace")


class ChildProcess(ABC):
    """One owned OS process with callback-driven output.

    Callbacks:
        on_output(text, stream): every decoded chunk, ``stream`` is
            ``"stdout"`` or ``"stderr"`` (PTY output is always stdout).
        on_exit(code, error): called exactly once, after the last
            on_output, when the process exits or reading it fails.

    Lifecycle::

        proc = PipeProcess(spec, on_output=..., on_exit=...)
        await proc.start()          # SpawnError on failure
        await proc.write("ls\\n")    # ProcessNotAlive once exited
        proc.terminate()            # best-effort, idempotent
    """

    def __init__(
        self,
        spec: CommandSpec,
        on_output: OutputCallback,
        on_exit: ExitCallback,
        kill_grace: float = 2.0,
    ) -> None:
        self._spec = spec
        self._on_output = on_output
        self._on_exit = on_exit
        self._kill_grace = kill_grace
        self._process: asyncio.subprocess.Process | None = None
        self._watch_task: asyncio.Task[None] | None = None
        self._timeout_handle: asyncio.TimerHandle | None = None
        self._kill_handle: asyncio.TimerHandle | None = None
        self._alive = False
        self._terminating = False
        self._exit_reason = ExitReason.EXITED
        self._returncode: int | None = None

    @property
    def spec(self) -> CommandSpec:
        return self._spec

    @property
    def alive(self) -> bool:
        return self._alive

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process is not None else None

    @property
    def returncode(self) -> int | None:
        return self._returncode

    @property
    def exit_reason(self) -> ExitReason:
        """Why the process stopped (EXITED unless terminated by us)."""
        return self._exit_reason

    @property
    def label(self) -> str:
        return " ".join(self._spec.argv)

    async def start(self) -> None:
        """Spawn the process and start watching it.

        Raises:
            SpawnError: Binary missing, permission denied, or bad
                working directory. Nothing keeps running in that case.
        """
        if self._process is not None:
            raise ProcessError(f"Process already started: {self.label}")

        cwd = self._spec.cwd
        if cwd is not None and not os.path.isdir(cwd):
            raise SpawnError(f"Working directory does not exist: {cwd}")

        env = {**os.environ, **self._spec.env}
        try:
            self._process = await self._spawn(env)
        except OSError as e:
            raise SpawnError(f"Failed to start {self._spec.argv[0]}: {e}") from e

        self._alive = True
        loop = asyncio.get_running_loop()
        if self._spec.timeout is not None:
            self._timeout_handle = loop.call_later(
                self._spec.timeout, self.terminate, ExitReason.TIMEOUT
            )
        self._watch_task = asyncio.create_task(self._watch())
        logger.info("Started %s (pid=%d)", self.label, self._process.pid)

    async def write(self, data: str | bytes) -> None:
        """Forward input to the process.

        Raises:
            ProcessNotAlive: If the process has already exited.
        """
        if not self._alive:
            raise ProcessNotAlive(f"Process is not alive: {self.label}")
        if isinstance(data, str):
            data = data.encode()
        try:
            await self._write(data)
        except (BrokenPipeError, ConnectionResetError) as e:
            raise ProcessNotAlive(f"Process closed its input: {self.label}") from e
        except OSError as e:
            raise ProcessError(f"Failed to write to {self.label}: {e}") from e

    def resize(self, cols: int, rows: int) -> None:
        """Change the terminal size. Only PTY processes support this."""
        raise ProcessError("Resize is only supported for PTY sessions")

    def terminate(self, reason: ExitReason = ExitReason.KILLED) -> None:
        """Send SIGTERM to the process group, SIGKILL after the grace period.

        Never blocks. Calling it on a dead or already terminating process
        does nothing; the exit callback is what marks the process dead.
        """
        if not self._alive or self._terminating:
            return
        self._terminating = True
        self._exit_reason = reason
        logger.info("Terminating %s (pid=%s, reason=%s)", self.label, self.pid, reason.value)
        if self._kill_grace <= 0:
            self._signal(signal.SIGKILL)
            return
        self._signal(signal.SIGTERM)
        self._kill_handle = asyncio.get_running_loop().call_later(
            self._kill_grace, self._escalate
        )

    async def wait(self) -> int | None:
        """Wait until the exit callback has run; returns the exit code."""
        if self._watch_task is not None:
            await asyncio.shield(self._watch_task)
        return self._returncode

    def _escalate(self) -> None:
        if self._alive:
            logger.warning("%s ignored SIGTERM, sending SIGKILL", self.label)
            self._signal(signal.SIGKILL)

    def _signal(self, sig: signal.Signals) -> None:
        pid = self.pid
        if pid is None:
            return
        try:
            os.killpg(pid, sig)
        except ProcessLookupError:
            logger.debug("Process group already gone: %d", pid)
        except OSError as e:
            logger.warning("Error signalling %s: %s", self.label, e)

    def _emit(self, text: str, stream: str) -> None:
        if text:
            self._on_output(text, stream)

    async def _watch(self) -> None:
        """Read output until exit, then report the exit exactly once."""
        assert self._process is not None
        waiter = asyncio.ensure_future(self._process.wait())
        drain = asyncio.ensure_future(self._drain_output())
        error: BaseException | None = None
        try:
            await asyncio.wait({waiter, drain}, return_when=asyncio.FIRST_COMPLETED)
            if drain.done() and drain.exception() is not None:
                error = drain.exception()
            else:
                await waiter
                try:
                    await asyncio.wait_for(drain, timeout=DRAIN_GRACE)
                except asyncio.TimeoutError:
                    logger.debug("Output of %s still open after exit", self.label)
        except Exception as e:
            error = e

        if error is not None:
            logger.warning("Reading %s failed: %s", self.label, error)
            self._signal(signal.SIGKILL)
        self._finish(self._process.returncode, error)

    def _finish(self, code: int | None, error: BaseException | None) -> None:
        if not self._alive:
            return
        self._alive = False
        self._returncode = code
        for handle in (self._timeout_handle, self._kill_handle):
            if handle is not None:
                handle.cancel()
        self._close_streams()
        logger.info(
            "%s exited (pid=%s, code=%s, reason=%s)",
            self.label, self.pid, code, self._exit_reason.value,
        )
        try:
            self._on_exit(code, error)
        except Exception:
            logger.exception("Error in exit callback for %s", self.label)

    @abstractmethod
    async def _spawn(self, env: dict[str, str]) -> asyncio.subprocess.Process:
        """Start the OS process. OSError means the spawn failed."""
        ...

    @abstractmethod
    async def _drain_output(self) -> None:
        """Deliver output via _emit until every output stream hits EOF."""
        ...

    @abstractmethod
    async def _write(self, data: bytes) -> None:
        ...

    @abstractmethod
    def _close_streams(self) -> None:
        """Release file descriptors once the process is gone."""
        ...


class ProcessError(Exception):
    """Raised when a child process operation fails."""


class SpawnError(ProcessError):
    """Raised when a child process cannot be started."""


class ProcessNotAlive(ProcessError):
    """Raised when writing to a process that has already exited."""
