"""Child process running inside a pseudo-terminal.

Interactive shells only echo typed input, support line editing and
arrow-key history when attached to a real tty. The child gets a fresh
session with the PTY slave as its controlling terminal; the parent
reads the master side from the event loop.
"""

from __future__ import annotations

import asyncio
import errno
import fcntl
import logging
import os
import pty
import struct
import termios

from opsdeck.process.base import ChildProcess, ProcessError, make_decoder

logger = logging.getLogger(__name__)

READ_CHUNK = 16384

MIN_COLS, MAX_COLS = 2, 500
MIN_ROWS, MAX_ROWS = 2, 200


def _set_winsize(fd: int, rows: int, cols: int) -> None:
    winsize = struct.pack("HHHH", rows, cols, 0, 0)
    fcntl.ioctl(fd, termios.TIOCSWINSZ, winsize)


def _make_controlling_tty() -> None:
    # Runs in the child between fork and exec; stdin is already the slave.
    os.setsid()
    fcntl.ioctl(0, termios.TIOCSCTTY, 0)


class PtyProcess(ChildProcess):
    """Runs a command attached to a PTY, with resize support."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._master_fd: int | None = None
        self._cols = self._spec.cols
        self._rows = self._spec.rows
        self._eof: asyncio.Future[None] | None = None
        self._decoder = make_decoder()

    @property
    def cols(self) -> int:
        return self._cols

    @property
    def rows(self) -> int:
        return self._rows

    async def _spawn(self, env: dict[str, str]) -> asyncio.subprocess.Process:
        master_fd, slave_fd = pty.openpty()
        try:
            _set_winsize(slave_fd, self._rows, self._cols)
            env.setdefault("COLUMNS", str(self._cols))
            env.setdefault("LINES", str(self._rows))
            process = await asyncio.create_subprocess_exec(
                *self._spec.argv,
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                cwd=self._spec.cwd,
                env=env,
                preexec_fn=_make_controlling_tty,
            )
        except BaseException:
            os.close(master_fd)
            raise
        finally:
            # Parent always closes slave fd
            os.close(slave_fd)

        os.set_blocking(master_fd, False)
        self._master_fd = master_fd
        return process

    async def _drain_output(self) -> None:
        assert self._master_fd is not None
        loop = asyncio.get_running_loop()
        self._eof = loop.create_future()
        fd = self._master_fd
        loop.add_reader(fd, self._on_readable)
        try:
            await self._eof
        finally:
            loop.remove_reader(fd)

    def _on_readable(self) -> None:
        assert self._eof is not None and self._master_fd is not None
        try:
            data = os.read(self._master_fd, READ_CHUNK)
        except BlockingIOError:
            return
        except OSError as e:
            if e.errno != errno.EIO:
                if not self._eof.done():
                    self._eof.set_exception(e)
                return
            data = b""  # EIO: every slave fd is closed, child exited

        if not data:
            self._emit(self._decoder.decode(b"", final=True), "stdout")
            if not self._eof.done():
                self._eof.set_result(None)
            return
        self._emit(self._decoder.decode(data), "stdout")

    async def _write(self, data: bytes) -> None:
        if self._master_fd is None:
            raise ProcessError(f"PTY for {self.label} is closed")
        view = memoryview(data)
        while view:
            try:
                written = os.write(self._master_fd, view)
            except BlockingIOError:
                await asyncio.sleep(0.01)
                continue
            view = view[written:]

    def resize(self, cols: int, rows: int) -> None:
        """Set the PTY window size; the kernel delivers SIGWINCH.

        Raises:
            ValueError: If the size is outside 2..500 cols / 2..200 rows.
            ProcessError: If the PTY is already closed.
        """
        if not (MIN_COLS <= cols <= MAX_COLS and MIN_ROWS <= rows <= MAX_ROWS):
            raise ValueError(f"Invalid terminal size {cols}x{rows}")
        if self._master_fd is None or not self._alive:
            raise ProcessError(f"PTY for {self.label} is closed")
        _set_winsize(self._master_fd, rows, cols)
        self._cols, self._rows = cols, rows
        logger.debug("Resized %s to %dx%d", self.label, cols, rows)

    def _close_streams(self) -> None:
        if self._master_fd is not None:
            try:
                os.close(self._master_fd)
            except OSError:
                pass
            self._master_fd = None
