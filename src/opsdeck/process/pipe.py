"""Child process wired up with plain pipes.

Used for non-interactive runs of the runtime CLI (doctor, pairing)
where stdout and stderr are kept apart and no terminal is needed.
"""

from __future__ import annotations

import asyncio
import logging

from opsdeck.process.base import ChildProcess, ProcessError, make_decoder

logger = logging.getLogger(__name__)

READ_CHUNK = 4096


class PipeProcess(ChildProcess):
    """Runs a command with stdout/stderr pipes in its own process group."""

    async def _spawn(self, env: dict[str, str]) -> asyncio.subprocess.Process:
        stdin = asyncio.subprocess.PIPE if self._spec.stdin else asyncio.subprocess.DEVNULL
        return await asyncio.create_subprocess_exec(
            *self._spec.argv,
            stdin=stdin,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=self._spec.cwd,
            env=env,
            start_new_session=True,  # Own process group for killpg
        )

    async def _drain_output(self) -> None:
        assert self._process is not None
        await asyncio.gather(
            self._pump(self._process.stdout, "stdout"),
            self._pump(self._process.stderr, "stderr"),
        )

    async def _pump(self, reader: asyncio.StreamReader | None, stream: str) -> None:
        if reader is None:
            return
        decoder = make_decoder()
        while True:
            data = await reader.read(READ_CHUNK)
            if not data:
                break
            self._emit(decoder.decode(data), stream)
        self._emit(decoder.decode(b"", final=True), stream)

    async def _write(self, data: bytes) -> None:
        assert self._process is not None
        if self._process.stdin is None:
            raise ProcessError(f"{self.label} does not accept input")
        self._process.stdin.write(data)
        await self._process.stdin.drain()

    def _close_streams(self) -> None:
        if self._process is not None and self._process.stdin is not None:
            try:
                self._process.stdin.close()
            except (OSError, RuntimeError) as e:
                logger.debug("Closing stdin of %s: %s", self.label, e)
