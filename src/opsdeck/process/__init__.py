"""Child process wrappers for opsdeck.

Each session owns exactly one child process. Two transports are
available: plain pipes for non-interactive runs (doctor, pairing) and a
pseudo-terminal for interactive shells, where echo, line editing and
cursor control need a real tty.

Public API:
    ChildProcess -- Abstract base class
    PipeProcess -- stdin/stdout/stderr pipes
    PtyProcess -- pseudo-terminal with its own session
    spawn_process -- pick and start the right wrapper for a CommandSpec
"""

from opsdeck.process.base import (
    ChildProcess,
    ProcessError,
    ProcessNotAlive,
    SpawnError,
)
from opsdeck.process.pipe import PipeProcess
from opsdeck.process.terminal import PtyProcess

__all__ = [
    "ChildProcess",
    "PipeProcess",
    "ProcessError",
    "ProcessNotAlive",
    "PtyProcess",
    "SpawnError",
    "spawn_process",
]


async def spawn_process(spec, on_output, on_exit, kill_grace: float = 2.0) -> ChildProcess:
    """Create the wrapper matching ``spec.pty`` and start it.

    Raises:
        SpawnError: If the process cannot be started.
    """
    cls = PtyProcess if spec.pty else PipeProcess
    proc = cls(spec, on_output=on_output, on_exit=on_exit, kill_grace=kill_grace)
    await proc.start()
    return proc
