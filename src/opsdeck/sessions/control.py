"""Control surface: the narrow command set that mutates the registry.

Terminal sessions run the user's login shell inside a PTY. Doctor and
pairing sessions run the agent runtime's CLI over pipes and are owned
by the viewer that started them.
"""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path

from opsdeck.config.settings import Settings
from opsdeck.domain.models import CommandSpec, ExitReason, SessionInfo, SessionKind
from opsdeck.process import ProcessNotAlive, SpawnError
from opsdeck.process.terminal import MAX_COLS, MAX_ROWS, MIN_COLS, MIN_ROWS
from opsdeck.sessions.errors import RunInProgress, SessionDead
from opsdeck.sessions.registry import SessionRegistry
from opsdeck.sessions.session import Session

logger = logging.getLogger(__name__)


class ControlSurface:
    """create / input / resize / kill / list, plus doctor and pairing runs."""

    def __init__(self, registry: SessionRegistry, settings: Settings | None = None) -> None:
        self._registry = registry
        self._settings = settings or Settings()
        self._doctor_session_id: str | None = None
        self._doctor_starting = False

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    # -- terminal sessions -------------------------------------------------

    async def create_terminal(self, cols: int | None = None, rows: int | None = None) -> Session:
        """Start a login shell in a PTY.

        Raises:
            ValueError: Size out of range.
            SpawnError: If no shell can be started.
        """
        term = self._settings.terminal
        cols = cols or term.default_cols
        rows = rows or term.default_rows
        if not (MIN_COLS <= cols <= MAX_COLS and MIN_ROWS <= rows <= MAX_ROWS):
            raise ValueError(f"Invalid terminal size {cols}x{rows}")
        env = dict(term.env)
        env.setdefault("LANG", os.environ.get("LANG") or "en_US.UTF-8")
        env.setdefault("HOME", os.environ.get("HOME") or "/tmp")
        spec = CommandSpec(
            argv=[self.resolve_shell(), "-l"],
            cwd=str(self._terminal_cwd()),
            env=env,
            pty=True,
            cols=cols,
            rows=rows,
        )
        return await self._registry.create(SessionKind.TERMINAL, spec)

    async def input(self, session_id: str, data: str) -> None:
        """Forward keystrokes to a session.

        Raises:
            SessionNotFound: Unknown id.
            SessionDead: The process has exited.
        """
        session = self._require_alive(session_id)
        session.touch()
        try:
            await session.process.write(data)
        except ProcessNotAlive as e:
            raise SessionDead(str(e), session_id=session_id) from e

    def resize(self, session_id: str, cols: int, rows: int) -> None:
        """Resize a terminal session.

        Raises:
            SessionNotFound: Unknown id.
            SessionDead: The process has exited.
            ValueError: Size out of range.
            ProcessError: The session is not a PTY session.
        """
        session = self._require_alive(session_id)
        session.process.resize(cols, rows)

    def kill(self, session_id: str) -> None:
        """Terminate and evict a session. Unknown ids are fine."""
        self._registry.remove(session_id, ExitReason.KILLED)

    def list(self) -> list[SessionInfo]:
        return self._registry.list()

    # -- runtime CLI runs --------------------------------------------------

    async def start_doctor(self, mode: str) -> Session:
        """Start ``<bin> doctor`` in the given mode.

        Raises:
            ValueError: Unknown mode.
            RunInProgress: Another doctor run is still alive.
            SpawnError: Runtime binary missing or not executable.
        """
        modes = self._settings.doctor.modes
        if mode not in modes:
            raise ValueError(f"Invalid mode. Expected one of: {', '.join(modes)}")

        if self._doctor_starting:
            raise RunInProgress("A doctor run is already in progress")
        if self._doctor_session_id is not None:
            current = self._registry.get(self._doctor_session_id)
            if current is not None and current.alive:
                raise RunInProgress(
                    "A doctor run is already in progress", session_id=current.id
                )
            self._doctor_session_id = None

        bin_path = self.resolve_runtime_bin()
        config = modes[mode]
        spec = CommandSpec(
            argv=[bin_path, *config.args],
            env={"NO_COLOR": "1"},
            stdin=False,
            timeout=config.timeout,
            banner=f"$ {self._settings.runtime.bin_name} {' '.join(config.args)}\n",
        )
        # Claimed before the spawn await; a concurrent request must see it
        self._doctor_starting = True
        try:
            session = await self._registry.create(SessionKind.DOCTOR, spec)
        finally:
            self._doctor_starting = False
        self._doctor_session_id = session.id
        return session

    async def start_pairing(self, channel: str, account: str = "") -> Session:
        """Start a QR login for a messaging channel.

        Raises:
            ValueError: Channel does not support QR login.
            SpawnError: Runtime binary missing or not executable.
        """
        pairing = self._settings.pairing
        if channel not in pairing.allowed_channels:
            raise ValueError(
                f"QR login only supported for {' and '.join(pairing.allowed_channels)}"
            )
        argv = [self.resolve_runtime_bin(), "channels", "login", "--channel", channel]
        if account:
            argv += ["--account", account]
        spec = CommandSpec(
            argv=argv,
            env={"NO_COLOR": "1", "FORCE_COLOR": "0"},
            stdin=False,
            timeout=pairing.timeout,
            terminal_frame="done",
            qr_debounce=pairing.qr_debounce,
        )
        return await self._registry.create(SessionKind.PAIRING, spec)

    # -- helpers -----------------------------------------------------------

    def resolve_shell(self) -> str:
        """Configured shell, else $SHELL, else the first existing candidate."""
        term = self._settings.terminal
        for candidate in (term.shell, os.environ.get("SHELL"), *term.shell_candidates):
            if candidate and os.path.exists(candidate):
                return candidate
        raise SpawnError("No usable shell found")

    def resolve_runtime_bin(self) -> str:
        """Configured runtime binary, else a PATH lookup.

        Raises:
            SpawnError: If the binary cannot be found.
        """
        runtime = self._settings.runtime
        if runtime.bin:
            path = Path(runtime.bin).expanduser()
            if path.is_file():
                return str(path)
            raise SpawnError(f"{runtime.bin_name} binary not found at {path}")
        found = shutil.which(runtime.bin_name)
        if found is None:
            raise SpawnError(f"{runtime.bin_name} binary not found")
        return found

    def _terminal_cwd(self) -> Path:
        home = self._settings.runtime.home_path()
        if home.is_dir():
            return home
        logger.warning("Runtime home %s does not exist, using %s", home, Path.home())
        return Path.home()

    def _require_alive(self, session_id: str) -> Session:
        session = self._registry.require(session_id)
        if not session.alive:
            raise SessionDead(f"Session is not alive: {session_id}", session_id=session_id)
        return session
