"""Session registry -- the single source of truth for live sessions."""

from __future__ import annotations

import asyncio
import logging
import threading
import time
import uuid
from typing import Callable

from opsdeck.domain.models import CommandSpec, ExitReason, SessionInfo, SessionKind
from opsdeck.sessions.errors import SessionNotFound
from opsdeck.sessions.session import Session
from opsdeck.streaming.broadcaster import DEFAULT_CAPACITY

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Maps session ids to sessions.

    Every mutation of the map is a single step under a lock, so the
    control surface, exit callbacks and the reaper can all touch it.
    The lock is never held while a process is spawned or terminated,
    and never while subscriber callbacks run.

    Registries are plain instances owned by the application; tests
    build their own.
    """

    def __init__(
        self,
        buffer_frames: int = DEFAULT_CAPACITY,
        kill_grace: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._sessions: dict[str, Session] = {}
        self._issued: set[str] = set()
        self._lock = threading.Lock()
        self._buffer_frames = buffer_frames
        self._kill_grace = kill_grace
        self._clock = clock

    @property
    def clock(self) -> Callable[[], float]:
        return self._clock

    def _reserve_id(self) -> str:
        with self._lock:
            while True:
                session_id = uuid.uuid4().hex[:8]
                if session_id not in self._issued:
                    self._issued.add(session_id)
                    return session_id

    async def create(self, kind: SessionKind, spec: CommandSpec) -> Session:
        """Spawn a process for ``spec`` and register its session.

        Raises:
            SpawnError: If the process cannot be started. Nothing is
                registered in that case.
        """
        session = Session(
            self._reserve_id(),
            kind,
            spec,
            capacity=self._buffer_frames,
            clock=self._clock,
        )
        await session.start(kill_grace=self._kill_grace)
        with self._lock:
            self._sessions[session.id] = session
        logger.info("Created %s session %s: %s", kind.value, session.id, " ".join(spec.argv))
        return session

    def get(self, session_id: str) -> Session | None:
        with self._lock:
            return self._sessions.get(session_id)

    def require(self, session_id: str) -> Session:
        """Like get(), but raises SessionNotFound for unknown ids."""
        session = self.get(session_id)
        if session is None:
            raise SessionNotFound(f"Session not found: {session_id}", session_id=session_id)
        return session

    def sessions(self) -> list[Session]:
        """Snapshot of every registered session."""
        with self._lock:
            return list(self._sessions.values())

    def list(self, now: float | None = None) -> list[SessionInfo]:
        now = self._clock() if now is None else now
        return [s.info(now) for s in self.sessions()]

    def remove(self, session_id: str, reason: ExitReason = ExitReason.KILLED) -> bool:
        """Terminate the session's process if alive and evict it.

        Unknown ids are a no-op. Viewers still attached get the final
        exit frame once the process dies. Returns whether an entry was
        evicted.
        """
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        if session.alive:
            session.terminate(reason)
        logger.info("Removed session %s (%s)", session_id, reason.value)
        return True

    async def close_all(self, timeout: float | None = None) -> None:
        """Kill every session and wait (bounded) for the processes to exit."""
        sessions = self.sessions()
        for session in sessions:
            self.remove(session.id, ExitReason.KILLED)
        waits = [s.process.wait() for s in sessions if s.process is not None and s.alive]
        if waits:
            limit = self._kill_grace + 1.0 if timeout is None else timeout
            _, pending = await asyncio.wait(
                [asyncio.ensure_future(w) for w in waits], timeout=limit
            )
            if pending:
                logger.warning("%d session(s) still running after shutdown", len(pending))
        logger.info("All sessions cleaned up")

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions
