"""Periodic sweep that evicts dead, too old, or idle sessions.

This is a safety net for abandoned sessions; explicit kill is the
primary cleanup path. Each tick costs O(sessions), which is fine for
the handful of sessions a dashboard runs.
"""

from __future__ import annotations

import asyncio
import logging

from opsdeck.domain.models import ExitReason
from opsdeck.sessions.registry import SessionRegistry

logger = logging.getLogger(__name__)


class LifecycleReaper:
    """Removes sessions that are dead or past ``max_age`` every ``interval``.

    Reaping ignores attached viewers: they receive the exit frame and
    detach on their own.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        interval: float = 5 * 60,
        max_age: float = 30 * 60,
        idle_timeout: float | None = None,
    ) -> None:
        self._registry = registry
        self._interval = interval
        self._max_age = max_age
        self._idle_timeout = idle_timeout
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def should_reap(self, session, now: float) -> bool:
        if not session.alive:
            return True
        if session.age(now) > self._max_age:
            return True
        return self._idle_timeout is not None and session.idle_for(now) > self._idle_timeout

    def sweep(self, now: float | None = None) -> list[str]:
        """Run one pass; returns the ids that were reaped."""
        now = self._registry.clock() if now is None else now
        reaped = []
        for session in self._registry.sessions():
            if self.should_reap(session, now):
                if self._registry.remove(session.id, ExitReason.REAPED):
                    reaped.append(session.id)
        if reaped:
            logger.info("Reaped %d session(s): %s", len(reaped), ", ".join(reaped))
        return reaped

    async def run(self) -> None:
        """Sweep forever on the fixed interval."""
        while True:
            await asyncio.sleep(self._interval)
            try:
                self.sweep()
            except Exception:
                logger.exception("Session sweep failed")

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self.run())
        logger.debug("Reaper started (interval=%ss, max_age=%ss)", self._interval, self._max_age)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
