"""Per-connection bridge between a session broadcaster and one viewer.

A bridge moves through three states::

    ATTACHING --attach()--> STREAMING --detach()--> DETACHED

``attach`` takes the replay snapshot and registers the subscriber in
one synchronous step, so the viewer sees the buffered prefix followed
by live frames with no gap and no duplicate. ``detach`` is the single
teardown path and is safe to trigger any number of times.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from typing import TYPE_CHECKING, AsyncIterator, Callable

from pydantic import BaseModel

from opsdeck.domain.models import PingFrame, StatusFrame, is_terminal
from opsdeck.streaming.broadcaster import SubscriberError
from opsdeck.streaming.sse import format_sse

if TYPE_CHECKING:
    # Sessions build on the streaming package, not the other way round
    from opsdeck.sessions.registry import SessionRegistry

logger = logging.getLogger(__name__)

DEFAULT_KEEPALIVE_INTERVAL = 15.0
DEFAULT_QUEUE_SIZE = 1000


class BridgeState(str, enum.Enum):
    ATTACHING = "attaching"
    STREAMING = "streaming"
    DETACHED = "detached"


class StreamingBridge:
    """Streams one session's frames to one viewer.

    Usage from an HTTP handler::

        bridge = StreamingBridge(registry, session_id)
        bridge.attach()                 # SessionNotFound -> 404
        return StreamingResponse(bridge.stream(), ...)

    The generator returned by ``stream()`` detaches in its ``finally``
    block, so a client disconnect (which cancels or closes the
    generator) tears the bridge down immediately rather than at the
    next keepalive.

    Args:
        registry: Registry to look the session up in.
        session_id: Session to attach to.
        keepalive_interval: Seconds between ``ping`` frames.
        queue_size: Frames that may wait for a slow viewer before the
            bridge gives up on it.
        on_detach: Called once when the bridge detaches (used by runs
            whose process lives only as long as its viewer).
    """

    def __init__(
        self,
        registry: SessionRegistry,
        session_id: str,
        keepalive_interval: float = DEFAULT_KEEPALIVE_INTERVAL,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        on_detach: Callable[[], None] | None = None,
    ) -> None:
        self._registry = registry
        self._session_id = session_id
        self._keepalive_interval = keepalive_interval
        self._queue_size = queue_size
        self._on_detach = on_detach
        self._state = BridgeState.ATTACHING
        self._queue: asyncio.Queue[BaseModel | None] = asyncio.Queue()
        self._initial: list[BaseModel] = []
        self._unsubscribe: Callable[[], None] | None = None
        self._keepalive_task: asyncio.Task[None] | None = None
        self._detach_reason: str | None = None

    @property
    def state(self) -> BridgeState:
        return self._state

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def detach_reason(self) -> str | None:
        return self._detach_reason

    @property
    def keepalive_active(self) -> bool:
        return self._keepalive_task is not None

    def attach(self) -> list[BaseModel]:
        """Look up the session, snapshot its buffer and subscribe.

        Returns the initial frames: the replay followed by one
        ``status`` frame. A session that is already dead is not
        subscribed to; its stream ends after the initial frames.

        Raises:
            SessionNotFound: If the session does not exist. The bridge
                is DETACHED afterwards; there is no retry.
        """
        if self._state is not BridgeState.ATTACHING:
            raise RuntimeError(f"Bridge already {self._state.value}")
        try:
            session = self._registry.require(self._session_id)
        except Exception:
            self.detach("session not found")
            raise

        # No await between snapshot and subscribe: nothing can be
        # appended in between.
        frames = session.broadcaster.replay_snapshot()
        alive = session.alive
        frames.append(StatusFrame(alive=alive))
        if alive:
            self._unsubscribe = session.broadcaster.subscribe(self._on_frame)
            self._state = BridgeState.STREAMING
            self._keepalive_task = asyncio.create_task(self._keepalive())
        self._initial = frames
        logger.debug(
            "Viewer attached to %s (replay=%d, alive=%s)",
            self._session_id, len(frames) - 1, alive,
        )
        return list(frames)

    async def frames(self) -> AsyncIterator[BaseModel]:
        """Yield the initial frames, then live frames until detached."""
        if self._state is BridgeState.ATTACHING:
            self.attach()
        try:
            for frame in self._initial:
                yield frame
            self._initial = []
            if self._state is not BridgeState.STREAMING:
                return

            while True:
                frame = await self._queue.get()
                if frame is None:
                    return
                yield frame
                if is_terminal(frame):
                    self.detach("session ended")
                    return
        finally:
            self.detach("viewer disconnected")

    async def stream(self) -> AsyncIterator[bytes]:
        """SSE-encoded version of frames()."""
        frames = self.frames()
        try:
            async for frame in frames:
                yield format_sse(frame)
        finally:
            await frames.aclose()
            self.detach("viewer disconnected")

    def close(self) -> None:
        """Detach from outside, e.g. on an abort signal."""
        self.detach("closed")

    def detach(self, reason: str = "detached") -> None:
        """Tear down once: unsubscribe, stop keepalives, end the stream."""
        if self._state is BridgeState.DETACHED:
            return
        self._state = BridgeState.DETACHED
        self._detach_reason = reason

        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._keepalive_task is not None:
            self._keepalive_task.cancel()
            self._keepalive_task = None
        self._queue.put_nowait(None)
        logger.debug("Viewer detached from %s: %s", self._session_id, reason)

        if self._on_detach is not None:
            callback, self._on_detach = self._on_detach, None
            try:
                callback()
            except Exception:
                logger.exception("Error in detach callback for %s", self._session_id)

    def _on_frame(self, frame: BaseModel) -> None:
        if self._state is not BridgeState.STREAMING:
            raise SubscriberError("Bridge is detached")
        if self._queue.qsize() >= self._queue_size:
            self.detach("viewer too slow")
            raise SubscriberError(f"Viewer queue full for session {self._session_id}")
        self._queue.put_nowait(frame)

    async def _keepalive(self) -> None:
        while True:
            await asyncio.sleep(self._keepalive_interval)
            if self._queue.qsize() < self._queue_size:
                self._queue.put_nowait(PingFrame())
