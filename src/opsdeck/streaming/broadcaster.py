"""Output broadcaster: bounded replay buffer plus live fan-out."""

from __future__ import annotations

import logging
from collections import deque
from typing import Callable

from pydantic import BaseModel

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 5000

Subscriber = Callable[[BaseModel], None]


class OutputBroadcaster:
    """Ring buffer of frames for one session plus its live subscribers.

    ``append`` stores the frame (evicting the oldest once ``capacity``
    is reached) and then calls every subscriber synchronously, in
    subscription order. A subscriber that raises is dropped; delivery
    to the others carries on.

    Frames evicted from the buffer are gone for good. There is no
    backpressure towards the producing process.

    The broadcaster is meant to be driven from a single event loop
    thread. Subscribing or unsubscribing from inside a callback is
    allowed: fan-out iterates over a snapshot of the subscriber list.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._frames: deque[BaseModel] = deque(maxlen=capacity)
        self._subscribers: dict[int, Subscriber] = {}
        self._next_token = 0
        self._total_frames = 0
        self._closed = False

    def append(self, frame: BaseModel) -> None:
        """Buffer a frame and deliver it to every current subscriber."""
        self._frames.append(frame)
        self._total_frames += 1
        for token, callback in list(self._subscribers.items()):
            if token not in self._subscribers:
                # Unsubscribed by an earlier callback in this same fan-out
                continue
            try:
                callback(frame)
            except Exception as e:
                self._subscribers.pop(token, None)
                logger.debug("Dropped subscriber %d after delivery failure: %s", token, e)

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a callback; returns an idempotent unsubscribe handle."""
        if self._closed:
            raise SubscriberError("Broadcaster is closed")
        token = self._next_token
        self._next_token += 1
        self._subscribers[token] = callback

        def unsubscribe() -> None:
            self._subscribers.pop(token, None)

        return unsubscribe

    def replay_snapshot(self) -> list[BaseModel]:
        """The buffered frames at call time, oldest first."""
        return list(self._frames)

    def close(self) -> None:
        """Drop every subscriber. Later frames are still buffered."""
        self._closed = True
        self._subscribers.clear()

    @property
    def capacity(self) -> int:
        return self._frames.maxlen or 0

    @property
    def frame_count(self) -> int:
        """Current number of buffered frames."""
        return len(self._frames)

    @property
    def total_frames(self) -> int:
        """Total number of frames ever appended."""
        return self._total_frames

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @property
    def closed(self) -> bool:
        return self._closed


class SubscriberError(Exception):
    """Raised when a subscriber cannot accept or be given a frame."""
