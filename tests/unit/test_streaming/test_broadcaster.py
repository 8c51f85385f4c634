"""Tests for the OutputBroadcaster ring buffer and fan-out."""

from __future__ import annotations

import pytest

from opsdeck.domain.models import ExitFrame, OutputFrame
from opsdeck.streaming.broadcaster import OutputBroadcaster, SubscriberError


def out(text: str) -> OutputFrame:
    return OutputFrame(text=text)


class TestBuffer:
    def test_replay_in_append_order(self) -> None:
        b = OutputBroadcaster(capacity=10)
        for t in "ABC":
            b.append(out(t))
        assert [f.text for f in b.replay_snapshot()] == ["A", "B", "C"]

    def test_buffer_never_exceeds_capacity(self) -> None:
        b = OutputBroadcaster(capacity=3)
        for i in range(10):
            b.append(out(str(i)))
            assert b.frame_count <= 3
        assert [f.text for f in b.replay_snapshot()] == ["7", "8", "9"]
        assert b.total_frames == 10

    def test_default_capacity(self) -> None:
        b = OutputBroadcaster()
        for i in range(5001):
            b.append(out(str(i)))
        assert b.frame_count == 5000
        assert b.replay_snapshot()[0].text == "1"

    def test_snapshot_is_a_copy(self) -> None:
        b = OutputBroadcaster(capacity=5)
        b.append(out("A"))
        snap = b.replay_snapshot()
        b.append(out("B"))
        assert len(snap) == 1

    def test_invalid_capacity(self) -> None:
        with pytest.raises(ValueError):
            OutputBroadcaster(capacity=0)


class TestSubscribers:
    def test_delivery_in_order_exactly_once(self) -> None:
        b = OutputBroadcaster()
        seen: list[str] = []
        b.subscribe(lambda f: seen.append(f.text))
        for t in ["A", "B", "C"]:
            b.append(out(t))
        assert seen == ["A", "B", "C"]

    def test_unsubscribe_stops_delivery(self) -> None:
        b = OutputBroadcaster()
        seen: list[str] = []
        unsubscribe = b.subscribe(lambda f: seen.append(f.text))
        b.append(out("A"))
        unsubscribe()
        unsubscribe()  # idempotent
        b.append(out("B"))
        assert seen == ["A"]
        assert b.subscriber_count == 0

    def test_failing_subscriber_is_dropped(self) -> None:
        b = OutputBroadcaster()
        seen: list[str] = []

        def broken(frame) -> None:
            raise SubscriberError("client gone")

        b.subscribe(broken)
        b.subscribe(lambda f: seen.append(f.text))
        b.append(out("A"))
        b.append(out("B"))
        assert seen == ["A", "B"]
        assert b.subscriber_count == 1

    def test_subscribe_during_fan_out(self) -> None:
        b = OutputBroadcaster()
        late: list[str] = []

        def first(frame) -> None:
            if frame.text == "A":
                b.subscribe(lambda f: late.append(f.text))

        b.subscribe(first)
        b.append(out("A"))
        b.append(out("B"))
        assert late == ["B"]

    def test_unsubscribe_other_during_fan_out(self) -> None:
        b = OutputBroadcaster()
        seen: list[str] = []
        handles = {}

        def first(frame) -> None:
            handles["second"]()

        b.subscribe(first)
        handles["second"] = b.subscribe(lambda f: seen.append(f.text))
        b.append(out("A"))
        assert seen == []

    def test_two_subscribers_get_identical_copies(self) -> None:
        b = OutputBroadcaster()
        one: list[str] = []
        two: list[str] = []
        b.subscribe(lambda f: one.append(f.text))
        unsubscribe_two = b.subscribe(lambda f: two.append(f.text))
        b.append(out("A"))
        b.append(out("B"))
        unsubscribe_two()
        b.append(out("C"))
        assert one == ["A", "B", "C"]
        assert two == ["A", "B"]

    def test_close_drops_subscribers(self) -> None:
        b = OutputBroadcaster()
        seen: list[str] = []
        b.subscribe(lambda f: seen.append(f.type))
        b.append(ExitFrame(code=0))
        b.close()
        b.append(out("late"))
        assert seen == ["exit"]
        assert b.closed
        assert b.frame_count == 2
        with pytest.raises(SubscriberError):
            b.subscribe(lambda f: None)
