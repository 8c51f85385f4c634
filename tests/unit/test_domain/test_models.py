"""Tests for domain models and wire frames."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from opsdeck.domain.models import (
    CommandSpec,
    DoneFrame,
    ErrorFrame,
    ExitFrame,
    ExitReason,
    OutputFrame,
    PingFrame,
    QrFrame,
    StatusFrame,
    frame_adapter,
    is_terminal,
)


class TestFrames:
    def test_wire_format(self) -> None:
        assert OutputFrame(text="ls\r\n").model_dump() == {"type": "output", "text": "ls\r\n"}
        assert PingFrame().model_dump() == {"type": "ping"}
        assert ExitFrame(code=-15, reason=ExitReason.KILLED, text="[Session killed]").model_dump(
            mode="json"
        ) == {"type": "exit", "code": -15, "reason": "killed", "text": "[Session killed]"}

    def test_adapter_picks_type(self) -> None:
        frame = frame_adapter.validate_python({"type": "qr", "text": "##"})
        assert isinstance(frame, QrFrame)
        frame = frame_adapter.validate_json('{"type": "status", "alive": false}')
        assert frame == StatusFrame(alive=False)

    def test_adapter_rejects_unknown_type(self) -> None:
        with pytest.raises(ValidationError):
            frame_adapter.validate_python({"type": "bogus"})

    def test_terminal_frames(self) -> None:
        assert is_terminal(ExitFrame(code=0))
        assert is_terminal(DoneFrame(code=0))
        assert is_terminal(ErrorFrame(text="boom"))
        assert not is_terminal(OutputFrame(text="x"))
        assert not is_terminal(StatusFrame(alive=True))
        assert not is_terminal(PingFrame())

    def test_frames_are_immutable(self) -> None:
        frame = OutputFrame(text="x")
        with pytest.raises(ValidationError):
            frame.text = "y"


class TestCommandSpec:
    def test_defaults(self) -> None:
        spec = CommandSpec(argv=["/bin/sh"])
        assert spec.pty is False
        assert spec.stdin is True
        assert (spec.cols, spec.rows) == (80, 24)
        assert spec.terminal_frame == "exit"
        assert spec.qr_debounce is None

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"argv": []},
            {"argv": ["sh"], "cols": 1},
            {"argv": ["sh"], "cols": 501},
            {"argv": ["sh"], "rows": 201},
            {"argv": ["sh"], "timeout": 0},
            {"argv": ["sh"], "terminal_frame": "bye"},
        ],
    )
    def test_invalid(self, kwargs) -> None:
        with pytest.raises(ValidationError):
            CommandSpec(**kwargs)
