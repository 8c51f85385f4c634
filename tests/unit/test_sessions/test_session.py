"""Tests for Session frame production."""

from __future__ import annotations

import pytest

from opsdeck.domain.models import (
    DoneFrame,
    ErrorFrame,
    ExitFrame,
    ExitReason,
    OutputFrame,
    SessionKind,
)
from opsdeck.sessions.session import Session, describe_exit


def frame_types(session: Session) -> list[str]:
    return [f.type for f in session.broadcaster.replay_snapshot()]


class TestDescribeExit:
    def test_messages(self) -> None:
        assert describe_exit(0, ExitReason.EXITED) == "[Session ended]"
        assert describe_exit(None, ExitReason.EXITED) == "[Session ended]"
        assert describe_exit(2, ExitReason.EXITED) == "[Session ended with code 2]"
        assert describe_exit(-9, ExitReason.EXITED) == "[Session ended by signal 9]"
        assert describe_exit(-15, ExitReason.KILLED) == "[Session killed]"
        assert describe_exit(-15, ExitReason.REAPED) == "[Session reaped]"
        assert describe_exit(-15, ExitReason.TIMEOUT, 45) == "[Timed out after 45s]"


class TestSession:
    @pytest.mark.asyncio
    async def test_output_then_exit_frame(self, sh_spec, wait_exit) -> None:
        session = Session("s1", SessionKind.TERMINAL, sh_spec("printf A; sleep 0.05; printf B"))
        await session.start(kill_grace=0.2)
        assert session.alive
        await wait_exit(session)

        frames = session.broadcaster.replay_snapshot()
        assert "".join(f.text for f in frames if f.type == "output") == "AB"
        assert frames[-1] == ExitFrame(code=0, reason=ExitReason.EXITED, text="[Session ended]")
        assert session.broadcaster.closed
        assert not session.alive

    @pytest.mark.asyncio
    async def test_banner_comes_first(self, sh_spec, wait_exit) -> None:
        session = Session("s1", SessionKind.DOCTOR, sh_spec("echo body", banner="$ run\n"))
        await session.start()
        await wait_exit(session)
        frames = session.broadcaster.replay_snapshot()
        assert frames[0] == OutputFrame(text="$ run\n")
        assert frames[1] == OutputFrame(text="body\n")

    @pytest.mark.asyncio
    async def test_killed_session_reports_reason(self, sh_spec, wait_exit) -> None:
        session = Session("s1", SessionKind.TERMINAL, sh_spec("sleep 5"))
        await session.start(kill_grace=0.2)
        session.terminate(ExitReason.KILLED)
        await wait_exit(session)
        last = session.broadcaster.replay_snapshot()[-1]
        assert last.type == "exit"
        assert last.reason is ExitReason.KILLED
        assert last.text == "[Session killed]"

    @pytest.mark.asyncio
    async def test_pairing_frames(self, sh_spec, wait_exit) -> None:
        spec = sh_spec(
            "printf 'QR-1\\n'; printf 'QR-2\\n'; sleep 0.3; echo ' scan me ' >&2; exit 0",
            terminal_frame="done",
            qr_debounce=0.05,
        )
        session = Session("p1", SessionKind.PAIRING, spec)
        await session.start()
        await wait_exit(session)

        frames = session.broadcaster.replay_snapshot()
        assert [f.type for f in frames] == ["qr", "log", "done"]
        assert frames[0].text == "QR-1\nQR-2\n"
        assert frames[1].text == "scan me"
        assert frames[2] == DoneFrame(code=0, text="Login successful")

    @pytest.mark.asyncio
    async def test_pairing_failure(self, sh_spec, wait_exit) -> None:
        spec = sh_spec("exit 3", terminal_frame="done", qr_debounce=0.05)
        session = Session("p1", SessionKind.PAIRING, spec)
        await session.start()
        await wait_exit(session)
        assert session.broadcaster.replay_snapshot()[-1] == DoneFrame(
            code=3, text="Process exited with code 3"
        )

    @pytest.mark.asyncio
    async def test_pending_qr_is_flushed_on_exit(self, sh_spec, wait_exit) -> None:
        spec = sh_spec("printf 'QR'", terminal_frame="done", qr_debounce=10)
        session = Session("p1", SessionKind.PAIRING, spec)
        await session.start()
        await wait_exit(session)
        assert frame_types(session) == ["qr", "done"]

    def test_read_error_becomes_error_frame(self, sh_spec) -> None:
        session = Session("s1", SessionKind.TERMINAL, sh_spec("true"))
        session._handle_exit(None, OSError("boom"))
        assert session.broadcaster.replay_snapshot() == [ErrorFrame(text="boom")]
        assert session.broadcaster.closed

    def test_info_and_age(self, sh_spec) -> None:
        now = [100.0]
        session = Session("s1", SessionKind.TERMINAL, sh_spec("true"), clock=lambda: now[0])
        now[0] = 161.4
        info = session.info()
        assert info.id == "s1"
        assert info.kind is SessionKind.TERMINAL
        assert info.alive is False
        assert info.age_seconds == 61
        assert session.idle_for() == pytest.approx(61.4)
        session.touch()
        assert session.idle_for() == 0
