"""Tests for the LifecycleReaper."""

from __future__ import annotations

import asyncio

import pytest

from opsdeck.domain.models import ExitReason, SessionKind
from opsdeck.sessions.reaper import LifecycleReaper
from opsdeck.sessions.registry import SessionRegistry


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def clocked_registry(clock) -> SessionRegistry:
    return SessionRegistry(buffer_frames=100, kill_grace=0.2, clock=clock)


class TestSweep:
    @pytest.mark.asyncio
    async def test_max_age(self, clocked_registry, clock, sh_spec, wait_exit) -> None:
        reaper = LifecycleReaper(clocked_registry, max_age=60)
        session = await clocked_registry.create(SessionKind.TERMINAL, sh_spec("sleep 5"))

        clock.now += 30
        assert reaper.sweep() == []
        assert session.id in clocked_registry

        clock.now += 31
        assert reaper.sweep() == [session.id]
        assert session.id not in clocked_registry
        await wait_exit(session)
        assert session.process.exit_reason is ExitReason.REAPED

    @pytest.mark.asyncio
    async def test_dead_sessions(self, clocked_registry, sh_spec, wait_exit) -> None:
        reaper = LifecycleReaper(clocked_registry, max_age=60)
        session = await clocked_registry.create(SessionKind.TERMINAL, sh_spec("true"))
        await wait_exit(session)
        assert reaper.sweep() == [session.id]
        assert len(clocked_registry) == 0

    @pytest.mark.asyncio
    async def test_idle_timeout(self, clocked_registry, clock, sh_spec, wait_exit) -> None:
        reaper = LifecycleReaper(clocked_registry, max_age=3600, idle_timeout=10)
        busy = await clocked_registry.create(SessionKind.TERMINAL, sh_spec("sleep 5"))
        idle = await clocked_registry.create(SessionKind.TERMINAL, sh_spec("sleep 5"))

        clock.now += 8
        busy.touch()
        clock.now += 5
        assert reaper.sweep() == [idle.id]
        assert busy.id in clocked_registry

        clocked_registry.remove(busy.id)
        await wait_exit(busy)
        await wait_exit(idle)

    @pytest.mark.asyncio
    async def test_idle_timeout_off_by_default(
        self, clocked_registry, clock, sh_spec, wait_exit
    ) -> None:
        reaper = LifecycleReaper(clocked_registry, max_age=3600)
        session = await clocked_registry.create(SessionKind.TERMINAL, sh_spec("sleep 5"))
        clock.now += 1800
        assert reaper.sweep() == []
        clocked_registry.remove(session.id)
        await wait_exit(session)

    @pytest.mark.asyncio
    async def test_attached_viewer_gets_exit_frame(
        self, clocked_registry, clock, sh_spec, wait_exit
    ) -> None:
        reaper = LifecycleReaper(clocked_registry, max_age=60)
        session = await clocked_registry.create(SessionKind.TERMINAL, sh_spec("sleep 5"))
        seen = []
        session.broadcaster.subscribe(seen.append)

        clock.now += 120
        reaper.sweep()
        await wait_exit(session)
        assert seen[-1].type == "exit"
        assert seen[-1].text == "[Session reaped]"


class TestBackgroundTask:
    @pytest.mark.asyncio
    async def test_start_stop(self, clocked_registry) -> None:
        reaper = LifecycleReaper(clocked_registry, interval=60)
        assert not reaper.is_running
        reaper.start()
        reaper.start()
        assert reaper.is_running
        await reaper.stop()
        assert not reaper.is_running
        await reaper.stop()

    @pytest.mark.asyncio
    async def test_run_sweeps_on_interval(self, clocked_registry, sh_spec, wait_exit) -> None:
        reaper = LifecycleReaper(clocked_registry, interval=0.05)
        session = await clocked_registry.create(SessionKind.TERMINAL, sh_spec("true"))
        await wait_exit(session)
        reaper.start()
        try:
            for _ in range(100):
                if len(clocked_registry) == 0:
                    break
                await asyncio.sleep(0.02)
            assert len(clocked_registry) == 0
        finally:
            await reaper.stop()
