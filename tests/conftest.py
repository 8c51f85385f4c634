"""Shared test fixtures for the opsdeck test suite.

Provides registries, command spec factories and a fake agent runtime
binary (a shell script) for doctor and pairing runs.
"""

from __future__ import annotations

import asyncio
import os
import stat
from pathlib import Path
from typing import Callable

import pytest

from opsdeck.config.settings import Settings
from opsdeck.domain.models import CommandSpec
from opsdeck.sessions.registry import SessionRegistry


FAKE_RUNTIME = """#!/bin/sh
case "$1" in
  doctor)
    echo "checking $*"
    if [ "$2" = "--repair" ]; then
      sleep 5
    fi
    echo "warning: gateway token missing" >&2
    exit 0
    ;;
  channels)
    printf 'QR-LINE-1\\n'
    printf 'QR-LINE-2\\n'
    sleep 0.3
    echo "Scan the code with your phone" >&2
    exit 0
    ;;
esac
exit 2
"""


# ---------------------------------------------------------------------------
# Command / registry fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sh_spec() -> Callable[..., CommandSpec]:
    """Factory for a CommandSpec running a /bin/sh script."""

    def make(script: str, **kwargs) -> CommandSpec:
        return CommandSpec(argv=["/bin/sh", "-c", script], **kwargs)

    return make


@pytest.fixture
def registry() -> SessionRegistry:
    """An isolated registry with a small buffer and a short kill grace."""
    return SessionRegistry(buffer_frames=100, kill_grace=0.2)


@pytest.fixture
def wait_exit() -> Callable:
    """Await a session's (or process's) exit with a safety timeout."""

    async def wait(target, timeout: float = 5.0) -> int | None:
        process = getattr(target, "process", target)
        return await asyncio.wait_for(process.wait(), timeout=timeout)

    return wait


# ---------------------------------------------------------------------------
# Runtime fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def fake_runtime(tmp_path: Path) -> Path:
    """An executable stand-in for the agent runtime CLI."""
    path = tmp_path / "openclaw"
    path.write_text(FAKE_RUNTIME)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def settings(tmp_path: Path, fake_runtime: Path) -> Settings:
    """Settings pointing at the fake runtime, /bin/sh and a temp home."""
    home = tmp_path / "home"
    home.mkdir()
    data = {
        "runtime": {"bin": str(fake_runtime), "home": str(home)},
        "terminal": {"shell": "/bin/sh"},
        "sessions": {"kill_grace": 0.2, "buffer_frames": 200},
        "pairing": {"qr_debounce": 0.05},
    }
    return Settings(**data)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep OPSDECK_* and runtime variables from leaking into tests."""
    for key in list(os.environ):
        if key.startswith("OPSDECK_") or key in ("OPENCLAW_BIN", "OPENCLAW_HOME"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def eventually() -> Callable:
    """Poll a condition until it holds or the timeout expires."""

    async def poll(condition: Callable[[], bool], timeout: float = 5.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not condition():
            if loop.time() > deadline:
                raise AssertionError("condition not met in time")
            await asyncio.sleep(0.01)

    return poll
