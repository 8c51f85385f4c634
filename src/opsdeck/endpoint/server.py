"""FastAPI HTTP server for the opsdeck dashboard.

Routes:

    GET  /health
    GET  /terminal?action=list          -> {"sessions": [...]}
    GET  /terminal?session=<id>         -> SSE stream of the session
    POST /terminal                      <- {"action": "create", "cols": 80, "rows": 24}
                                        <- {"action": "input", "session": id, "data": "ls\\r"}
                                        <- {"action": "resize", "session": id, "cols": 120, "rows": 40}
                                        <- {"action": "kill", "session": id}
    GET  /channels/qr?channel=whatsapp  -> SSE stream of a QR pairing login
    POST /doctor/run                    <- {"mode": "scan"}, SSE stream of the run
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import uvicorn
from fastapi import BackgroundTasks, FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from opsdeck import __version__
from opsdeck.config.settings import Settings, load_settings
from opsdeck.domain.models import ExitReason
from opsdeck.process import ProcessError, SpawnError
from opsdeck.sessions import (
    ControlSurface,
    LifecycleReaper,
    RunInProgress,
    SessionDead,
    SessionNotFound,
    SessionRegistry,
)
from opsdeck.sessions.session import Session
from opsdeck.streaming.bridge import StreamingBridge
from opsdeck.streaming.sse import SSE_HEADERS, SSE_MEDIA_TYPE

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Request / response models
# ---------------------------------------------------------------------------

class TerminalRequest(BaseModel):
    action: str = Field(description="create, input, resize or kill")
    session: str = Field(default="", description="Session id (all actions but create)")
    data: str = Field(default="", description="Keystrokes for input")
    cols: int | None = Field(default=None, description="Terminal width")
    rows: int | None = Field(default=None, description="Terminal height")


class DoctorRunRequest(BaseModel):
    mode: str = Field(default="", description="scan, repair, repair-force, deep, generate-token")


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str = __version__
    sessions: int = 0
    alive_sessions: int = 0
    reaper_running: bool = False


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

def create_app(
    settings: Settings | None = None,
    registry: SessionRegistry | None = None,
    control: ControlSurface | None = None,
) -> FastAPI:
    """Create the dashboard application.

    Args:
        settings: Loaded settings (defaults if None).
        registry: Optional pre-built registry (for testing).
        control: Optional pre-built control surface (for testing).
    """
    settings = settings or Settings()
    if registry is None:
        registry = (
            control.registry
            if control is not None
            else SessionRegistry(
                buffer_frames=settings.sessions.buffer_frames,
                kill_grace=settings.sessions.kill_grace,
            )
        )
    if control is None:
        control = ControlSurface(registry, settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        # Startup
        reaper = LifecycleReaper(
            app.state.registry,
            interval=settings.sessions.reap_interval,
            max_age=settings.sessions.max_age,
            idle_timeout=settings.sessions.idle_timeout,
        )
        app.state.reaper = reaper
        reaper.start()
        logger.info("Dashboard started")
        yield
        # Shutdown
        await reaper.stop()
        await app.state.registry.close_all()
        logger.info("Dashboard stopped")

    app = FastAPI(
        title="opsdeck",
        description="Local operations dashboard for the agent runtime",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.registry = registry
    app.state.control = control
    app.state.reaper = None

    @app.exception_handler(SessionNotFound)
    async def _session_not_found(request: Request, exc: SessionNotFound) -> JSONResponse:
        return _error(404, "Session not found or dead")

    @app.exception_handler(SessionDead)
    async def _session_dead(request: Request, exc: SessionDead) -> JSONResponse:
        return _error(404, "Session not found or dead")

    @app.exception_handler(RunInProgress)
    async def _run_in_progress(request: Request, exc: RunInProgress) -> JSONResponse:
        return _error(409, str(exc))

    @app.exception_handler(SpawnError)
    async def _spawn_failed(request: Request, exc: SpawnError) -> JSONResponse:
        logger.warning("Spawn failed: %s", exc)
        return _error(500, str(exc))

    def _bridge(session_id: str, owned: bool = False) -> StreamingBridge:
        reg: SessionRegistry = app.state.registry
        on_detach = None
        if owned:
            # The process lives only as long as the viewer that started it
            def on_detach() -> None:
                reg.remove(session_id, ExitReason.KILLED)

        return StreamingBridge(
            reg,
            session_id,
            keepalive_interval=settings.stream.keepalive_interval,
            queue_size=settings.stream.queue_size,
            on_detach=on_detach,
        )

    def _sse(bridge: StreamingBridge) -> StreamingResponse:
        # Runs after the response ends, including a client that went
        # away before the body iterator was ever started.
        cleanup = BackgroundTasks()
        cleanup.add_task(bridge.close)
        return StreamingResponse(
            bridge.stream(),
            media_type=SSE_MEDIA_TYPE,
            headers=SSE_HEADERS,
            background=cleanup,
        )

    def _owned_stream(session: Session) -> StreamingResponse:
        bridge = _bridge(session.id, owned=True)
        bridge.attach()
        return _sse(bridge)

    @app.get("/health")
    async def health_check() -> HealthResponse:
        reg: SessionRegistry = app.state.registry
        reaper = app.state.reaper
        sessions = reg.sessions()
        return HealthResponse(
            sessions=len(sessions),
            alive_sessions=sum(1 for s in sessions if s.alive),
            reaper_running=reaper.is_running if reaper is not None else False,
        )

    @app.get("/terminal")
    async def terminal_stream(action: str = "stream", session: str = ""):
        ctl: ControlSurface = app.state.control
        if action == "list":
            return {"sessions": [info.model_dump(mode="json") for info in ctl.list()]}
        if not session:
            return _error(404, "Invalid session")
        bridge = _bridge(session)
        try:
            bridge.attach()
        except SessionNotFound:
            return _error(404, "Invalid session")
        return _sse(bridge)

    @app.post("/terminal")
    async def terminal_command(request: TerminalRequest):
        ctl: ControlSurface = app.state.control
        if request.action == "create":
            try:
                created = await ctl.create_terminal(request.cols, request.rows)
            except ValueError:
                return _error(400, "Invalid cols/rows")
            return {"ok": True, "session": created.id}

        if request.action == "input":
            await ctl.input(request.session, request.data)
            return {"ok": True}

        if request.action == "resize":
            if request.cols is None or request.rows is None:
                return _error(400, "Invalid cols/rows")
            try:
                ctl.resize(request.session, request.cols, request.rows)
            except ValueError:
                return _error(400, "Invalid cols/rows")
            except ProcessError as e:
                return _error(400, str(e))
            return {"ok": True}

        if request.action == "kill":
            ctl.kill(request.session)
            return {"ok": True}

        return _error(400, f"Unknown action: {request.action}")

    @app.get("/channels/qr")
    async def channel_qr_login(channel: str = "whatsapp", account: str = ""):
        ctl: ControlSurface = app.state.control
        try:
            session = await ctl.start_pairing(channel, account)
        except ValueError as e:
            return _error(400, str(e))
        return _owned_stream(session)

    @app.post("/doctor/run")
    async def doctor_run(request: DoctorRunRequest):
        ctl: ControlSurface = app.state.control
        try:
            session = await ctl.start_doctor(request.mode)
        except ValueError as e:
            return _error(400, str(e))
        return _owned_stream(session)

    return app


def main() -> None:
    """Entry point for running the dashboard server standalone."""
    from opsdeck.utils.logging import setup_logging

    settings = load_settings()
    setup_logging(settings.logging)
    app = create_app(settings)
    uvicorn.run(app, host=settings.server.host, port=settings.server.port)


if __name__ == "__main__":
    main()
