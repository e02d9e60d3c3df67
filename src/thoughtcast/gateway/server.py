"""FastAPI server for viewer sessions.

Serves the viewer WebSocket at ``/ws``, a plain health check, an
encoder self-test, and (optionally) the static viewer page. All
broadcast logic lives in the engine; this module only adapts
connections to it.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

import uvicorn
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse, PlainTextResponse
from fastapi.staticfiles import StaticFiles

from thoughtcast.config.settings import Settings
from thoughtcast.encoder.process import EncoderUnavailableError, probe_encoder
from thoughtcast.engine import LiveTerminalEngine
from thoughtcast.generator.base import ContentSource
from thoughtcast.generator.factory import create_content_source

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    engine: LiveTerminalEngine | None = None,
    source: ContentSource | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Application settings. Defaults are used if None.
        engine: Pre-built engine (mainly for tests). Built from settings
            and ``source`` at startup if None.
        source: Content source for a newly built engine. Defaults to the
            provider named in the settings.
    """
    settings = settings or Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        # Startup
        e = app.state.engine
        if e is None:
            e = LiveTerminalEngine(settings, source or create_content_source(settings))
            app.state.engine = e
        await e.open()
        logger.info("Gateway started")
        yield
        # Shutdown
        await e.close()
        logger.info("Gateway stopped")

    app = FastAPI(
        title="thoughtcast",
        description="Live AI terminal broadcast server",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.state.engine = engine
    app.state.settings = settings

    @app.get("/health", response_class=PlainTextResponse)
    async def health_check() -> str:
        return "OK"

    @app.get("/api/test-encoder")
    async def test_encoder() -> JSONResponse:
        executable = settings.encoder.executable
        try:
            version = await probe_encoder(executable)
        except EncoderUnavailableError as e:
            logger.error("Encoder self-test failed: %s", e)
            return JSONResponse(status_code=500, content={"ok": False, "error": str(e)})
        return JSONResponse(content={"ok": True, "version": version})

    @app.websocket("/ws")
    async def viewer_socket(websocket: WebSocket) -> None:
        e: LiveTerminalEngine = app.state.engine
        await websocket.accept()
        session = e.connect_viewer(websocket)
        logger.info("Viewer %s connected from %s", session.session_id, websocket.client)
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                raw = message.get("text")
                if raw is None:
                    raw = message.get("bytes")
                if raw is not None:
                    await e.hub.handle_message(session, raw)
        except WebSocketDisconnect:
            pass
        except RuntimeError as exc:
            # Raised by receive() once the hub has closed the socket
            logger.debug("Viewer %s socket closed: %s", session.session_id, exc)
        finally:
            e.disconnect_viewer(session)
            logger.info("Viewer %s disconnected", session.session_id)

    static_dir = settings.server.static_dir
    if static_dir and Path(static_dir).is_dir():
        app.mount("/", StaticFiles(directory=static_dir, html=True), name="static")
    elif static_dir:
        logger.debug("Static directory %s not found, not serving viewer page", static_dir)

    return app


def main() -> None:
    """Entry point for running the gateway directly."""
    from thoughtcast.config.settings import load_settings
    from thoughtcast.utils.logging import setup_logging

    settings = load_settings()
    setup_logging(settings.logging)
    app = create_app(settings)
    uvicorn.run(app, host=settings.server.host, port=settings.server.port)


if __name__ == "__main__":
    main()
