"""FastAPI observer surface for the concurrence limiter."""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect, status
from fastapi.responses import JSONResponse, PlainTextResponse

from . import __version__
from .config import Settings, get_settings
from .logging_config import configure_logging
from .session_manager import SessionController

logger = logging.getLogger(__name__)


def create_app(
    *,
    settings: Optional[Settings] = None,
    controller: Optional[SessionController] = None,
) -> FastAPI:
    settings = settings or get_settings()
    manager = controller or SessionController(settings=settings)

    app = FastAPI(title="concurrence-limiter", version=__version__)
    app.state.controller = manager

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> PlainTextResponse:
        """Catch-all exception handler to prevent application crashes."""
        logger.exception("Unhandled exception in %s: %s", request.url.path, exc)
        return PlainTextResponse(
            f"Internal server error: {exc}",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    @app.on_event("startup")
    async def on_startup() -> None:
        configure_logging(settings.log_level, settings.log_directory, settings.log_retention_days)
        logger.info("Observer API ready on %s:%d", settings.observer_host, settings.observer_port)

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        try:
            await manager.shutdown_signal.fire()
            await manager.stop()
            logger.info("Observer API shutdown complete")
        except Exception as e:
            logger.exception("Error during shutdown: %s", e)

    @app.get("/healthz")
    async def healthcheck() -> JSONResponse:
        return JSONResponse({"status": "ok", "sessions": len(manager.sessions)})

    @app.get("/sessions")
    async def list_sessions() -> JSONResponse:
        return JSONResponse({"sessions": [watchdog.snapshot() for watchdog in manager.sessions]})

    @app.websocket("/ws/events")
    async def event_socket(ws: WebSocket) -> None:
        queue = manager.register_observer()
        await ws.accept()

        async def forward_events() -> None:
            while True:
                event = await queue.get()
                try:
                    await ws.send_json(event.as_payload())
                except Exception as e:
                    logger.debug("Observer send failed (client disconnected): %s", e)
                    return

        sender = asyncio.create_task(forward_events(), name="observer-forwarder")
        try:
            # observers never talk back; reading only detects the disconnect
            while not sender.done():
                await ws.receive_text()
        except WebSocketDisconnect:
            pass
        except Exception as e:
            logger.error("Unexpected error in observer websocket: %s", e)
        finally:
            sender.cancel()
            try:
                await sender
            except asyncio.CancelledError:
                pass
            manager.unregister_observer(queue)
            try:
                await ws.close()
            except Exception:
                pass

    return app


app = create_app()
