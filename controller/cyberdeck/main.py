"""FastAPI entry-point for the cyberdeck controller."""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Optional

import psutil
from fastapi import Body, FastAPI, Request, WebSocket, WebSocketDisconnect, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse
from fastapi.staticfiles import StaticFiles

from . import __version__
from .config import Settings, get_settings
from .logging_config import configure_logging
from .sensors.badge_reader import BadgeReader, parse_scan_line
from .session_manager import SessionController
from .state import DisplayEvent

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, *, controller: Optional[SessionController] = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level, settings.log_directory, settings.log_retention_days)

    app = FastAPI(title="cyberdeck-controller", version=__version__)
    manager = controller or SessionController(settings=settings)
    badge_reader = BadgeReader(
        port=settings.serial_port,
        baud_rate=settings.serial_baud_rate,
        retry_seconds=settings.serial_retry_seconds,
    )
    badge_reader.register_callback(manager.on_scan)
    app.state.manager = manager
    app.state.badge_reader = badge_reader

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> PlainTextResponse:
        """Catch-all exception handler to prevent application crashes."""
        logger.exception("Unhandled exception in %s: %s", request.url.path, exc)
        return PlainTextResponse(
            f"Internal server error: {exc}",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.warning("Validation error in %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": str(exc)},
        )

    @app.on_event("startup")
    async def on_startup() -> None:
        try:
            await manager.start()
            if settings.serial_enabled:
                await badge_reader.start()
            else:
                logger.info("Serial badge reader disabled; use /debug/mock-scan")
            logger.info("Application started successfully")
        except Exception as e:
            logger.exception("Failed to start services: %s", e)
            logger.error("Application startup failed - some features may not work")

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        try:
            await badge_reader.stop()
            await manager.stop()
            logger.info("Application shutdown complete")
        except Exception as e:
            logger.exception("Error during shutdown: %s", e)

    @app.get("/healthz")
    async def healthcheck() -> JSONResponse:
        return JSONResponse({"status": "ok", "phase": manager.phase.value})

    @app.get("/debug/performance")
    async def debug_performance() -> JSONResponse:
        """Get real-time CPU and memory usage."""
        try:
            memory = psutil.virtual_memory()
            return JSONResponse({
                "cpu_percent": round(psutil.cpu_percent(interval=0.1), 1),
                "memory_percent": round(memory.percent, 1),
                "memory_used_mb": round(memory.used / (1024 * 1024), 1),
                "memory_total_mb": round(memory.total / (1024 * 1024), 1),
            })
        except Exception as e:
            logger.error("Performance monitoring error: %s", e)
            return JSONResponse({"error": str(e)}, status_code=500)

    @app.post("/debug/mock-scan")
    async def mock_scan(payload: dict[str, Any] = Body(...)) -> JSONResponse:
        """Inject a badge scan as if it had arrived on the serial link."""
        record = parse_scan_line(json.dumps(payload))
        if record is None:
            return JSONResponse(
                {"status": "malformed", "phase": manager.phase.value},
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            )
        accepted = manager.on_scan(record)
        logger.info("Mock scan: device=%s accepted=%s", record.device_id, accepted)
        return JSONResponse({
            "status": "accepted" if accepted else "ignored",
            "phase": manager.phase.value,
        })

    @app.websocket("/ws/display")
    async def display_socket(ws: WebSocket) -> None:
        await ws.accept()
        display = manager.display
        queue = display.attach()
        sender = asyncio.create_task(_pump_display(ws, queue), name="display-sender")
        try:
            while True:
                text = await ws.receive_text()
                try:
                    message = json.loads(text)
                except (ValueError, RecursionError):
                    logger.warning("Invalid JSON from display: %.200s", text)
                    continue
                display.handle_message(message, queue)
        except WebSocketDisconnect:
            pass
        except asyncio.CancelledError:
            pass  # Clean shutdown
        except Exception as e:
            logger.error("Unexpected error in display websocket: %s", e)
        finally:
            display.detach(queue)
            sender.cancel()
            try:
                await sender
            except asyncio.CancelledError:
                pass
            try:
                await ws.close()
            except Exception:
                pass

    if settings.static_directory.is_dir():
        app.mount("/", StaticFiles(directory=settings.static_directory, html=True), name="static")
    else:
        logger.debug("Static directory %s not found; kiosk page not served", settings.static_directory)

    return app


async def _pump_display(ws: WebSocket, queue: asyncio.Queue[DisplayEvent]) -> None:
    while True:
        event = await queue.get()
        try:
            await ws.send_json({"type": event.type, "data": event.data})
        except Exception as e:
            # WebSocket closed, stop pumping
            logger.debug("Display send failed (client disconnected): %s", e)
            return


app = create_app()
