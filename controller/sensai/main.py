"""FastAPI entry-point for the SensAI controller."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, Field

from .config import Settings, get_settings
from .controller import ViewController
from .logging_config import configure_logging
from .state import INTERNAL_EVENTS, EventType, ViewEvent

logger = logging.getLogger(__name__)

settings: Settings = get_settings()
configure_logging(
    settings.log_level,
    settings.log_directory,
    settings.log_retention_days,
    quiet_loggers=settings.log_quiet_loggers,
)
app = FastAPI(title="sensai-controller", version="0.1.0")
controller = ViewController(settings=settings)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> PlainTextResponse:
    """Catch-all exception handler to prevent application crashes."""
    logger.exception("Unhandled exception in %s: %s", request.url.path, exc)
    return PlainTextResponse(
        f"Internal server error: {str(exc)}",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.warning("Validation error in %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": str(exc)},
    )


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def on_startup() -> None:
    try:
        await controller.start()
        logger.info("Application started successfully")
    except Exception as e:
        logger.exception("Failed to start controller: %s", e)
        logger.error("Application startup failed - some features may not work")


@app.on_event("shutdown")
async def on_shutdown() -> None:
    try:
        await controller.stop()
        logger.info("Application shutdown complete")
    except Exception as e:
        logger.exception("Error during shutdown: %s", e)


class EventRequest(BaseModel):
    type: str
    data: Dict[str, Any] = Field(default_factory=dict)


class NarrationRequest(BaseModel):
    enabled: bool = True


@app.get("/healthz")
async def healthcheck() -> JSONResponse:
    return JSONResponse({"status": "ok", "view": controller.state.name.value, "phase": controller.phase})


@app.get("/state")
async def current_state() -> JSONResponse:
    return JSONResponse(controller.snapshot())


@app.get("/stats")
async def current_stats() -> JSONResponse:
    return JSONResponse(controller.stats.to_document())


@app.post("/events")
async def post_event(payload: EventRequest) -> JSONResponse:
    """Feed a user action to the view state machine."""
    try:
        event_type = EventType(payload.type)
    except ValueError:
        return JSONResponse(
            {"status": "error", "message": f"Unknown event type: {payload.type}"},
            status_code=status.HTTP_400_BAD_REQUEST,
        )
    if event_type in INTERNAL_EVENTS:
        return JSONResponse(
            {"status": "error", "message": f"{event_type.value} is raised by the controller only"},
            status_code=status.HTTP_400_BAD_REQUEST,
        )

    accepted = await controller.dispatch(ViewEvent(event_type, payload.data))
    return JSONResponse(
        {
            "status": "accepted" if accepted else "ignored",
            "view": controller.state.name.value,
            "epoch": controller.epoch,
        }
    )


@app.post("/narration")
async def set_narration(payload: NarrationRequest) -> JSONResponse:
    await controller.set_narration_enabled(payload.enabled)
    return JSONResponse({"status": "enabled" if payload.enabled else "muted"})


@app.post("/reset")
async def reset_data() -> JSONResponse:
    await controller.reset()
    return JSONResponse({"status": "reset", "view": controller.state.name.value})


@app.websocket("/ws/ui")
async def ui_socket(ws: WebSocket) -> None:
    await ws.accept()
    queue = controller.register_ui()
    try:
        await ws.send_json({"type": "state", "view": controller.state.name.value,
                            "phase": controller.phase, "data": controller.snapshot()})
        while True:
            try:
                event = await queue.get()
            except asyncio.CancelledError:
                break

            payload = {
                "type": event.type,
                "view": event.view.value,
                "phase": event.phase,
                "data": event.data,
            }
            if event.error:
                payload["error"] = event.error

            try:
                await ws.send_json(payload)
            except Exception as e:
                logger.debug("WebSocket send failed (client disconnected): %s", e)
                break
    except WebSocketDisconnect:
        pass
    except asyncio.CancelledError:
        pass
    except Exception as e:
        logger.error("Unexpected error in UI websocket: %s", e)
    finally:
        controller.unregister_ui(queue)
        try:
            await ws.close()
        except Exception:
            pass


def run() -> None:
    """Console entry point: serve the controller with uvicorn."""
    import uvicorn

    uvicorn.run(app, host=settings.controller_host, port=settings.controller_port, log_config=None)


if __name__ == "__main__":
    run()
