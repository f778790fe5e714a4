"""
Resilient Todo - FastAPI Application

Serves the todo HTTP API behind the fault injector, runs the command queue
dispatcher, and streams confirmations to WebSocket subscribers.
"""

from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

from fastapi import Depends, FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from resilient_todo import __version__
from resilient_todo.config import Settings, get_settings, get_settings_dep
from resilient_todo.logging import get_logger, setup_logging
from resilient_todo.runtime.event_bus import Event, EventType, get_event_bus
from resilient_todo.server.diagnostics import get_event_counter
from resilient_todo.server.diagnostics import router as diagnostics_router
from resilient_todo.server.routes import (
    get_broadcast_channel,
    get_command_queue,
)
from resilient_todo.server.routes import router as todos_router

# Setup logging
setup_logging(level=get_settings().log_level)
logger = get_logger(__name__)


# =============================================================================
# Response Models
# =============================================================================


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    time: str
    uptime_seconds: float


class AppState:
    """Application state container."""

    def __init__(self) -> None:
        self.start_time: datetime = datetime.now(UTC)


state = AppState()


# =============================================================================
# Lifecycle
# =============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    settings = get_settings()
    logger.info("Starting Resilient Todo server v%s", __version__)
    logger.info("Server: http://%s:%d", settings.host, settings.port)
    logger.info(
        "Ingress delay %.1f-%.1fs, failure rate %.0f%%, apply delay %.1f-%.1fs",
        settings.ingress_delay_min_s,
        settings.ingress_delay_max_s,
        settings.failure_rate * 100,
        settings.apply_delay_min_s,
        settings.apply_delay_max_s,
    )

    event_bus = get_event_bus()
    await event_bus.subscribe(None, get_event_counter())

    queue = get_command_queue(settings)
    await queue.start()

    await event_bus.publish(Event(type=EventType.SERVER_STARTED))

    yield

    logger.info("Shutting down Resilient Todo server")
    await queue.stop()
    await event_bus.publish(Event(type=EventType.SERVER_STOPPED))
    await event_bus.unsubscribe(None, get_event_counter())


# =============================================================================
# FastAPI Application
# =============================================================================


app = FastAPI(
    title="Resilient Todo",
    description="Todo API that pretends to suffer from terrible network and scale issues",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(todos_router)
app.include_router(diagnostics_router)


# =============================================================================
# REST Endpoints
# =============================================================================


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """
    Health check endpoint.

    Not behind the fault injector.
    """
    now = datetime.now(UTC)
    uptime = (now - state.start_time).total_seconds()

    return HealthResponse(
        status="healthy",
        version=__version__,
        time=now.isoformat(),
        uptime_seconds=round(uptime, 2),
    )


@app.get("/config")
async def config(settings: Settings = Depends(get_settings_dep)) -> dict[str, Any]:
    """Get the server-side simulation parameters."""
    return settings.get_public_config()


# =============================================================================
# WebSocket Endpoint
# =============================================================================


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    """
    Confirmation stream.

    Each applied command arrives as ``{"verb": ..., "payload": ...}``. Nothing
    is replayed on connect.
    """
    await websocket.accept()
    channel = get_broadcast_channel()
    channel.subscribe(websocket)
    event_bus = get_event_bus()
    await event_bus.publish(
        Event(type=EventType.SUBSCRIBER_CONNECTED, data={"subscribers": channel.subscriber_count})
    )

    try:
        while True:
            try:
                data = await websocket.receive_json()
            except WebSocketDisconnect:
                break
            except ValueError as e:
                logger.warning("Ignoring non-JSON WebSocket message: %s", e)
                continue
            await handle_ws_message(websocket, data)
    finally:
        channel.unsubscribe(websocket)
        await event_bus.publish(
            Event(
                type=EventType.SUBSCRIBER_DISCONNECTED,
                data={"subscribers": channel.subscriber_count},
            )
        )


async def handle_ws_message(websocket: WebSocket, data: dict[str, Any]) -> None:
    """
    Handle incoming WebSocket messages.

    Args:
        websocket: WebSocket connection
        data: Message data
    """
    msg_type = data.get("type") if isinstance(data, dict) else None

    if msg_type == "ping":
        await websocket.send_json(
            {
                "type": "pong",
                "timestamp": datetime.now(UTC).isoformat(),
            }
        )
    else:
        logger.warning("Unknown WebSocket message type: %s", msg_type)


# =============================================================================
# Entry Point
# =============================================================================


def main() -> None:
    """Run the server."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "resilient_todo.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
