"""
Diagnostics API routes.

Exposes queue depth, broadcast and injector counters, observability event
counts and recent log lines. Not behind the fault injector.
"""

from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from resilient_todo.logging import get_in_memory_logs, get_logger
from resilient_todo.runtime.event_bus import EventCounter
from resilient_todo.server.broadcast import BroadcastChannel
from resilient_todo.server.faults import FaultInjector
from resilient_todo.server.queue import CommandQueue
from resilient_todo.server.routes import (
    get_broadcast_channel,
    get_command_queue,
    get_fault_injector,
)

router = APIRouter(prefix="/diagnostics", tags=["Diagnostics"])
logger = get_logger(__name__)

_event_counter: EventCounter | None = None


def get_event_counter() -> EventCounter:
    """Get or create the event counter (subscribed to the bus by main.py)."""
    global _event_counter
    if _event_counter is None:
        _event_counter = EventCounter()
    return _event_counter


def reset_event_counter() -> None:
    global _event_counter
    _event_counter = None


# =============================================================================
# Response Models
# =============================================================================


class ServerDiagnostics(BaseModel):
    """Complete diagnostics snapshot."""

    queue: dict[str, int] = Field(default_factory=dict)
    broadcast: dict[str, int] = Field(default_factory=dict)
    faults: dict[str, Any] = Field(default_factory=dict)
    events: dict[str, int] = Field(default_factory=dict)
    timestamp: str


class LogsResponse(BaseModel):
    """Recent log lines."""

    logs: list[dict[str, Any]]
    count: int


# =============================================================================
# Routes
# =============================================================================


@router.get("", response_model=ServerDiagnostics)
async def get_diagnostics(
    queue: CommandQueue = Depends(get_command_queue),
    broadcast: BroadcastChannel = Depends(get_broadcast_channel),
    injector: FaultInjector = Depends(get_fault_injector),
) -> ServerDiagnostics:
    """Get counters from every server component."""
    return ServerDiagnostics(
        queue=queue.get_stats(),
        broadcast=broadcast.get_stats(),
        faults=injector.get_stats(),
        events=dict(get_event_counter().counts),
        timestamp=datetime.now(UTC).isoformat(),
    )


@router.get("/logs", response_model=LogsResponse)
async def get_logs(
    level: str = Query(default="INFO"),
    limit: int = Query(default=50, ge=1, le=1000),
) -> LogsResponse:
    """Get recent log lines at or above ``level``."""
    logs = get_in_memory_logs(level=level, limit=limit)
    return LogsResponse(logs=logs, count=len(logs))
