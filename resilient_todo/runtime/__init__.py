"""
Runtime utilities for the resilient todo sandbox.

Provides:
- Event bus for internal pub/sub
- Event counters for diagnostics
"""

from resilient_todo.runtime.event_bus import (
    Event,
    EventBus,
    EventCounter,
    EventType,
    get_event_bus,
    reset_event_bus,
)

__all__ = [
    "Event",
    "EventBus",
    "EventCounter",
    "EventType",
    "get_event_bus",
    "reset_event_bus",
]
