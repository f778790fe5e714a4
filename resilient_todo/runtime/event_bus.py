"""
Event bus for internal pub/sub messaging.

Carries observability events between server components (fault injector,
command queue, broadcast channel) and the diagnostics counters.
"""

import asyncio
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4


class EventType(str, Enum):
    """Types of events in the system."""

    # Lifecycle events
    SERVER_STARTED = "server.started"
    SERVER_STOPPED = "server.stopped"

    # Fault injection
    FAULT_INJECTED = "fault.injected"

    # Command lifecycle
    COMMAND_ACCEPTED = "command.accepted"
    COMMAND_DISPATCHED = "command.dispatched"
    COMMAND_APPLIED = "command.applied"
    COMMAND_SKIPPED = "command.skipped"

    # Subscriber lifecycle
    SUBSCRIBER_CONNECTED = "subscriber.connected"
    SUBSCRIBER_DISCONNECTED = "subscriber.disconnected"


@dataclass
class Event:
    """
    An event in the system.

    Carries type, timestamp, and arbitrary payload data.
    """

    type: EventType
    data: dict[str, Any] = field(default_factory=dict)
    id: UUID = field(default_factory=uuid4)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __hash__(self) -> int:
        return hash(self.id)


# Type for event handlers
EventHandler = Callable[[Event], Coroutine[Any, Any, None]]


class EventBus:
    """
    Simple async event bus for internal pub/sub.

    Supports:
    - Multiple handlers per event type
    - Wildcard subscriptions
    - Async handlers
    """

    def __init__(self) -> None:
        self._handlers: dict[EventType, list[EventHandler]] = {}
        self._wildcard_handlers: list[EventHandler] = []
        self._lock = asyncio.Lock()

    async def subscribe(
        self,
        event_type: EventType | None,
        handler: EventHandler,
    ) -> None:
        """
        Subscribe to events.

        Args:
            event_type: Event type to subscribe to, or None for all events
            handler: Async handler function
        """
        async with self._lock:
            if event_type is None:
                self._wildcard_handlers.append(handler)
            else:
                self._handlers.setdefault(event_type, []).append(handler)

    async def unsubscribe(
        self,
        event_type: EventType | None,
        handler: EventHandler,
    ) -> None:
        """
        Unsubscribe from events.

        Args:
            event_type: Event type, or None for wildcard
            handler: Handler to remove
        """
        async with self._lock:
            if event_type is None:
                if handler in self._wildcard_handlers:
                    self._wildcard_handlers.remove(handler)
            elif handler in self._handlers.get(event_type, []):
                self._handlers[event_type].remove(handler)

    async def publish(self, event: Event) -> None:
        """
        Publish an event to all subscribers.

        Args:
            event: Event to publish
        """
        handlers: list[EventHandler] = []

        async with self._lock:
            handlers.extend(self._handlers.get(event.type, []))
            handlers.extend(self._wildcard_handlers)

        # Invoke all handlers concurrently
        if handlers:
            await asyncio.gather(
                *[handler(event) for handler in handlers],
                return_exceptions=True,
            )

    async def clear(self) -> None:
        """Remove all handlers."""
        async with self._lock:
            self._handlers.clear()
            self._wildcard_handlers.clear()


class EventCounter:
    """Counts published events by type; feeds the diagnostics endpoint."""

    def __init__(self) -> None:
        self.counts: dict[str, int] = {}
        self.last_event_at: datetime | None = None

    async def __call__(self, event: Event) -> None:
        self.counts[event.type.value] = self.counts.get(event.type.value, 0) + 1
        self.last_event_at = event.timestamp

    def get(self, event_type: EventType) -> int:
        return self.counts.get(event_type.value, 0)


# Global event bus instance
_event_bus: EventBus | None = None


def get_event_bus() -> EventBus:
    """Get the global event bus instance."""
    global _event_bus
    if _event_bus is None:
        _event_bus = EventBus()
    return _event_bus


def reset_event_bus() -> None:
    """Reset the global event bus (for testing)."""
    global _event_bus
    _event_bus = None
