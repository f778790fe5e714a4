"""
Broadcast channel for applied-command confirmations.

Fan-out to every open stream subscriber, best-effort and fire-and-forget.
Closed subscribers are pruned lazily when a publish reaches them; nothing is
buffered for late joiners.
"""

import asyncio
from typing import Any, Protocol

from starlette.websockets import WebSocketState

from resilient_todo.logging import get_logger
from resilient_todo.server.models import Confirmation, Item, Verb

logger = get_logger(__name__)


class Subscriber(Protocol):
    """Anything that can receive a JSON message (a FastAPI WebSocket in production)."""

    async def send_json(self, data: Any) -> None: ...


def _is_open(subscriber: Subscriber) -> bool:
    state = getattr(subscriber, "client_state", WebSocketState.CONNECTED)
    app_state = getattr(subscriber, "application_state", WebSocketState.CONNECTED)
    return state == WebSocketState.CONNECTED and app_state == WebSocketState.CONNECTED


class BroadcastChannel:
    """
    Registry of live subscribers plus an ordered publish.

    Publishes are serialized so every subscriber sees confirmations in the
    order they were published. A subscriber that stalls longer than the send
    timeout is dropped rather than holding up every later publish.
    """

    def __init__(self, send_timeout_s: float = 1.0) -> None:
        """
        Initialize channel.

        Args:
            send_timeout_s: Longest a single subscriber may take to accept a
                message before it is treated as dead and pruned
        """
        self._send_timeout_s = send_timeout_s
        self._subscribers: list[Subscriber] = []
        self._lock = asyncio.Lock()

        # Stats
        self._published = 0
        self._delivered = 0
        self._pruned = 0

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, subscriber: Subscriber) -> None:
        if subscriber not in self._subscribers:
            self._subscribers.append(subscriber)
        logger.info("Subscriber connected. Total subscribers: %d", len(self._subscribers))

    def unsubscribe(self, subscriber: Subscriber) -> None:
        if subscriber in self._subscribers:
            self._subscribers.remove(subscriber)
        logger.info("Subscriber disconnected. Total subscribers: %d", len(self._subscribers))

    async def publish(self, verb: Verb, payload: Item | int) -> int:
        """
        Send a confirmation to every open subscriber.

        Returns:
            Number of subscribers the message was delivered to
        """
        message = Confirmation(verb=verb, payload=payload).to_message()

        async with self._lock:
            self._published += 1
            delivered = 0
            closed: list[Subscriber] = []
            for subscriber in list(self._subscribers):
                if not _is_open(subscriber):
                    closed.append(subscriber)
                    continue
                try:
                    await asyncio.wait_for(subscriber.send_json(message), self._send_timeout_s)
                    delivered += 1
                except TimeoutError:
                    logger.warning(
                        "Subscriber did not accept message within %.2fs, pruning",
                        self._send_timeout_s,
                    )
                    closed.append(subscriber)
                except Exception as e:
                    logger.debug("Send to subscriber failed, pruning: %s", e)
                    closed.append(subscriber)

            for subscriber in closed:
                if subscriber in self._subscribers:
                    self._subscribers.remove(subscriber)
            self._pruned += len(closed)
            self._delivered += delivered

        if closed:
            logger.info("Pruned %d closed subscribers", len(closed))
        logger.debug("Broadcast %s to %d subscribers", verb.value, delivered)
        return delivered

    def get_stats(self) -> dict[str, int]:
        return {
            "subscribers": len(self._subscribers),
            "published": self._published,
            "delivered": self._delivered,
            "pruned": self._pruned,
        }
