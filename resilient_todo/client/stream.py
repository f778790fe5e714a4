"""
Confirmation stream subscriber.

Reads ``{"verb", "payload"}`` frames from the server's WebSocket and hands
each one to a handler (normally ``ReconciliationEngine.merge_confirmation``).
Dropped connections are re-established unconditionally; there is no cap on
reconnect attempts and nothing missed while disconnected is replayed.
"""

import asyncio
import json
from collections.abc import AsyncIterable, Callable
from contextlib import AbstractAsyncContextManager
from typing import Any

import websockets
from pydantic import ValidationError
from websockets.exceptions import WebSocketException

from resilient_todo.logging import get_logger
from resilient_todo.server.models import Confirmation

logger = get_logger(__name__)

ConfirmationHandler = Callable[[Confirmation], None]
ConnectFactory = Callable[[str], AbstractAsyncContextManager[AsyncIterable[Any]]]


class ConfirmationStream:
    """
    Long-running subscription to the confirmation stream.

    Usage:
        stream = ConfirmationStream("ws://127.0.0.1:7686/ws", engine.merge_confirmation)
        await stream.start()
        ...
        await stream.stop()
    """

    def __init__(
        self,
        url: str,
        handler: ConfirmationHandler,
        reconnect_delay_s: float = 1.0,
        connect: ConnectFactory | None = None,
    ):
        """
        Initialize stream.

        Args:
            url: WebSocket URL of the confirmation stream
            handler: Called once per well-formed confirmation
            reconnect_delay_s: Pause before each reconnect
            connect: Connection factory; defaults to ``websockets.connect``
        """
        self._url = url
        self._handler = handler
        self._reconnect_delay_s = reconnect_delay_s
        self._connect = connect or websockets.connect

        self._running = False
        self._connected = False
        self._task: asyncio.Task[None] | None = None

        # Stats
        self._connections = 0
        self._reconnects = 0
        self._received = 0
        self._skipped = 0
        self._handler_errors = 0
        self._last_error: str | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_connected(self) -> bool:
        return self._connected

    def get_stats(self) -> dict[str, Any]:
        return {
            "connected": self._connected,
            "connections": self._connections,
            "reconnects": self._reconnects,
            "received": self._received,
            "skipped": self._skipped,
            "handler_errors": self._handler_errors,
            "last_error": self._last_error,
        }

    async def start(self) -> None:
        """Start the subscription loop."""
        if self._running:
            logger.warning("Confirmation stream already running")
            return
        self._running = True
        self._task = asyncio.create_task(self._stream_loop())

    async def stop(self) -> None:
        """Stop the subscription loop."""
        self._running = False
        self._connected = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _stream_loop(self) -> None:
        """Connect, read until the connection drops, reconnect."""
        while self._running:
            try:
                async with self._connect(self._url) as connection:
                    self._connected = True
                    self._connections += 1
                    self._last_error = None
                    logger.info("WebSocket - Connection opened")
                    async for frame in connection:
                        self.handle_frame(frame)
                logger.info("WebSocket - Connection closed")

            except asyncio.CancelledError:
                break

            except (OSError, WebSocketException) as e:
                self._last_error = str(e)
                logger.warning("WebSocket - Error: %s", e)

            finally:
                self._connected = False

            if not self._running:
                break
            self._reconnects += 1
            logger.info("Reconnecting in %.1fs...", self._reconnect_delay_s)
            await asyncio.sleep(self._reconnect_delay_s)

    def handle_frame(self, frame: str | bytes) -> bool:
        """
        Parse one frame and pass confirmations to the handler.

        Returns:
            True if the frame was a confirmation the handler accepted
        """
        try:
            message = json.loads(frame)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            self._skipped += 1
            logger.warning("WebSocket - Malformed frame skipped: %s", e)
            return False

        if not isinstance(message, dict) or "verb" not in message:
            # pong and other control frames
            logger.debug("WebSocket - Ignoring non-confirmation frame: %s", message)
            return False

        try:
            confirmation = Confirmation.model_validate(message)
        except ValidationError as e:
            self._skipped += 1
            logger.warning("WebSocket - Invalid confirmation skipped: %s", e)
            return False

        self._received += 1
        try:
            self._handler(confirmation)
        except Exception as e:
            self._handler_errors += 1
            logger.warning(
                "WebSocket - Handler failed for %s of todo %d: %s",
                confirmation.verb.value,
                confirmation.item_id,
                e,
            )
            return False
        return True
