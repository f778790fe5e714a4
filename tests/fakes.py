"""
Test doubles shared across test modules.
"""

import asyncio
from typing import Any


class FakeSubscriber:
    """Stand-in for a WebSocket connection that records what it is sent."""

    def __init__(self, fail_on_send: bool = False) -> None:
        self.messages: list[dict[str, Any]] = []
        self.fail_on_send = fail_on_send

    async def send_json(self, data: Any) -> None:
        if self.fail_on_send:
            raise RuntimeError("connection reset")
        self.messages.append(data)


class StalledSubscriber(FakeSubscriber):
    """Subscriber whose sends never complete in any reasonable time."""

    async def send_json(self, data: Any) -> None:
        await asyncio.sleep(10)
        self.messages.append(data)


class FakeConnection:
    """Async-iterable WebSocket connection replaying canned frames."""

    def __init__(self, frames: list[str | bytes], error: Exception | None = None) -> None:
        self._frames = list(frames)
        self._error = error

    async def __aenter__(self) -> "FakeConnection":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        return None

    def __aiter__(self) -> "FakeConnection":
        return self

    async def __anext__(self) -> str | bytes:
        if self._frames:
            return self._frames.pop(0)
        if self._error is not None:
            error, self._error = self._error, None
            raise error
        raise StopAsyncIteration
