"""
Fault and latency injection for inbound requests.

Every request first waits for a delay drawn from a ``DelayStrategy`` and is
then aborted with a simulated 500 with probability ``FaultPolicy.failure_rate``.
Both strategies are injectable so tests can run with fixed or zero delays.
"""

import asyncio
import random
from typing import Any, Protocol

from fastapi import HTTPException, Request

from resilient_todo.logging import get_logger
from resilient_todo.runtime.event_bus import Event, EventBus, EventType

logger = get_logger(__name__)


class DelayStrategy(Protocol):
    """Source of delays in seconds."""

    def draw(self) -> float: ...


class UniformDelay:
    """Delay drawn uniformly from ``[min_s, max_s]``."""

    def __init__(self, min_s: float, max_s: float, rng: random.Random | None = None):
        if min_s > max_s:
            raise ValueError(f"min_s ({min_s}) must not exceed max_s ({max_s})")
        self.min_s = min_s
        self.max_s = max_s
        self._rng = rng or random.Random()

    def draw(self) -> float:
        return self._rng.uniform(self.min_s, self.max_s)

    def __repr__(self) -> str:
        return f"UniformDelay({self.min_s}, {self.max_s})"


class FixedDelay:
    """Always the same delay; ``FixedDelay(0)`` disables latency."""

    def __init__(self, seconds: float = 0.0):
        self.seconds = seconds

    def draw(self) -> float:
        return self.seconds

    def __repr__(self) -> str:
        return f"FixedDelay({self.seconds})"


class ScriptedDelay:
    """Returns the given delays in order, then repeats the last one."""

    def __init__(self, delays: list[float]):
        if not delays:
            raise ValueError("ScriptedDelay needs at least one delay")
        self._delays = list(delays)
        self._index = 0

    def draw(self) -> float:
        delay = self._delays[min(self._index, len(self._delays) - 1)]
        self._index += 1
        return delay


class FaultPolicy:
    """Independent per-request failure decision."""

    def __init__(self, failure_rate: float = 0.1, rng: random.Random | None = None):
        if not 0.0 <= failure_rate <= 1.0:
            raise ValueError(f"failure_rate must be within [0, 1], got {failure_rate}")
        self.failure_rate = failure_rate
        self._rng = rng or random.Random()

    def should_fail(self) -> bool:
        return self._rng.random() < self.failure_rate


class FaultInjector:
    """
    Ingress gate in front of the command queue.

    Stateless per request apart from counters used for diagnostics.
    """

    def __init__(
        self,
        delay: DelayStrategy,
        policy: FaultPolicy,
        event_bus: EventBus | None = None,
    ):
        """
        Initialize injector.

        Args:
            delay: Latency applied to every request before the fault decision
            policy: Decides whether a request is aborted
            event_bus: Receives a FAULT_INJECTED event per simulated failure
        """
        self._delay = delay
        self._policy = policy
        self._event_bus = event_bus

        # Stats
        self._total_requests = 0
        self._faults_injected = 0

    async def gate(self, method: str, path: str) -> None:
        """
        Delay the request, then maybe abort it.

        Raises:
            HTTPException: 500 when a fault is injected
        """
        self._total_requests += 1
        delay = self._delay.draw()
        if delay > 0:
            await asyncio.sleep(delay)

        if not self._policy.should_fail():
            return

        self._faults_injected += 1
        logger.warning("Simulated 500 error for request to %s %s", method, path)
        if self._event_bus is not None:
            await self._event_bus.publish(
                Event(
                    type=EventType.FAULT_INJECTED,
                    data={"method": method, "path": path, "fault": "simulated_500"},
                )
            )
        raise HTTPException(status_code=500, detail="Internal Server Error (simulated)")

    async def __call__(self, request: Request) -> None:
        """FastAPI dependency form of ``gate``."""
        await self.gate(request.method, request.url.path)

    def get_stats(self) -> dict[str, Any]:
        """Get injector statistics."""
        return {
            "delay": repr(self._delay),
            "failure_rate": self._policy.failure_rate,
            "total_requests": self._total_requests,
            "faults_injected": self._faults_injected,
        }
