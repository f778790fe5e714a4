"""
Tests for fault and latency injection.
"""

import random
from unittest.mock import AsyncMock, patch

import pytest
from fastapi import HTTPException

from resilient_todo.runtime.event_bus import EventBus, EventCounter, EventType
from resilient_todo.server.faults import (
    FaultInjector,
    FaultPolicy,
    FixedDelay,
    ScriptedDelay,
    UniformDelay,
)

# =============================================================================
# Delay strategies
# =============================================================================


class TestDelayStrategies:
    """Delay sources."""

    def test_uniform_within_bounds(self, seeded_random: random.Random) -> None:
        delay = UniformDelay(1.0, 5.0, rng=seeded_random)
        draws = [delay.draw() for _ in range(200)]
        assert all(1.0 <= d <= 5.0 for d in draws)
        assert len(set(draws)) > 1

    def test_uniform_rejects_inverted_range(self) -> None:
        with pytest.raises(ValueError):
            UniformDelay(5.0, 1.0)

    def test_fixed(self) -> None:
        assert FixedDelay(0.25).draw() == 0.25
        assert FixedDelay().draw() == 0.0

    def test_scripted_repeats_last(self) -> None:
        delay = ScriptedDelay([0.3, 0.1])
        assert [delay.draw() for _ in range(4)] == [0.3, 0.1, 0.1, 0.1]

    def test_scripted_needs_delays(self) -> None:
        with pytest.raises(ValueError):
            ScriptedDelay([])


class TestFaultPolicy:
    """Per-request failure decision."""

    def test_zero_rate_never_fails(self) -> None:
        policy = FaultPolicy(0.0)
        assert not any(policy.should_fail() for _ in range(500))

    def test_full_rate_always_fails(self) -> None:
        policy = FaultPolicy(1.0)
        assert all(policy.should_fail() for _ in range(50))

    def test_rate_is_approximate(self, seeded_random: random.Random) -> None:
        policy = FaultPolicy(0.1, rng=seeded_random)
        failures = sum(policy.should_fail() for _ in range(2000))
        assert 120 < failures < 280

    def test_rate_bounds(self) -> None:
        with pytest.raises(ValueError):
            FaultPolicy(-0.1)
        with pytest.raises(ValueError):
            FaultPolicy(1.1)


# =============================================================================
# Injector
# =============================================================================


class TestFaultInjector:
    """Ingress gate."""

    @pytest.mark.asyncio
    async def test_passes_when_no_fault(self) -> None:
        injector = FaultInjector(FixedDelay(0), FaultPolicy(0.0))
        await injector.gate("GET", "/todos")
        stats = injector.get_stats()
        assert stats["total_requests"] == 1
        assert stats["faults_injected"] == 0

    @pytest.mark.asyncio
    async def test_raises_simulated_500(self) -> None:
        injector = FaultInjector(FixedDelay(0), FaultPolicy(1.0))
        with pytest.raises(HTTPException) as exc_info:
            await injector.gate("POST", "/todos")
        assert exc_info.value.status_code == 500
        assert injector.get_stats()["faults_injected"] == 1

    @pytest.mark.asyncio
    async def test_delay_applied_before_decision(self) -> None:
        injector = FaultInjector(FixedDelay(2.5), FaultPolicy(1.0))
        with patch("resilient_todo.server.faults.asyncio.sleep", new_callable=AsyncMock) as sleep:
            with pytest.raises(HTTPException):
                await injector.gate("DELETE", "/todos/1")
        sleep.assert_awaited_once_with(2.5)

    @pytest.mark.asyncio
    async def test_zero_delay_does_not_sleep(self) -> None:
        injector = FaultInjector(FixedDelay(0), FaultPolicy(0.0))
        with patch("resilient_todo.server.faults.asyncio.sleep", new_callable=AsyncMock) as sleep:
            await injector.gate("GET", "/todos")
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_fault_publishes_event(self) -> None:
        bus = EventBus()
        counter = EventCounter()
        await bus.subscribe(EventType.FAULT_INJECTED, counter)
        injector = FaultInjector(FixedDelay(0), FaultPolicy(1.0), event_bus=bus)

        with pytest.raises(HTTPException):
            await injector.gate("PUT", "/todos/7")

        assert counter.get(EventType.FAULT_INJECTED) == 1
