"""
Pytest configuration and shared fixtures.
"""

import os
import random
from collections.abc import Generator

import pytest

# Set test environment variables before importing app modules
os.environ.setdefault("TODO_ENV", "development")
os.environ.setdefault("TODO_INGRESS_DELAY_MIN_S", "0")
os.environ.setdefault("TODO_INGRESS_DELAY_MAX_S", "0")
os.environ.setdefault("TODO_FAILURE_RATE", "0")
os.environ.setdefault("TODO_QUEUE_TICK_S", "0.01")
os.environ.setdefault("TODO_APPLY_DELAY_MIN_S", "0.02")
os.environ.setdefault("TODO_APPLY_DELAY_MAX_S", "0.05")


@pytest.fixture
def seeded_random() -> random.Random:
    """Deterministic RNG for delay and fault draws."""
    return random.Random(42)


@pytest.fixture(autouse=True)
def reset_singletons() -> Generator[None, None, None]:
    """Reset module-level singletons between tests."""
    yield

    from resilient_todo.config import get_settings
    from resilient_todo.runtime.event_bus import reset_event_bus
    from resilient_todo.server.diagnostics import reset_event_counter
    from resilient_todo.server.routes import reset_server_singletons

    reset_server_singletons()
    reset_event_bus()
    reset_event_counter()
    get_settings.cache_clear()
