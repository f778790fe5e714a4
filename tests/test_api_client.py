"""
Tests for the retrying todo API client with mocked HTTP responses.
"""

import json
from collections.abc import Generator
from unittest.mock import AsyncMock, patch

import httpx
import pytest
import respx
from httpx import Response

from resilient_todo.client.api import (
    RetryExhaustedError,
    TodoApiClient,
    TodoAPIError,
    TodoNotFoundError,
)
from resilient_todo.config import Settings
from resilient_todo.server.models import Item, ItemPatch, Verb

BASE_URL = "http://todo.test"

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def api_client() -> TodoApiClient:
    """Client with the default attempt budget and backoff."""
    return TodoApiClient(BASE_URL)


@pytest.fixture
def no_sleep() -> Generator[AsyncMock, None, None]:
    """Record backoff sleeps instead of waiting."""
    with patch("resilient_todo.client.api.asyncio.sleep", new_callable=AsyncMock) as sleep:
        yield sleep


# =============================================================================
# Retry behaviour
# =============================================================================


class TestRetry:
    """Backoff and attempt budget."""

    def test_backoff_doubles(self, api_client: TodoApiClient) -> None:
        assert [api_client.backoff_for(k) for k in range(1, 5)] == [0.5, 1.0, 2.0, 4.0]

    def test_invalid_attempt_budget(self) -> None:
        with pytest.raises(ValueError):
            TodoApiClient(BASE_URL, max_attempts=0)

    @respx.mock
    @pytest.mark.asyncio
    async def test_always_500_exhausts_budget(
        self, api_client: TodoApiClient, no_sleep: AsyncMock
    ) -> None:
        """A persistently failing command makes exactly max_attempts attempts."""
        route = respx.post(f"{BASE_URL}/todos").mock(return_value=Response(500))

        with pytest.raises(RetryExhaustedError) as exc_info:
            await api_client.create_todo("doomed")

        assert route.call_count == 5
        assert exc_info.value.attempts == 5
        assert exc_info.value.status_code == 500
        delays = [c.args[0] for c in no_sleep.await_args_list]
        assert delays == [0.5, 1.0, 2.0, 4.0]
        assert all(b > a for a, b in zip(delays, delays[1:]))

    @respx.mock
    @pytest.mark.asyncio
    async def test_transport_error_then_success(
        self, api_client: TodoApiClient, no_sleep: AsyncMock
    ) -> None:
        route = respx.post(f"{BASE_URL}/todos").mock(
            side_effect=[
                httpx.ConnectError("connection refused"),
                Response(201, json={"id": 10, "text": "ok", "completed": False}),
            ]
        )

        item = await api_client.create_todo("ok")

        assert item == Item(id=10, text="ok", completed=False)
        assert route.call_count == 2
        no_sleep.assert_awaited_once_with(0.5)
        assert api_client.metrics["total_retries"] == 1

    @respx.mock
    @pytest.mark.asyncio
    async def test_recovers_after_some_500s(
        self, api_client: TodoApiClient, no_sleep: AsyncMock
    ) -> None:
        route = respx.delete(f"{BASE_URL}/todos/3").mock(
            side_effect=[Response(500), Response(503), Response(202, json={"id": 3})]
        )

        await api_client.delete_todo(3)

        assert route.call_count == 3

    @respx.mock
    @pytest.mark.asyncio
    async def test_404_not_retried(self, api_client: TodoApiClient, no_sleep: AsyncMock) -> None:
        route = respx.put(f"{BASE_URL}/todos/99").mock(return_value=Response(404))

        with pytest.raises(TodoNotFoundError) as exc_info:
            await api_client.update_todo(99, ItemPatch(completed=True))

        assert exc_info.value.status_code == 404
        assert route.call_count == 1
        no_sleep.assert_not_awaited()

    @respx.mock
    @pytest.mark.asyncio
    async def test_other_4xx_not_retried(self, api_client: TodoApiClient, no_sleep: AsyncMock) -> None:
        route = respx.post(f"{BASE_URL}/todos").mock(return_value=Response(422))

        with pytest.raises(TodoAPIError) as exc_info:
            await api_client.create_todo("")

        assert not isinstance(exc_info.value, RetryExhaustedError)
        assert route.call_count == 1

    @respx.mock
    @pytest.mark.asyncio
    async def test_custom_budget(self, no_sleep: AsyncMock) -> None:
        client = TodoApiClient(BASE_URL, max_attempts=2, backoff_base_s=0.1)
        route = respx.get(f"{BASE_URL}/todos").mock(return_value=Response(500))

        with pytest.raises(RetryExhaustedError):
            await client.list_todos()

        assert route.call_count == 2
        no_sleep.assert_awaited_once_with(0.1)


# =============================================================================
# Operations
# =============================================================================


class TestOperations:
    """Request shapes and parsing."""

    @respx.mock
    @pytest.mark.asyncio
    async def test_list_todos(self, api_client: TodoApiClient) -> None:
        respx.get(f"{BASE_URL}/todos").mock(
            return_value=Response(200, json=[{"id": 1, "text": "a", "completed": True}])
        )
        assert await api_client.list_todos() == [Item(id=1, text="a", completed=True)]

    @respx.mock
    @pytest.mark.asyncio
    async def test_update_sends_only_set_fields(self, api_client: TodoApiClient) -> None:
        route = respx.put(f"{BASE_URL}/todos/5").mock(return_value=Response(202, json={"id": 5}))

        await api_client.update_todo(5, ItemPatch(completed=True))

        assert json.loads(route.calls.last.request.content) == {"completed": True}

    @respx.mock
    @pytest.mark.asyncio
    async def test_send_dispatches_by_verb(self, api_client: TodoApiClient) -> None:
        respx.post(f"{BASE_URL}/todos").mock(
            return_value=Response(201, json={"id": 1, "text": "x", "completed": False})
        )
        delete_route = respx.delete(f"{BASE_URL}/todos/1").mock(return_value=Response(202, json={"id": 1}))

        created = await api_client.send(Verb.CREATE, "x")
        deleted = await api_client.send(Verb.DELETE, 1)

        assert created == Item(id=1, text="x", completed=False)
        assert deleted is None
        assert delete_route.called

    @pytest.mark.asyncio
    async def test_send_rejects_mismatched_payload(self, api_client: TodoApiClient) -> None:
        with pytest.raises(ValueError):
            await api_client.send(Verb.DELETE, "not-an-id")

    @pytest.mark.asyncio
    async def test_context_manager_closes(self) -> None:
        async with TodoApiClient(BASE_URL) as client:
            http = await client._get_client()
        assert http.is_closed

    def test_from_settings(self) -> None:
        settings = Settings(api_base_url="http://example.test:1/", client_max_attempts=3)
        client = TodoApiClient.from_settings(settings)
        assert client.max_attempts == 3
