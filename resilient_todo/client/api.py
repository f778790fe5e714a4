"""
Async todo API client with retry/backoff.

Transient failures (transport errors and 5xx) are retried with exponential
backoff up to a fixed attempt budget. Other 4xx responses are surfaced at
once. No idempotency keys are sent, so a create retried after the server
already accepted it produces a second item.
"""

import asyncio
import time
from logging import Logger
from typing import Any

import httpx

from resilient_todo.config import Settings
from resilient_todo.logging import get_logger
from resilient_todo.server.models import Item, ItemPatch, Verb


class TodoAPIError(Exception):
    """Raised for todo API failures that the caller must handle."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class TodoNotFoundError(TodoAPIError):
    """The server has no record of the id (non-retryable)."""


class RetryExhaustedError(TodoAPIError):
    """Every attempt in the budget failed transiently."""

    def __init__(self, message: str, attempts: int, status_code: int | None = None):
        super().__init__(message, status_code)
        self.attempts = attempts


class TodoApiClient:
    """
    Async client for the todo HTTP API.

    Handles:
    - Retry with exponential backoff on transport errors and 5xx
    - Immediate failure on 404 and other 4xx
    - Latency tracking
    """

    def __init__(
        self,
        base_url: str,
        *,
        max_attempts: int = 5,
        backoff_base_s: float = 0.5,
        timeout_s: float = 10.0,
        logger: Logger | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize client.

        Args:
            base_url: Server root, e.g. http://127.0.0.1:7686
            max_attempts: Total attempts per request, including the first
            backoff_base_s: Delay before the first retry; doubles each retry
            timeout_s: Per-attempt timeout
            logger: Logger instance
            transport: Optional httpx transport (e.g. ASGITransport for in-process use)
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._base_url = base_url.rstrip("/")
        self._max_attempts = max_attempts
        self._backoff_base_s = backoff_base_s
        self._timeout = timeout_s
        self._logger = logger or get_logger(__name__)
        self._transport = transport

        self._client: httpx.AsyncClient | None = None

        # Latency and retry tracking
        self._last_latency_ms: int = 0
        self._latency_history: list[int] = []
        self._max_history = 100
        self._total_retries = 0

    @classmethod
    def from_settings(cls, settings: Settings, logger: Logger | None = None) -> "TodoApiClient":
        return cls(
            settings.api_base_url,
            max_attempts=settings.client_max_attempts,
            backoff_base_s=settings.client_backoff_base_s,
            timeout_s=settings.client_timeout_s,
            logger=logger,
        )

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    @property
    def metrics(self) -> dict[str, Any]:
        """Get connection metrics."""
        avg_latency = (
            sum(self._latency_history) / len(self._latency_history)
            if self._latency_history
            else 0
        )
        return {
            "last_request_latency_ms": self._last_latency_ms,
            "average_latency_ms": round(avg_latency, 1),
            "total_retries": self._total_retries,
        }

    def backoff_for(self, retry: int) -> float:
        """Delay before retry number ``retry`` (1-based)."""
        return self._backoff_base_s * (2 ** (retry - 1))

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "TodoApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """
        Make an HTTP request with retries.

        Args:
            method: HTTP method
            path: API path (without base URL)
            json_body: JSON request body

        Returns:
            Successful (2xx) HTTP response

        Raises:
            TodoNotFoundError: 404
            TodoAPIError: Other non-retryable status
            RetryExhaustedError: Attempt budget spent on transient failures
        """
        last_error: str | None = None
        last_status: int | None = None

        for attempt in range(1, self._max_attempts + 1):
            if attempt > 1:
                backoff = self.backoff_for(attempt - 1)
                self._total_retries += 1
                self._logger.warning(
                    "Retrying %s %s in %.2fs (attempt %d/%d, last error: %s)",
                    method,
                    path,
                    backoff,
                    attempt,
                    self._max_attempts,
                    last_error,
                )
                await asyncio.sleep(backoff)

            try:
                client = await self._get_client()
                start_time = time.perf_counter()
                response = await client.request(method, path, json=json_body)
                latency_ms = int((time.perf_counter() - start_time) * 1000)
                self._last_latency_ms = latency_ms
                self._latency_history.append(latency_ms)
                if len(self._latency_history) > self._max_history:
                    self._latency_history.pop(0)
            except httpx.RequestError as e:
                last_error = f"{type(e).__name__}: {e}"
                last_status = None
                continue

            if response.status_code >= 500:
                last_error = f"HTTP {response.status_code}"
                last_status = response.status_code
                continue

            if response.status_code == 404:
                raise TodoNotFoundError(f"{method} {path}: not found", status_code=404)

            if response.status_code >= 400:
                raise TodoAPIError(
                    f"{method} {path}: HTTP error {response.status_code}",
                    status_code=response.status_code,
                )

            return response

        self._logger.error(
            "%s %s failed after %d attempts: %s",
            method,
            path,
            self._max_attempts,
            last_error,
        )
        raise RetryExhaustedError(
            f"{method} {path} failed after {self._max_attempts} attempts: {last_error}",
            attempts=self._max_attempts,
            status_code=last_status,
        )

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def list_todos(self) -> list[Item]:
        """Fetch the authoritative snapshot."""
        response = await self._request("GET", "/todos")
        return [Item.model_validate(raw) for raw in response.json()]

    async def create_todo(self, text: str) -> Item:
        """Submit a create; returns the provisional item with its server id."""
        response = await self._request("POST", "/todos", json_body={"text": text})
        return Item.model_validate(response.json())

    async def update_todo(self, item_id: int, patch: ItemPatch) -> None:
        """Submit an update; accepted, not yet committed."""
        await self._request(
            "PUT",
            f"/todos/{item_id}",
            json_body=patch.model_dump(exclude_none=True),
        )

    async def delete_todo(self, item_id: int) -> None:
        """Submit a delete; accepted, not yet committed."""
        await self._request("DELETE", f"/todos/{item_id}")

    async def send(self, verb: Verb, payload: str | int | tuple[int, ItemPatch]) -> Item | None:
        """
        Send one mutation by verb.

        Args:
            verb: Mutation kind
            payload: text for create, id for delete, (id, patch) for update

        Returns:
            The provisional item for create, None otherwise
        """
        if verb == Verb.CREATE and isinstance(payload, str):
            return await self.create_todo(payload)
        if verb == Verb.UPDATE and isinstance(payload, tuple):
            item_id, patch = payload
            await self.update_todo(item_id, patch)
            return None
        if verb == Verb.DELETE and isinstance(payload, int):
            await self.delete_todo(payload)
            return None
        raise ValueError(f"Payload {payload!r} does not match verb {verb.value}")
