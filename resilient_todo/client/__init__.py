"""
Client side of the sandbox.

Provides:
- TodoApiClient: HTTP client with retry/backoff
- ReconciliationEngine: local view merged from local, HTTP and stream signals
- ConfirmationStream: WebSocket subscription with unconditional reconnect
"""

from resilient_todo.client.api import (
    RetryExhaustedError,
    TodoApiClient,
    TodoAPIError,
    TodoNotFoundError,
)
from resilient_todo.client.models import (
    MODE_EXPLANATIONS,
    VISIBILITY_POLICY,
    EntryState,
    InvalidTransitionError,
    LocalTodo,
    LocalViewError,
    PendingItemError,
    UnknownItemError,
    VisibilityPolicy,
)
from resilient_todo.client.reconciliation import ReconciliationEngine
from resilient_todo.client.stream import ConfirmationStream

__all__ = [
    "MODE_EXPLANATIONS",
    "VISIBILITY_POLICY",
    "ConfirmationStream",
    "EntryState",
    "InvalidTransitionError",
    "LocalTodo",
    "LocalViewError",
    "PendingItemError",
    "ReconciliationEngine",
    "RetryExhaustedError",
    "TodoAPIError",
    "TodoApiClient",
    "TodoNotFoundError",
    "UnknownItemError",
    "VisibilityPolicy",
]
