"""
Client-side models for the local todo view.

Each record carries a state tag tracking which signals have arrived for its
in-progress mutation. Consistency modes never change those transitions;
they only decide, through ``VISIBILITY_POLICY``, when a mutation becomes
visible and settled.
"""

from enum import Enum

from pydantic import BaseModel

from resilient_todo.config import ConsistencyMode
from resilient_todo.server.models import Verb


class LocalViewError(Exception):
    """Base class for local view errors."""


class UnknownItemError(LocalViewError, KeyError):
    """No local record with that id."""


class PendingItemError(LocalViewError):
    """The record has no server id yet or already has a mutation in flight."""


class InvalidTransitionError(LocalViewError):
    """A state change outside the allowed transitions."""


class EntryState(str, Enum):
    """
    Lifecycle of a local record's in-progress mutation.

    Valid state transitions:
    - PENDING -> SUBMITTED (sent to the retry client)
    - SUBMITTED -> CONFIRMED_HTTP (HTTP response received)
    - SUBMITTED | CONFIRMED_HTTP -> CONFIRMED_BROADCAST (stream confirmation)
    - CONFIRMED_HTTP | CONFIRMED_BROADCAST -> SETTLED (mode gate reached)
    - PENDING | SUBMITTED -> FAILED (retry budget spent or terminal error)
    - SETTLED -> PENDING (a new local mutation starts)
    - FAILED -> SETTLED (rolled-back delete restores the record)
    """

    PENDING = "pending"
    SUBMITTED = "submitted"
    CONFIRMED_HTTP = "confirmedHttp"
    CONFIRMED_BROADCAST = "confirmedBroadcast"
    SETTLED = "settled"
    FAILED = "failed"


ENTRY_STATE_TRANSITIONS: dict[EntryState, set[EntryState]] = {
    EntryState.PENDING: {EntryState.SUBMITTED, EntryState.FAILED},
    EntryState.SUBMITTED: {
        EntryState.CONFIRMED_HTTP,
        EntryState.CONFIRMED_BROADCAST,
        EntryState.FAILED,
    },
    EntryState.CONFIRMED_HTTP: {EntryState.CONFIRMED_BROADCAST, EntryState.SETTLED},
    EntryState.CONFIRMED_BROADCAST: {EntryState.SETTLED},
    EntryState.SETTLED: {EntryState.PENDING},
    EntryState.FAILED: {EntryState.SETTLED},
}


def validate_entry_transition(from_state: EntryState, to_state: EntryState) -> bool:
    """
    Validate if a state transition is allowed.

    Args:
        from_state: Current state
        to_state: Proposed new state

    Returns:
        True if transition is valid, False otherwise.
    """
    return to_state in ENTRY_STATE_TRANSITIONS.get(from_state, set())


# How far along the signal chain a state is; FAILED ranks with PENDING
_SIGNAL_RANK: dict[EntryState, int] = {
    EntryState.FAILED: 0,
    EntryState.PENDING: 0,
    EntryState.SUBMITTED: 1,
    EntryState.CONFIRMED_HTTP: 2,
    EntryState.CONFIRMED_BROADCAST: 3,
    EntryState.SETTLED: 4,
}


def gate_reached(state: EntryState, gate: EntryState) -> bool:
    """True when ``state`` is at or past ``gate`` on the signal chain."""
    return _SIGNAL_RANK[state] >= _SIGNAL_RANK[gate]


class VisibilityPolicy(BaseModel, frozen=True):
    """When a mode lets a create appear and a delete disappear."""

    mode: ConsistencyMode
    create_gate: EntryState
    delete_gate: EntryState
    rollback_on_failure: bool


VISIBILITY_POLICY: dict[ConsistencyMode, VisibilityPolicy] = {
    ConsistencyMode.SAFE: VisibilityPolicy(
        mode=ConsistencyMode.SAFE,
        create_gate=EntryState.CONFIRMED_BROADCAST,
        delete_gate=EntryState.CONFIRMED_BROADCAST,
        rollback_on_failure=True,
    ),
    ConsistencyMode.OPTIMISTIC: VisibilityPolicy(
        mode=ConsistencyMode.OPTIMISTIC,
        create_gate=EntryState.CONFIRMED_HTTP,
        delete_gate=EntryState.CONFIRMED_HTTP,
        rollback_on_failure=True,
    ),
    ConsistencyMode.BRAVE: VisibilityPolicy(
        mode=ConsistencyMode.BRAVE,
        create_gate=EntryState.PENDING,
        delete_gate=EntryState.PENDING,
        rollback_on_failure=False,
    ),
}

MODE_EXPLANATIONS: dict[ConsistencyMode, str] = {
    ConsistencyMode.SAFE: (
        "Safe mode waits for websocket confirmation before updating the view. "
        "It is the slowest but most reliable mode."
    ),
    ConsistencyMode.OPTIMISTIC: (
        "Optimistic mode waits for HTTP confirmation before updating the view and "
        "ignores websocket confirmation. This is how most web apps work."
    ),
    ConsistencyMode.BRAVE: (
        "Brave mode waits for neither websocket nor HTTP confirmation before updating "
        "the view. This is the most performant and dangerous mode."
    ),
}


class LocalTodo(BaseModel):
    """
    One record of the local todo view.

    ``id`` is a temporary string until the server assigns an integer id.
    ``op`` names the local mutation still in progress, if any.
    """

    id: int | str
    text: str
    completed: bool = False
    state: EntryState = EntryState.SETTLED
    op: Verb | None = None
    error: str | None = None

    @property
    def is_temporary(self) -> bool:
        return isinstance(self.id, str)
