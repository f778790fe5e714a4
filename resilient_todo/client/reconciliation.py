"""
Reconciliation engine.

Merges three independent signals into one local todo view:
- the local optimistic mutation
- the HTTP response from the retry client
- the asynchronous stream confirmation

Merges are idempotent and keyed by id: a confirmation for a known id updates
the record in place, a create confirmation for an unknown id inserts a
settled record, and ids seen deleted are remembered so that late create
signals never resurrect them. Which signal makes a mutation visible is
decided by the active consistency mode alone.
"""

from collections.abc import Callable
from uuid import uuid4

from resilient_todo.client.api import TodoApiClient, TodoAPIError
from resilient_todo.client.models import (
    MODE_EXPLANATIONS,
    VISIBILITY_POLICY,
    EntryState,
    InvalidTransitionError,
    LocalTodo,
    PendingItemError,
    UnknownItemError,
    VisibilityPolicy,
    gate_reached,
    validate_entry_transition,
)
from resilient_todo.config import ConsistencyMode
from resilient_todo.logging import get_logger
from resilient_todo.server.models import Confirmation, Item, ItemPatch, Verb

logger = get_logger(__name__)

# (level, message) sink for user-facing notices, e.g. a toast widget
NoticeCallback = Callable[[str, str], None]

RecordKey = int | str


class ReconciliationEngine:
    """
    Sole owner of the local todo view.

    Usage:
        engine = ReconciliationEngine(client, mode=ConsistencyMode.OPTIMISTIC)
        stream = ConfirmationStream(url, engine.merge_confirmation)
        await engine.refresh()
        await engine.create("buy milk")
        engine.visible()

    The synchronous ``begin_*``/``merge_*``/``fail`` steps are what the async
    operations are built from; they can be driven directly to script any
    interleaving of signals.
    """

    def __init__(
        self,
        client: TodoApiClient | None = None,
        mode: ConsistencyMode = ConsistencyMode.SAFE,
        on_notice: NoticeCallback | None = None,
    ):
        """
        Initialize engine.

        Args:
            client: Retry client used by the async operations
            mode: Initial consistency mode
            on_notice: Receives terminal-failure notices
        """
        self._client = client
        self._mode = mode
        self._on_notice = on_notice
        self._records: dict[RecordKey, LocalTodo] = {}
        # Ids seen deleted, locally requested or confirmed
        self._tombstones: set[int] = set()

    # -------------------------------------------------------------------------
    # Mode
    # -------------------------------------------------------------------------

    @property
    def mode(self) -> ConsistencyMode:
        return self._mode

    @property
    def policy(self) -> VisibilityPolicy:
        return VISIBILITY_POLICY[self._mode]

    def set_mode(self, mode: ConsistencyMode) -> None:
        """Switch mode and re-evaluate in-flight records under it."""
        self._mode = mode
        logger.info("Mode changed to: %s. %s", mode.value, MODE_EXPLANATIONS[mode])
        for key, record in list(self._records.items()):
            if record.op == Verb.CREATE and record.state == EntryState.FAILED:
                if self.policy.rollback_on_failure:
                    del self._records[key]
                continue
            self._promote(key, record)

    # -------------------------------------------------------------------------
    # Views
    # -------------------------------------------------------------------------

    def records(self) -> list[LocalTodo]:
        """Every record, visible or not, in view order."""
        return [record.model_copy() for record in self._records.values()]

    def visible(self) -> list[LocalTodo]:
        """Records the active mode shows to the user."""
        return [r.model_copy() for r in self._records.values() if self._is_visible(r)]

    def get(self, key: RecordKey) -> LocalTodo | None:
        record = self._records.get(key)
        return record.model_copy() if record is not None else None

    def _is_visible(self, record: LocalTodo) -> bool:
        if record.op == Verb.CREATE:
            return gate_reached(record.state, self.policy.create_gate)
        if record.op == Verb.DELETE:
            return not gate_reached(record.state, self.policy.delete_gate)
        return True

    # -------------------------------------------------------------------------
    # Local mutation steps
    # -------------------------------------------------------------------------

    def begin_create(self, text: str) -> str:
        """Add a placeholder record under a temporary id."""
        temp_id = f"tmp-{uuid4().hex[:12]}"
        self._records[temp_id] = LocalTodo(
            id=temp_id,
            text=text,
            state=EntryState.PENDING,
            op=Verb.CREATE,
        )
        logger.debug("Created placeholder %s for '%s'", temp_id, text)
        return temp_id

    def begin_delete(self, item_id: RecordKey) -> None:
        """Start deleting a settled record."""
        record = self._require_settled(item_id)
        self._transition(record, EntryState.PENDING)
        record.op = Verb.DELETE
        self._tombstones.add(record.id)
        self._promote(item_id, record)

    def mark_submitted(self, key: RecordKey) -> None:
        """Record that the mutation was handed to the retry client."""
        record = self._records.get(key)
        if record is None:
            # Brave deletes drop the record before it is sent
            return
        self._transition(record, EntryState.SUBMITTED)

    def _require_settled(self, item_id: RecordKey) -> LocalTodo:
        record = self._records.get(item_id)
        if record is None:
            raise UnknownItemError(item_id)
        if record.is_temporary:
            raise PendingItemError(f"Todo {item_id} has no server id yet")
        if record.op is not None:
            raise PendingItemError(
                f"Todo {item_id} already has a {record.op.value} in progress"
            )
        return record

    # -------------------------------------------------------------------------
    # Merges
    # -------------------------------------------------------------------------

    def merge_http_create(self, temp_id: str, item: Item) -> None:
        """Fold the server-assigned id from a create response into the placeholder."""
        placeholder = self._records.get(temp_id)
        if placeholder is None:
            logger.debug("No placeholder %s for created todo %d", temp_id, item.id)
            return

        if item.id in self._tombstones:
            logger.info("Todo %d was deleted before its create returned; dropping", item.id)
            del self._records[temp_id]
            return

        existing = self._records.get(item.id)
        if existing is not None:
            # The stream confirmation beat the HTTP response
            logger.info("Todo %d already confirmed; folding placeholder %s", item.id, temp_id)
            del self._records[temp_id]
            return

        self._rekey(temp_id, item.id)
        placeholder.id = item.id
        placeholder.text = item.text
        placeholder.completed = item.completed
        self._transition(placeholder, EntryState.CONFIRMED_HTTP)
        logger.info("HTTP - Todo created: %s with id %d", item.text, item.id)
        self._promote(item.id, placeholder)

    def merge_http_update(self, item_id: int, patch: ItemPatch) -> None:
        """Apply an accepted update's fields; updates have no optimistic path."""
        record = self._records.get(item_id)
        if record is None:
            logger.debug("Update accepted for todo %d with no local record", item_id)
            return
        self._apply_fields(record, patch.text, patch.completed)

    def merge_http_delete(self, item_id: int) -> None:
        """Record the HTTP acknowledgement of a delete."""
        record = self._records.get(item_id)
        if record is None or record.op != Verb.DELETE:
            return
        self._transition(record, EntryState.CONFIRMED_HTTP)
        logger.info("HTTP - Todo deleted with id: %d", item_id)
        self._promote(item_id, record)

    def merge_confirmation(self, confirmation: Confirmation) -> None:
        """Merge one stream confirmation."""
        logger.info(
            "WebSocket - Received confirmation for '%s' for todo %d",
            confirmation.verb.value,
            confirmation.item_id,
        )
        if confirmation.verb == Verb.CREATE and isinstance(confirmation.payload, Item):
            self._merge_committed(confirmation.payload)
        elif confirmation.verb == Verb.UPDATE and isinstance(confirmation.payload, Item):
            record = self._records.get(confirmation.payload.id)
            if record is not None:
                self._apply_fields(record, confirmation.payload.text, confirmation.payload.completed)
        elif confirmation.verb == Verb.DELETE:
            self._merge_deleted(confirmation.item_id)
        else:
            logger.warning("Unhandled confirmation: %s", confirmation)

    def merge_snapshot(self, items: list[Item]) -> None:
        """
        Merge a full server snapshot.

        Inserts and updates only. Records absent from the snapshot are kept,
        since the snapshot may predate commits the view already knows about.
        """
        for item in items:
            self._merge_committed(item)

    def _merge_committed(self, item: Item) -> None:
        if item.id in self._tombstones:
            logger.debug("Ignoring create for deleted todo %d", item.id)
            return

        record = self._records.get(item.id)
        if record is None:
            self._records[item.id] = LocalTodo(
                id=item.id,
                text=item.text,
                completed=item.completed,
                state=EntryState.SETTLED,
            )
            return

        self._apply_fields(record, item.text, item.completed)
        if record.op == Verb.CREATE:
            self._transition(record, EntryState.CONFIRMED_BROADCAST)
            self._promote(item.id, record)

    def _merge_deleted(self, item_id: int) -> None:
        self._tombstones.add(item_id)
        record = self._records.get(item_id)
        if record is None:
            return
        if record.op == Verb.DELETE and record.state in (
            EntryState.SUBMITTED,
            EntryState.CONFIRMED_HTTP,
        ):
            self._transition(record, EntryState.CONFIRMED_BROADCAST)
        # Whatever was in progress locally, the server no longer has the item
        del self._records[item_id]

    # -------------------------------------------------------------------------
    # Failure
    # -------------------------------------------------------------------------

    def fail(self, key: RecordKey, error: str) -> None:
        """
        Handle a terminal failure of the record's mutation.

        Safe and Optimistic roll the local mutation back and notify; Brave
        only logs and leaves the view as it is.
        """
        record = self._records.get(key)
        if record is None:
            logger.warning("HTTP - Mutation for todo %s failed: %s", key, error)
            return

        op = record.op
        self._transition(record, EntryState.FAILED)
        record.error = error

        if not self.policy.rollback_on_failure:
            logger.warning("HTTP - Failed to %s todo %s: %s", op.value if op else "change", key, error)
            return

        if op == Verb.CREATE:
            del self._records[key]
            self._notify("error", f"Failed to create todo '{record.text}': {error}")
        elif op == Verb.DELETE:
            self._transition(record, EntryState.SETTLED)
            record.op = None
            if isinstance(record.id, int):
                self._tombstones.discard(record.id)
            self._notify("error", f"Failed to delete todo {key}: {error}")

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _transition(self, record: LocalTodo, new_state: EntryState) -> None:
        if not validate_entry_transition(record.state, new_state):
            raise InvalidTransitionError(
                f"Todo {record.id}: {record.state.value} -> {new_state.value} not allowed"
            )
        record.state = new_state

    def _promote(self, key: RecordKey, record: LocalTodo) -> None:
        """Settle a create or drop a delete once the mode's gate is reached."""
        if record.op == Verb.CREATE:
            if record.state in (EntryState.CONFIRMED_HTTP, EntryState.CONFIRMED_BROADCAST) and (
                gate_reached(record.state, self.policy.create_gate)
            ):
                self._transition(record, EntryState.SETTLED)
                record.op = None
        elif record.op == Verb.DELETE:
            if gate_reached(record.state, self.policy.delete_gate):
                del self._records[key]

    def _apply_fields(self, record: LocalTodo, text: str | None, completed: bool | None) -> None:
        if text is not None:
            record.text = text
        if completed is not None:
            record.completed = completed

    def _rekey(self, old: RecordKey, new: RecordKey) -> None:
        self._records = {(new if k == old else k): v for k, v in self._records.items()}

    def _notify(self, level: str, message: str) -> None:
        if level == "error":
            logger.error(message)
        else:
            logger.info(message)
        if self._on_notice is not None:
            self._on_notice(level, message)

    def _require_client(self) -> TodoApiClient:
        if self._client is None:
            raise RuntimeError("ReconciliationEngine has no API client")
        return self._client

    # -------------------------------------------------------------------------
    # Async operations
    # -------------------------------------------------------------------------

    async def refresh(self) -> bool:
        """Load the server snapshot. Returns False if it could not be fetched."""
        client = self._require_client()
        logger.info("HTTP - Fetching all todos via HTTP...")
        try:
            items = await client.list_todos()
        except TodoAPIError as e:
            self._notify("error", f"Failed to fetch todos, please check your network connection. ({e})")
            return False
        self.merge_snapshot(items)
        logger.info("HTTP - Todos fetched successfully via HTTP (%d)", len(items))
        return True

    async def create(self, text: str) -> LocalTodo | None:
        """
        Create a todo.

        Returns:
            The record as it stands after the HTTP outcome, or None if the
            record is gone (rolled back, folded away or deleted meanwhile)
        """
        client = self._require_client()
        temp_id = self.begin_create(text)
        self.mark_submitted(temp_id)
        logger.info("HTTP - Creating todo: %s with id: %s", text, temp_id)
        try:
            item = await client.send(Verb.CREATE, text)
        except TodoAPIError as e:
            self.fail(temp_id, str(e))
            return self.get(temp_id)
        assert item is not None
        self.merge_http_create(temp_id, item)
        return self.get(item.id)

    async def update(
        self,
        item_id: int,
        *,
        text: str | None = None,
        completed: bool | None = None,
    ) -> bool:
        """Update a todo; fields change once the server accepts. Returns success."""
        client = self._require_client()
        record = self._records.get(item_id)
        if record is None:
            raise UnknownItemError(item_id)
        if record.is_temporary:
            raise PendingItemError(f"Todo {item_id} has no server id yet")

        patch = ItemPatch(text=text, completed=completed)
        logger.info("HTTP - Updating todo with id: %d", item_id)
        try:
            await client.send(Verb.UPDATE, (item_id, patch))
        except TodoAPIError as e:
            self._notify("error", f"Failed to update todo {item_id}: {e}")
            return False
        self.merge_http_update(item_id, patch)
        return True

    async def delete(self, item_id: int) -> bool:
        """Delete a todo. Returns True if the server accepted the delete."""
        client = self._require_client()
        self.begin_delete(item_id)
        self.mark_submitted(item_id)
        logger.info("HTTP - Deleting todo with id: %d", item_id)
        try:
            await client.send(Verb.DELETE, item_id)
        except TodoAPIError as e:
            self.fail(item_id, str(e))
            return False
        self.merge_http_delete(item_id)
        return True
