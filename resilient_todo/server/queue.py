"""
Command queue and apply engine.

Commands are accepted into a FIFO intake and acknowledged straight away. A
dispatcher pops one command per tick and schedules its application after an
independently drawn delay. The apply delay outlasts the tick, so several
commands are in flight at once and commit in delay order rather than pop
order. Each commit mutates the authoritative item collection and is
broadcast to stream subscribers.

Applies never interleave: the mutation in ``commit`` contains no await, and
the engine runs on a single event loop.
"""

import asyncio
import time
from collections import deque
from typing import Any

from resilient_todo.logging import command_context, get_logger
from resilient_todo.runtime.event_bus import Event, EventBus, EventType
from resilient_todo.server.broadcast import BroadcastChannel
from resilient_todo.server.faults import DelayStrategy
from resilient_todo.server.models import (
    Command,
    Confirmation,
    CreateCommand,
    DeleteCommand,
    Item,
    UpdateCommand,
    Verb,
)

logger = get_logger(__name__)


def apply_command(
    command: Command,
    items: dict[int, Item],
) -> tuple[dict[int, Item], Confirmation | None]:
    """
    Apply one command to a copy of the item collection.

    Args:
        command: Command to apply
        items: Current authoritative items keyed by id (not modified)

    Returns:
        (new items, confirmation to broadcast). The confirmation is None when
        the command had nothing to act on and must not be broadcast.
    """
    new_items = dict(items)

    if isinstance(command, CreateCommand):
        # Duplicate creates carry distinct ids, so this never overwrites
        new_items[command.item.id] = command.item
        return new_items, Confirmation(verb=Verb.CREATE, payload=command.item)

    if isinstance(command, UpdateCommand):
        current = new_items.get(command.id)
        if current is None:
            return new_items, None
        updated = command.patch.merge_into(current)
        new_items[command.id] = updated
        return new_items, Confirmation(verb=Verb.UPDATE, payload=updated)

    if isinstance(command, DeleteCommand):
        new_items.pop(command.id, None)
        # Deletes are confirmed even when the id was already gone
        return new_items, Confirmation(verb=Verb.DELETE, payload=command.id)

    raise TypeError(f"Unsupported command: {command!r}")


class CommandQueue:
    """
    Owner of the authoritative item collection.

    Usage:
        queue = CommandQueue(broadcast, UniformDelay(3, 6), tick_s=0.5)
        await queue.start()
        await queue.submit(CreateCommand(item=Item(id=queue.allocate_id(), text="x")))
        ...
        await queue.stop()
    """

    def __init__(
        self,
        broadcast: BroadcastChannel,
        apply_delay: DelayStrategy,
        tick_s: float = 0.5,
        event_bus: EventBus | None = None,
    ):
        """
        Initialize command queue.

        Args:
            broadcast: Channel notified after every commit
            apply_delay: Delay between pop and apply, drawn per command
            tick_s: Dispatcher tick period
            event_bus: Optional bus for observability events
        """
        self._broadcast = broadcast
        self._apply_delay = apply_delay
        self._tick_s = tick_s
        self._event_bus = event_bus

        self._intake: deque[Command] = deque()
        self._items: dict[int, Item] = {}
        # Ids handed out by allocate_id and not yet deleted by a commit
        self._known_ids: set[int] = set()
        self._last_id = 0

        self._in_flight: set[asyncio.Task[None]] = set()
        self._dispatcher: asyncio.Task[None] | None = None
        self._running = False

        # Stats
        self._accepted = 0
        self._applied = 0
        self._skipped = 0

    # -------------------------------------------------------------------------
    # Read access
    # -------------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def pending_count(self) -> int:
        """Commands accepted but not yet popped."""
        return len(self._intake)

    @property
    def in_flight_count(self) -> int:
        """Commands popped but not yet applied."""
        return len(self._in_flight)

    @property
    def applied_count(self) -> int:
        return self._applied

    def snapshot(self) -> list[Item]:
        """Copy of the authoritative items in insertion order."""
        return [item.model_copy() for item in self._items.values()]

    def get(self, item_id: int) -> Item | None:
        item = self._items.get(item_id)
        return item.model_copy() if item is not None else None

    def is_known(self, item_id: int) -> bool:
        """
        True if the server has any record of the id.

        An id is known from allocation until a delete for it commits, and
        again whenever a create for it commits, so an item that reappears
        after a delete-before-create race can still be deleted.
        """
        return item_id in self._known_ids or item_id in self._items

    def is_committed(self, item_id: int) -> bool:
        """True if the item is present in the authoritative collection."""
        return item_id in self._items

    # -------------------------------------------------------------------------
    # Intake
    # -------------------------------------------------------------------------

    def allocate_id(self) -> int:
        """
        Allocate a server id from the wall clock in milliseconds.

        Strictly increasing, so creates within the same millisecond still
        get distinct ids.
        """
        new_id = max(int(time.time() * 1000), self._last_id + 1)
        self._last_id = new_id
        self._known_ids.add(new_id)
        return new_id

    async def submit(self, command: Command) -> None:
        """Append a command to the intake. Does not wait for it to apply."""
        self._intake.append(command)
        self._accepted += 1
        logger.info(
            "Accepted %s for todo %d (%s), queue depth %d",
            command.verb.value,
            command.target_id,
            command.command_id,
            len(self._intake),
        )
        await self._emit(
            EventType.COMMAND_ACCEPTED,
            {"command_id": command.command_id, "verb": command.verb.value, "id": command.target_id},
        )

    # -------------------------------------------------------------------------
    # Dispatch and apply
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """Start the periodic dispatcher."""
        if self._running:
            logger.warning("Command queue already running")
            return
        self._running = True
        self._dispatcher = asyncio.create_task(self._dispatch_loop())
        logger.info("Command queue started (tick: %.2fs)", self._tick_s)

    async def stop(self) -> None:
        """Stop dispatching and drop commands that have not been applied."""
        self._running = False
        if self._dispatcher:
            self._dispatcher.cancel()
            try:
                await self._dispatcher
            except asyncio.CancelledError:
                pass
            self._dispatcher = None

        dropped = len(self._in_flight)
        for task in list(self._in_flight):
            task.cancel()
        if self._in_flight:
            await asyncio.gather(*self._in_flight, return_exceptions=True)
        self._in_flight.clear()
        logger.info(
            "Command queue stopped (%d in flight dropped, %d pending left)",
            dropped,
            len(self._intake),
        )

    async def _dispatch_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self._tick_s)
            await self.tick()

    async def tick(self) -> Command | None:
        """
        Pop at most one command and schedule its application.

        Returns:
            The popped command, or None when the intake was empty
        """
        if not self._intake:
            return None

        command = self._intake.popleft()
        delay = self._apply_delay.draw()
        logger.info(
            "Processing %s for todo %d (%s), applying in %.2fs",
            command.verb.value,
            command.target_id,
            command.command_id,
            delay,
        )

        task = asyncio.create_task(self._apply_after(command, delay))
        self._in_flight.add(task)
        task.add_done_callback(self._on_apply_done)

        await self._emit(
            EventType.COMMAND_DISPATCHED,
            {"command_id": command.command_id, "verb": command.verb.value, "delay_s": delay},
        )
        return command

    def _on_apply_done(self, task: asyncio.Task[None]) -> None:
        self._in_flight.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Apply task failed: %s", task.exception())

    async def _apply_after(self, command: Command, delay: float) -> None:
        with command_context(command.command_id):
            if delay > 0:
                await asyncio.sleep(delay)
            confirmation = self.commit(command)
            if confirmation is None:
                await self._emit(
                    EventType.COMMAND_SKIPPED,
                    {"command_id": command.command_id, "verb": command.verb.value, "id": command.target_id},
                )
                return
            await self._broadcast.publish(confirmation.verb, confirmation.payload)
            await self._emit(
                EventType.COMMAND_APPLIED,
                {"command_id": command.command_id, "verb": command.verb.value, "id": command.target_id},
            )

    def commit(self, command: Command) -> Confirmation | None:
        """
        Apply a command to the authoritative collection immediately.

        Returns:
            Confirmation to broadcast, or None when the command was a no-op
        """
        self._items, confirmation = apply_command(command, self._items)

        if isinstance(command, CreateCommand):
            self._known_ids.add(command.item.id)
        elif isinstance(command, DeleteCommand):
            self._known_ids.discard(command.id)

        if confirmation is None:
            self._skipped += 1
            logger.warning(
                "Todo %d not found for %s, skipping",
                command.target_id,
                command.verb.value,
            )
            return None

        self._applied += 1
        logger.info("Processed %s for todo %d", command.verb.value, command.target_id)
        return confirmation

    async def drain(self) -> None:
        """Wait until every in-flight command has been applied."""
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    async def _emit(self, event_type: EventType, data: dict[str, Any]) -> None:
        if self._event_bus is not None:
            await self._event_bus.publish(Event(type=event_type, data=data))

    def get_stats(self) -> dict[str, int]:
        return {
            "pending": len(self._intake),
            "in_flight": len(self._in_flight),
            "accepted": self._accepted,
            "applied": self._applied,
            "skipped": self._skipped,
            "items": len(self._items),
        }
