"""
Todo API routes.

Every route sits behind the fault injector. Mutations are accepted into the
command queue and committed asynchronously; confirmations go out over the
stream, not in these responses.
"""

from fastapi import APIRouter, Depends, HTTPException, Request

from resilient_todo.config import Settings, get_settings, get_settings_dep
from resilient_todo.logging import get_logger
from resilient_todo.runtime.event_bus import get_event_bus
from resilient_todo.server.broadcast import BroadcastChannel
from resilient_todo.server.faults import FaultInjector, FaultPolicy, UniformDelay
from resilient_todo.server.models import (
    AcceptedResponse,
    CreateCommand,
    CreateTodoRequest,
    DeleteCommand,
    Item,
    UpdateCommand,
    UpdateTodoRequest,
)
from resilient_todo.server.queue import CommandQueue

logger = get_logger(__name__)

# Lazy-initialized singletons
_broadcast_channel: BroadcastChannel | None = None
_command_queue: CommandQueue | None = None
_fault_injector: FaultInjector | None = None


def get_broadcast_channel() -> BroadcastChannel:
    """Get or create the broadcast channel singleton."""
    global _broadcast_channel
    if _broadcast_channel is None:
        _broadcast_channel = BroadcastChannel(
            send_timeout_s=get_settings().broadcast_send_timeout_s
        )
    return _broadcast_channel


def get_command_queue(settings: Settings = Depends(get_settings_dep)) -> CommandQueue:
    """Get or create the command queue singleton."""
    global _command_queue
    if _command_queue is None:
        _command_queue = CommandQueue(
            broadcast=get_broadcast_channel(),
            apply_delay=UniformDelay(settings.apply_delay_min_s, settings.apply_delay_max_s),
            tick_s=settings.queue_tick_s,
            event_bus=get_event_bus(),
        )
    return _command_queue


def get_fault_injector(settings: Settings = Depends(get_settings_dep)) -> FaultInjector:
    """Get or create the fault injector singleton."""
    global _fault_injector
    if _fault_injector is None:
        _fault_injector = FaultInjector(
            delay=UniformDelay(settings.ingress_delay_min_s, settings.ingress_delay_max_s),
            policy=FaultPolicy(settings.failure_rate),
            event_bus=get_event_bus(),
        )
    return _fault_injector


def reset_server_singletons() -> None:
    """Drop singletons so the next request rebuilds them (for testing)."""
    global _broadcast_channel, _command_queue, _fault_injector
    _broadcast_channel = None
    _command_queue = None
    _fault_injector = None


async def inject_faults(
    request: Request,
    injector: FaultInjector = Depends(get_fault_injector),
) -> None:
    """Router-wide dependency: latency plus random simulated 500s."""
    await injector(request)


router = APIRouter(prefix="/todos", tags=["Todos"], dependencies=[Depends(inject_faults)])


# =============================================================================
# Routes
# =============================================================================


@router.get("", response_model=list[Item])
async def list_todos(queue: CommandQueue = Depends(get_command_queue)) -> list[Item]:
    """Return the current authoritative snapshot."""
    logger.info("Fetching all todos")
    return queue.snapshot()


@router.post("", status_code=201, response_model=Item)
async def create_todo(
    body: CreateTodoRequest,
    queue: CommandQueue = Depends(get_command_queue),
) -> Item:
    """
    Accept a create.

    The response echoes the provisional item with its server-assigned id;
    the item appears in GET /todos only once the command is applied.
    """
    item = Item(id=queue.allocate_id(), text=body.text, completed=False)
    logger.info("Adding new todo: %s", item.model_dump_json())
    await queue.submit(CreateCommand(item=item))
    return item


@router.put("/{todo_id}", status_code=202, response_model=AcceptedResponse)
async def update_todo(
    todo_id: int,
    body: UpdateTodoRequest,
    queue: CommandQueue = Depends(get_command_queue),
) -> AcceptedResponse:
    """
    Accept an update of text and/or completed.

    Only committed items can be updated; an update racing ahead of its
    create would be skipped at apply time after the client was told 202.
    """
    if not queue.is_committed(todo_id):
        logger.info("Todo with ID %d not found for update", todo_id)
        raise HTTPException(status_code=404, detail="Todo not found")

    logger.info("Updating todo with ID %d: %s", todo_id, body.model_dump_json(exclude_none=True))
    await queue.submit(UpdateCommand(id=todo_id, patch=body.to_patch()))
    return AcceptedResponse(id=todo_id)


@router.delete("/{todo_id}", status_code=202, response_model=AcceptedResponse)
async def delete_todo(
    todo_id: int,
    queue: CommandQueue = Depends(get_command_queue),
) -> AcceptedResponse:
    """Accept a delete."""
    if not queue.is_known(todo_id):
        logger.info("Todo with ID %d not found for deletion", todo_id)
        raise HTTPException(status_code=404, detail="Todo not found")

    logger.info("Request to delete todo with ID %d received", todo_id)
    await queue.submit(DeleteCommand(id=todo_id))
    return AcceptedResponse(id=todo_id)
