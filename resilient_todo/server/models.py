"""
Server-side domain models.

Commands are a tagged variant keyed on ``verb``; each carries a typed payload
and is applied through ``apply_command`` in the queue module.
"""

from enum import Enum
from typing import Annotated, Literal
from uuid import uuid4

from pydantic import BaseModel, Field


class Verb(str, Enum):
    """Mutation kind."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class Item(BaseModel):
    """Authoritative todo record."""

    id: int
    text: str
    completed: bool = False


class ItemPatch(BaseModel):
    """Fields an update may change; None means leave untouched."""

    text: str | None = None
    completed: bool | None = None

    def merge_into(self, item: Item) -> Item:
        """Return a copy of ``item`` with the set fields replaced."""
        changes = self.model_dump(exclude_none=True)
        return item.model_copy(update=changes)


def _command_id() -> str:
    return f"cmd-{uuid4().hex[:8]}"


class CreateCommand(BaseModel):
    """Insert a new item."""

    verb: Literal[Verb.CREATE] = Verb.CREATE
    command_id: str = Field(default_factory=_command_id)
    item: Item

    @property
    def target_id(self) -> int:
        return self.item.id


class UpdateCommand(BaseModel):
    """Field-merge a patch into an existing item."""

    verb: Literal[Verb.UPDATE] = Verb.UPDATE
    command_id: str = Field(default_factory=_command_id)
    id: int
    patch: ItemPatch

    @property
    def target_id(self) -> int:
        return self.id


class DeleteCommand(BaseModel):
    """Remove an item."""

    verb: Literal[Verb.DELETE] = Verb.DELETE
    command_id: str = Field(default_factory=_command_id)
    id: int

    @property
    def target_id(self) -> int:
        return self.id


Command = Annotated[
    CreateCommand | UpdateCommand | DeleteCommand,
    Field(discriminator="verb"),
]


class Confirmation(BaseModel):
    """
    Notification that a command was applied to authoritative state.

    Payload is the full item for create/update and the bare id for delete.
    """

    verb: Verb
    payload: Item | int

    @property
    def item_id(self) -> int:
        if isinstance(self.payload, Item):
            return self.payload.id
        return self.payload

    def to_message(self) -> dict:
        """Wire shape sent to stream subscribers."""
        return self.model_dump(mode="json")


# =============================================================================
# HTTP request/response bodies
# =============================================================================


class CreateTodoRequest(BaseModel):
    """Body of POST /todos."""

    text: str = Field(min_length=1)


class UpdateTodoRequest(BaseModel):
    """Body of PUT /todos/{id}."""

    text: str | None = None
    completed: bool | None = None

    def to_patch(self) -> ItemPatch:
        return ItemPatch(text=self.text, completed=self.completed)


class AcceptedResponse(BaseModel):
    """Body returned with 202 for update/delete."""

    id: int
    status: str = "accepted"
