"""
Simulated unreliable todo server.

Provides:
- FaultInjector: ingress latency and random simulated 500s
- CommandQueue: FIFO intake with delayed, out-of-order apply
- BroadcastChannel: fan-out of confirmations to stream subscribers
"""

from resilient_todo.server.broadcast import BroadcastChannel
from resilient_todo.server.faults import (
    FaultInjector,
    FaultPolicy,
    FixedDelay,
    ScriptedDelay,
    UniformDelay,
)
from resilient_todo.server.models import (
    Command,
    Confirmation,
    CreateCommand,
    DeleteCommand,
    Item,
    ItemPatch,
    UpdateCommand,
    Verb,
)
from resilient_todo.server.queue import CommandQueue, apply_command

__all__ = [
    "BroadcastChannel",
    "Command",
    "CommandQueue",
    "Confirmation",
    "CreateCommand",
    "DeleteCommand",
    "FaultInjector",
    "FaultPolicy",
    "FixedDelay",
    "Item",
    "ItemPatch",
    "ScriptedDelay",
    "UniformDelay",
    "UpdateCommand",
    "Verb",
    "apply_command",
]
