"""
Demo driver.

Connects to a running server, subscribes to confirmations and fires a burst
of creates followed by deletes under the chosen consistency mode, printing
the visible view each time it changes.

    resilient-todo-demo --mode Optimistic --count 6
"""

import argparse
import asyncio

from resilient_todo.client.api import TodoApiClient
from resilient_todo.client.models import EntryState, LocalTodo
from resilient_todo.client.reconciliation import ReconciliationEngine
from resilient_todo.client.stream import ConfirmationStream
from resilient_todo.config import ConsistencyMode, get_settings
from resilient_todo.logging import get_logger, setup_logging

logger = get_logger(__name__)


def _render(mode: ConsistencyMode, todos: list[LocalTodo]) -> str:
    lines = [f"--- {mode.value} view ({len(todos)}) ---"]
    for todo in todos:
        mark = "x" if todo.completed else " "
        lines.append(f"  [{mark}] {todo.id!s:<16} {todo.text:<20} <{todo.state.value}>")
    return "\n".join(lines)


async def watch(engine: ReconciliationEngine, settle_s: float, timeout_s: float) -> None:
    """Print the visible view on every change until nothing is in flight."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout_s
    last_view = None
    quiet_since = loop.time()

    while loop.time() < deadline:
        view = [(r.id, r.state, r.text, r.completed) for r in engine.records()]
        if view != last_view:
            print(_render(engine.mode, engine.visible()))
            last_view = view
            quiet_since = loop.time()
        in_flight = any(
            r.op is not None and r.state != EntryState.FAILED for r in engine.records()
        )
        if not in_flight and loop.time() - quiet_since >= settle_s:
            return
        await asyncio.sleep(0.25)

    logger.warning("View still changing after %.0fs", timeout_s)


async def run_demo(mode: ConsistencyMode, count: int, settle_s: float, timeout_s: float) -> int:
    """Run the scripted session; returns the number of visible todos at the end."""
    settings = get_settings()
    notices: list[str] = []

    async with TodoApiClient.from_settings(settings) as client:
        engine = ReconciliationEngine(
            client,
            mode=mode,
            on_notice=lambda level, message: notices.append(f"{level}: {message}"),
        )
        stream = ConfirmationStream(
            settings.ws_url,
            engine.merge_confirmation,
            reconnect_delay_s=settings.stream_reconnect_delay_s,
        )
        await stream.start()
        try:
            await engine.refresh()

            creates = [asyncio.create_task(engine.create(f"Demo todo #{i + 1}")) for i in range(count)]
            await watch(engine, settle_s, timeout_s)
            await asyncio.gather(*creates)

            settled = [r.id for r in engine.records() if r.op is None and isinstance(r.id, int)]
            deletes = [asyncio.create_task(engine.delete(item_id)) for item_id in settled[::2]]
            await watch(engine, settle_s, timeout_s)
            await asyncio.gather(*deletes)
        finally:
            await stream.stop()

    for notice in notices:
        print(notice)
    return len(engine.visible())


def main() -> None:
    """CLI entry point."""
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Drive the resilient todo server")
    parser.add_argument(
        "--mode",
        choices=[m.value for m in ConsistencyMode],
        default=settings.consistency_mode.value,
        help="Consistency mode",
    )
    parser.add_argument("--count", type=int, default=4, help="Number of todos to create")
    parser.add_argument("--settle", type=float, default=2.0, help="Quiet seconds before a phase ends")
    parser.add_argument("--timeout", type=float, default=90.0, help="Time limit per phase in seconds")
    args = parser.parse_args()

    setup_logging(level=settings.log_level)
    visible = asyncio.run(run_demo(ConsistencyMode(args.mode), args.count, args.settle, args.timeout))
    logger.info("Demo finished with %d visible todos", visible)


if __name__ == "__main__":
    main()
