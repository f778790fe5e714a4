"""
Tests for the confirmation broadcast channel.
"""

import asyncio

import pytest
from starlette.websockets import WebSocketState

from resilient_todo.server.broadcast import BroadcastChannel
from resilient_todo.server.models import Item, Verb
from tests.fakes import FakeSubscriber, StalledSubscriber


class TestSubscriptions:
    """Registry behaviour."""

    def test_subscribe_once(self) -> None:
        channel = BroadcastChannel()
        subscriber = FakeSubscriber()
        channel.subscribe(subscriber)
        channel.subscribe(subscriber)
        assert channel.subscriber_count == 1

    def test_unsubscribe_unknown_is_noop(self) -> None:
        channel = BroadcastChannel()
        channel.unsubscribe(FakeSubscriber())
        assert channel.subscriber_count == 0


class TestPublish:
    """Fan-out, pruning and ordering."""

    @pytest.mark.asyncio
    async def test_fan_out_to_all(self) -> None:
        channel = BroadcastChannel()
        subscribers = [FakeSubscriber() for _ in range(3)]
        for subscriber in subscribers:
            channel.subscribe(subscriber)

        delivered = await channel.publish(Verb.CREATE, Item(id=1, text="milk"))

        assert delivered == 3
        for subscriber in subscribers:
            assert subscriber.messages == [
                {"verb": "create", "payload": {"id": 1, "text": "milk", "completed": False}}
            ]

    @pytest.mark.asyncio
    async def test_delete_payload_is_bare_id(self) -> None:
        channel = BroadcastChannel()
        subscriber = FakeSubscriber()
        channel.subscribe(subscriber)

        await channel.publish(Verb.DELETE, 42)

        assert subscriber.messages == [{"verb": "delete", "payload": 42}]

    @pytest.mark.asyncio
    async def test_no_subscribers(self) -> None:
        channel = BroadcastChannel()
        assert await channel.publish(Verb.DELETE, 1) == 0
        assert channel.get_stats()["published"] == 1

    @pytest.mark.asyncio
    async def test_closed_subscriber_pruned(self) -> None:
        channel = BroadcastChannel()
        live = FakeSubscriber()
        closed = FakeSubscriber()
        closed.client_state = WebSocketState.DISCONNECTED  # type: ignore[attr-defined]
        channel.subscribe(live)
        channel.subscribe(closed)

        delivered = await channel.publish(Verb.DELETE, 5)

        assert delivered == 1
        assert closed.messages == []
        assert channel.subscriber_count == 1
        assert channel.get_stats()["pruned"] == 1

    @pytest.mark.asyncio
    async def test_failed_send_pruned(self) -> None:
        channel = BroadcastChannel()
        live = FakeSubscriber()
        broken = FakeSubscriber(fail_on_send=True)
        channel.subscribe(broken)
        channel.subscribe(live)

        delivered = await channel.publish(Verb.DELETE, 5)

        assert delivered == 1
        assert live.messages == [{"verb": "delete", "payload": 5}]
        assert channel.subscriber_count == 1

    @pytest.mark.asyncio
    async def test_stalled_subscriber_pruned(self) -> None:
        channel = BroadcastChannel(send_timeout_s=0.05)
        stalled = StalledSubscriber()
        live = FakeSubscriber()
        channel.subscribe(stalled)
        channel.subscribe(live)

        delivered = await asyncio.wait_for(channel.publish(Verb.DELETE, 9), 2.0)

        assert delivered == 1
        assert live.messages == [{"verb": "delete", "payload": 9}]
        assert stalled.messages == []
        assert channel.subscriber_count == 1
        assert channel.get_stats()["pruned"] == 1

    @pytest.mark.asyncio
    async def test_publish_order_preserved(self) -> None:
        channel = BroadcastChannel()
        subscriber = FakeSubscriber()
        channel.subscribe(subscriber)

        await asyncio.gather(*(channel.publish(Verb.DELETE, i) for i in range(10)))

        assert [m["payload"] for m in subscriber.messages] == list(range(10))
