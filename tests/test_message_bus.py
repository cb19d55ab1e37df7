"""
Tests for the message bus.

Covers:
- Endpoint validation (unknown, inactive, unreachable)
- Delivery delay bounds and delivered flag
- Subscriber notification and unsubscribe handles
- Persistence of message state and history ordering
- Background bookkeeping writes and wait_idle
"""

import asyncio
import random
import re
import time

import pytest

from meshsim.errors import (
    BackendUnavailable,
    InvalidOperationError,
    NodeInactiveError,
    NodeNotFoundError,
    NoPathError,
    NotFoundError,
)
from meshsim.message_bus import DeliveryPolicy, MessageBus
from meshsim.models import Message
from meshsim.persistence import InMemoryBackend, Persistence, RetryPolicy


class TestValidation:

    @pytest.mark.asyncio
    async def test_unknown_sender(self, message_bus):
        with pytest.raises(NodeNotFoundError) as exc_info:
            await message_bus.send("ghost", "node-a", "query", "hi")
        assert isinstance(exc_info.value, NotFoundError)
        assert exc_info.value.node_id == "ghost"

    @pytest.mark.asyncio
    async def test_unknown_receiver(self, message_bus):
        with pytest.raises(NodeNotFoundError):
            await message_bus.send("node-a", "ghost", "query", "hi")

    @pytest.mark.asyncio
    async def test_inactive_receiver(self, message_bus):
        with pytest.raises(NodeInactiveError) as exc_info:
            await message_bus.send("node-a", "node-b", "query", "hi")
        assert isinstance(exc_info.value, InvalidOperationError)
        assert exc_info.value.node_id == "node-b"

    @pytest.mark.asyncio
    async def test_inactive_sender(self, message_bus):
        with pytest.raises(NodeInactiveError):
            await message_bus.send("node-b", "node-a", "query", "hi")

    @pytest.mark.asyncio
    async def test_no_path(self, message_bus):
        with pytest.raises(NoPathError):
            await message_bus.send("node-x", "llm-main", "query", "hi")

    @pytest.mark.asyncio
    async def test_invalid_type(self, message_bus):
        with pytest.raises(ValueError):
            await message_bus.send("node-a", "node-c", "gossip", "hi")

    @pytest.mark.asyncio
    async def test_rejected_send_records_nothing(self, message_bus, network, persistence):
        with pytest.raises(NoPathError):
            await message_bus.send("node-x", "llm-main", "query", "hi")

        assert network.messages == []
        assert await persistence.fetch_all("messages") == []


class TestDelivery:

    @pytest.mark.asyncio
    async def test_resolves_with_message_id(self, message_bus, network):
        message_id = await message_bus.send("node-a", "llm-main", "query", "Qm1")

        assert re.fullmatch(r"msg-\d+-[0-9a-z]{7}", message_id)
        message = network.messages[-1]
        assert message.id == message_id
        assert message.delivered is True

    @pytest.mark.asyncio
    async def test_default_delay_bounds(self, network, persistence):
        bus = MessageBus(network, persistence, delivery_policy=DeliveryPolicy(rng=random.Random(0)))

        started = time.monotonic()
        await bus.send("node-a", "node-c", "query", "hi")
        elapsed = time.monotonic() - started

        assert 0.3 <= elapsed < 1.0

    def test_policy_sample_within_bounds(self):
        policy = DeliveryPolicy(rng=random.Random(3))
        samples = [policy.sample() for _ in range(500)]
        assert all(0.3 <= s < 1.0 for s in samples)

    def test_policy_rejects_inverted_bounds(self):
        with pytest.raises(ValueError):
            DeliveryPolicy(min_delay=1.0, max_delay=0.5)

    @pytest.mark.asyncio
    async def test_undelivered_while_in_flight(self, network, persistence):
        bus = MessageBus(network, persistence,
                         delivery_policy=DeliveryPolicy(min_delay=0.05, max_delay=0.06))
        seen = []
        bus.subscribe(lambda message: seen.append(message.delivered))

        task = asyncio.create_task(bus.send("node-a", "node-c", "query", "hi"))
        await asyncio.sleep(0.01)

        assert bus.pending_deliveries == 1
        assert seen == [False]
        stored = await persistence.fetch_all("messages")
        assert stored[0]["delivered"] is False

        await task
        await bus.wait_idle()
        assert bus.pending_deliveries == 0
        stored = await persistence.fetch_all("messages")
        assert stored[0]["delivered"] is True

    @pytest.mark.asyncio
    async def test_touches_endpoints(self, message_bus, network, persistence):
        await message_bus.send("node-a", "node-c", "query", "hi")
        await message_bus.wait_idle()

        assert network.get_node("node-a").last_seen is not None
        assert network.get_node("node-c").last_seen is not None
        stored = await persistence.fetch("nodes", "node-a")
        assert stored["last_seen"] == network.get_node("node-a").last_seen

    @pytest.mark.asyncio
    async def test_bookkeeping_failures_do_not_fail_send(self, network):
        persistence = Persistence(ReadOnlyBackend(), retry_policy=RetryPolicy(max_attempts=1, delay=0))
        bus = MessageBus(network, persistence,
                         delivery_policy=DeliveryPolicy(min_delay=0, max_delay=0.001))

        message_id = await bus.send("node-a", "node-c", "query", "hi")
        await bus.wait_idle()

        assert network.messages[-1].id == message_id
        assert network.messages[-1].delivered is True


class ReadOnlyBackend(InMemoryBackend):
    async def put(self, collection, key, record):
        raise BackendUnavailable("read-only")


class RecordingBackend(InMemoryBackend):
    """Logs message writes in order; the first one is slow."""

    def __init__(self, first_write_delay: float = 0.05):
        super().__init__()
        self.first_write_delay = first_write_delay
        self.message_writes = []

    async def put(self, collection, key, record):
        if collection == "messages":
            if not self.message_writes and self.first_write_delay:
                self.message_writes.append(None)
                await asyncio.sleep(self.first_write_delay)
                self.message_writes[0] = record["delivered"]
            else:
                self.message_writes.append(record["delivered"])
        await super().put(collection, key, record)


class TestBackgroundWrites:

    @pytest.mark.asyncio
    async def test_retrying_writes_do_not_delay_send(self, network):
        persistence = Persistence(ReadOnlyBackend())
        bus = MessageBus(network, persistence, delivery_policy=DeliveryPolicy(rng=random.Random(0)))
        notified_after = []
        started = time.monotonic()
        bus.subscribe(lambda message: notified_after.append(time.monotonic() - started))

        await bus.send("node-a", "node-c", "query", "hi")
        elapsed = time.monotonic() - started

        assert 0.3 <= elapsed < 1.0
        assert len(notified_after) == 1
        assert notified_after[0] < 0.1
        await bus.wait_idle()
        assert bus.pending_deliveries == 0

    @pytest.mark.asyncio
    async def test_delivered_write_follows_creation_write(self, network):
        backend = RecordingBackend(first_write_delay=0.05)
        persistence = Persistence(backend, retry_policy=RetryPolicy(delay=0))
        await persistence.open()
        bus = MessageBus(network, persistence,
                         delivery_policy=DeliveryPolicy(min_delay=0, max_delay=0.001))

        message_id = await bus.send("node-a", "node-c", "query", "hi")
        await bus.wait_idle()

        assert backend.message_writes == [False, True]
        assert (await persistence.fetch("messages", message_id))["delivered"] is True

    @pytest.mark.asyncio
    async def test_wait_idle_waits_for_in_flight_send(self, network, persistence):
        bus = MessageBus(network, persistence,
                         delivery_policy=DeliveryPolicy(min_delay=0.05, max_delay=0.06))

        task = asyncio.create_task(bus.send("node-a", "node-c", "query", "hi"))
        await asyncio.sleep(0.01)
        assert bus.pending_deliveries == 1

        await bus.wait_idle()

        assert task.done()
        assert bus.pending_deliveries == 0
        stored = await persistence.fetch("messages", task.result())
        assert stored["delivered"] is True

    @pytest.mark.asyncio
    async def test_wait_idle_when_nothing_pending(self, message_bus):
        await message_bus.wait_idle()
        assert message_bus.pending_deliveries == 0


class TestSubscribers:

    @pytest.mark.asyncio
    async def test_called_once_per_message(self, message_bus):
        received = []
        message_bus.subscribe(received.append)

        message_id = await message_bus.send("node-a", "llm-main", "query", "Qm1")

        assert [m.id for m in received] == [message_id]

    @pytest.mark.asyncio
    async def test_unsubscribe_is_idempotent(self, message_bus):
        received = []
        unsubscribe = message_bus.subscribe(received.append)

        assert unsubscribe() is True
        assert unsubscribe() is False
        await message_bus.send("node-a", "node-c", "query", "hi")

        assert received == []

    @pytest.mark.asyncio
    async def test_unsubscribe_inside_listener(self, message_bus):
        received = []

        def listener(message):
            received.append(message.id)
            unsubscribe()

        unsubscribe = message_bus.subscribe(listener)
        await message_bus.send("node-a", "node-c", "query", "one")
        await message_bus.send("node-a", "node-c", "query", "two")

        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_fail_send(self, message_bus):
        def broken(message):
            raise RuntimeError("listener bug")

        message_bus.subscribe(broken)
        assert await message_bus.send("node-a", "node-c", "query", "hi")

    @pytest.mark.asyncio
    async def test_delivered_event_on_event_bus(self, message_bus, event_bus):
        delivered = []
        event_bus.subscribe("message.delivered", delivered.append)

        message_id = await message_bus.send("node-a", "node-c", "query", "hi")

        assert [e.message.id for e in delivered] == [message_id]
        assert delivered[0].latency_ms >= 0


class TestHistory:

    @pytest.mark.asyncio
    async def test_newest_first_and_limited(self, message_bus, persistence):
        for i in range(3):
            await persistence.upsert("messages", Message(
                id=f"msg-{i}", from_node_id="node-a", to_node_id="node-c",
                type="query", content=str(i), timestamp=1000 + i).to_dict())

        history = await message_bus.get_message_history(limit=2)

        assert [m.id for m in history] == ["msg-2", "msg-1"]

    @pytest.mark.asyncio
    async def test_history_includes_sent_messages(self, message_bus):
        first = await message_bus.send("node-a", "node-c", "query", "one")
        second = await message_bus.send("node-c", "llm-main", "query", "two")
        await message_bus.wait_idle()

        history = await message_bus.get_message_history()
        ids = [m.id for m in history]
        assert set(ids) == {first, second}
        assert all(m.delivered for m in history)
