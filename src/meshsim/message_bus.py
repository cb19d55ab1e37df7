"""
Message bus over the simulated network.

send() validates the endpoints, records the message, notifies subscribers
with the undelivered message, waits a random delivery delay, marks it
delivered and resolves with the message id.

Subscribers see each message once, at creation. Delivery is observed by
awaiting send(); the 'message.delivered' event on the shared EventBus is a
diagnostic stream and does not call subscribe() listeners again.

Bookkeeping writes (message persistence, endpoint last-seen updates) run in
the background and are best effort: failures are logged, never fail the send
and never extend its delay. wait_idle() awaits them.
"""

import asyncio
import logging
import random
import string
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set

from .errors import BackendUnavailable, NodeNotFoundError, NodeInactiveError, NoPathError
from .event_bus import EventBus
from .events import MessageSentEvent, MessageDeliveredEvent
from .models import Message, Node, MESSAGE_TYPES, now_ms
from .network import NetworkGraph
from .persistence import Persistence

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.digits + string.ascii_lowercase


@dataclass
class DeliveryPolicy:
    """
    Uniform random delivery delay in [min_delay, max_delay) seconds.

    Defaults give 300-1000 ms of simulated latency.
    """
    min_delay: float = 0.3
    max_delay: float = 1.0
    rng: random.Random = field(default_factory=random.Random, repr=False)

    def __post_init__(self):
        if self.min_delay < 0 or self.max_delay < self.min_delay:
            raise ValueError("Require 0 <= min_delay <= max_delay")

    def sample(self) -> float:
        return self.min_delay + self.rng.random() * (self.max_delay - self.min_delay)


class MessageBus:
    """
    Sends messages between reachable, active nodes and fans them out to
    subscribers.

    Usage:
        bus = MessageBus(network, persistence)
        unsubscribe = bus.subscribe(lambda message: print(message.id))
        message_id = await bus.send("node-1", "llm-main", "query", cid)
    """

    def __init__(self,
                 network: NetworkGraph,
                 persistence: Persistence,
                 event_bus: Optional[EventBus] = None,
                 delivery_policy: Optional[DeliveryPolicy] = None):
        self.network = network
        self.persistence = persistence
        self.event_bus = event_bus or EventBus()
        self.delivery_policy = delivery_policy or DeliveryPolicy()
        self._background: Set[asyncio.Task] = set()
        self._in_flight: Set[asyncio.Future] = set()

    @property
    def pending_deliveries(self) -> int:
        return len(self._in_flight)

    def _new_message_id(self) -> str:
        suffix = "".join(self.delivery_policy.rng.choice(_ID_ALPHABET) for _ in range(7))
        return f"msg-{now_ms()}-{suffix}"

    def _resolve(self, node_id: str) -> Node:
        node = self.network.get_node(node_id)
        if node is None:
            raise NodeNotFoundError(node_id)
        return node

    def _validate(self, from_id: str, to_id: str) -> None:
        from_node = self._resolve(from_id)
        to_node = self._resolve(to_id)
        for node in (from_node, to_node):
            if not node.is_active:
                raise NodeInactiveError(node.id)
        if not self.network.can_reach(from_id, to_id):
            raise NoPathError(from_id, to_id)

    async def _persist_message(self, record: Dict[str, Any], action: str,
                               after: Optional[asyncio.Task] = None) -> None:
        if after is not None:
            await asyncio.gather(after, return_exceptions=True)
        try:
            await self.persistence.upsert("messages", record)
        except BackendUnavailable as e:
            logger.error(f"Failed to {action} message {record['id']}: {e}")

    async def _persist_node(self, node: Node) -> None:
        try:
            await self.persistence.upsert("nodes", node.to_dict())
        except BackendUnavailable as e:
            logger.error(f"Failed to update node {node.id}: {e}")

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def send(self, from_id: str, to_id: str, message_type: str, content: str) -> str:
        """
        Send a message and wait for its simulated delivery.

        The sampled delivery delay is the only wait. Persistence of the
        message and its endpoints runs in the background; the delivered
        write for a message always follows its creation write.

        Args:
            from_id: Sender node id
            to_id: Receiver node id
            message_type: One of (query, response, storage, retrieval)
            content: Payload, often a content identifier

        Returns:
            message_id once the message is marked delivered

        Raises:
            NodeNotFoundError: If either node does not exist
            NodeInactiveError: If either node is inactive
            NoPathError: If there is no direct or one-hop route
            ValueError: If message_type is unknown
        """
        if message_type not in MESSAGE_TYPES:
            raise ValueError(f"Invalid message type: {message_type}. Must be one of: {MESSAGE_TYPES}")
        self._validate(from_id, to_id)

        message = Message(
            id=self._new_message_id(),
            from_node_id=from_id,
            to_node_id=to_id,
            type=message_type,
            content=content,
            delivered=False,
        )
        self.network.record_message(message)
        created = self._spawn(self._persist_message(message.to_dict(), "store"))

        for node_id in (from_id, to_id):
            node = self.network.get_node(node_id)
            node.touch()
            self._spawn(self._persist_node(node))

        done = asyncio.get_running_loop().create_future()
        self._in_flight.add(done)
        started = time.monotonic()
        try:
            self.event_bus.publish(MessageSentEvent(message=message))
            await asyncio.sleep(self.delivery_policy.sample())
            message.delivered = True
            self._spawn(self._persist_message(message.to_dict(), "update status of", after=created))
        finally:
            self._in_flight.discard(done)
            done.set_result(None)

        latency_ms = (time.monotonic() - started) * 1000
        self.event_bus.publish(MessageDeliveredEvent(message=message, latency_ms=latency_ms))
        logger.info(f"Message delivered: {message_type} from {from_id} to {to_id}")
        return message.id

    def subscribe(self, listener: Callable[[Message], None]) -> Callable[[], bool]:
        """
        Register a listener called once with every newly created message.

        Returns:
            A function removing exactly this listener; safe to call twice
            and from inside a notification.
        """
        def on_sent(event: MessageSentEvent) -> None:
            listener(event.message)

        on_sent.__name__ = getattr(listener, "__name__", "listener")
        return self.event_bus.subscribe("message.sent", on_sent)

    async def get_message_history(self, limit: int = 100) -> List[Message]:
        """Persisted messages, newest first, truncated to limit."""
        records = await self.persistence.fetch_all("messages")
        messages = [Message.from_dict(r) for r in records]
        messages.sort(key=lambda m: m.timestamp, reverse=True)
        return messages[:limit]

    async def wait_idle(self) -> None:
        """Wait for in-flight sends and outstanding bookkeeping writes."""
        while self._in_flight or self._background:
            await asyncio.gather(*self._in_flight, *self._background, return_exceptions=True)


__all__ = ["DeliveryPolicy", "MessageBus"]
