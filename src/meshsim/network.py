"""
Network graph simulation.

Builds a fixed population of typed nodes with random adjacency and answers
reachability questions against the in-memory snapshot:

    1 assistant node      llm-main
    5 content-store nodes ipfs-0 .. ipfs-4
    15 standard nodes     node-0 .. node-14  (each inactive with p=0.1)

Every node draws k in [2, 4] random neighbors, with replacement, skipping
draws that are already neighbors, so a node can end up with fewer than k.
The assistant is then wired both ways to every content-store node.

Reachability is one hop deep: direct adjacency, or a single active
intermediate whose own neighbor list contains the target.
"""

import logging
import random
from typing import Dict, List, Optional

from .errors import BackendUnavailable
from .models import Node, Message, now_ms
from .persistence import Persistence

logger = logging.getLogger(__name__)

ASSISTANT_NODE_ID = "llm-main"
CONTENT_STORE_NODE_COUNT = 5
STANDARD_NODE_COUNT = 15
INACTIVE_PROBABILITY = 0.1
MIN_CONNECTIONS = 2
MAX_CONNECTIONS = 4

INITIALIZED_FLAG = "networkInitialized"


class NetworkGraph:
    """
    Owner of the authoritative in-memory node list and message log.

    Persistence holds a durable mirror: nodes are written on initialization
    and on status changes, and load_or_initialize() hydrates from it.
    """

    def __init__(self, persistence: Persistence, rng: Optional[random.Random] = None):
        self.persistence = persistence
        self.rng = rng or random.Random()
        self._nodes: Dict[str, Node] = {}
        self._messages: List[Message] = []

    @property
    def nodes(self) -> List[Node]:
        return list(self._nodes.values())

    @property
    def messages(self) -> List[Message]:
        return list(self._messages)

    def get_node(self, node_id: str) -> Optional[Node]:
        return self._nodes.get(node_id)

    def nodes_of_type(self, node_type: str, active_only: bool = False) -> List[Node]:
        return [n for n in self._nodes.values()
                if n.type == node_type and (n.is_active or not active_only)]

    def load_nodes(self, nodes: List[Node]) -> None:
        """Replace the in-memory snapshot with explicit nodes."""
        self._nodes = {node.id: node for node in nodes}

    def record_message(self, message: Message) -> None:
        self._messages.append(message)

    def reset(self) -> None:
        """Drop the in-memory snapshot. Persistence is untouched."""
        self._nodes = {}
        self._messages = []

    def _build_nodes(self) -> List[Node]:
        created = now_ms()
        nodes = [Node(id=ASSISTANT_NODE_ID, type="assistant", is_active=True,
                      created_at=created, last_seen=created)]
        for i in range(CONTENT_STORE_NODE_COUNT):
            nodes.append(Node(id=f"ipfs-{i}", type="content-store", is_active=True,
                              created_at=created, last_seen=created))
        for i in range(STANDARD_NODE_COUNT):
            nodes.append(Node(id=f"node-{i}", type="standard",
                              is_active=self.rng.random() >= INACTIVE_PROBABILITY,
                              created_at=created, last_seen=created))
        return nodes

    def _wire(self, nodes: List[Node]) -> None:
        for node in nodes:
            others = [n for n in nodes if n.id != node.id]
            connections = self.rng.randint(MIN_CONNECTIONS, MAX_CONNECTIONS)
            for _ in range(connections):
                # Repeated draws are skipped, not redrawn
                node.connect(self.rng.choice(others).id)

        assistant = next(n for n in nodes if n.id == ASSISTANT_NODE_ID)
        for store in (n for n in nodes if n.type == "content-store"):
            assistant.connect(store.id)
            store.connect(assistant.id)

    async def initialize(self) -> List[Node]:
        """
        Build and persist a fresh network, replacing the in-memory snapshot.

        Returns:
            The new nodes

        Raises:
            BackendUnavailable: If a node write fails after retries
        """
        nodes = self._build_nodes()
        self._wire(nodes)
        self.load_nodes(nodes)

        for node in nodes:
            await self.persistence.upsert("nodes", node.to_dict())
        await self.persistence.set_metadata(INITIALIZED_FLAG, True)

        logger.info(f"Network initialized with nodes: {len(nodes)}")
        return nodes

    async def load_or_initialize(self) -> List[Node]:
        """
        Hydrate nodes and messages from persistence.

        Initializes a new network when no initialization flag (or no node)
        is stored, or when loading fails.
        """
        try:
            node_records = await self.persistence.fetch_all("nodes")
            message_records = await self.persistence.fetch_all("messages")
            initialized = await self.persistence.get_metadata(INITIALIZED_FLAG)

            if not initialized or not node_records:
                return await self.initialize()

            self.load_nodes([Node.from_dict(r) for r in node_records])
            self._messages = sorted(
                (Message.from_dict(r) for r in message_records),
                key=lambda m: m.timestamp,
            )
            logger.info(f"Loaded network from storage: {len(self._nodes)} nodes, "
                        f"{len(self._messages)} messages")
            return self.nodes
        except (BackendUnavailable, KeyError, TypeError, ValueError) as e:
            logger.error(f"Error loading network state, reinitializing: {e}")
            return await self.initialize()

    def get_active_nodes(self) -> List[Node]:
        """Active nodes in the last loaded or initialized snapshot."""
        return [n for n in self._nodes.values() if n.is_active]

    def route(self, from_id: str, to_id: str) -> Optional[List[str]]:
        """
        A direct or one-hop route between two nodes.

        Returns:
            [from_id, to_id], [from_id, via, to_id], or None if unreachable
        """
        source = self._nodes.get(from_id)
        if source is None:
            return None
        if to_id in source.connected_nodes:
            return [from_id, to_id]
        for intermediate_id in source.connected_nodes:
            intermediate = self._nodes.get(intermediate_id)
            if intermediate and intermediate.is_active and to_id in intermediate.connected_nodes:
                return [from_id, intermediate_id, to_id]
        return None

    def can_reach(self, from_id: str, to_id: str) -> bool:
        return self.route(from_id, to_id) is not None

    async def get_node_details(self, node_id: str) -> Optional[Node]:
        """Persisted copy of a node, or None."""
        data = await self.persistence.fetch("nodes", node_id)
        return Node.from_dict(data) if data else None

    async def update_node_status(self, node_id: str, is_active: bool) -> Optional[Node]:
        """
        Set a node's active flag and last-seen time, persist it, and refresh
        the in-memory mirror.

        Returns:
            The updated node, or None if it does not exist in persistence
        """
        node = await self.get_node_details(node_id)
        if node is None:
            return None

        node.is_active = is_active
        node.touch()
        await self.persistence.upsert("nodes", node.to_dict())

        if node_id in self._nodes:
            self._nodes[node_id] = node
        logger.debug(f"Node {node_id} is now {'active' if is_active else 'inactive'}")
        return node


__all__ = [
    "NetworkGraph",
    "ASSISTANT_NODE_ID",
    "CONTENT_STORE_NODE_COUNT",
    "STANDARD_NODE_COUNT",
    "INITIALIZED_FLAG",
]
