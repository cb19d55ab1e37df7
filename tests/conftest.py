"""Pytest fixtures for meshsim tests"""
import random
import sys
from pathlib import Path
from typing import Dict, List

import pytest

src_path = Path(__file__).resolve().parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from meshsim.assistant import CannedAssistant
from meshsim.content_store import ContentStore
from meshsim.event_bus import EventBus
from meshsim.message_bus import DeliveryPolicy, MessageBus
from meshsim.models import Node
from meshsim.network import NetworkGraph
from meshsim.orchestrator import QueryOrchestrator
from meshsim.persistence import InMemoryBackend, Persistence, RetryPolicy

# Short delays keep the suite fast; the bound test overrides them
FAST_DELIVERY = (0.001, 0.005)


def build_nodes(topology: Dict[str, tuple]) -> List[Node]:
    """
    Nodes from {id: (type, is_active, [neighbors])}.
    """
    return [
        Node(id=node_id, type=node_type, is_active=active, connected_nodes=list(neighbors))
        for node_id, (node_type, active, neighbors) in topology.items()
    ]


# A small hand-built topology:
#   node-a <-> node-b (b inactive), node-a -> node-c -> llm-main
#   llm-main <-> ipfs-0, ipfs-0 -> node-c
#   node-x is isolated
SMALL_TOPOLOGY = {
    "llm-main": ("assistant", True, ["ipfs-0", "node-c"]),
    "ipfs-0": ("content-store", True, ["llm-main", "node-c"]),
    "node-a": ("standard", True, ["node-b", "node-c"]),
    "node-b": ("standard", False, ["node-a", "llm-main"]),
    "node-c": ("standard", True, ["llm-main", "node-a"]),
    "node-x": ("standard", True, []),
}


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def persistence():
    """In-memory persistence with no retry delay."""
    return Persistence(InMemoryBackend(), retry_policy=RetryPolicy(max_attempts=3, delay=0))


@pytest.fixture
def content_store(persistence):
    return ContentStore(persistence)


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def network(persistence, rng):
    """Network loaded with SMALL_TOPOLOGY (not persisted)."""
    graph = NetworkGraph(persistence, rng=rng)
    graph.load_nodes(build_nodes(SMALL_TOPOLOGY))
    return graph


@pytest.fixture
def message_bus(network, persistence, event_bus, rng):
    low, high = FAST_DELIVERY
    return MessageBus(
        network,
        persistence,
        event_bus=event_bus,
        delivery_policy=DeliveryPolicy(min_delay=low, max_delay=high, rng=rng),
    )


@pytest.fixture
def orchestrator(network, content_store, message_bus, rng):
    return QueryOrchestrator(
        network,
        content_store,
        message_bus,
        CannedAssistant(rng=rng),
        rng=rng,
    )
