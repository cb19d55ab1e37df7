"""
meshsim - a simulated decentralized network

Virtual nodes exchange mock messages, a toy content-addressed store keeps
strings under CID-like keys, and a mock assistant answers prompts after
routing them through the network. State is mirrored to local SQLite.
"""

__version__ = "0.1.0"
__license__ = "MIT"

from .errors import (
    MeshSimError,
    NotFoundError,
    NodeNotFoundError,
    ContentNotFoundError,
    InvalidOperationError,
    NodeInactiveError,
    NoPathError,
    BackendUnavailable,
    ExternalServiceError,
)
from .models import Node, Message, ContentRecord, MetadataEntry
from .persistence import Persistence, SQLiteBackend, InMemoryBackend, RetryPolicy
from .content_store import ContentStore, derive_cid
from .event_bus import EventBus
from .network import NetworkGraph
from .message_bus import MessageBus, DeliveryPolicy
from .assistant import Assistant, CannedAssistant, GenerativeAPIAssistant
from .orchestrator import QueryOrchestrator, QueryResult
from .backend_services import BackendSimulation
from .config import SimulationConfig
from .context import SimulationContext

__all__ = [
    "MeshSimError",
    "NotFoundError",
    "NodeNotFoundError",
    "ContentNotFoundError",
    "InvalidOperationError",
    "NodeInactiveError",
    "NoPathError",
    "BackendUnavailable",
    "ExternalServiceError",
    "Node",
    "Message",
    "ContentRecord",
    "MetadataEntry",
    "Persistence",
    "SQLiteBackend",
    "InMemoryBackend",
    "RetryPolicy",
    "ContentStore",
    "derive_cid",
    "EventBus",
    "NetworkGraph",
    "MessageBus",
    "DeliveryPolicy",
    "Assistant",
    "CannedAssistant",
    "GenerativeAPIAssistant",
    "QueryOrchestrator",
    "QueryResult",
    "BackendSimulation",
    "SimulationConfig",
    "SimulationContext",
]
