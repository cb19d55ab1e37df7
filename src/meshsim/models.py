"""
Data models for the network simulation.

Records are plain dataclasses. Timestamps are epoch milliseconds so that
persisted records sort the same way regardless of backend.
"""

import time
from dataclasses import dataclass, field
from typing import List, Optional, Dict, Any


NODE_TYPES = {"standard", "content-store", "assistant"}

# Older snapshots tagged nodes with these names
LEGACY_NODE_TYPES = {"llm": "assistant", "ipfs": "content-store"}

MESSAGE_TYPES = {"query", "response", "storage", "retrieval"}


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


@dataclass
class Node:
    """A simulated network participant."""
    id: str
    type: str = "standard"  # standard | content-store | assistant
    is_active: bool = True
    connected_nodes: List[str] = field(default_factory=list)
    created_at: Optional[int] = None
    last_seen: Optional[int] = None

    def __post_init__(self):
        self.type = LEGACY_NODE_TYPES.get(self.type, self.type)
        if self.type not in NODE_TYPES:
            raise ValueError(f"Invalid node type: {self.type}. Must be one of: {NODE_TYPES}")

    def connect(self, node_id: str) -> bool:
        """Add a neighbor unless it is already present. Returns True if added."""
        if node_id in self.connected_nodes:
            return False
        self.connected_nodes.append(node_id)
        return True

    def touch(self) -> None:
        self.last_seen = now_ms()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "type": self.type,
            "is_active": self.is_active,
            "connected_nodes": list(self.connected_nodes),
            "created_at": self.created_at,
            "last_seen": self.last_seen,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Node":
        return cls(
            id=data["id"],
            type=data.get("type", "standard"),
            is_active=bool(data.get("is_active", True)),
            connected_nodes=list(data.get("connected_nodes") or []),
            created_at=data.get("created_at"),
            last_seen=data.get("last_seen"),
        )


@dataclass
class Message:
    """A mock message exchanged between two nodes."""
    id: str
    from_node_id: str
    to_node_id: str
    type: str  # query | response | storage | retrieval
    content: str
    timestamp: int = None
    delivered: bool = False

    def __post_init__(self):
        if self.type not in MESSAGE_TYPES:
            raise ValueError(f"Invalid message type: {self.type}. Must be one of: {MESSAGE_TYPES}")
        if self.timestamp is None:
            self.timestamp = now_ms()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "from_node_id": self.from_node_id,
            "to_node_id": self.to_node_id,
            "type": self.type,
            "content": self.content,
            "timestamp": self.timestamp,
            "delivered": self.delivered,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        return cls(
            id=data["id"],
            from_node_id=data["from_node_id"],
            to_node_id=data["to_node_id"],
            type=data["type"],
            content=data.get("content", ""),
            timestamp=data.get("timestamp"),
            delivered=bool(data.get("delivered", False)),
        )


@dataclass
class ContentRecord:
    """A content-addressed record in the store."""
    cid: str
    content: str
    size: int = 0
    type: str = "text/plain"
    timestamp: int = None
    metadata: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = now_ms()

    def info(self) -> Dict[str, Any]:
        """Everything except the content body."""
        data = self.to_dict()
        del data["content"]
        return data

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "cid": self.cid,
            "content": self.content,
            "size": self.size,
            "type": self.type,
            "timestamp": self.timestamp,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ContentRecord":
        return cls(
            cid=data["cid"],
            content=data.get("content", ""),
            size=data.get("size", 0),
            type=data.get("type", "text/plain"),
            timestamp=data.get("timestamp"),
            metadata=data.get("metadata"),
        )


@dataclass
class MetadataEntry:
    """A small process-wide flag, e.g. whether the network was initialized."""
    key: str
    value: Any = None
    updated_at: int = None

    def __post_init__(self):
        if self.updated_at is None:
            self.updated_at = now_ms()

    def to_dict(self) -> Dict[str, Any]:
        return {"key": self.key, "value": self.value, "updated_at": self.updated_at}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MetadataEntry":
        return cls(key=data["key"], value=data.get("value"), updated_at=data.get("updated_at"))


__all__ = [
    "NODE_TYPES",
    "MESSAGE_TYPES",
    "now_ms",
    "Node",
    "Message",
    "ContentRecord",
    "MetadataEntry",
]
