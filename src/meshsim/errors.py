"""
Error taxonomy for the network simulation.

NotFoundError and InvalidOperationError always reach the caller of a primary
operation. BackendUnavailable is retried on writes and suppressed on
best-effort bookkeeping. ExternalServiceError wraps assistant integration
failures with the remote error's message.
"""


class MeshSimError(Exception):
    """Base exception for all simulation errors"""
    pass


class NotFoundError(MeshSimError):
    """A node, content record or message does not exist"""
    pass


class NodeNotFoundError(NotFoundError):
    """Exception for sends or lookups that reference an unknown node"""

    def __init__(self, node_id: str):
        super().__init__(f"Node not found: {node_id}")
        self.node_id = node_id


class ContentNotFoundError(NotFoundError):
    """Exception for content lookups by an unknown CID"""

    def __init__(self, cid: str):
        super().__init__(f"Content not found: {cid}")
        self.cid = cid


class InvalidOperationError(MeshSimError):
    """The operation is not allowed in the current network state"""
    pass


class NodeInactiveError(InvalidOperationError):
    """Exception for sends where either endpoint is inactive"""

    def __init__(self, node_id: str):
        super().__init__(f"Node is inactive: {node_id}")
        self.node_id = node_id


class NoPathError(InvalidOperationError):
    """Exception for sends between nodes with no direct or one-hop route"""

    def __init__(self, from_id: str, to_id: str):
        super().__init__(f"No path between nodes: {from_id} -> {to_id}")
        self.from_id = from_id
        self.to_id = to_id


class BackendUnavailable(MeshSimError):
    """Exception for persistence open/transaction failures"""
    pass


class ExternalServiceError(MeshSimError):
    """Exception for failures in the generative assistant integration"""
    pass


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
]
