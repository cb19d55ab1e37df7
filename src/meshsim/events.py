"""
Event type definitions for simulation event streaming.

- MessageSentEvent: a message was created, before delivery
- MessageDeliveredEvent: a message's simulated delivery delay elapsed
- ServiceUpdatedEvent: a backend service recorded activity
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Dict, Any

from .models import Message


@dataclass
class MessageSentEvent:
    """Event emitted when a message is created by the message bus."""
    message: Message
    timestamp: datetime = field(default_factory=datetime.now)
    event_type: str = "message.sent"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "event_type": self.event_type,
            "message": self.message.to_dict(),
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


@dataclass
class MessageDeliveredEvent:
    """Event emitted when a message is marked delivered."""
    message: Message
    latency_ms: float
    timestamp: datetime = field(default_factory=datetime.now)
    event_type: str = "message.delivered"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "event_type": self.event_type,
            "message": self.message.to_dict(),
            "latency_ms": self.latency_ms,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


@dataclass
class ServiceUpdatedEvent:
    """Event emitted when a backend service handles a request."""
    service: Any  # BackendService
    request: Optional[Any] = None  # ServiceRequest
    timestamp: datetime = field(default_factory=datetime.now)
    event_type: str = "service.updated"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "event_type": self.event_type,
            "service": self.service.to_dict(),
            "request": self.request.to_dict() if self.request else None,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


__all__ = [
    "MessageSentEvent",
    "MessageDeliveredEvent",
    "ServiceUpdatedEvent",
]
