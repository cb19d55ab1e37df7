"""
EventBus for in-process pub/sub between simulation components.

The message bus publishes 'message.sent' and 'message.delivered', the backend
services simulation publishes 'service.updated'. Each bus is owned by a
SimulationContext; there is no module-level instance.

Usage:
    bus = EventBus()

    # Subscribe to a specific event type, keep the handle to unsubscribe
    unsubscribe = bus.subscribe('message.sent', lambda event: print(event.message.id))

    # Subscribe to all events
    bus.subscribe('*', lambda event: log_event(event))

    bus.publish(MessageSentEvent(message=message))
    unsubscribe()
"""

from typing import Callable, Dict, List, Any, Optional
from threading import Lock
import logging

logger = logging.getLogger(__name__)


class EventBus:
    """
    Thread-safe in-process event bus for pub/sub.

    Supports:
    - subscribe(event_type, callback): Register a callback, returns an unsubscribe handle
    - publish(event): Emit events to all matching subscribers
    - Wildcard subscription: subscribe('*', callback) receives all events
    """

    def __init__(self):
        # event_type -> list of callbacks
        self._subscribers: Dict[str, List[Callable[[Any], None]]] = {}
        self._lock = Lock()

    def subscribe(self, event_type: str, callback: Callable[[Any], None]) -> Callable[[], bool]:
        """
        Subscribe to events of a specific type.

        Args:
            event_type: Event type to listen for (e.g., 'message.sent')
                       Use '*' to subscribe to all event types
            callback: Function called with event object when event occurs

        Returns:
            A function that removes exactly this subscription. Calling it
            again, or from inside a callback, is safe.
        """
        with self._lock:
            self._subscribers.setdefault(event_type, []).append(callback)
        logger.debug(f"Subscribed to {event_type}: {getattr(callback, '__name__', 'lambda')}")

        removed = False

        def unsubscribe() -> bool:
            nonlocal removed
            if removed:
                return False
            removed = self.unsubscribe(event_type, callback)
            return removed

        return unsubscribe

    def unsubscribe(self, event_type: str, callback: Callable[[Any], None]) -> bool:
        """
        Unsubscribe a callback from an event type.

        Returns:
            True if callback was found and removed, False otherwise
        """
        with self._lock:
            if event_type in self._subscribers:
                try:
                    self._subscribers[event_type].remove(callback)
                    if not self._subscribers[event_type]:
                        del self._subscribers[event_type]
                    logger.debug(f"Unsubscribed from {event_type}")
                    return True
                except ValueError:
                    pass
        return False

    def publish(self, event: Any) -> None:
        """
        Publish an event to all matching subscribers.

        Notifies specific subscribers first, then wildcard subscribers.
        Subscribers registered or removed during publishing take effect
        from the next publish.

        Args:
            event: Event object (must have 'event_type' attribute)
        """
        if not hasattr(event, 'event_type'):
            logger.warning(f"Event missing 'event_type' attribute: {type(event).__name__}")
            return

        event_type = event.event_type

        # Copy so callbacks can unsubscribe without holding the lock
        with self._lock:
            specific_subscribers = self._subscribers.get(event_type, []).copy()
            wildcard_subscribers = self._subscribers.get('*', []).copy()

        for callback in specific_subscribers:
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Error in subscriber callback for {event_type}: {e}", exc_info=True)

        for callback in wildcard_subscribers:
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Error in wildcard subscriber callback for {event_type}: {e}", exc_info=True)

        logger.debug(f"Published {event_type} to {len(specific_subscribers) + len(wildcard_subscribers)} subscribers")

    def clear(self) -> None:
        """Clear all subscriptions."""
        with self._lock:
            self._subscribers.clear()

    def subscriber_count(self, event_type: Optional[str] = None) -> int:
        """
        Get count of subscribers.

        Args:
            event_type: Optional event type to count. If None, returns total.
        """
        with self._lock:
            if event_type:
                return len(self._subscribers.get(event_type, []))
            return sum(len(subs) for subs in self._subscribers.values())


__all__ = ['EventBus']
