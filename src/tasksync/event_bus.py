"""
In-process notifications for one SyncEngine.

Components publish typed events from tasksync.events; the CLI, the REST API
and tests subscribe by event type, or to '*' for every event.

Usage:
    bus = EventBus()
    bus.subscribe('sync.completed', lambda event: print(event.duration_ms))
    bus.subscribe('*', audit_log.append)

    bus.publish(SyncErrorEvent(error="boom", error_type="RuntimeError"))
"""

from typing import Callable, Dict, List, Any
from threading import Lock
import logging

logger = logging.getLogger(__name__)

WILDCARD = '*'

Subscriber = Callable[[Any], None]


class EventBus:
    """
    Synchronous pub/sub keyed by event_type.

    Delivery order is subscription order, type-specific subscribers before
    wildcard ones. A subscriber that raises is logged and skipped.
    """

    def __init__(self):
        self._subscribers: Dict[str, List[Subscriber]] = {}
        self._lock = Lock()

    def subscribe(self, event_type: str, callback: Subscriber) -> None:
        """Deliver events of event_type (or every event, for '*') to callback."""
        with self._lock:
            self._subscribers.setdefault(event_type, []).append(callback)

    def unsubscribe(self, event_type: str, callback: Subscriber) -> bool:
        """
        Stop delivering event_type to callback.

        Returns:
            False if callback was not subscribed to event_type
        """
        with self._lock:
            callbacks = self._subscribers.get(event_type)
            if not callbacks or callback not in callbacks:
                return False
            callbacks.remove(callback)
            if not callbacks:
                del self._subscribers[event_type]
        return True

    def publish(self, event: Any) -> None:
        """Deliver event to its type's subscribers, then to wildcard subscribers."""
        event_type = getattr(event, 'event_type', None)
        if event_type is None:
            logger.warning(f"Dropping {type(event).__name__}: no event_type")
            return

        # Snapshot, callbacks may subscribe or unsubscribe
        with self._lock:
            targets = self._subscribers.get(event_type, []) + self._subscribers.get(WILDCARD, [])

        for callback in targets:
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Subscriber failed on {event_type}: {e}", exc_info=True)


__all__ = ['EventBus']
