"""Event bus implementation for decoupled event handling."""

import logging
from enum import Enum
from typing import Any
from typing import Callable
from typing import Dict
from typing import List

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Standardized event types for the system."""

    # A mirror row was inserted or changed by an upsert
    ROW_UPSERT = "row_upsert"

    # Service integration lifecycle
    INTEGRATION_CREATED = "integration_created"
    BACKFILL_COMPLETED = "backfill_completed"

    # Outbound webhook subscription bookkeeping
    DELIVERY_ATTEMPTED = "delivery_attempted"


Subscriber = Callable[[Dict[str, Any]], None]


class EventBus:
    """Central event bus for publishing and subscribing to events.

    Subscribers run synchronously in registration order. A failing subscriber
    is logged and skipped; it never fails the publisher, since publishing
    happens after the triggering write has already committed.
    """

    def __init__(self):
        """Initialize an empty event bus."""
        self._subscribers: Dict[EventType, List[Subscriber]] = {}

    def publish(self, event_type: EventType, data: Dict[str, Any]) -> None:
        """Publish an event to all subscribers.

        Args:
            event_type: The type of event being published
            data: Event payload data
        """
        subscribers = list(self._subscribers.get(event_type, ()))
        if not subscribers:
            logger.debug("No subscribers for %s", event_type)
            return

        logger.debug("Publishing event %s to %s subscriber(s)", event_type, len(subscribers))
        for callback in subscribers:
            try:
                callback(data)
            except Exception:  # noqa: BLE001
                logger.exception("Error in event handler %s for %s", getattr(callback, "__name__", callback), event_type)

    def subscribe(self, event_type: EventType, callback: Subscriber) -> None:
        """Subscribe to an event type.

        Args:
            event_type: The event type to subscribe to
            callback: Callback function to handle the event
        """
        callbacks = self._subscribers.setdefault(event_type, [])
        if callback not in callbacks:
            callbacks.append(callback)
        logger.debug("Added subscriber for event %s", event_type)

    def unsubscribe(self, event_type: EventType, callback: Subscriber) -> None:
        """Unsubscribe from an event type.

        Args:
            event_type: The event type to unsubscribe from
            callback: The callback function to remove
        """
        if event_type in self._subscribers:
            if callback in self._subscribers[event_type]:
                self._subscribers[event_type].remove(callback)
            logger.debug("Removed subscriber for event %s", event_type)

            # Clean up empty subscriber lists
            if not self._subscribers[event_type]:
                del self._subscribers[event_type]


# Global event bus instance
event_bus = EventBus()
