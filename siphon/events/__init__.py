"""In-process event bus used to fan out row changes."""

from siphon.events.event_bus import EventBus
from siphon.events.event_bus import EventType
from siphon.events.event_bus import event_bus

__all__ = ["EventBus", "EventType", "event_bus"]
