"""Event bus carrying bridge and review state changes to the host layer."""

import time
from dataclasses import dataclass, field
from typing import Callable, Any
from enum import Enum, auto
import structlog

log = structlog.get_logger()


class EventType(Enum):
    """Types of events emitted by the bridge and the review runner."""
    PEER_CONNECTED = auto()
    PEER_DISCONNECTED = auto()
    PEER_REJECTED = auto()
    CLIENT_CONNECTED = auto()  # ide_connected notification from the CLI
    REVIEW_STATUS_CHANGED = auto()
    REVIEW_CONTENT_UPDATED = auto()


@dataclass
class Event:
    """An event with type, payload, and emission time."""
    type: EventType
    data: Any
    timestamp: float = field(default_factory=time.time)


class EventBus:
    """Synchronous pub/sub bus.

    Handlers run inline on emit; a failing handler is logged and does not
    stop delivery to the others.
    """

    def __init__(self):
        self._handlers: dict[EventType, list[Callable[[Any], None]]] = {}

    def subscribe(
        self, event_type: EventType, handler: Callable[[Any], None]
    ) -> Callable[[], None]:
        """Subscribe a handler and return a function that unsubscribes it."""
        self._handlers.setdefault(event_type, []).append(handler)
        log.debug("event_handler_subscribed", event_type=event_type.name)

        def unsubscribe() -> None:
            self.unsubscribe(event_type, handler)

        return unsubscribe

    def unsubscribe(self, event_type: EventType, handler: Callable[[Any], None]):
        """Unsubscribe a handler; unknown handlers are ignored."""
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)
            log.debug("event_handler_unsubscribed", event_type=event_type.name)

    def emit(self, event_type: EventType, data: Any = None) -> Event:
        """Deliver an event to every handler subscribed to its type."""
        event = Event(type=event_type, data=data)
        handlers = list(self._handlers.get(event_type, []))

        for handler in handlers:
            try:
                handler(event.data)
            except Exception as e:
                log.error("event_handler_failed",
                          event_type=event_type.name,
                          error=str(e))
        return event

    def clear(self):
        """Clear all handlers."""
        self._handlers.clear()
