import logging
from datetime import datetime
from typing import Any, Callable, List, NamedTuple

__all__ = [
    "EventBus",
    "Event",
    "Subscription",
    "SIGNED_IN",
    "SIGNED_OUT",
    "TOKEN_REFRESHED",
]

logger = logging.getLogger(__name__)

SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"
TOKEN_REFRESHED = "TOKEN_REFRESHED"

Handler = Callable[[str, Any], None]


class Event(NamedTuple):
    name: str
    ts: str
    session: Any


class Subscription:
    def __init__(self, bus: "EventBus", handler: Handler):
        self._bus = bus
        self._handler = handler
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self._bus.unsubscribe(self._handler)
            self.active = False


class EventBus:
    def __init__(self):
        self._subscribers: List[Handler] = []
        self.history: List[Event] = []

    def subscribe(self, handler: Handler) -> Subscription:
        self._subscribers.append(handler)
        return Subscription(self, handler)

    def unsubscribe(self, handler: Handler) -> None:
        if handler in self._subscribers:
            self._subscribers.remove(handler)

    def publish(self, name: str, session: Any = None) -> int:
        event = Event(name=name, ts=datetime.now().isoformat(), session=session)
        self.history.append(event)
        logger.info("Auth state changed: %s", name)

        delivered = 0
        # handlers may unsubscribe while we iterate
        for handler in list(self._subscribers):
            try:
                handler(name, session)
                delivered += 1
            except Exception:
                logger.exception("Auth state handler failed for %s", name)
        return delivered
