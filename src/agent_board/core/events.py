"""In-process publish/subscribe for board change notifications.

Delivery is synchronous and best-effort: each handler subscribed at the
moment of ``emit`` is called once, and a failing handler is logged without
affecting the others or the emitter. The bus itself keeps nothing; events
from other processes arrive through ``agent_board.core.relay``.
"""

import logging
from collections.abc import Callable
from typing import Any

from agent_board.db.models import EVENT_TYPES, BoardEvent

logger = logging.getLogger(__name__)

Handler = Callable[[BoardEvent], None]


class EventBus:
    def __init__(self):
        self._handlers: dict[int, Handler] = {}
        self._next_id = 0

    def subscribe(self, handler: Handler) -> Callable[[], None]:
        """Register a handler. Returns a function that removes it."""
        token = self._next_id
        self._next_id += 1
        self._handlers[token] = handler

        def unsubscribe():
            self._handlers.pop(token, None)

        return unsubscribe

    def emit(self, event_type: str, payload: Any = None) -> BoardEvent:
        """Stamp an event and deliver it to every current subscriber."""
        if event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown event type: {event_type}")
        event = BoardEvent(type=event_type, payload=payload)
        self.publish(event)
        return event

    def publish(self, event: BoardEvent):
        """Deliver an already stamped event, keeping its timestamp."""
        for handler in list(self._handlers.values()):
            try:
                handler(event)
            except Exception:
                logger.warning("Event handler failed for %s", event.type, exc_info=True)

    @property
    def connection_count(self) -> int:
        return len(self._handlers)

    def clear(self):
        self._handlers.clear()
