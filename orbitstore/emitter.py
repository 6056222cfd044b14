"""A small thread-safe event emitter shared by stores, replicators and pubsub."""

from __future__ import annotations

import threading
from typing import Any, Callable, List

Handler = Callable[[Any], None]


class EventEmitter:
    """Dispatches emitted events to every registered handler, in subscription order."""

    def __init__(self) -> None:
        self._handlers: List[Handler] = []
        self._handlers_lock = threading.RLock()

    def subscribe(self, handler: Handler) -> Handler:
        """Register ``handler``; it is returned so it can be used as a decorator."""
        with self._handlers_lock:
            self._handlers.append(handler)
        return handler

    def unsubscribe(self, handler: Handler) -> None:
        """Remove ``handler``; removing an unknown handler does nothing."""
        with self._handlers_lock:
            try:
                self._handlers.remove(handler)
            except ValueError:
                pass

    def unsubscribe_all(self) -> None:
        """Remove every registered handler."""
        with self._handlers_lock:
            self._handlers.clear()

    def emit(self, event: Any) -> None:
        """Deliver ``event`` to the handlers registered at the time of the call."""
        with self._handlers_lock:
            handlers = list(self._handlers)
        for handler in handlers:
            handler(event)