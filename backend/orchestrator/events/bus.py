from __future__ import annotations

import logging
from threading import Lock
from typing import Any, Callable

from core.logger import log_event
from orchestrator.events.contracts import BusEvent


EventHandler = Callable[[BusEvent], Any]

ALL_EVENTS = "*"


class SessionEventBus:
    """
    Typed publish/subscribe channel owned by one session runtime.

    Delivery is synchronous and in subscription order. Handler errors
    propagate to the publisher. Once closed, published events are dropped.
    """

    def __init__(self, scope: str = ""):
        self.scope = str(scope or "")
        self._lock = Lock()
        self._handlers: dict[str, list[EventHandler]] = {}
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, event_name: str, handler: EventHandler) -> Callable[[], None]:
        name = str(event_name or "").strip()
        if not name:
            raise ValueError("event name is required")
        with self._lock:
            if self._closed:
                raise RuntimeError("event bus is closed")
            self._handlers.setdefault(name, []).append(handler)

        def _unsubscribe() -> None:
            with self._lock:
                handlers = self._handlers.get(name)
                if not handlers or handler not in handlers:
                    return
                handlers.remove(handler)
                if not handlers:
                    self._handlers.pop(name, None)

        return _unsubscribe

    def publish(self, event: BusEvent) -> list[Any]:
        with self._lock:
            if self._closed:
                closed = True
                handlers: list[EventHandler] = []
            else:
                closed = False
                handlers = [
                    *self._handlers.get(event.event, []),
                    *self._handlers.get(ALL_EVENTS, []),
                ]

        if closed:
            log_event("bus", "event_dropped", self.scope, level=logging.WARNING, name=event.event, reason="bus_closed")
            return []

        return [handler(event) for handler in handlers]

    def handler_count(self, event_name: str | None = None) -> int:
        with self._lock:
            if event_name is not None:
                return len(self._handlers.get(event_name, []))
            return sum(len(items) for items in self._handlers.values())

    def close(self) -> None:
        with self._lock:
            self._closed = True
            self._handlers.clear()
