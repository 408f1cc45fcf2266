"""Fire-and-forget broadcast of agent events to registered observers."""

from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Any, Callable

from pm_agent.models.tool_contracts import BroadcastEvent

logger = logging.getLogger(__name__)

Observer = Callable[[BroadcastEvent], None]


class EventBus:
    def __init__(self, history_size: int = 200) -> None:
        self._observers: list[Observer] = []
        self._lock = threading.Lock()
        self.history: deque[BroadcastEvent] = deque(maxlen=history_size)

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        with self._lock:
            self._observers.append(observer)

        def _unsubscribe() -> None:
            with self._lock:
                if observer in self._observers:
                    self._observers.remove(observer)

        return _unsubscribe

    def broadcast(self, event_type: str, data: dict[str, Any] | None = None) -> BroadcastEvent:
        event = BroadcastEvent(type=event_type, data=dict(data or {}))
        with self._lock:
            self.history.append(event)
            observers = list(self._observers)
        for observer in observers:
            try:
                observer(event)
            except Exception as exc:
                logger.warning("Event observer failed for %s: %s", event_type, exc)
        return event

    def events_of(self, event_type: str) -> list[BroadcastEvent]:
        with self._lock:
            return [event for event in self.history if event.type == event_type]
