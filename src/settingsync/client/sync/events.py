"""Observer list for sync lifecycle events.

Listeners are called synchronously, in subscription order, on the thread
that emits the event. A failing listener is logged and never interrupts the
round or the other listeners.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any

from settingsync.client.sync.types import SyncEvent, SyncEventListener, SyncEventType

logger = logging.getLogger(__name__)


class EventBus:
    """Ordered fan-out of SyncEvents to subscribed listeners.

    Usage:
        bus = EventBus()
        unsubscribe = bus.subscribe(print)
        bus.emit(SyncEventType.SYNC_START)
        unsubscribe()
    """

    def __init__(self) -> None:
        self._listeners: list[SyncEventListener] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: SyncEventListener) -> Callable[[], None]:
        """Register a listener.

        Returns:
            A function that removes the listener again.
        """
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            self.unsubscribe(listener)

        return unsubscribe

    def unsubscribe(self, listener: SyncEventListener) -> None:
        """Remove a listener (no-op if it is not registered)."""
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def clear(self) -> None:
        """Remove all listeners."""
        with self._lock:
            self._listeners.clear()

    def __len__(self) -> int:
        return len(self._listeners)

    def emit(
        self,
        event_type: SyncEventType,
        data: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> SyncEvent:
        """Create an event and deliver it to every listener."""
        event = SyncEvent(type=event_type, data=data or {}, error=error)
        with self._lock:
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("Event listener failed on %s", event_type.value)
        return event
