"""Tests for the sync event bus."""

from __future__ import annotations

import pytest

from settingsync.client.sync.events import EventBus
from settingsync.client.sync.types import SyncEvent, SyncEventType


class TestEventBus:
    """Tests for EventBus class."""

    def test_delivers_in_subscription_order(self) -> None:
        """Listeners are called in the order they subscribed."""
        bus = EventBus()
        calls: list[str] = []
        bus.subscribe(lambda e: calls.append("first"))
        bus.subscribe(lambda e: calls.append("second"))

        bus.emit(SyncEventType.SYNC_START)

        assert calls == ["first", "second"]

    def test_event_payload(self) -> None:
        """Should deliver type, data and error."""
        bus = EventBus()
        received: list[SyncEvent] = []
        bus.subscribe(received.append)

        bus.emit(SyncEventType.SYNC_PROGRESS, {"progress": 50})
        bus.emit(SyncEventType.SYNC_ERROR, error="boom")

        assert received[0].type == SyncEventType.SYNC_PROGRESS
        assert received[0].data == {"progress": 50}
        assert received[1].error == "boom"
        assert received[1].timestamp > 0

    def test_unsubscribe(self) -> None:
        """An unsubscribed listener receives nothing."""
        bus = EventBus()
        received: list[SyncEvent] = []
        unsubscribe = bus.subscribe(received.append)

        unsubscribe()
        bus.emit(SyncEventType.SYNC_START)

        assert received == []
        assert len(bus) == 0

    def test_unsubscribe_unknown_listener(self) -> None:
        """Removing an unknown listener is a no-op."""
        EventBus().unsubscribe(lambda e: None)

    def test_failing_listener_isolated(self, caplog: pytest.LogCaptureFixture) -> None:
        """A raising listener does not stop the others."""
        bus = EventBus()
        received: list[SyncEvent] = []

        def broken(event: SyncEvent) -> None:
            raise RuntimeError("listener bug")

        bus.subscribe(broken)
        bus.subscribe(received.append)

        bus.emit(SyncEventType.SYNC_SUCCESS)

        assert len(received) == 1
        assert "Event listener failed" in caplog.text

    def test_clear(self) -> None:
        """Should drop every listener."""
        bus = EventBus()
        bus.subscribe(lambda e: None)
        bus.subscribe(lambda e: None)
        bus.clear()
        assert len(bus) == 0

    def test_event_type_values(self) -> None:
        """Event type names match the wire names."""
        assert SyncEventType.CONFLICT_DETECTED.value == "conflict-detected"
        assert SyncEventType.CONFLICT_RESOLVED.value == "conflict-resolved"
