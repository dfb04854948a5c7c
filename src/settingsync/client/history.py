"""Bounded operation history.

This module provides:
- HistoryEntry: One export/import/sync record
- HistoryStats: Aggregates over the retained entries
- HistoryLog: Newest-first ring buffer, optionally persisted as JSON

History is informational: a history file that cannot be read or written
is logged and never fails the operation being recorded.
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

from settingsync.core.snapshot import now_ms
from settingsync.core.types import HistoryAction

logger = logging.getLogger(__name__)

MAX_HISTORY_ENTRIES = 50


@dataclass
class HistoryEntry:
    """Append-only record of one operation.

    Attributes:
        id: Unique entry id.
        timestamp: When the operation finished (ms since epoch).
        provider: Provider name (``local`` for file export/import).
        action: export, import or sync.
        success: Whether it succeeded.
        details: Human-readable detail.
        data_size: Payload size in bytes.
        conflicts: Number of conflicts found.
    """

    id: str
    timestamp: int
    provider: str
    action: HistoryAction
    success: bool
    details: str
    data_size: int | None = None
    conflicts: int | None = None

    @classmethod
    def record(
        cls,
        action: HistoryAction,
        provider: str,
        success: bool,
        details: str,
        data_size: int | None = None,
        conflicts: int | None = None,
        timestamp: int | None = None,
    ) -> HistoryEntry:
        """Create an entry stamped with the given time, or now."""
        if timestamp is None:
            timestamp = now_ms()
        return cls(
            id=f"{action.value}_{timestamp}_{uuid.uuid4().hex[:6]}",
            timestamp=timestamp,
            provider=provider,
            action=action,
            success=success,
            details=details,
            data_size=data_size,
            conflicts=conflicts,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-compatible dict."""
        data = asdict(self)
        data["action"] = self.action.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HistoryEntry:
        """Create from a stored dictionary."""
        return cls(
            id=data["id"],
            timestamp=int(data["timestamp"]),
            provider=data["provider"],
            action=HistoryAction(data["action"]),
            success=bool(data["success"]),
            details=data.get("details", ""),
            data_size=data.get("data_size"),
            conflicts=data.get("conflicts"),
        )


@dataclass
class HistoryStats:
    """Aggregates over the retained history."""

    total_ops: int = 0
    success_rate: float = 0.0  # percent
    last_op_timestamp: int | None = None
    total_bytes: int = 0


class HistoryLog:
    """Newest-first ring buffer of HistoryEntry records.

    Thread-safe. When a path is given the buffer is loaded from and written
    back to that JSON file on every change.
    """

    def __init__(self, path: Path | None = None, limit: int = MAX_HISTORY_ENTRIES) -> None:
        """Initialize the history log.

        Args:
            path: JSON file to persist to (None keeps history in memory).
            limit: Number of entries retained.
        """
        self._path = path
        self._limit = limit
        self._lock = threading.RLock()
        self._entries: list[HistoryEntry] = self._load()

    def _load(self) -> list[HistoryEntry]:
        if self._path is None or not self._path.exists():
            return []
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
            return [HistoryEntry.from_dict(item) for item in raw][: self._limit]
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning("Ignoring unreadable history file %s: %s", self._path, e)
            return []

    def _save(self) -> None:
        if self._path is None:
            return
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(
                json.dumps([e.to_dict() for e in self._entries], indent=2),
                encoding="utf-8",
            )
        except OSError as e:
            logger.error("Failed to save history to %s: %s", self._path, e)

    def append(self, entry: HistoryEntry) -> None:
        """Add an entry, dropping the oldest beyond the limit."""
        with self._lock:
            self._entries = [entry, *self._entries][: self._limit]
            self._save()

    def entries(self) -> list[HistoryEntry]:
        """Get a copy of the entries, newest first."""
        with self._lock:
            return list(self._entries)

    def clear(self) -> None:
        """Remove all entries."""
        with self._lock:
            self._entries = []
            if self._path is not None and self._path.exists():
                try:
                    self._path.unlink()
                except OSError as e:
                    logger.error("Failed to remove history file %s: %s", self._path, e)

    def stats(self) -> HistoryStats:
        """Aggregate the retained entries."""
        with self._lock:
            entries = list(self._entries)
        if not entries:
            return HistoryStats()
        successful = sum(1 for e in entries if e.success)
        return HistoryStats(
            total_ops=len(entries),
            success_rate=successful / len(entries) * 100,
            last_op_timestamp=max(e.timestamp for e in entries),
            total_bytes=sum(e.data_size or 0 for e in entries),
        )

    def __len__(self) -> int:
        return len(self._entries)
