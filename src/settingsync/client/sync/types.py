"""Shared types and dataclasses for sync operations.

This module provides:
- SyncResult: Outcome of a round, upload, download or import
- Conflict / ConflictField / ConflictResolution: Detected divergences
- SyncStatus: Run-time status owned by the orchestrator
- SyncEventType, SyncEvent: Lifecycle event stream types
- ConnectionCheck, DeviceInfo: Results exposed to the presentation layer
- Type aliases for callbacks
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from settingsync.core.snapshot import Snapshot
from settingsync.core.types import ErrorKind, SyncState


class ConflictField(str, Enum):
    """Top-level snapshot fields compared during conflict detection."""

    SETTINGS = "settings"
    QUICK_LAUNCH = "quickLaunch"
    CUSTOM_SEARCH_ENGINES = "customSearchEngines"


class ConflictResolution(str, Enum):
    """How a conflict was settled."""

    LOCAL = "local"
    REMOTE = "remote"
    MERGED = "merged"


@dataclass
class Conflict:
    """A divergence between the local and remote snapshot on one field.

    Attributes:
        path: Which field diverged.
        local_value: Local value of the field.
        remote_value: Remote value of the field.
        resolution: How it was settled (None while awaiting manual resolution).
    """

    path: ConflictField
    local_value: Any
    remote_value: Any
    resolution: ConflictResolution | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-compatible dict."""
        return {
            "path": self.path.value,
            "localData": self.local_value,
            "remoteData": self.remote_value,
            "resolution": self.resolution.value if self.resolution else None,
        }


@dataclass
class SyncResult:
    """Result of a sync operation.

    Attributes:
        success: Whether the operation succeeded.
        message: Human-readable outcome.
        conflicts: Conflicts found during the round (if any).
        snapshot: Resulting snapshot (uploaded, downloaded or imported).
        error_kind: Classification of the failure, used for retry decisions.
        retryable: Whether retrying the same operation may succeed.
    """

    success: bool
    message: str
    conflicts: list[Conflict] | None = None
    snapshot: Snapshot | None = None
    error_kind: ErrorKind | None = None
    retryable: bool = False

    @property
    def has_conflicts(self) -> bool:
        """Check if there are any conflicts."""
        return bool(self.conflicts)

    @classmethod
    def failure(
        cls,
        message: str,
        error_kind: ErrorKind | None = None,
        retryable: bool = False,
    ) -> SyncResult:
        """Build a failed result."""
        return cls(success=False, message=message, error_kind=error_kind, retryable=retryable)


@dataclass
class SyncStatus:
    """Current run-time status of the orchestrator.

    Attributes:
        state: Current state.
        progress: Progress percentage of the running round.
        last_sync: Time of the last successful round (ms since epoch).
        last_error: Message of the last failure.
        conflicts: Conflicts pending external resolution.
    """

    state: SyncState = SyncState.IDLE
    progress: int | None = None
    last_sync: int | None = None
    last_error: str | None = None
    conflicts: list[Conflict] | None = None


@dataclass
class ConnectionCheck:
    """Outcome of a connection test.

    Truthy when the connection works, so it can be used as a bool.
    """

    ok: bool
    message: str
    error_kind: ErrorKind | None = None
    retryable: bool = False

    def __bool__(self) -> bool:
        return self.ok


@dataclass
class DeviceInfo:
    """A device that has uploaded snapshots to the remote folder."""

    id: str
    name: str
    last_seen: int


# =============================================================================
# Event Stream Types
# =============================================================================


class SyncEventType(str, Enum):
    """Types of lifecycle events emitted during a round."""

    SYNC_START = "sync-start"
    SYNC_PROGRESS = "sync-progress"
    SYNC_SUCCESS = "sync-success"
    SYNC_ERROR = "sync-error"
    CONFLICT_DETECTED = "conflict-detected"
    CONFLICT_RESOLVED = "conflict-resolved"


@dataclass
class SyncEvent:
    """A lifecycle event delivered to listeners.

    Attributes:
        type: Event type.
        timestamp: Unix timestamp when the event was created.
        data: Event payload (progress, conflicts, snapshot).
        error: Error message for SYNC_ERROR.
    """

    type: SyncEventType
    timestamp: float = field(default_factory=time.time)
    data: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    def __repr__(self) -> str:
        """Human-readable representation."""
        return f"SyncEvent({self.type.value}, data={list(self.data)}, error={self.error!r})"


# Type aliases for callbacks
SyncEventListener = Callable[[SyncEvent], None]
SnapshotSource = Callable[[], "LocalData"]


@dataclass
class LocalData:
    """The in-memory blob handed to the orchestrator when a round starts."""

    settings: dict[str, Any]
    quick_launch: list[dict[str, Any]]
    custom_search_engines: list[dict[str, Any]] = field(default_factory=list)
