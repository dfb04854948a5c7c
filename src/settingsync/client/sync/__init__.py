"""Sync round building blocks.

Architecture:
    snapshot source -> SyncOrchestrator -> provider (remote or local file)

Components:
- **SyncOrchestrator** (``settingsync.client.sync.orchestrator``): State
  machine running rounds, auto-sync and retry timers
- **Conflicts**: Detection within the conflict window, latest/merge/manual
  resolution
- **EventBus**: Ordered lifecycle event delivery
- **retry_with_backoff**: Transport-level retry of network failures
"""

from settingsync.client.sync.conflicts import (
    detect_conflicts,
    merge_by_id,
    merge_snapshots,
    pick_latest,
    resolve_conflicts,
)
from settingsync.client.sync.events import EventBus
from settingsync.client.sync.retry import (
    DEFAULT_BASE_DELAY,
    DEFAULT_MAX_RETRIES,
    NETWORK_EXCEPTIONS,
    retry_with_backoff,
)
from settingsync.client.sync.types import (
    Conflict,
    ConflictField,
    ConflictResolution,
    ConnectionCheck,
    DeviceInfo,
    LocalData,
    SnapshotSource,
    SyncEvent,
    SyncEventListener,
    SyncEventType,
    SyncResult,
    SyncStatus,
)

__all__ = [
    # Conflicts
    "detect_conflicts",
    "merge_by_id",
    "merge_snapshots",
    "pick_latest",
    "resolve_conflicts",
    # Events
    "EventBus",
    # Retry
    "DEFAULT_BASE_DELAY",
    "DEFAULT_MAX_RETRIES",
    "NETWORK_EXCEPTIONS",
    "retry_with_backoff",
    # Types
    "Conflict",
    "ConflictField",
    "ConflictResolution",
    "ConnectionCheck",
    "DeviceInfo",
    "LocalData",
    "SnapshotSource",
    "SyncEvent",
    "SyncEventListener",
    "SyncEventType",
    "SyncResult",
    "SyncStatus",
]
