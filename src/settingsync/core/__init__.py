"""Core module - Shared configuration, snapshot model and types."""

from settingsync.core.config import (
    DEFAULT_CONFLICT_WINDOW_MS,
    DEFAULT_SYNC_FOLDER,
    DEFAULT_TIMEOUT,
    ConfigError,
    ProviderConfig,
    SyncSettings,
)
from settingsync.core.snapshot import (
    SCHEMA_VERSION,
    DeviceIdentity,
    Snapshot,
    SnapshotMetadata,
    SnapshotSerializationError,
    SnapshotValidationError,
    decode_snapshot,
    encode_snapshot,
    now_ms,
)
from settingsync.core.types import (
    ErrorKind,
    HistoryAction,
    ProviderKind,
    ResolutionMode,
    SyncState,
)

__all__ = [
    # Config
    "DEFAULT_CONFLICT_WINDOW_MS",
    "DEFAULT_SYNC_FOLDER",
    "DEFAULT_TIMEOUT",
    "ConfigError",
    "ProviderConfig",
    "SyncSettings",
    # Snapshot
    "SCHEMA_VERSION",
    "DeviceIdentity",
    "Snapshot",
    "SnapshotMetadata",
    "SnapshotSerializationError",
    "SnapshotValidationError",
    "decode_snapshot",
    "encode_snapshot",
    "now_ms",
    # Types
    "ErrorKind",
    "HistoryAction",
    "ProviderKind",
    "ResolutionMode",
    "SyncState",
]
