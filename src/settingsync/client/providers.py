"""Provider interface and factory.

The orchestrator only talks to a SnapshotProvider. The concrete class is
chosen from ProviderConfig.kind, never by inspecting runtime types.
"""

from __future__ import annotations

from pathlib import Path
from typing import Protocol

from settingsync.client.history import HistoryLog
from settingsync.client.local import LocalFileProvider
from settingsync.client.remote import RemoteSyncProvider
from settingsync.client.sync.types import ConnectionCheck, SyncResult
from settingsync.core.config import ProviderConfig
from settingsync.core.snapshot import DeviceIdentity, Snapshot
from settingsync.core.types import ProviderKind


class SnapshotProvider(Protocol):
    """Protocol for sync targets.

    Providers must turn every failure into a failed SyncResult or
    ConnectionCheck instead of raising.
    """

    @property
    def name(self) -> str:
        """Provider name."""
        ...

    def check(self) -> ConnectionCheck:
        """Test that the target is reachable and usable."""
        ...

    def initialize(self) -> bool:
        """Prepare the target (connect, create folders)."""
        ...

    def upload(self, snapshot: Snapshot) -> SyncResult:
        """Store a snapshot."""
        ...

    def download(self, device_id: str | None = None) -> SyncResult:
        """Fetch the newest snapshot."""
        ...

    def close(self) -> None:
        """Release resources."""
        ...


def create_provider(
    config: ProviderConfig,
    device: DeviceIdentity,
    history: HistoryLog | None = None,
) -> RemoteSyncProvider | LocalFileProvider:
    """Build the provider matching ``config.kind``.

    Args:
        config: Provider configuration.
        device: This device's identity (used by the local provider).
        history: History log shared with the local provider.
    """
    if config.kind == ProviderKind.LOCAL:
        return LocalFileProvider(
            device,
            path=Path(config.path or ""),
            history=history,
            name=config.name,
        )
    return RemoteSyncProvider(config)
