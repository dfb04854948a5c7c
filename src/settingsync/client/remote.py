"""Snapshot storage on a WebDAV folder.

Every upload creates a new object named ``sync_<deviceId>_<epochMillis>.json``
(``.json.gz`` when compression is on) inside the sync folder. The name alone
identifies the device and the upload time, so no index object is needed,
concurrent writers never collide, and "latest" is a metadata comparison.

WebDAV errors are caught here and returned as failed SyncResults; they never
propagate to the orchestrator.
"""

from __future__ import annotations

import logging
import posixpath
import re
from collections.abc import Callable
from dataclasses import dataclass

from settingsync.client.sync.types import ConnectionCheck, SyncResult
from settingsync.client.webdav import RemoteFileInfo, WebDAVClient, WebDAVError
from settingsync.core.config import ProviderConfig
from settingsync.core.snapshot import (
    Snapshot,
    SnapshotSerializationError,
    decode_snapshot,
    encode_snapshot,
    now_ms,
)
from settingsync.core.types import ErrorKind

logger = logging.getLogger(__name__)

SNAPSHOT_NAME_RE = re.compile(r"^sync_(?P<device>.+)_(?P<millis>\d+)\.json(?:\.gz)?$")

DAY_MS = 24 * 60 * 60 * 1000


@dataclass
class RemoteSnapshot:
    """A snapshot object found in the sync folder."""

    info: RemoteFileInfo
    device_id: str
    created: int  # epoch millis embedded in the filename

    @property
    def sort_key(self) -> tuple[int, int]:
        """Newest first by server mtime, then by embedded time."""
        modified = self.info.last_modified
        return (modified if modified is not None else self.created, self.created)


def snapshot_filename(device_id: str, millis: int, compress: bool = False) -> str:
    """Build the object name for a snapshot upload."""
    suffix = ".json.gz" if compress else ".json"
    return f"sync_{device_id}_{millis}{suffix}"


def parse_snapshot_filename(name: str) -> tuple[str, int] | None:
    """Extract (device_id, epoch_millis) from a snapshot object name."""
    match = SNAPSHOT_NAME_RE.match(name)
    if match is None:
        return None
    return match.group("device"), int(match.group("millis"))


def _failure(prefix: str, error: WebDAVError) -> SyncResult:
    return SyncResult.failure(
        f"{prefix}: {error.message}",
        error_kind=error.kind,
        retryable=error.retryable,
    )


class RemoteSyncProvider:
    """Snapshot semantics on top of a WebDAVClient.

    Usage:
        provider = RemoteSyncProvider(provider_config)
        if provider.initialize():
            provider.upload(snapshot)
            latest = provider.download()
    """

    def __init__(
        self,
        config: ProviderConfig,
        client: WebDAVClient | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        """Initialize the provider.

        Args:
            config: Remote provider configuration.
            client: WebDAV client to use (built from config if None).
            clock: Millisecond clock used to name uploads.
        """
        self._config = config
        self._client = client or WebDAVClient(config)
        self._clock = clock
        self._last_stamp = 0

    @property
    def name(self) -> str:
        """Provider name."""
        return self._config.name

    @property
    def folder(self) -> str:
        """Remote sync folder."""
        return self._config.folder

    @property
    def client(self) -> WebDAVClient:
        """Underlying WebDAV client."""
        return self._client

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self._client.close()

    # === Connection ===

    def check(self) -> ConnectionCheck:
        """Test the endpoint and make sure the sync folder exists."""
        try:
            self._client.probe()
        except WebDAVError as e:
            return ConnectionCheck(
                ok=False, message=e.message, error_kind=e.kind, retryable=e.retryable
            )
        if not self._client.ensure_directory(self.folder):
            return ConnectionCheck(
                ok=False,
                message=f"Connected, but could not create folder {self.folder}",
                error_kind=ErrorKind.FORBIDDEN,
            )
        return ConnectionCheck(ok=True, message="Connection successful")

    def initialize(self) -> bool:
        """Connect and ensure the sync folder exists.

        Returns:
            False (non-fatal) on any failure.
        """
        check = self.check()
        if not check:
            logger.warning("Provider %s initialization failed: %s", self.name, check.message)
        return check.ok

    # === Snapshots ===

    def _next_stamp(self) -> int:
        """Strictly increasing millisecond stamp for upload names."""
        stamp = max(self._clock(), self._last_stamp + 1)
        self._last_stamp = stamp
        return stamp

    def upload(self, snapshot: Snapshot) -> SyncResult:
        """Write a snapshot as a new object; never overwrites."""
        name = snapshot_filename(snapshot.device_id, self._next_stamp(), self._config.compress)
        path = posixpath.join(self.folder, name)
        payload = encode_snapshot(snapshot, compress=self._config.compress)

        try:
            self._client.put(path, payload)
        except WebDAVError as e:
            logger.error("Upload of %s failed: %s", path, e)
            return _failure("Upload failed", e)

        logger.info("Uploaded %s (%d bytes)", path, len(payload))
        return SyncResult(
            success=True,
            message="Data uploaded successfully",
            snapshot=snapshot,
        )

    def list_snapshots(self) -> list[RemoteSnapshot]:
        """List snapshot objects in the sync folder.

        Raises:
            WebDAVError: If the folder cannot be listed.
        """
        snapshots = []
        for info in self._client.list(self.folder):
            if info.is_directory:
                continue
            parsed = parse_snapshot_filename(posixpath.basename(info.path))
            if parsed is None:
                continue
            device_id, created = parsed
            snapshots.append(RemoteSnapshot(info=info, device_id=device_id, created=created))
        return snapshots

    def download(self, device_id: str | None = None) -> SyncResult:
        """Fetch the newest snapshot, optionally from one device only."""
        try:
            candidates = self.list_snapshots()
        except WebDAVError as e:
            if e.kind == ErrorKind.NOT_FOUND:
                return SyncResult.failure("No sync data found", error_kind=ErrorKind.NOT_FOUND)
            return _failure("Download failed", e)

        if device_id is not None:
            candidates = [c for c in candidates if c.device_id == device_id]
        if not candidates:
            message = (
                f"No sync data found for device {device_id}"
                if device_id
                else "No sync data found"
            )
            return SyncResult.failure(message, error_kind=ErrorKind.NOT_FOUND)

        latest = max(candidates, key=lambda c: c.sort_key)
        try:
            content, _ = self._client.get(latest.info.path)
        except WebDAVError as e:
            return _failure("Download failed", e)

        try:
            snapshot = decode_snapshot(content)
        except SnapshotSerializationError as e:
            logger.error("Snapshot %s is corrupt: %s", latest.info.path, e)
            return SyncResult.failure(
                f"Downloaded data is invalid: {e}",
                error_kind=ErrorKind.SERIALIZATION,
            )

        logger.info("Downloaded %s from device %s", latest.info.path, latest.device_id)
        return SyncResult(
            success=True,
            message="Data downloaded successfully",
            snapshot=snapshot,
        )

    # === Devices ===

    def device_activity(self) -> dict[str, int]:
        """Map each device id to the time of its newest upload.

        Raises:
            WebDAVError: If the folder cannot be listed.
        """
        activity: dict[str, int] = {}
        for snap in self.list_snapshots():
            activity[snap.device_id] = max(activity.get(snap.device_id, 0), snap.created)
        return activity

    def list_devices(self) -> list[str]:
        """List the distinct device ids that uploaded snapshots.

        Returns:
            Device ids in order of first appearance (empty on failure).
        """
        try:
            return list(self.device_activity())
        except WebDAVError as e:
            logger.error("Failed to list devices: %s", e)
            return []

    # === Retention ===

    def cleanup(self, retention_days: int = 30) -> SyncResult:
        """Delete every object older than the retention period."""
        cutoff = self._clock() - retention_days * DAY_MS
        try:
            entries = self._client.list(self.folder)
        except WebDAVError as e:
            return _failure("Cleanup failed", e)

        deleted = 0
        failed = 0
        for info in entries:
            if info.is_directory or info.last_modified is None:
                continue
            if info.last_modified >= cutoff:
                continue
            try:
                self._client.delete(info.path)
                deleted += 1
            except WebDAVError as e:
                failed += 1
                logger.warning("Failed to delete %s: %s", info.path, e)

        logger.info("Cleanup removed %d object(s) older than %d days", deleted, retention_days)
        if failed:
            return SyncResult.failure(f"Deleted {deleted} file(s), {failed} could not be deleted")
        return SyncResult(success=True, message=f"Deleted {deleted} file(s)")
