"""Flat-file export and import of snapshots.

This module provides:
- LocalFileProvider: export/import of the ``{exportDate, version, data}``
  envelope, validation, version compatibility, history and statistics
- Provider interface (upload/download) backed by a single file, so a local
  file can act as the active sync target
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from settingsync.client.history import HistoryEntry, HistoryLog, HistoryStats
from settingsync.client.sync.types import ConnectionCheck, SyncResult
from settingsync.core.schemas import ExportEnvelope
from settingsync.core.snapshot import (
    SCHEMA_VERSION,
    DeviceIdentity,
    Snapshot,
    SnapshotSerializationError,
    SnapshotValidationError,
    now_ms,
)
from settingsync.core.types import ErrorKind, HistoryAction, ResolutionMode

logger = logging.getLogger(__name__)

LOCAL_PROVIDER_NAME = "local"


def major_version(version: str) -> int | None:
    """Get the major component of a dotted version string."""
    head = version.strip().split(".", 1)[0]
    return int(head) if head.isdigit() else None


def is_compatible(version: str, current: str = SCHEMA_VERSION) -> bool:
    """Check if two versions share the same major component."""
    imported = major_version(version)
    return imported is not None and imported == major_version(current)


def _describe_validation_error(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first["loc"]) or "document"
    return f"Invalid data format: {location}: {first['msg']}"


def parse_envelope(data: bytes | str) -> tuple[ExportEnvelope, dict[str, Any]]:
    """Parse and validate an export envelope.

    Returns:
        The validated envelope and the raw ``data`` document.

    Raises:
        SnapshotSerializationError: If the payload is not JSON.
        SnapshotValidationError: If the structure is invalid.
    """
    if isinstance(data, bytes):
        try:
            data = data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise SnapshotSerializationError("File is not UTF-8 text") from e
    try:
        document = json.loads(data)
    except json.JSONDecodeError as e:
        raise SnapshotSerializationError(f"File is not valid JSON: {e.msg}") from e
    if not isinstance(document, dict):
        raise SnapshotValidationError("Invalid data format: expected a JSON object")

    try:
        envelope = ExportEnvelope.model_validate(document)
    except ValidationError as e:
        raise SnapshotValidationError(_describe_validation_error(e)) from e
    return envelope, document["data"]


class LocalFileProvider:
    """Export/import of snapshots as portable JSON files.

    Usage:
        provider = LocalFileProvider(device, history=HistoryLog(path))
        payload = provider.export(settings, shortcuts, engines)
        result = provider.import_data(payload)
    """

    def __init__(
        self,
        device: DeviceIdentity,
        path: Path | None = None,
        history: HistoryLog | None = None,
        name: str = LOCAL_PROVIDER_NAME,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        """Initialize the local provider.

        Args:
            device: Identity stamped into exported snapshots.
            path: Snapshot file used by upload/download (provider mode).
            history: History log for export/import records.
            name: Provider name recorded in history.
            clock: Millisecond clock.
        """
        self._device = device
        self._path = Path(path).expanduser() if path is not None else None
        self._history = history if history is not None else HistoryLog()
        self._name = name
        self._clock = clock

    @property
    def name(self) -> str:
        """Provider name."""
        return self._name

    @property
    def history(self) -> HistoryLog:
        """History log shared with the orchestrator."""
        return self._history

    def close(self) -> None:
        """Nothing to release."""

    # === Export ===

    def build_envelope(self, snapshot: Snapshot) -> bytes:
        """Wrap a snapshot in the export envelope."""
        envelope = {
            "exportDate": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "version": SCHEMA_VERSION,
            "data": snapshot.to_dict(),
        }
        return json.dumps(envelope, indent=2, ensure_ascii=False).encode("utf-8")

    def export(
        self,
        settings: dict[str, Any],
        quick_launch: list[dict[str, Any]],
        custom_search_engines: list[dict[str, Any]],
        device_id: str | None = None,
    ) -> bytes:
        """Serialize the blob to an export file payload.

        Args:
            settings: Settings object.
            quick_launch: Shortcut list.
            custom_search_engines: Custom engine list.
            device_id: Device id to stamp (defaults to this device).

        Returns:
            UTF-8 JSON bytes.
        """
        device = self._device
        if device_id is not None and device_id != device.id:
            device = DeviceIdentity(id=device_id, name=device.name)
        snapshot = Snapshot.create(
            device,
            settings,
            quick_launch,
            custom_search_engines,
            timestamp=self._clock(),
        )
        payload = self.build_envelope(snapshot)
        self._history.append(
            HistoryEntry.record(
                HistoryAction.EXPORT,
                self._name,
                success=True,
                details="Data exported to JSON file",
                data_size=len(payload),
                timestamp=self._clock(),
            )
        )
        logger.info("Exported %d bytes", len(payload))
        return payload

    def backup_filename(self) -> str:
        """Suggest a timestamped file name for an export."""
        stamp = datetime.now(UTC).isoformat().replace(":", "-").replace(".", "-")
        return f"settingsync_backup_{stamp}.json"

    # === Import ===

    def _to_snapshot(self, raw: dict[str, Any]) -> Snapshot:
        document = dict(raw)
        document.setdefault("timestamp", self._clock())
        document.setdefault("deviceId", "unknown")
        return Snapshot.from_dict(document)

    def import_data(self, data: bytes | str) -> SyncResult:
        """Parse and validate an export file payload.

        Nothing outside the history log is touched; on failure the caller's
        state stays as it was.

        Returns:
            SyncResult carrying the parsed snapshot on success.
        """
        size = len(data.encode("utf-8") if isinstance(data, str) else data)
        try:
            envelope, raw = parse_envelope(data)
            snapshot = self._to_snapshot(raw)
        except (SnapshotValidationError, SnapshotSerializationError) as e:
            kind = (
                ErrorKind.VALIDATION
                if isinstance(e, SnapshotValidationError)
                else ErrorKind.SERIALIZATION
            )
            logger.warning("Import rejected: %s", e)
            self._history.append(
                HistoryEntry.record(
                    HistoryAction.IMPORT,
                    self._name,
                    success=False,
                    details=f"Import failed: {e}",
                    timestamp=self._clock(),
                )
            )
            return SyncResult.failure(str(e), error_kind=kind)

        if not is_compatible(envelope.version):
            logger.warning(
                "Version mismatch: current %s, imported %s", SCHEMA_VERSION, envelope.version
            )

        self._history.append(
            HistoryEntry.record(
                HistoryAction.IMPORT,
                self._name,
                success=True,
                details=f"Data imported from version {envelope.version}",
                data_size=size,
                timestamp=self._clock(),
            )
        )
        return SyncResult(
            success=True,
            message="Data imported successfully",
            snapshot=snapshot,
        )

    def migrate_legacy(self, data: Any) -> Snapshot | None:
        """Wrap a pre-envelope dump (``{settings, quickLaunch, ...}``) in a snapshot.

        Returns:
            A fresh snapshot, or None if the shape is not recognized.
        """
        if not isinstance(data, dict):
            return None
        settings = data.get("settings")
        quick_launch = data.get("quickLaunch")
        if not isinstance(settings, dict) or not isinstance(quick_launch, list):
            return None
        engines = data.get("customSearchEngines") or []
        if not isinstance(engines, list):
            return None
        return Snapshot.create(
            self._device,
            settings,
            quick_launch,
            engines,
            conflict_resolution=ResolutionMode.LATEST,
            timestamp=self._clock(),
        )

    # === History ===

    def stats(self) -> HistoryStats:
        """Aggregate statistics over the history log."""
        return self._history.stats()

    # === Provider interface ===

    def check(self) -> ConnectionCheck:
        """Check that the snapshot file location is usable."""
        if self._path is None:
            return ConnectionCheck(ok=False, message="No file path configured")
        parent = self._path.parent
        try:
            parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            return ConnectionCheck(ok=False, message=f"Cannot create {parent}: {e}")
        if not os.access(parent, os.W_OK):
            return ConnectionCheck(
                ok=False, message=f"{parent} is not writable", error_kind=ErrorKind.FORBIDDEN
            )
        return ConnectionCheck(ok=True, message=f"Using {self._path}")

    def initialize(self) -> bool:
        """Make sure the snapshot file's directory exists."""
        return self.check().ok

    def upload(self, snapshot: Snapshot) -> SyncResult:
        """Write the snapshot envelope to the configured file atomically."""
        if self._path is None:
            return SyncResult.failure("No file path configured", error_kind=ErrorKind.VALIDATION)
        payload = self.build_envelope(snapshot)
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self._path.parent, suffix=".tmp")
            with os.fdopen(fd, "wb") as f:
                f.write(payload)
            os.replace(tmp_name, self._path)
        except OSError as e:
            logger.error("Writing %s failed: %s", self._path, e)
            return SyncResult.failure(f"Write failed: {e}", error_kind=ErrorKind.FORBIDDEN)
        return SyncResult(success=True, message=f"Data written to {self._path}", snapshot=snapshot)

    def download(self, device_id: str | None = None) -> SyncResult:
        """Read the snapshot envelope from the configured file."""
        if self._path is None or not self._path.exists():
            return SyncResult.failure("No sync data found", error_kind=ErrorKind.NOT_FOUND)
        try:
            envelope, raw = parse_envelope(self._path.read_bytes())
            snapshot = self._to_snapshot(raw)
        except OSError as e:
            return SyncResult.failure(f"Read failed: {e}", error_kind=ErrorKind.FORBIDDEN)
        except SnapshotValidationError as e:
            return SyncResult.failure(str(e), error_kind=ErrorKind.VALIDATION)
        except SnapshotSerializationError as e:
            return SyncResult.failure(str(e), error_kind=ErrorKind.SERIALIZATION)

        if device_id is not None and snapshot.device_id != device_id:
            return SyncResult.failure(
                f"No sync data found for device {device_id}", error_kind=ErrorKind.NOT_FOUND
            )
        if not is_compatible(envelope.version):
            logger.warning(
                "Version mismatch: current %s, stored %s", SCHEMA_VERSION, envelope.version
            )
        return SyncResult(success=True, message="Data read successfully", snapshot=snapshot)
