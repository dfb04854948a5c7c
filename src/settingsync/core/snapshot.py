"""Snapshot model and wire format.

This module provides:
- Snapshot / SnapshotMetadata: one immutable, timestamped copy of the blob
- DeviceIdentity: stable id + informational name of this installation
- encode_snapshot / decode_snapshot: JSON (optionally gzip) wire codec

The inner settings, shortcut list and engine list are opaque JSON values:
the engine compares them structurally but never interprets them.
"""

from __future__ import annotations

import gzip
import json
import math
import platform
import socket
import time
import uuid
from dataclasses import dataclass, field
from typing import Any

from settingsync import __version__
from settingsync.core.types import ResolutionMode

SCHEMA_VERSION = "1.0.0"
GZIP_MAGIC = b"\x1f\x8b"


class SnapshotSerializationError(Exception):
    """Payload could not be parsed as a snapshot."""


class SnapshotValidationError(Exception):
    """Payload parsed but is structurally invalid (import envelope)."""


def now_ms() -> int:
    """Current time as milliseconds since the epoch."""
    return int(time.time() * 1000)


def _is_finite_number(value: Any) -> bool:
    # bool is an int subclass; inf/nan come through json.loads as floats
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def generate_device_id() -> str:
    """Generate a new random device identifier.

    Hex only, so it never contains the ``_`` separator used in filenames.
    """
    return uuid.uuid4().hex


def get_device_name() -> str:
    """Derive a human-readable device name from the environment.

    Informational only; never used for identity comparisons.
    """
    try:
        hostname = socket.gethostname()
    except OSError:
        hostname = platform.node()
    system = platform.system() or "unknown"
    return f"{hostname or 'unknown'} ({system})"


@dataclass(frozen=True)
class DeviceIdentity:
    """Identity of this installation.

    Attributes:
        id: Stable random identifier, embedded in every snapshot and filename.
        name: Human-readable name.
    """

    id: str
    name: str

    @classmethod
    def generate(cls) -> DeviceIdentity:
        """Create a fresh identity for a new installation."""
        return cls(id=generate_device_id(), name=get_device_name())


@dataclass(frozen=True)
class SnapshotMetadata:
    """Descriptive metadata carried by a snapshot."""

    last_modified: int
    device_name: str
    app_version: str = __version__
    conflict_resolution: ResolutionMode = ResolutionMode.LATEST

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire representation."""
        return {
            "lastModified": self.last_modified,
            "deviceName": self.device_name,
            "appVersion": self.app_version,
            "conflictResolution": self.conflict_resolution.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], default_time: int) -> SnapshotMetadata:
        """Create from the wire representation, tolerating missing keys."""
        mode = data.get("conflictResolution", ResolutionMode.LATEST.value)
        try:
            resolution = ResolutionMode(mode)
        except ValueError:
            resolution = ResolutionMode.LATEST
        last_modified = data.get("lastModified", default_time)
        if not _is_finite_number(last_modified):
            raise SnapshotSerializationError("Snapshot metadata lastModified must be a number")
        return cls(
            last_modified=int(last_modified),
            device_name=str(data.get("deviceName", "")),
            app_version=str(data.get("appVersion", "")),
            conflict_resolution=resolution,
        )


@dataclass(frozen=True)
class Snapshot:
    """One versioned copy of the synchronized blob.

    Never mutated after creation; a new round produces a new Snapshot.

    Attributes:
        version: Schema version.
        timestamp: Creation time in ms since the epoch.
        device_id: Identifier of the device that created it.
        settings: Opaque settings object.
        quick_launch: Shortcut list (dicts with at least id and order).
        custom_search_engines: Custom search-engine list (dicts with id).
        metadata: Descriptive metadata.
    """

    version: str
    timestamp: int
    device_id: str
    settings: dict[str, Any]
    quick_launch: list[dict[str, Any]]
    custom_search_engines: list[dict[str, Any]]
    metadata: SnapshotMetadata = field(
        default_factory=lambda: SnapshotMetadata(last_modified=0, device_name="")
    )

    @classmethod
    def create(
        cls,
        device: DeviceIdentity,
        settings: dict[str, Any],
        quick_launch: list[dict[str, Any]],
        custom_search_engines: list[dict[str, Any]],
        conflict_resolution: ResolutionMode = ResolutionMode.LATEST,
        timestamp: int | None = None,
    ) -> Snapshot:
        """Build a fresh snapshot of the local blob."""
        ts = now_ms() if timestamp is None else timestamp
        return cls(
            version=SCHEMA_VERSION,
            timestamp=ts,
            device_id=device.id,
            settings=settings,
            quick_launch=list(quick_launch),
            custom_search_engines=list(custom_search_engines),
            metadata=SnapshotMetadata(
                last_modified=ts,
                device_name=device.name,
                conflict_resolution=conflict_resolution,
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire representation."""
        return {
            "version": self.version,
            "timestamp": self.timestamp,
            "deviceId": self.device_id,
            "settings": self.settings,
            "quickLaunch": self.quick_launch,
            "customSearchEngines": self.custom_search_engines,
            "metadata": self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Any) -> Snapshot:
        """Create from the wire representation.

        Raises:
            SnapshotSerializationError: If required fields are missing or mistyped.
        """
        if not isinstance(data, dict):
            raise SnapshotSerializationError("Snapshot must be a JSON object")
        try:
            timestamp = data["timestamp"]
            settings = data["settings"]
            quick_launch = data["quickLaunch"]
            device_id = data["deviceId"]
        except KeyError as e:
            raise SnapshotSerializationError(f"Snapshot is missing field {e.args[0]!r}") from e

        if not _is_finite_number(timestamp):
            raise SnapshotSerializationError("Snapshot timestamp must be a number")
        if not isinstance(settings, dict):
            raise SnapshotSerializationError("Snapshot settings must be an object")
        if not isinstance(quick_launch, list):
            raise SnapshotSerializationError("Snapshot quickLaunch must be a list")
        engines = data.get("customSearchEngines") or []
        if not isinstance(engines, list):
            raise SnapshotSerializationError("Snapshot customSearchEngines must be a list")
        metadata = data.get("metadata") or {}
        if not isinstance(metadata, dict):
            raise SnapshotSerializationError("Snapshot metadata must be an object")

        return cls(
            version=str(data.get("version", SCHEMA_VERSION)),
            timestamp=int(timestamp),
            device_id=str(device_id),
            settings=settings,
            quick_launch=quick_launch,
            custom_search_engines=engines,
            metadata=SnapshotMetadata.from_dict(metadata, default_time=int(timestamp)),
        )

    def same_content(self, other: Snapshot) -> bool:
        """Check if the synchronized fields are structurally equal."""
        return (
            canonical(self.settings) == canonical(other.settings)
            and canonical(self.quick_launch) == canonical(other.quick_launch)
            and canonical(self.custom_search_engines) == canonical(other.custom_search_engines)
        )


def canonical(value: Any) -> str:
    """Serialize a JSON value deterministically for structural comparison."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def encode_snapshot(snapshot: Snapshot, compress: bool = False) -> bytes:
    """Serialize a snapshot to its on-wire bytes.

    Args:
        snapshot: Snapshot to serialize.
        compress: Gzip the JSON document.
    """
    payload = json.dumps(snapshot.to_dict(), indent=2, ensure_ascii=False).encode("utf-8")
    if compress:
        return gzip.compress(payload)
    return payload


def decode_snapshot(data: bytes) -> Snapshot:
    """Parse on-wire bytes (plain or gzip JSON) into a snapshot.

    Raises:
        SnapshotSerializationError: If the bytes are not a valid snapshot.
    """
    if data.startswith(GZIP_MAGIC):
        try:
            data = gzip.decompress(data)
        except (OSError, EOFError) as e:
            raise SnapshotSerializationError(f"Corrupt gzip payload: {e}") from e
    try:
        document = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise SnapshotSerializationError(f"Snapshot is not valid JSON: {e}") from e
    return Snapshot.from_dict(document)
