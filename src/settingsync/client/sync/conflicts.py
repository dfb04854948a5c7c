"""Conflict detection and resolution between two snapshots.

Detection:
    Only runs when both snapshots were created within ``window_ms`` of each
    other (the signal that two devices raced). Each top-level field whose
    canonical serialization differs yields one Conflict.

Resolution modes:
    | Mode   | Result                                                        |
    |--------|---------------------------------------------------------------|
    | latest | Whole snapshot with the greater timestamp                     |
    | merge  | Newer settings/metadata; lists merged by id, higher order wins|
    | manual | Local snapshot kept, conflicts left for the caller            |
"""

from __future__ import annotations

import logging
from typing import Any

from settingsync.client.sync.types import Conflict, ConflictField, ConflictResolution
from settingsync.core.config import DEFAULT_CONFLICT_WINDOW_MS
from settingsync.core.snapshot import SCHEMA_VERSION, Snapshot, canonical
from settingsync.core.types import ResolutionMode

logger = logging.getLogger(__name__)


def _field_values(snapshot: Snapshot) -> dict[ConflictField, Any]:
    return {
        ConflictField.SETTINGS: snapshot.settings,
        ConflictField.QUICK_LAUNCH: snapshot.quick_launch,
        ConflictField.CUSTOM_SEARCH_ENGINES: snapshot.custom_search_engines,
    }


def detect_conflicts(
    local: Snapshot,
    remote: Snapshot,
    window_ms: int = DEFAULT_CONFLICT_WINDOW_MS,
) -> list[Conflict]:
    """Detect per-field conflicts between two snapshots.

    Args:
        local: Snapshot built from the local blob.
        remote: Newest snapshot downloaded from the provider.
        window_ms: Maximum timestamp distance considered a race (exclusive).

    Returns:
        One Conflict per diverging field, empty if outside the window.
    """
    if abs(local.timestamp - remote.timestamp) >= window_ms:
        return []

    local_values = _field_values(local)
    remote_values = _field_values(remote)
    conflicts = [
        Conflict(path=name, local_value=local_values[name], remote_value=remote_values[name])
        for name in ConflictField
        if canonical(local_values[name]) != canonical(remote_values[name])
    ]
    if conflicts:
        logger.info(
            "Detected %d conflict(s) with device %s: %s",
            len(conflicts),
            remote.device_id,
            ", ".join(c.path.value for c in conflicts),
        )
    return conflicts


def _order(item: dict[str, Any]) -> float | None:
    value = item.get("order")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


def _merge_key(item: dict[str, Any], side: str, index: int) -> Any:
    item_id = item.get("id")
    if item_id is None:
        return (side, index)
    return ("id", item_id)


def merge_by_id(
    local: list[dict[str, Any]],
    remote: list[dict[str, Any]],
) -> list[dict[str, Any]]:
    """Merge two lists of entries keyed by ``id``.

    Entries present on either side are kept. When the same id exists on both
    sides, the entry with the higher ``order`` wins; without comparable
    orders the local entry wins. Entries without an id are never matched
    against each other and are all kept. The result is sorted by ``order``
    when every entry carries one, otherwise remote entries come first.
    Equal lists are returned as they are.
    """
    if canonical(local) == canonical(remote):
        return list(local)

    merged: dict[Any, dict[str, Any]] = {}
    for index, item in enumerate(remote):
        merged[_merge_key(item, "remote", index)] = item

    for index, item in enumerate(local):
        key = _merge_key(item, "local", index)
        existing = merged.get(key)
        if existing is None:
            merged[key] = item
            continue
        local_order, remote_order = _order(item), _order(existing)
        if local_order is None or remote_order is None or local_order > remote_order:
            merged[key] = item

    result = list(merged.values())
    if all(_order(item) is not None for item in result):
        result.sort(key=lambda item: _order(item) or 0)
    return result


def merge_snapshots(local: Snapshot, remote: Snapshot) -> Snapshot:
    """Merge two snapshots field by field.

    Settings and metadata come from the newer snapshot; shortcut and engine
    lists are merged by id. The result keeps the local device id.
    """
    use_local = local.timestamp > remote.timestamp
    newer = local if use_local else remote
    return Snapshot(
        version=SCHEMA_VERSION,
        timestamp=max(local.timestamp, remote.timestamp),
        device_id=local.device_id,
        settings=newer.settings,
        quick_launch=merge_by_id(local.quick_launch, remote.quick_launch),
        custom_search_engines=merge_by_id(
            local.custom_search_engines, remote.custom_search_engines
        ),
        metadata=newer.metadata,
    )


def pick_latest(local: Snapshot, remote: Snapshot) -> Snapshot:
    """Select the snapshot with the greater timestamp (local on ties)."""
    return remote if remote.timestamp > local.timestamp else local


def resolve_conflicts(
    local: Snapshot,
    remote: Snapshot,
    conflicts: list[Conflict],
    mode: ResolutionMode,
) -> Snapshot:
    """Resolve detected conflicts according to the configured mode.

    Tags each conflict with the resolution applied (left untagged in
    manual mode).

    Returns:
        The snapshot to upload.
    """
    if mode == ResolutionMode.LATEST:
        resolved = pick_latest(local, remote)
        tag = ConflictResolution.LOCAL if resolved is local else ConflictResolution.REMOTE
        for conflict in conflicts:
            conflict.resolution = tag
        return resolved

    if mode == ResolutionMode.MERGE:
        for conflict in conflicts:
            conflict.resolution = ConflictResolution.MERGED
        return merge_snapshots(local, remote)

    # Manual: keep the local working copy, caller resolves
    return local
