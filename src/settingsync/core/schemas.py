"""Pydantic schemas for the local export envelope.

Only the fields the engine relies on are declared; unknown fields are kept
so that opaque settings and shortcut attributes survive validation.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, StrictFloat, StrictInt


class ShortcutEntry(BaseModel):
    """One quick-launch shortcut."""

    model_config = ConfigDict(extra="allow")

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    url: str = Field(min_length=1)
    order: StrictInt | StrictFloat


class SnapshotPayload(BaseModel):
    """The ``data`` member of an export envelope."""

    model_config = ConfigDict(extra="allow")

    version: str | None = None
    timestamp: StrictInt | StrictFloat | None = None
    deviceId: str | None = None
    settings: dict[str, Any]
    quickLaunch: list[ShortcutEntry]
    customSearchEngines: list[dict[str, Any]] = Field(default_factory=list)
    metadata: dict[str, Any] | None = None


class ExportEnvelope(BaseModel):
    """Flat-file export: ``{exportDate, version, data}``."""

    model_config = ConfigDict(extra="allow")

    exportDate: str = Field(min_length=1)
    version: str = Field(min_length=1)
    data: SnapshotPayload
