"""Tests for the local file provider (export / import)."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from settingsync.client.history import HistoryLog
from settingsync.client.local import (
    LocalFileProvider,
    is_compatible,
    major_version,
    parse_envelope,
)
from settingsync.core.snapshot import DeviceIdentity, Snapshot, SnapshotValidationError
from settingsync.core.types import ErrorKind, HistoryAction

DEVICE = DeviceIdentity(id="dev1", name="laptop (Linux)")
NOW = 1_700_000_000_000

SETTINGS = {"theme": "dark", "searchEngine": "ddg"}
SHORTCUTS = [
    {"id": "1", "name": "Mail", "url": "https://mail.example.com", "order": 0},
    {"id": "2", "name": "News", "url": "https://news.example.com", "order": 1, "icon": "n"},
]
ENGINES = [{"id": "kagi", "name": "Kagi", "url": "https://kagi.com/search?q=%s"}]


@pytest.fixture
def provider() -> LocalFileProvider:
    """Create a LocalFileProvider with in-memory history."""
    return LocalFileProvider(DEVICE, clock=lambda: NOW)


def envelope(data: dict, version: str = "1.0.0") -> str:  # type: ignore[type-arg]
    """Build an export envelope document."""
    return json.dumps({"exportDate": "2023-11-14T22:13:20Z", "version": version, "data": data})


class TestVersions:
    """Tests for version compatibility helpers."""

    def test_major_version(self) -> None:
        """Should parse the leading component."""
        assert major_version("1.4.2") == 1
        assert major_version("x.1") is None

    def test_is_compatible(self) -> None:
        """Should compare major components only."""
        assert is_compatible("1.9.0") is True
        assert is_compatible("2.0.0") is False


class TestExport:
    """Tests for export."""

    def test_export_envelope(self, provider: LocalFileProvider) -> None:
        """Should wrap the snapshot in {exportDate, version, data}."""
        payload = json.loads(provider.export(SETTINGS, SHORTCUTS, ENGINES))

        assert set(payload) == {"exportDate", "version", "data"}
        assert payload["version"] == "1.0.0"
        assert payload["data"]["deviceId"] == "dev1"
        assert payload["data"]["timestamp"] == NOW
        assert payload["data"]["quickLaunch"] == SHORTCUTS

    def test_export_records_history(self, provider: LocalFileProvider) -> None:
        """Should append a successful export entry with the payload size."""
        payload = provider.export(SETTINGS, SHORTCUTS, ENGINES)

        entry = provider.history.entries()[0]
        assert entry.action == HistoryAction.EXPORT
        assert entry.success is True
        assert entry.data_size == len(payload)
        assert entry.timestamp == NOW

    def test_backup_filename(self, provider: LocalFileProvider) -> None:
        """Should suggest a file name without colons or dots in the stamp."""
        name = provider.backup_filename()
        assert name.startswith("settingsync_backup_")
        assert name.endswith(".json")
        assert ":" not in name
        assert name.count(".") == 1


class TestImport:
    """Tests for import."""

    def test_export_then_import(self, provider: LocalFileProvider) -> None:
        """Should restore the exported blob."""
        result = provider.import_data(provider.export(SETTINGS, SHORTCUTS, ENGINES))

        assert result.success is True
        assert result.snapshot is not None
        assert result.snapshot.settings == SETTINGS
        assert result.snapshot.quick_launch == SHORTCUTS
        assert result.snapshot.custom_search_engines == ENGINES

    def test_import_accepts_str(self, provider: LocalFileProvider) -> None:
        """Should accept text as well as bytes."""
        data = {"settings": {}, "quickLaunch": []}
        assert provider.import_data(envelope(data)).success is True

    def test_missing_quick_launch_rejected(self, provider: LocalFileProvider) -> None:
        """Should fail validation without quickLaunch."""
        result = provider.import_data(envelope({"settings": {}}))

        assert result.success is False
        assert result.error_kind == ErrorKind.VALIDATION
        assert "quickLaunch" in result.message

    def test_shortcut_without_order_rejected(self, provider: LocalFileProvider) -> None:
        """Should require a numeric order on every shortcut."""
        data = {
            "settings": {},
            "quickLaunch": [{"id": "1", "name": "Mail", "url": "https://m", "order": "1"}],
        }
        result = provider.import_data(envelope(data))

        assert result.success is False
        assert result.error_kind == ErrorKind.VALIDATION

    def test_shortcut_without_url_rejected(self, provider: LocalFileProvider) -> None:
        """Should require id, name and url on every shortcut."""
        data = {"settings": {}, "quickLaunch": [{"id": "1", "name": "Mail", "order": 0}]}
        assert provider.import_data(envelope(data)).success is False

    def test_missing_envelope_fields_rejected(self, provider: LocalFileProvider) -> None:
        """Should require exportDate and version."""
        document = json.dumps({"data": {"settings": {}, "quickLaunch": []}})
        result = provider.import_data(document)

        assert result.success is False
        assert result.error_kind == ErrorKind.VALIDATION

    def test_invalid_json_rejected(self, provider: LocalFileProvider) -> None:
        """Should report a serialization failure for non-JSON input."""
        result = provider.import_data(b"{oops")

        assert result.success is False
        assert result.error_kind == ErrorKind.SERIALIZATION

    @pytest.mark.parametrize(
        "raw",
        [
            {"settings": {}, "quickLaunch": [], "metadata": {"lastModified": "soon"}},
            {"settings": {}, "quickLaunch": [], "metadata": {"lastModified": None}},
            {"settings": {}, "quickLaunch": [], "timestamp": None},
        ],
    )
    def test_malformed_times_rejected(
        self, provider: LocalFileProvider, raw: dict  # type: ignore[type-arg]
    ) -> None:
        """Should report a malformed timestamp as a failed import."""
        result = provider.import_data(envelope(raw))

        assert result.success is False
        assert result.error_kind == ErrorKind.SERIALIZATION
        assert provider.history.entries()[0].success is False

    def test_failed_import_recorded(self, provider: LocalFileProvider) -> None:
        """Should log failed imports in the history."""
        provider.import_data(b"{oops")

        entry = provider.history.entries()[0]
        assert entry.action == HistoryAction.IMPORT
        assert entry.success is False

    def test_major_version_mismatch_only_warns(
        self, provider: LocalFileProvider, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Should still import data from another major version."""
        data = {"settings": {"a": 1}, "quickLaunch": []}
        result = provider.import_data(envelope(data, version="2.0.0"))

        assert result.success is True
        assert "Version mismatch" in caplog.text

    def test_extra_fields_preserved(self, provider: LocalFileProvider) -> None:
        """Should keep unknown shortcut attributes."""
        result = provider.import_data(provider.export(SETTINGS, SHORTCUTS, ENGINES))
        assert result.snapshot is not None
        assert result.snapshot.quick_launch[1]["icon"] == "n"

    def test_parse_envelope_rejects_array(self) -> None:
        """Should reject a top-level array."""
        with pytest.raises(SnapshotValidationError):
            parse_envelope("[]")


class TestMigrateLegacy:
    """Tests for migrate_legacy."""

    def test_wraps_legacy_dump(self, provider: LocalFileProvider) -> None:
        """Should wrap a pre-envelope dump into a fresh snapshot."""
        snapshot = provider.migrate_legacy({"settings": SETTINGS, "quickLaunch": SHORTCUTS})

        assert isinstance(snapshot, Snapshot)
        assert snapshot.device_id == "dev1"
        assert snapshot.timestamp == NOW
        assert snapshot.custom_search_engines == []

    def test_unrecognized_shape(self, provider: LocalFileProvider) -> None:
        """Should return None for anything else."""
        assert provider.migrate_legacy({"settings": SETTINGS}) is None
        assert provider.migrate_legacy(["x"]) is None


class TestStats:
    """Tests for history statistics."""

    def test_stats(self, provider: LocalFileProvider) -> None:
        """Should aggregate counts, success rate and bytes."""
        payload = provider.export(SETTINGS, SHORTCUTS, ENGINES)
        provider.import_data(payload)
        provider.import_data(b"{oops")
        provider.import_data(b"[]")

        stats = provider.stats()

        assert stats.total_ops == 4
        assert stats.success_rate == 50.0
        assert stats.total_bytes == 2 * len(payload)
        assert stats.last_op_timestamp is not None

    def test_history_capped(self, provider: LocalFileProvider) -> None:
        """Should keep only the 50 most recent entries, newest first."""
        for _ in range(51):
            provider.import_data(b"{oops")
        provider.export(SETTINGS, SHORTCUTS, ENGINES)

        entries = provider.history.entries()
        assert len(entries) == 50
        assert entries[0].action == HistoryAction.EXPORT


class TestFileProvider:
    """Tests for the provider interface backed by a file."""

    def test_upload_then_download(self, tmp_path: Path) -> None:
        """Should write the snapshot and read it back."""
        provider = LocalFileProvider(DEVICE, path=tmp_path / "sync" / "state.json")
        snapshot = Snapshot.create(DEVICE, SETTINGS, SHORTCUTS, ENGINES, timestamp=NOW)

        assert provider.check().ok is True
        assert provider.upload(snapshot).success is True
        result = provider.download()

        assert result.success is True
        assert result.snapshot is not None
        assert result.snapshot.same_content(snapshot)
        assert not list((tmp_path / "sync").glob("*.tmp"))

    def test_download_missing_file(self, tmp_path: Path) -> None:
        """Should report no data when the file does not exist."""
        provider = LocalFileProvider(DEVICE, path=tmp_path / "state.json")
        result = provider.download()

        assert result.success is False
        assert result.error_kind == ErrorKind.NOT_FOUND

    def test_download_malformed_metadata(self, tmp_path: Path) -> None:
        """Should fail with a serialization error on a null lastModified."""
        path = tmp_path / "state.json"
        data = {"settings": {}, "quickLaunch": [], "metadata": {"lastModified": None}}
        path.write_text(envelope(data), encoding="utf-8")
        result = LocalFileProvider(DEVICE, path=path).download()

        assert result.success is False
        assert result.error_kind == ErrorKind.SERIALIZATION

    def test_download_other_device(self, tmp_path: Path) -> None:
        """Should honor the device filter."""
        provider = LocalFileProvider(DEVICE, path=tmp_path / "state.json")
        provider.upload(Snapshot.create(DEVICE, SETTINGS, SHORTCUTS, [], timestamp=NOW))

        result = provider.download(device_id="dev2")

        assert result.success is False
        assert result.error_kind == ErrorKind.NOT_FOUND

    def test_history_persisted(self, tmp_path: Path) -> None:
        """Should share a persisted history log."""
        history = HistoryLog(tmp_path / "history.json")
        LocalFileProvider(DEVICE, history=history).export(SETTINGS, SHORTCUTS, ENGINES)

        assert len(HistoryLog(tmp_path / "history.json")) == 1
