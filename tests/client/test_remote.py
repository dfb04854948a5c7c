"""Tests for the remote snapshot provider."""

from __future__ import annotations

import json
from email.utils import formatdate

from settingsync.client.remote import (
    DAY_MS,
    RemoteSyncProvider,
    parse_snapshot_filename,
    snapshot_filename,
)
from settingsync.core.config import ProviderConfig
from settingsync.core.snapshot import DeviceIdentity, Snapshot, encode_snapshot
from settingsync.core.types import ErrorKind

BASE = "https://dav.example.com/dav"
FOLDER_URL = f"{BASE}/newTab"
NOW = 1_700_000_000_000


def make_config(**kwargs: object) -> ProviderConfig:
    """Create a ProviderConfig for testing."""
    defaults: dict[str, object] = {
        "url": BASE,
        "token": "tok123",
        "retry_count": 0,
        "retry_delay": 0.0,
    }
    defaults.update(kwargs)
    return ProviderConfig(name="nas", **defaults)  # type: ignore[arg-type]


def make_snapshot(device_id: str = "dev1", timestamp: int = NOW, theme: str = "dark") -> Snapshot:
    """Create a Snapshot for testing."""
    return Snapshot.create(
        DeviceIdentity(id=device_id, name=device_id),
        {"theme": theme},
        [{"id": "1", "name": "Mail", "url": "https://mail.example.com", "order": 0}],
        [],
        timestamp=timestamp,
    )


def http_date(millis: int) -> str:
    """Format epoch millis as an HTTP date."""
    return formatdate(millis / 1000, usegmt=True)


def listing(*names_and_times: tuple[str, int]) -> str:
    """Build a PROPFIND multistatus body for the sync folder."""
    responses = [
        "<d:response><d:href>/dav/newTab/</d:href><d:propstat><d:prop>"
        "<d:resourcetype><d:collection/></d:resourcetype></d:prop>"
        "<d:status>HTTP/1.1 200 OK</d:status></d:propstat></d:response>"
    ]
    for name, millis in names_and_times:
        responses.append(
            f"<d:response><d:href>/dav/newTab/{name}</d:href><d:propstat><d:prop>"
            f"<d:resourcetype/><d:getcontentlength>100</d:getcontentlength>"
            f"<d:getlastmodified>{http_date(millis)}</d:getlastmodified>"
            f"</d:prop><d:status>HTTP/1.1 200 OK</d:status></d:propstat></d:response>"
        )
    return (
        '<?xml version="1.0" encoding="utf-8"?><d:multistatus xmlns:d="DAV:">'
        + "".join(responses)
        + "</d:multistatus>"
    )


class TestSnapshotFilename:
    """Tests for snapshot object naming."""

    def test_build(self) -> None:
        """Should embed device id and millis."""
        assert snapshot_filename("dev1", 123) == "sync_dev1_123.json"
        assert snapshot_filename("dev1", 123, compress=True) == "sync_dev1_123.json.gz"

    def test_parse(self) -> None:
        """Should extract device id and millis."""
        assert parse_snapshot_filename("sync_dev1_123.json") == ("dev1", 123)
        assert parse_snapshot_filename("sync_dev1_123.json.gz") == ("dev1", 123)

    def test_parse_device_with_underscore(self) -> None:
        """Should split on the last separator."""
        assert parse_snapshot_filename("sync_my_dev_123.json") == ("my_dev", 123)

    def test_parse_foreign_names(self) -> None:
        """Should ignore objects that are not snapshots."""
        assert parse_snapshot_filename("notes.txt") is None
        assert parse_snapshot_filename("sync_dev1.json") is None


class TestRemoteSyncProvider:
    """Tests for RemoteSyncProvider class."""

    def test_check_ok(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should probe the endpoint and ensure the folder."""
        httpx_mock.add_response(method="OPTIONS", url=f"{BASE}/", status_code=200)
        httpx_mock.add_response(method="MKCOL", url=FOLDER_URL, status_code=405)

        provider = RemoteSyncProvider(make_config())
        check = provider.check()

        assert check.ok is True
        assert check.message == "Connection successful"

    def test_check_auth_failure(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should classify a rejected credential."""
        httpx_mock.add_response(method="OPTIONS", url=f"{BASE}/", status_code=401)

        check = RemoteSyncProvider(make_config()).check()

        assert check.ok is False
        assert check.error_kind == ErrorKind.AUTH
        assert check.retryable is False

    def test_upload_names_object(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should PUT sync_<deviceId>_<millis>.json into the folder."""
        httpx_mock.add_response(method="MKCOL", url=FOLDER_URL, status_code=405)
        httpx_mock.add_response(
            method="PUT", url=f"{FOLDER_URL}/sync_dev1_{NOW}.json", status_code=201
        )

        provider = RemoteSyncProvider(make_config(), clock=lambda: NOW)
        result = provider.upload(make_snapshot())

        assert result.success is True
        put = httpx_mock.get_requests()[-1]
        assert json.loads(put.content)["deviceId"] == "dev1"

    def test_upload_never_reuses_a_name(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should keep names unique within the same millisecond."""
        for _ in range(2):
            httpx_mock.add_response(method="MKCOL", url=FOLDER_URL, status_code=405)
        httpx_mock.add_response(
            method="PUT", url=f"{FOLDER_URL}/sync_dev1_{NOW}.json", status_code=201
        )
        httpx_mock.add_response(
            method="PUT", url=f"{FOLDER_URL}/sync_dev1_{NOW + 1}.json", status_code=201
        )

        provider = RemoteSyncProvider(make_config(), clock=lambda: NOW)
        assert provider.upload(make_snapshot()).success
        assert provider.upload(make_snapshot()).success

    def test_upload_compressed(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should upload gzip payloads as .json.gz."""
        httpx_mock.add_response(method="MKCOL", url=FOLDER_URL, status_code=405)
        httpx_mock.add_response(
            method="PUT", url=f"{FOLDER_URL}/sync_dev1_{NOW}.json.gz", status_code=201
        )

        provider = RemoteSyncProvider(make_config(compress=True), clock=lambda: NOW)
        assert provider.upload(make_snapshot()).success

        put = httpx_mock.get_requests()[-1]
        assert put.headers["Content-Type"] == "application/gzip"
        assert put.content[:2] == b"\x1f\x8b"

    def test_upload_failure_is_classified(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should return a failed result instead of raising."""
        httpx_mock.add_response(method="MKCOL", url=FOLDER_URL, status_code=405)
        httpx_mock.add_response(
            method="PUT", url=f"{FOLDER_URL}/sync_dev1_{NOW}.json", status_code=507
        )

        result = RemoteSyncProvider(make_config(), clock=lambda: NOW).upload(make_snapshot())

        assert result.success is False
        assert result.error_kind == ErrorKind.SERVER
        assert "Insufficient storage" in result.message

    def test_download_latest(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should fetch the object with the newest modification time."""
        httpx_mock.add_response(
            method="PROPFIND",
            url=FOLDER_URL,
            status_code=207,
            text=listing(
                (f"sync_dev1_{NOW - 5000}.json", NOW - 5000),
                (f"sync_dev2_{NOW}.json", NOW),
                ("readme.txt", NOW + 9000),
            ),
        )
        newest = make_snapshot("dev2", NOW, theme="light")
        httpx_mock.add_response(
            method="GET", url=f"{FOLDER_URL}/sync_dev2_{NOW}.json", content=encode_snapshot(newest)
        )

        result = RemoteSyncProvider(make_config()).download()

        assert result.success is True
        assert result.snapshot == newest

    def test_download_breaks_ties_by_embedded_time(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should prefer the later filename when mtimes are equal."""
        httpx_mock.add_response(
            method="PROPFIND",
            url=FOLDER_URL,
            status_code=207,
            text=listing(
                (f"sync_dev1_{NOW + 700}.json", NOW),
                (f"sync_dev1_{NOW + 200}.json", NOW),
            ),
        )
        httpx_mock.add_response(
            method="GET",
            url=f"{FOLDER_URL}/sync_dev1_{NOW + 700}.json",
            content=encode_snapshot(make_snapshot(timestamp=NOW + 700)),
        )

        result = RemoteSyncProvider(make_config()).download()

        assert result.snapshot is not None
        assert result.snapshot.timestamp == NOW + 700

    def test_download_device_filter(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should only consider the requested device."""
        httpx_mock.add_response(
            method="PROPFIND",
            url=FOLDER_URL,
            status_code=207,
            text=listing(
                (f"sync_dev1_{NOW - 5000}.json", NOW - 5000),
                (f"sync_dev2_{NOW}.json", NOW),
            ),
        )
        older = make_snapshot("dev1", NOW - 5000)
        httpx_mock.add_response(
            method="GET",
            url=f"{FOLDER_URL}/sync_dev1_{NOW - 5000}.json",
            content=encode_snapshot(older),
        )

        result = RemoteSyncProvider(make_config()).download(device_id="dev1")

        assert result.snapshot == older

    def test_download_unknown_device(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should report no data for a device that never uploaded."""
        httpx_mock.add_response(
            method="PROPFIND",
            url=FOLDER_URL,
            status_code=207,
            text=listing((f"sync_dev1_{NOW}.json", NOW)),
        )

        result = RemoteSyncProvider(make_config()).download(device_id="dev9")

        assert result.success is False
        assert result.error_kind == ErrorKind.NOT_FOUND
        assert result.message == "No sync data found for device dev9"

    def test_download_empty_folder(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should report no data when the folder is empty."""
        httpx_mock.add_response(method="PROPFIND", url=FOLDER_URL, status_code=207, text=listing())

        result = RemoteSyncProvider(make_config()).download()

        assert result.success is False
        assert result.error_kind == ErrorKind.NOT_FOUND
        assert result.message == "No sync data found"

    def test_download_missing_folder(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should treat a missing folder as no data."""
        httpx_mock.add_response(method="PROPFIND", url=FOLDER_URL, status_code=404)

        result = RemoteSyncProvider(make_config()).download()

        assert result.error_kind == ErrorKind.NOT_FOUND

    def test_download_corrupt_payload(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should report a serialization failure for garbage content."""
        httpx_mock.add_response(
            method="PROPFIND",
            url=FOLDER_URL,
            status_code=207,
            text=listing((f"sync_dev1_{NOW}.json", NOW)),
        )
        httpx_mock.add_response(
            method="GET", url=f"{FOLDER_URL}/sync_dev1_{NOW}.json", content=b"<html>"
        )

        result = RemoteSyncProvider(make_config()).download()

        assert result.success is False
        assert result.error_kind == ErrorKind.SERIALIZATION

    def test_download_null_last_modified(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should report a serialization failure for a null metadata time."""
        document = make_snapshot().to_dict()
        document["metadata"]["lastModified"] = None
        httpx_mock.add_response(
            method="PROPFIND",
            url=FOLDER_URL,
            status_code=207,
            text=listing((f"sync_dev1_{NOW}.json", NOW)),
        )
        httpx_mock.add_response(
            method="GET",
            url=f"{FOLDER_URL}/sync_dev1_{NOW}.json",
            content=json.dumps(document).encode("utf-8"),
        )

        result = RemoteSyncProvider(make_config()).download()

        assert result.success is False
        assert result.error_kind == ErrorKind.SERIALIZATION

    def test_list_devices(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should list each uploading device once."""
        httpx_mock.add_response(
            method="PROPFIND",
            url=FOLDER_URL,
            status_code=207,
            text=listing(
                (f"sync_dev1_{NOW - 3}.json", NOW),
                (f"sync_dev1_{NOW - 2}.json", NOW),
                (f"sync_dev1_{NOW - 1}.json", NOW),
            ),
        )

        assert RemoteSyncProvider(make_config()).list_devices() == ["dev1"]

    def test_device_activity(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should report the newest upload time per device."""
        httpx_mock.add_response(
            method="PROPFIND",
            url=FOLDER_URL,
            status_code=207,
            text=listing(
                (f"sync_dev1_{NOW - 3}.json", NOW),
                (f"sync_dev2_{NOW - 2}.json", NOW),
                (f"sync_dev1_{NOW - 1}.json", NOW),
            ),
        )

        activity = RemoteSyncProvider(make_config()).device_activity()

        assert activity == {"dev1": NOW - 1, "dev2": NOW - 2}

    def test_list_devices_on_error(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should return an empty list when the folder cannot be listed."""
        httpx_mock.add_response(method="PROPFIND", url=FOLDER_URL, status_code=500)
        assert RemoteSyncProvider(make_config()).list_devices() == []

    def test_cleanup_deletes_old_objects(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should delete only objects older than the retention period."""
        old = NOW - 31 * DAY_MS
        recent = NOW - 29 * DAY_MS
        httpx_mock.add_response(
            method="PROPFIND",
            url=FOLDER_URL,
            status_code=207,
            text=listing(
                (f"sync_dev1_{old}.json", old),
                (f"sync_dev1_{recent}.json", recent),
            ),
        )
        httpx_mock.add_response(
            method="DELETE", url=f"{FOLDER_URL}/sync_dev1_{old}.json", status_code=204
        )

        result = RemoteSyncProvider(make_config(), clock=lambda: NOW).cleanup(30)

        assert result.success is True
        assert result.message == "Deleted 1 file(s)"
        assert [r.method for r in httpx_mock.get_requests()] == ["PROPFIND", "DELETE"]

    def test_cleanup_reports_partial_failure(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should keep going when one deletion fails."""
        old = NOW - 40 * DAY_MS
        httpx_mock.add_response(
            method="PROPFIND",
            url=FOLDER_URL,
            status_code=207,
            text=listing((f"sync_a_{old}.json", old), (f"sync_b_{old}.json", old)),
        )
        httpx_mock.add_response(
            method="DELETE", url=f"{FOLDER_URL}/sync_a_{old}.json", status_code=423
        )
        httpx_mock.add_response(
            method="DELETE", url=f"{FOLDER_URL}/sync_b_{old}.json", status_code=204
        )

        result = RemoteSyncProvider(make_config(), clock=lambda: NOW).cleanup(30)

        assert result.success is False
        assert "Deleted 1 file(s)" in result.message

