"""HTTP client for WebDAV-compatible file stores.

This module provides:
- WebDAVClient: one authenticated call per WebDAV verb
- RemoteFileInfo: metadata for one object on the remote store
- WebDAVError and subclasses: classified failures (status -> kind)
- parse_multistatus: PROPFIND multi-status XML parser

Network-level failures are retried with linear backoff before surfacing.
HTTP status failures are classified and raised, never retried here.
"""

from __future__ import annotations

import logging
import mimetypes
import posixpath
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from urllib.parse import quote, unquote, urlparse

import httpx

from settingsync import __version__
from settingsync.client.sync.retry import NETWORK_EXCEPTIONS, retry_with_backoff
from settingsync.core.config import ProviderConfig
from settingsync.core.types import ErrorKind

logger = logging.getLogger(__name__)

DAV_NS = "{DAV:}"

PROPFIND_BODY = """<?xml version="1.0" encoding="utf-8" ?>
<D:propfind xmlns:D="DAV:">
  <D:prop>
    <D:displayname/>
    <D:resourcetype/>
    <D:getcontentlength/>
    <D:getlastmodified/>
    <D:getetag/>
    <D:getcontenttype/>
  </D:prop>
</D:propfind>"""

CONTENT_TYPES = {
    ".json": "application/json; charset=utf-8",
    ".gz": "application/gzip",
    ".xml": "application/xml; charset=utf-8",
}


class WebDAVError(Exception):
    """Base exception for WebDAV errors."""

    kind: ErrorKind = ErrorKind.SERVER

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        """Whether retrying the operation later may succeed."""
        if self.kind == ErrorKind.SERVER:
            return self.status_code is None or self.status_code >= 500
        return self.kind.transient


class NetworkError(WebDAVError):
    """Transport-level failure (DNS, connection refused or reset)."""

    kind = ErrorKind.NETWORK


class RequestTimeoutError(WebDAVError):
    """Request exceeded the configured timeout."""

    kind = ErrorKind.TIMEOUT


class AuthenticationError(WebDAVError):
    """Authentication failed (401)."""

    kind = ErrorKind.AUTH


class ForbiddenError(WebDAVError):
    """Access denied (403)."""

    kind = ErrorKind.FORBIDDEN


class NotFoundError(WebDAVError):
    """Resource not found (404)."""

    kind = ErrorKind.NOT_FOUND


class ConflictError(WebDAVError):
    """Conflicting state, typically a missing parent collection (409)."""

    kind = ErrorKind.CONFLICT


class LockedError(WebDAVError):
    """Resource is locked (423)."""

    kind = ErrorKind.LOCKED


class ServerError(WebDAVError):
    """Server error (5xx) or any other unexpected status."""

    kind = ErrorKind.SERVER


class ResponseParseError(WebDAVError):
    """Response body could not be parsed."""

    kind = ErrorKind.SERIALIZATION


def classify_status(status_code: int, reason: str = "") -> WebDAVError:
    """Map a non-2xx status code to a classified error."""
    if status_code == 401:
        return AuthenticationError(
            "Authentication failed, check username and password", status_code
        )
    if status_code == 403:
        return ForbiddenError("Access denied, check folder permissions", status_code)
    if status_code == 404:
        return NotFoundError("File or directory not found", status_code)
    if status_code == 409:
        return ConflictError("Conflict, the parent directory may be missing", status_code)
    if status_code == 423:
        return LockedError("Resource is locked", status_code)
    if status_code == 507:
        return ServerError("Insufficient storage on server", status_code)
    if status_code >= 500:
        return ServerError(f"Server error: {status_code} {reason}".rstrip(), status_code)
    return ServerError(f"HTTP {status_code}: {reason}".rstrip(), status_code)


@dataclass
class RemoteFileInfo:
    """Metadata for one object on the remote store.

    Attributes:
        path: Path relative to the endpoint root (e.g. /newTab/sync_x_1.json).
        name: Display name (last path segment if the server sends none).
        is_directory: Whether the object is a collection.
        last_modified: Last-modified time in ms since the epoch.
        size: Size in bytes.
        etag: Entity tag without quotes.
        content_type: MIME type reported by the server.
    """

    path: str
    name: str
    is_directory: bool = False
    last_modified: int | None = None
    size: int | None = None
    etag: str | None = None
    content_type: str | None = None


def parse_http_date(value: str) -> int | None:
    """Parse an RFC 1123 (or ISO 8601) date into ms since the epoch."""
    value = value.strip()
    if not value:
        return None
    try:
        dt = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        try:
            dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return int(dt.timestamp() * 1000)


def _text(element: ET.Element | None) -> str | None:
    if element is None or element.text is None:
        return None
    return element.text.strip()


def _normalize_href(href: str, base_path: str) -> str:
    """Turn a server href into a path relative to the endpoint root."""
    href = unquote(href.strip())
    if "://" in href:
        href = urlparse(href).path
    if base_path and (href == base_path or href.startswith(base_path + "/")):
        href = href[len(base_path):]
    return "/" + href.strip("/")


def parse_multistatus(xml_text: str | bytes, base_path: str = "") -> list[RemoteFileInfo]:
    """Parse a PROPFIND multi-status body.

    Args:
        xml_text: Response body.
        base_path: URL path of the endpoint, stripped from every href.

    Returns:
        One RemoteFileInfo per <response> element.

    Raises:
        ResponseParseError: If the body is not well-formed XML.
    """
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        raise ResponseParseError(f"Invalid multi-status response: {e}") from e

    files: list[RemoteFileInfo] = []
    for response in root.iter(f"{DAV_NS}response"):
        href = _text(response.find(f"{DAV_NS}href"))
        if not href:
            continue

        # Prefer the propstat reporting 200 OK; fall back to the first one
        prop = None
        for propstat in response.findall(f"{DAV_NS}propstat"):
            status = _text(propstat.find(f"{DAV_NS}status")) or ""
            if prop is None or " 200" in status:
                prop = propstat.find(f"{DAV_NS}prop")
            if " 200" in status:
                break

        path = _normalize_href(href, base_path)
        info = RemoteFileInfo(path=path, name=posixpath.basename(path))
        if prop is not None:
            resourcetype = prop.find(f"{DAV_NS}resourcetype")
            info.is_directory = (
                resourcetype is not None
                and resourcetype.find(f"{DAV_NS}collection") is not None
            )
            info.name = _text(prop.find(f"{DAV_NS}displayname")) or info.name
            modified = _text(prop.find(f"{DAV_NS}getlastmodified"))
            if modified:
                info.last_modified = parse_http_date(modified)
            length = _text(prop.find(f"{DAV_NS}getcontentlength"))
            if length and length.isdigit():
                info.size = int(length)
            etag = _text(prop.find(f"{DAV_NS}getetag"))
            if etag:
                info.etag = etag.replace('"', "")
            info.content_type = _text(prop.find(f"{DAV_NS}getcontenttype"))
        files.append(info)

    return files


def content_type_for(path: str) -> str:
    """Pick a Content-Type header from the path's extension."""
    ext = posixpath.splitext(path)[1].lower()
    if ext in CONTENT_TYPES:
        return CONTENT_TYPES[ext]
    guessed, _ = mimetypes.guess_type(path)
    return guessed or "application/octet-stream"


class WebDAVClient:
    """HTTP client for a WebDAV endpoint.

    Usage:
        with WebDAVClient(provider_config) as client:
            if client.connect_test():
                client.put("/newTab/sync_abc_1.json", b"{}")
    """

    def __init__(
        self,
        config: ProviderConfig,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the WebDAV client.

        Args:
            config: Provider configuration (URL, credential, timeout, retries).
            transport: Optional httpx transport (for tests).
        """
        self._config = config
        self._base_path = unquote(urlparse(config.url).path).rstrip("/")
        self._client = httpx.Client(
            base_url=config.url + "/",
            timeout=config.timeout,
            headers={
                "Authorization": config.auth_header,
                "User-Agent": f"settingsync/{__version__}",
                "Accept-Encoding": "gzip, deflate",
            },
            transport=transport,
        )

    @property
    def config(self) -> ProviderConfig:
        """Get the provider configuration."""
        return self._config

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> WebDAVClient:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()

    # === Request plumbing ===

    def _request(
        self,
        method: str,
        path: str,
        content: bytes | str | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Send one request, retrying network-level failures.

        Raises:
            NetworkError: If the server stayed unreachable after all retries.
            RequestTimeoutError: If the request exceeded the timeout.
        """
        url = quote(path.lstrip("/"), safe="/")

        def send() -> httpx.Response:
            return self._client.request(method, url, content=content, headers=headers)

        try:
            return retry_with_backoff(
                send,
                max_retries=self._config.retry_count,
                base_delay=self._config.retry_delay,
            )
        except httpx.TimeoutException as e:
            logger.warning("%s %s timed out after %.0fs", method, path, self._config.timeout)
            raise RequestTimeoutError(
                f"Request timed out after {self._config.timeout:.0f}s"
            ) from e
        except NETWORK_EXCEPTIONS as e:
            raise NetworkError(f"Network error: {e}") from e
        except httpx.HTTPError as e:
            raise NetworkError(f"Request failed: {e}") from e

    def _check(self, response: httpx.Response) -> httpx.Response:
        """Raise a classified error for non-2xx responses."""
        if response.is_success:
            return response
        error = classify_status(response.status_code, response.reason_phrase)
        logger.warning(
            "%s %s failed: %s",
            response.request.method,
            response.request.url.path,
            error.message,
        )
        raise error

    def _propfind(self, path: str, depth: str) -> httpx.Response:
        return self._request(
            "PROPFIND",
            path,
            content=PROPFIND_BODY,
            headers={"Depth": depth, "Content-Type": CONTENT_TYPES[".xml"]},
        )

    # === Connection ===

    def probe(self) -> None:
        """Check that the endpoint is reachable and accepts the credential.

        Issues OPTIONS; if the server rejects it (405) or the connection
        fails or times out, falls back to PROPFIND with Depth 0.

        Raises:
            WebDAVError: Classified reason the endpoint is unusable.
        """
        try:
            response: httpx.Response | None = self._request("OPTIONS", "/")
        except (NetworkError, RequestTimeoutError) as e:
            logger.debug("OPTIONS failed (%s), falling back to PROPFIND", e)
            response = None

        if response is not None:
            if response.is_success:
                return
            if response.status_code != 405:
                self._check(response)

        self._check(self._propfind("/", depth="0"))

    def connect_test(self) -> bool:
        """Test the connection.

        Returns:
            True only if the server answered 2xx (or 207).
        """
        try:
            self.probe()
        except WebDAVError as e:
            logger.info("Connection test failed: %s", e)
            return False
        return True

    # === Collections ===

    def ensure_directory(self, path: str) -> bool:
        """Create a collection if it does not exist yet.

        Missing ancestors (409) are created first.

        Returns:
            True if the directory was created (201) or already exists (405).
        """
        try:
            response = self._request("MKCOL", path)
            if response.status_code == 409:
                parent = posixpath.dirname(path.rstrip("/"))
                if parent and parent != "/" and self.ensure_directory(parent):
                    response = self._request("MKCOL", path)
        except WebDAVError as e:
            logger.warning("MKCOL %s failed: %s", path, e)
            return False

        if response.status_code in (201, 405):
            return True
        logger.warning("MKCOL %s returned %s", path, response.status_code)
        return False

    def exists(self, path: str) -> bool:
        """Check if an object exists (HEAD returns 200)."""
        try:
            response = self._request("HEAD", path)
        except WebDAVError:
            return False
        return response.status_code == 200

    # === Objects ===

    def get(self, path: str) -> tuple[bytes, RemoteFileInfo]:
        """Download an object.

        Returns:
            Body bytes and the metadata taken from the response headers.

        Raises:
            WebDAVError: Classified failure.
        """
        response = self._check(self._request("GET", path))
        headers = response.headers
        etag = headers.get("etag")
        info = RemoteFileInfo(
            path="/" + path.strip("/"),
            name=posixpath.basename(path.rstrip("/")),
            last_modified=parse_http_date(headers.get("last-modified", "")),
            size=len(response.content),
            etag=etag.replace('"', "") if etag else None,
            content_type=headers.get("content-type"),
        )
        return response.content, info

    def put(self, path: str, content: bytes) -> RemoteFileInfo:
        """Upload an object, creating its parent directory first.

        Raises:
            WebDAVError: Classified failure.
        """
        parent = posixpath.dirname(path.rstrip("/"))
        if parent and parent != "/":
            self.ensure_directory(parent)

        content_type = content_type_for(path)
        response = self._check(
            self._request("PUT", path, content=content, headers={"Content-Type": content_type})
        )
        etag = response.headers.get("etag")
        return RemoteFileInfo(
            path="/" + path.strip("/"),
            name=posixpath.basename(path),
            size=len(content),
            etag=etag.replace('"', "") if etag else None,
            content_type=content_type,
        )

    def delete(self, path: str) -> None:
        """Delete an object.

        Raises:
            WebDAVError: Classified failure.
        """
        self._check(self._request("DELETE", path))

    # === Listing ===

    def list(self, path: str) -> list[RemoteFileInfo]:
        """List the direct children of a collection.

        Raises:
            WebDAVError: Classified failure (including unparsable bodies).
        """
        response = self._check(self._propfind(path, depth="1"))
        root = "/" + path.strip("/")
        prefix = root.rstrip("/") + "/"
        entries = parse_multistatus(response.content, self._base_path)
        return [e for e in entries if e.path != root and e.path.startswith(prefix)]

    def list_paths(self, path: str) -> list[str]:
        """List child paths only."""
        return [entry.path for entry in self.list(path)]

    def file_info(self, path: str) -> RemoteFileInfo | None:
        """Get metadata for a single object.

        Returns:
            Metadata, or None if the object does not exist.

        Raises:
            WebDAVError: Classified failure other than 404.
        """
        try:
            response = self._check(self._propfind(path, depth="0"))
        except NotFoundError:
            return None
        entries = parse_multistatus(response.content, self._base_path)
        return entries[0] if entries else None

    def verify_integrity(
        self,
        path: str,
        expected_size: int | None = None,
        expected_etag: str | None = None,
    ) -> bool:
        """Check a stored object against an expected ETag (preferred) or size."""
        try:
            info = self.file_info(path)
        except WebDAVError as e:
            logger.warning("Integrity check of %s failed: %s", path, e)
            return False
        if info is None:
            return False
        if expected_etag and info.etag:
            return info.etag == expected_etag.replace('"', "")
        if expected_size is not None and info.size is not None:
            return info.size == expected_size
        return True

    def __repr__(self) -> str:
        return f"WebDAVClient({self._config.url!r})"

