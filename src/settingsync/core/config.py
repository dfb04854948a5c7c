"""Shared configuration classes for settingsync.

This module defines the connection parameters of one sync target
(ProviderConfig) and the user-level sync configuration (SyncSettings).
"""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from typing import Any

from settingsync.core.types import ProviderKind, ResolutionMode

DEFAULT_SYNC_FOLDER = "/newTab"
DEFAULT_TIMEOUT = 30.0
DEFAULT_CONFLICT_WINDOW_MS = 60_000


class ConfigError(Exception):
    """Invalid or inconsistent configuration."""


def normalize_folder(folder: str) -> str:
    """Normalize a remote folder to ``/a/b`` form (leading slash, no trailing)."""
    parts = [p for p in folder.split("/") if p]
    return "/" + "/".join(parts)


@dataclass
class ProviderConfig:
    """Connection parameters for one sync target.

    Remote providers authenticate with either a Basic pair (username and
    password) or a Bearer token, never both. Local providers only need a
    file path.

    Attributes:
        name: Unique provider name (referenced by SyncSettings.active_provider).
        kind: Remote WebDAV store or local file.
        url: Base URL of the WebDAV endpoint (remote only).
        username: Basic auth username.
        password: Basic auth password (may be filled in later from the keyring).
        token: Bearer token.
        folder: Remote folder holding the snapshots.
        path: Snapshot file path (local only).
        timeout: Per-request timeout in seconds.
        retry_count: Retries for network-level failures.
        retry_delay: Base delay in seconds between network retries.
        compress: Upload gzip-compressed snapshots.
        enabled: Disabled providers are never selected as active.
    """

    name: str
    kind: ProviderKind = ProviderKind.REMOTE
    url: str = ""
    username: str | None = None
    password: str | None = None
    token: str | None = None
    folder: str = DEFAULT_SYNC_FOLDER
    path: str | None = None
    timeout: float = DEFAULT_TIMEOUT
    retry_count: int = 3
    retry_delay: float = 1.0
    compress: bool = False
    enabled: bool = True

    def __post_init__(self) -> None:
        """Normalize and validate."""
        self.kind = ProviderKind(self.kind)
        self.url = self.url.rstrip("/")
        self.folder = normalize_folder(self.folder)

        if not self.name:
            raise ConfigError("Provider name must not be empty")
        if self.timeout <= 0:
            raise ConfigError(f"Provider {self.name}: timeout must be positive")
        if self.retry_count < 0:
            raise ConfigError(f"Provider {self.name}: retry_count must be >= 0")

        if self.kind == ProviderKind.LOCAL:
            if not self.path:
                raise ConfigError(f"Local provider {self.name} needs a file path")
            return

        if not self.url:
            raise ConfigError(f"Remote provider {self.name} needs a URL")
        if self.token and self.username:
            raise ConfigError(
                f"Provider {self.name}: configure either username/password or a token, not both"
            )
        if not self.token and not self.username:
            raise ConfigError(f"Provider {self.name}: no credential configured")

    @property
    def uses_token(self) -> bool:
        """Check if the provider authenticates with a Bearer token."""
        return bool(self.token)

    @property
    def auth_header(self) -> str:
        """Get the Authorization header value.

        Raises:
            ConfigError: If the Basic password is missing.
        """
        if self.token:
            return f"Bearer {self.token}"
        if self.password is None:
            raise ConfigError(f"Provider {self.name}: password not set")
        raw = f"{self.username}:{self.password}".encode()
        return f"Basic {base64.b64encode(raw).decode()}"

    @property
    def is_secure(self) -> bool:
        """Check if the endpoint uses HTTPS."""
        return self.url.startswith("https://")

    def to_dict(self, include_secrets: bool = False) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict.

        Args:
            include_secrets: Keep password and token in the output.
        """
        data: dict[str, Any] = {
            "name": self.name,
            "kind": self.kind.value,
            "url": self.url,
            "username": self.username,
            "folder": self.folder,
            "path": self.path,
            "timeout": self.timeout,
            "retry_count": self.retry_count,
            "retry_delay": self.retry_delay,
            "compress": self.compress,
            "enabled": self.enabled,
        }
        if include_secrets:
            data["password"] = self.password
            data["token"] = self.token
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProviderConfig:
        """Create from a config dictionary."""
        return cls(
            name=data["name"],
            kind=ProviderKind(data.get("kind", ProviderKind.REMOTE.value)),
            url=data.get("url") or "",
            username=data.get("username"),
            password=data.get("password"),
            token=data.get("token"),
            folder=data.get("folder") or DEFAULT_SYNC_FOLDER,
            path=data.get("path"),
            timeout=float(data.get("timeout", DEFAULT_TIMEOUT)),
            retry_count=int(data.get("retry_count", 3)),
            retry_delay=float(data.get("retry_delay", 1.0)),
            compress=bool(data.get("compress", False)),
            enabled=bool(data.get("enabled", True)),
        )


@dataclass
class SyncSettings:
    """User-level sync configuration.

    Attributes:
        enabled: Master switch; rounds are refused while disabled.
        auto_sync: Run a round every sync_interval minutes.
        sync_interval: Auto-sync interval in minutes.
        providers: Configured sync targets.
        active_provider: Name of the provider used for rounds.
        conflict_resolution: Resolution mode for detected conflicts.
        retry_attempts: Retry rounds scheduled after a transient failure.
        retry_delay: Seconds to wait before a retry round.
        conflict_window_ms: Two snapshots closer than this are considered racing.
    """

    enabled: bool = False
    auto_sync: bool = False
    sync_interval: int = 30
    providers: list[ProviderConfig] = field(default_factory=list)
    active_provider: str | None = None
    conflict_resolution: ResolutionMode = ResolutionMode.LATEST
    retry_attempts: int = 3
    retry_delay: float = 5.0
    conflict_window_ms: int = DEFAULT_CONFLICT_WINDOW_MS

    def __post_init__(self) -> None:
        """Validate cross-field invariants."""
        self.conflict_resolution = ResolutionMode(self.conflict_resolution)
        if self.sync_interval <= 0:
            raise ConfigError("sync_interval must be a positive number of minutes")
        if self.retry_attempts < 0:
            raise ConfigError("retry_attempts must be >= 0")
        names = [p.name for p in self.providers]
        if len(names) != len(set(names)):
            raise ConfigError("Provider names must be unique")
        if self.active_provider and self.active_provider not in names:
            raise ConfigError(f"Active provider {self.active_provider!r} is not configured")

    def get_provider(self, name: str) -> ProviderConfig | None:
        """Look up a provider by name."""
        for provider in self.providers:
            if provider.name == name:
                return provider
        return None

    @property
    def active(self) -> ProviderConfig | None:
        """Get the active provider, if it is set and enabled."""
        if not self.active_provider:
            return None
        provider = self.get_provider(self.active_provider)
        if provider is None or not provider.enabled:
            return None
        return provider

    def to_dict(self, include_secrets: bool = False) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        return {
            "enabled": self.enabled,
            "auto_sync": self.auto_sync,
            "sync_interval": self.sync_interval,
            "providers": [p.to_dict(include_secrets) for p in self.providers],
            "active_provider": self.active_provider,
            "conflict_resolution": self.conflict_resolution.value,
            "retry_attempts": self.retry_attempts,
            "retry_delay": self.retry_delay,
            "conflict_window_ms": self.conflict_window_ms,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncSettings:
        """Create from a config dictionary."""
        return cls(
            enabled=bool(data.get("enabled", False)),
            auto_sync=bool(data.get("auto_sync", False)),
            sync_interval=int(data.get("sync_interval", 30)),
            providers=[ProviderConfig.from_dict(p) for p in data.get("providers", [])],
            active_provider=data.get("active_provider"),
            conflict_resolution=ResolutionMode(
                data.get("conflict_resolution", ResolutionMode.LATEST.value)
            ),
            retry_attempts=int(data.get("retry_attempts", 3)),
            retry_delay=float(data.get("retry_delay", 5.0)),
            conflict_window_ms=int(
                data.get("conflict_window_ms", DEFAULT_CONFLICT_WINDOW_MS)
            ),
        )
