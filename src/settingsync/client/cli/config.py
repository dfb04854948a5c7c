"""Configuration utilities for the settingsync CLI.

This module provides shared configuration functions used across CLI commands:
the config directory, sync settings (with secrets from the keyring), the
device identity, the local data store and the history file.
"""

from __future__ import annotations

import json
import os
import sys
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any

import click

from settingsync.client.credentials import fill_secret, get_secret
from settingsync.client.history import HistoryLog
from settingsync.client.sync.orchestrator import SyncOrchestrator
from settingsync.client.sync.types import LocalData
from settingsync.core.config import ConfigError, SyncSettings
from settingsync.core.snapshot import DeviceIdentity, Snapshot

CONFIG_HOME_ENV = "SETTINGSYNC_HOME"


def get_config_dir() -> Path:
    """Get the configuration directory for settingsync.

    Returns:
        Path from $SETTINGSYNC_HOME, or ~/.settingsync.
    """
    override = os.environ.get(CONFIG_HOME_ENV)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".settingsync"


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


def get_history_file() -> Path:
    """Get the path to the history file."""
    return get_config_dir() / "history.json"


def get_data_file() -> Path:
    """Get the path to the local data store."""
    return get_config_dir() / "data.json"


def load_config() -> dict[str, Any]:
    """Load configuration from config file."""
    config_file = get_config_file()
    if config_file.exists():
        return dict(json.loads(config_file.read_text()))
    return {}


def save_config(config: dict[str, Any]) -> None:
    """Save configuration to config file."""
    config_file = get_config_file()
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(json.dumps(config, indent=2))


def load_settings() -> SyncSettings:
    """Load sync settings, filling missing secrets from the keyring.

    Raises:
        ConfigError: If the stored configuration is invalid.
    """
    config = load_config()
    config["providers"] = [fill_secret(p) for p in config.get("providers", [])]
    return SyncSettings.from_dict(config)


def save_settings(settings: SyncSettings) -> None:
    """Save sync settings.

    Secrets already held by the keyring are left out of the file.
    """
    data = settings.to_dict(include_secrets=True)
    for provider in data["providers"]:
        for field_name in ("password", "token"):
            value = provider.get(field_name)
            username = provider["username"] if field_name == "password" else None
            if value is None or get_secret(provider["name"], username) == value:
                provider.pop(field_name, None)
    save_config(data)


def load_device() -> DeviceIdentity:
    """Load this installation's identity, creating it on first use."""
    device_file = get_config_dir() / "device.json"
    if device_file.exists():
        data = json.loads(device_file.read_text())
        return DeviceIdentity(id=data["device_id"], name=data["device_name"])

    device = DeviceIdentity.generate()
    device_file.parent.mkdir(parents=True, exist_ok=True)
    device_file.write_text(
        json.dumps({"device_id": device.id, "device_name": device.name}, indent=2)
    )
    return device


def load_data() -> LocalData:
    """Read the synchronized blob from the local data store."""
    data_file = get_data_file()
    if not data_file.exists():
        return LocalData(settings={}, quick_launch=[], custom_search_engines=[])
    data = json.loads(data_file.read_text(encoding="utf-8"))
    return LocalData(
        settings=data.get("settings", {}),
        quick_launch=data.get("quickLaunch", []),
        custom_search_engines=data.get("customSearchEngines", []),
    )


def save_data(snapshot: Snapshot) -> None:
    """Write a snapshot's blob back to the local data store."""
    data_file = get_data_file()
    data_file.parent.mkdir(parents=True, exist_ok=True)
    data_file.write_text(
        json.dumps(
            {
                "settings": snapshot.settings,
                "quickLaunch": snapshot.quick_launch,
                "customSearchEngines": snapshot.custom_search_engines,
            },
            indent=2,
            ensure_ascii=False,
        ),
        encoding="utf-8",
    )


def create_orchestrator(
    settings: SyncSettings | None = None,
    auto_sync: bool = False,
) -> SyncOrchestrator:
    """Build an orchestrator wired to the CLI's config directory.

    Args:
        settings: Settings to use (loaded from config if None).
        auto_sync: Keep the configured auto-sync; one-shot commands leave it off.
    """
    settings = settings or load_settings()
    if not auto_sync:
        settings = replace(settings, auto_sync=False)
    return SyncOrchestrator(
        settings,
        load_device(),
        snapshot_source=load_data,
        history=HistoryLog(get_history_file()),
    )


def open_orchestrator(auto_sync: bool = False) -> SyncOrchestrator:
    """Build the orchestrator for a command, exiting on invalid configuration."""
    try:
        return create_orchestrator(load_settings(), auto_sync=auto_sync)
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


def format_time(millis: int) -> str:
    """Format epoch milliseconds as local time."""
    return datetime.fromtimestamp(millis / 1000).strftime("%Y-%m-%d %H:%M:%S")
