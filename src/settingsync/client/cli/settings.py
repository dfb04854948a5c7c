"""Sync settings commands for the settingsync CLI.

Commands:
- config show: Print the sync settings
- config set: Change one sync setting
"""

from __future__ import annotations

import sys
from dataclasses import replace
from typing import Any

import click

from settingsync.client.cli.config import get_config_file, load_settings, save_settings
from settingsync.core.config import ConfigError
from settingsync.core.types import ResolutionMode


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"expected a boolean, got {value!r}")


# Settable keys and their parsers
SETTABLE: dict[str, Any] = {
    "enabled": _parse_bool,
    "auto_sync": _parse_bool,
    "sync_interval": int,
    "conflict_resolution": ResolutionMode,
    "retry_attempts": int,
    "retry_delay": float,
    "conflict_window_ms": int,
}


@click.group("config")
def config_group() -> None:
    """Show or change sync settings."""


@config_group.command("show")
def show() -> None:
    """Print the sync settings (secrets are never shown)."""
    try:
        settings = load_settings()
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(f"Config file: {get_config_file()}")
    for key, value in settings.to_dict().items():
        if key == "providers":
            continue
        click.echo(f"  {key}: {value}")
    click.echo(f"  providers: {', '.join(p.name for p in settings.providers) or '-'}")


@config_group.command("set")
@click.argument("key", type=click.Choice(sorted(SETTABLE)))
@click.argument("value")
def set_value(key: str, value: str) -> None:
    """Set KEY to VALUE."""
    try:
        parsed = SETTABLE[key](value)
    except ValueError as e:
        click.echo(f"Error: invalid value for {key}: {e}", err=True)
        sys.exit(1)

    try:
        settings = replace(load_settings(), **{key: parsed})
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    save_settings(settings)
    shown = parsed.value if isinstance(parsed, ResolutionMode) else parsed
    click.echo(f"{key} = {shown}")
