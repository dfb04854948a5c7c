"""Command-line interface for settingsync.

This module provides the main CLI entry point and assembles all commands.

Commands:
- provider add/list/use/remove: Manage sync targets
- config show/set: Show or change sync settings
- test-connection: Check a provider's endpoint and credentials
- sync: Run a sync round (--watch keeps syncing)
- devices: List devices that uploaded snapshots
- cleanup: Delete old remote snapshots
- export / import: Portable JSON backups
- history / stats: Operation history
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import click

from settingsync import __version__
from settingsync.client.cli.config import (
    get_config_dir,
    get_config_file,
    load_config,
    load_settings,
    save_config,
    save_settings,
)
from settingsync.client.cli.provider import provider
from settingsync.client.cli.settings import config_group
from settingsync.client.cli.sync import cleanup, devices, sync, test_connection
from settingsync.client.cli.transfer import export_data, history, import_data, stats

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(verbose: bool = False, log_file: Path | None = None) -> None:
    """Configure the settingsync logger for console (and optional file) output.

    Args:
        verbose: Log DEBUG and above instead of WARNING and above.
        log_file: Also write log records to this file.
    """
    formatter = logging.Formatter(LOG_FORMAT)

    root_logger = logging.getLogger("settingsync")
    root_logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(formatter)
    root_logger.addHandler(stderr_handler)

    if log_file is not None:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)


@click.group()
@click.version_option(__version__)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Also write logs to this file.",
)
def cli(verbose: bool, log_file: Path | None) -> None:
    """settingsync - Cross-device settings synchronization over WebDAV."""
    setup_logging(verbose, log_file)


# Provider and settings commands
cli.add_command(provider)
cli.add_command(config_group)

# Sync commands
cli.add_command(test_connection)
cli.add_command(sync)
cli.add_command(devices)
cli.add_command(cleanup)

# Export / import and history commands
cli.add_command(export_data)
cli.add_command(import_data)
cli.add_command(history)
cli.add_command(stats)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    # Main entry points
    "cli",
    "main",
    "setup_logging",
    # Config utilities
    "get_config_dir",
    "get_config_file",
    "load_config",
    "load_settings",
    "save_config",
    "save_settings",
]
