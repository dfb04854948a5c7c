"""Export, import and history commands for the settingsync CLI.

Commands:
- export: Write the local data to a portable JSON file
- import: Replace the local data from an export file
- history: Show (or clear) the operation history
- stats: Show aggregate history statistics
"""

from __future__ import annotations

import sys
from pathlib import Path

import click

from settingsync.client.cli.config import format_time, open_orchestrator, save_data


@click.command("export")
@click.argument("file", type=click.Path(dir_okay=False, path_type=Path), required=False)
def export_data(file: Path | None) -> None:
    """Export the local data to FILE (default: a timestamped backup name)."""
    orchestrator = open_orchestrator()
    try:
        payload = orchestrator.export()
        if file is None:
            file = Path(orchestrator.backup_filename())
    finally:
        orchestrator.close()

    file.write_bytes(payload)
    click.echo(f"Exported {len(payload)} bytes to {file}")


@click.command("import")
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def import_data(file: Path) -> None:
    """Import FILE, replacing the local data."""
    orchestrator = open_orchestrator()
    try:
        result = orchestrator.import_data(file.read_bytes())
    finally:
        orchestrator.close()

    if not result.success or result.snapshot is None:
        click.echo(f"Error: {result.message}", err=True)
        sys.exit(1)

    save_data(result.snapshot)
    click.echo(result.message)


@click.command()
@click.option("--clear", is_flag=True, help="Remove all history entries.")
def history(clear: bool) -> None:
    """Show the most recent export, import and sync operations."""
    orchestrator = open_orchestrator()
    try:
        if clear:
            orchestrator.clear_history()
            click.echo("History cleared.")
            return
        entries = orchestrator.get_history()
    finally:
        orchestrator.close()

    if not entries:
        click.echo("No history.")
        return
    for entry in entries:
        status = "ok  " if entry.success else "FAIL"
        line = f"{format_time(entry.timestamp)}  {status}  {entry.action.value:<6}  {entry.provider}"
        if entry.conflicts:
            line += f"  ({entry.conflicts} conflict(s))"
        click.echo(f"{line}  {entry.details}")


@click.command()
def stats() -> None:
    """Show aggregate statistics over the history."""
    orchestrator = open_orchestrator()
    try:
        summary = orchestrator.get_stats()
    finally:
        orchestrator.close()

    click.echo(f"Total operations: {summary.total_ops}")
    click.echo(f"Success rate: {summary.success_rate:.0f}%")
    last = format_time(summary.last_op_timestamp) if summary.last_op_timestamp else "never"
    click.echo(f"Last operation: {last}")
    click.echo(f"Total data: {summary.total_bytes} bytes")
