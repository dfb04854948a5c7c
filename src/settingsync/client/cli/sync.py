"""Sync commands for the settingsync CLI.

Commands:
- sync: Run a sync round (or keep syncing with --watch)
- test-connection: Check a provider's endpoint and credentials
- devices: List devices that uploaded snapshots
- cleanup: Delete old remote snapshots
"""

from __future__ import annotations

import sys
import threading

import click

from settingsync.client.cli.config import format_time, open_orchestrator, save_data
from settingsync.client.sync.orchestrator import SyncOrchestrator
from settingsync.client.sync.types import Conflict, SyncEvent, SyncEventType, SyncResult


def _echo_conflicts(conflicts: list[Conflict]) -> None:
    click.echo(click.style("\nConflicts:", fg="yellow"))
    for conflict in conflicts:
        resolution = conflict.resolution.value if conflict.resolution else "unresolved"
        click.echo(f"  ! {conflict.path.value} ({resolution})")


def _report(result: SyncResult) -> None:
    if result.has_conflicts:
        _echo_conflicts(result.conflicts or [])
    if result.success:
        click.echo(click.style(result.message, fg="green"))
    else:
        click.echo(f"Error: {result.message}", err=True)


@click.command()
@click.option("--watch", "-w", is_flag=True, help="Keep syncing on the configured interval.")
def sync(watch: bool) -> None:
    """Synchronize the local data store with the active provider."""
    orchestrator = open_orchestrator(auto_sync=watch)

    if watch:
        _watch(orchestrator)
        return

    try:
        result = orchestrator.start_round()
    finally:
        orchestrator.close()

    if result.success and result.snapshot is not None:
        save_data(result.snapshot)
    _report(result)
    if not result.success:
        sys.exit(1)


def _watch(orchestrator: SyncOrchestrator) -> None:
    def on_event(event: SyncEvent) -> None:
        if event.type == SyncEventType.SYNC_START:
            click.echo("Syncing...")
        elif event.type == SyncEventType.SYNC_SUCCESS:
            snapshot = event.data.get("snapshot")
            if snapshot is not None:
                save_data(snapshot)
            if event.data.get("conflicts"):
                _echo_conflicts(event.data["conflicts"])
            click.echo(click.style("Sync completed.", fg="green"))
        elif event.type == SyncEventType.SYNC_ERROR:
            click.echo(f"Sync failed: {event.error}", err=True)

    orchestrator.subscribe(on_event)
    settings = orchestrator.settings
    click.echo(
        f"Watching: syncing every {settings.sync_interval} minute(s). Press Ctrl+C to stop."
    )
    orchestrator.start_round()

    stop = threading.Event()
    try:
        while not stop.wait(1.0):
            pass
    except KeyboardInterrupt:
        click.echo("\nStopping...")
    finally:
        orchestrator.close()


@click.command("test-connection")
@click.argument("name", required=False)
def test_connection(name: str | None) -> None:
    """Test the connection to provider NAME (default: the active one)."""
    orchestrator = open_orchestrator()
    try:
        config = None
        if name is not None:
            config = orchestrator.settings.get_provider(name)
            if config is None:
                click.echo(f"Error: Provider '{name}' not found.", err=True)
                sys.exit(1)
        check = orchestrator.test_connection(config)
    finally:
        orchestrator.close()

    if check:
        click.echo(click.style(f"OK: {check.message}", fg="green"))
    else:
        click.echo(f"Failed: {check.message}", err=True)
        sys.exit(1)


@click.command()
def devices() -> None:
    """List devices that uploaded snapshots to the active provider."""
    orchestrator = open_orchestrator()
    try:
        infos = orchestrator.list_device_info()
        this_device = orchestrator.device.id
    finally:
        orchestrator.close()

    if not infos:
        click.echo("No devices found.")
        return
    for info in sorted(infos, key=lambda i: i.last_seen, reverse=True):
        marker = "*" if info.id == this_device else " "
        click.echo(f"{marker} {info.id}  {info.name}  last seen {format_time(info.last_seen)}")


@click.command()
@click.option("--days", default=30, show_default=True, help="Retention period in days.")
def cleanup(days: int) -> None:
    """Delete remote snapshots older than the retention period."""
    orchestrator = open_orchestrator()
    try:
        result = orchestrator.cleanup(days)
    finally:
        orchestrator.close()

    if result.success:
        click.echo(result.message)
    else:
        click.echo(f"Error: {result.message}", err=True)
        sys.exit(1)
