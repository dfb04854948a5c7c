"""Provider management commands for the settingsync CLI.

Commands:
- provider add: Add a WebDAV or local-file sync target
- provider list: List configured providers
- provider use: Select the active provider
- provider remove: Remove a provider
"""

from __future__ import annotations

import sys
from dataclasses import replace

import click

from settingsync.client.cli.config import load_settings, save_settings
from settingsync.client.credentials import delete_secret, store_secret
from settingsync.core.config import DEFAULT_SYNC_FOLDER, DEFAULT_TIMEOUT, ConfigError, ProviderConfig
from settingsync.core.types import ProviderKind


@click.group()
def provider() -> None:
    """Manage sync providers."""


@provider.command("add")
@click.argument("name")
@click.option("--url", help="WebDAV endpoint URL.")
@click.option("--username", "-u", help="Username for Basic authentication.")
@click.option("--password", "-p", help="Password for Basic authentication.")
@click.option("--token", help="Bearer token.")
@click.option("--folder", default=DEFAULT_SYNC_FOLDER, show_default=True, help="Remote folder.")
@click.option("--timeout", default=DEFAULT_TIMEOUT, show_default=True, help="Request timeout.")
@click.option("--compress", is_flag=True, help="Upload gzip-compressed snapshots.")
@click.option(
    "--local",
    "local_path",
    type=click.Path(dir_okay=False),
    help="Sync to a local file instead of a WebDAV server.",
)
@click.option("--no-keyring", is_flag=True, help="Keep the secret in config.json.")
def add(
    name: str,
    url: str | None,
    username: str | None,
    password: str | None,
    token: str | None,
    folder: str,
    timeout: float,
    compress: bool,
    local_path: str | None,
    no_keyring: bool,
) -> None:
    """Add a sync provider named NAME.

    The first provider added becomes the active one.
    """
    try:
        settings = load_settings()
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if settings.get_provider(name) is not None:
        click.echo(f"Error: Provider '{name}' already exists.", err=True)
        sys.exit(1)

    if username and password is None and not local_path:
        password = click.prompt("Password", hide_input=True)

    try:
        if local_path:
            config = ProviderConfig(name=name, kind=ProviderKind.LOCAL, path=local_path)
        else:
            config = ProviderConfig(
                name=name,
                url=url or "",
                username=username,
                password=password,
                token=token,
                folder=folder,
                timeout=timeout,
                compress=compress,
            )
        providers = [*settings.providers, config]
        settings = replace(
            settings,
            providers=providers,
            active_provider=settings.active_provider or name,
        )
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    secret = config.password if config.username else config.token
    if secret and not no_keyring and not store_secret(name, config.username, secret):
        click.echo("Warning: keyring unavailable, secret stored in config.json.", err=True)

    save_settings(settings)
    if config.kind == ProviderKind.REMOTE and not config.is_secure:
        click.echo("Warning: the endpoint does not use HTTPS.", err=True)
    click.echo(f"Added provider '{name}'.")


@provider.command("list")
def list_providers() -> None:
    """List configured providers."""
    try:
        settings = load_settings()
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if not settings.providers:
        click.echo("No providers configured. Run 'settingsync provider add' first.")
        return

    for config in settings.providers:
        marker = "*" if config.name == settings.active_provider else " "
        target = config.path if config.kind == ProviderKind.LOCAL else f"{config.url}{config.folder}"
        state = "" if config.enabled else " (disabled)"
        click.echo(f"{marker} {config.name} [{config.kind.value}] {target}{state}")


@provider.command("use")
@click.argument("name")
def use(name: str) -> None:
    """Make NAME the active provider."""
    try:
        settings = load_settings()
        settings = replace(settings, active_provider=name)
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    save_settings(settings)
    click.echo(f"Active provider: {name}")


@provider.command("remove")
@click.argument("name")
def remove(name: str) -> None:
    """Remove the provider NAME and its stored secret."""
    try:
        settings = load_settings()
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    config = settings.get_provider(name)
    if config is None:
        click.echo(f"Error: Provider '{name}' not found.", err=True)
        sys.exit(1)

    active = None if settings.active_provider == name else settings.active_provider
    settings = replace(
        settings,
        providers=[p for p in settings.providers if p.name != name],
        active_provider=active,
    )
    if config.kind == ProviderKind.REMOTE:
        delete_secret(name, config.username)
    save_settings(settings)
    click.echo(f"Removed provider '{name}'.")
