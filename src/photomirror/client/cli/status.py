"""Status command for photomirror CLI.

Commands:
- status: Show configuration and sync progress
"""

from __future__ import annotations

import sys
from datetime import datetime

import click

from photomirror.client.cli.config import (
    get_library_folder,
    get_state_path,
    settings_from_config,
)
from photomirror.core.config import ConfigurationError


@click.command()
def status() -> None:
    """Show the configured server and how much of the library is mirrored."""
    from photomirror.client.library import FolderPhotoLibrary
    from photomirror.client.state import PersistentSyncState

    try:
        settings = settings_from_config()
    except ConfigurationError as e:
        click.echo(f"Error: Invalid configuration: {e}", err=True)
        sys.exit(1)

    if not settings.is_configured:
        click.echo("Not configured. Run 'photomirror configure' to set up a server.")
        return

    library_folder = get_library_folder()
    click.echo(f"Server:   {settings.require_server().base_url}")
    click.echo(f"Username: {settings.username}")
    click.echo(f"Library:  {library_folder}")

    state_path = get_state_path()
    if not state_path.exists():
        click.echo("Never synced.")
        return

    state = PersistentSyncState(state_path)
    try:
        confirmed = state.confirmed_ids()
        watermark = state.get_watermark()
    finally:
        state.close()

    if library_folder.is_dir():
        assets = FolderPhotoLibrary(library_folder).all_assets()
        on_server = sum(1 for asset in assets if asset.asset_id in confirmed)
        click.echo(f"Mirrored: {on_server} of {len(assets)} photos")
    else:
        click.echo(f"Mirrored: {len(confirmed)} photos (library folder missing)")

    if watermark is not None:
        last_check = datetime.fromtimestamp(watermark).astimezone()
        click.echo(f"Checked up to: {last_check.isoformat(timespec='seconds')}")
