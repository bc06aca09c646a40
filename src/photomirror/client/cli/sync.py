"""Sync command for photomirror CLI.

Commands:
- sync: Upload the photo library to the server
"""

from __future__ import annotations

import logging
import sys
import time

import click

from photomirror.client.cli.config import (
    get_library_folder,
    get_state_path,
    settings_from_config,
)
from photomirror.core.config import ConfigurationError


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


@click.command()
@click.option("--once", is_flag=True, help="Run one reconciliation and poll, then exit.")
@click.option("--watch", "-w", is_flag=True, help="Also watch the library folder for new photos.")
@click.option("--interval", default=60.0, show_default=True, help="Seconds between polls.")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def sync(once: bool, watch: bool, interval: float, verbose: bool) -> None:
    """Upload photos that are not on the server yet.

    Runs until interrupted, polling the library for new photos.
    Use --once for a single pass.
    """
    from photomirror.client.api import NasClient
    from photomirror.client.library import FolderPhotoLibrary
    from photomirror.client.state import PersistentSyncState
    from photomirror.client.sync import (
        RemoteExistenceChecker,
        SyncScheduler,
        UploadQueue,
        UploadTransport,
    )
    from photomirror.client.watcher import LibraryWatcher
    from photomirror.core.hashing import ContentHasher

    if once and watch:
        click.echo("Error: --once and --watch cannot be combined", err=True)
        sys.exit(1)

    _setup_logging(verbose)

    try:
        settings = settings_from_config()
    except ConfigurationError as e:
        click.echo(f"Error: Invalid configuration: {e}", err=True)
        sys.exit(1)

    if not settings.is_configured:
        click.echo("Error: Not configured. Run 'photomirror configure' first.", err=True)
        sys.exit(1)

    library_folder = get_library_folder()
    if not library_folder.is_dir():
        click.echo(f"Error: Library folder does not exist: {library_folder}", err=True)
        sys.exit(1)

    library = FolderPhotoLibrary(library_folder)
    state_path = get_state_path()
    state_path.parent.mkdir(parents=True, exist_ok=True)
    state = PersistentSyncState(state_path)
    client = NasClient(settings)
    queue = UploadQueue(
        UploadTransport(client),
        RemoteExistenceChecker(client),
        ContentHasher(),
        state,
        settings,
    )
    scheduler = SyncScheduler(
        library,
        queue,
        state,
        settings,
        poll_interval=interval,
    )

    click.echo(f"Syncing {library_folder} to {settings.require_server().base_url}...")

    queue.start()
    try:
        if once:
            scheduler.reconcile()
            scheduler.poll()
            queue.join()
        else:
            scheduler.start()
            watcher = LibraryWatcher(library, scheduler) if watch else None
            if watcher is not None:
                watcher.start()
            click.echo("Press Ctrl+C to stop.\n")
            try:
                while True:
                    time.sleep(1.0)
            except KeyboardInterrupt:
                click.echo("\nStopping...")
            finally:
                if watcher is not None:
                    watcher.stop()
                scheduler.shutdown()
    finally:
        queue.stop()
        client.close()
        state.close()

    stats = queue.stats
    if stats.last_errors:
        click.echo(click.style("\nErrors:", fg="red"))
        for error in stats.last_errors:
            click.echo(f"  ✗ {error}")

    if stats.uploaded == 0 and stats.already_present == 0 and stats.failed == 0:
        click.echo("Everything is up to date.")
    else:
        click.echo(
            f"\nSync complete: {stats.uploaded} uploaded, "
            f"{stats.already_present} already on server, "
            f"{stats.failed} failed"
        )
    if stats.failed:
        sys.exit(1)
