"""Remote listing command for photomirror CLI.

Commands:
- ls: List files stored on the server
"""

from __future__ import annotations

import sys
from datetime import datetime

import click
import httpx

from photomirror.client.cli.config import settings_from_config
from photomirror.core.config import ConfigurationError


def _format_size(size: int) -> str:
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{size} B"


@click.command(name="ls")
@click.argument("path", default="")
@click.option("--page", default=1, show_default=True, type=click.IntRange(min=1), help="Page number.")
def ls(path: str, page: int) -> None:
    """List files on the server under PATH (default: the server root)."""
    from photomirror.client.api import APIError, NasClient

    try:
        settings = settings_from_config()
    except ConfigurationError as e:
        click.echo(f"Error: Invalid configuration: {e}", err=True)
        sys.exit(1)

    if settings.server is None:
        click.echo("Error: Not configured. Run 'photomirror configure' first.", err=True)
        sys.exit(1)

    with NasClient(settings) as client:
        try:
            files = client.list_files(path, page)
        except APIError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)
        except httpx.HTTPError as e:
            click.echo(f"Error: Cannot reach server: {e}", err=True)
            sys.exit(1)

    if not files:
        click.echo("No files.")
        return

    for remote in files:
        created = datetime.fromtimestamp(remote.create_time / 1000).strftime("%Y-%m-%d %H:%M")
        click.echo(f"{created}  {_format_size(remote.size):>10}  {remote.name}")
