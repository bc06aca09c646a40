"""Command-line interface for photomirror.

This module provides the main CLI entry point and assembles all commands.

Commands:
- configure: Set the server address, username and library folder
- sync: Upload the photo library to the server
- status: Show configuration and sync progress
- ls: List files stored on the server
"""

from __future__ import annotations

import click

from photomirror.client.cli.config import (
    get_config_dir,
    get_config_file,
    get_library_folder,
    get_state_path,
    load_config,
    save_config,
    settings_from_config,
)
from photomirror.client.cli.configure import configure
from photomirror.client.cli.remote import ls
from photomirror.client.cli.status import status
from photomirror.client.cli.sync import sync


@click.group()
@click.version_option(package_name="photomirror")
def cli() -> None:
    """photomirror - Mirror a photo library to a self-hosted file server."""


# Setup commands
cli.add_command(configure)
cli.add_command(status)

# Sync commands
cli.add_command(sync)
cli.add_command(ls)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    # Main entry points
    "cli",
    "main",
    # Config utilities
    "get_config_dir",
    "get_config_file",
    "get_library_folder",
    "get_state_path",
    "load_config",
    "save_config",
    "settings_from_config",
]
