"""Configure command for photomirror CLI.

Commands:
- configure: Set the server address, username and library folder
"""

from __future__ import annotations

import sys
from pathlib import Path

import click

from photomirror.client.cli.config import get_config_file, load_config, save_config
from photomirror.core.config import ConfigurationError, ServerConfig


@click.command()
@click.option("--host", default=None, help="Server host name or IP address.")
@click.option("--port", default=None, help="Server port (1-65535).")
@click.option("--username", default=None, help="Name used for this library's folder on the server.")
@click.option(
    "--library",
    default=None,
    type=click.Path(file_okay=False, path_type=Path),
    help="Folder holding the photos to mirror.",
)
def configure(
    host: str | None,
    port: str | None,
    username: str | None,
    library: Path | None,
) -> None:
    """Set the file server and photo library.

    Options that are not given are prompted for, defaulting to the
    current values.
    """
    config = load_config()

    if host is None:
        host = click.prompt("Server host", default=config.get("host") or None)
    if port is None:
        port = click.prompt("Server port", default=str(config.get("port") or "") or None)
    if username is None:
        username = click.prompt("Username", default=config.get("username") or None)

    try:
        server = ServerConfig(host=host or "", port=port)  # type: ignore[arg-type]
    except ConfigurationError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    username = (username or "").strip()
    if not username:
        click.echo("Error: Username must not be empty", err=True)
        sys.exit(1)
    if "/" in username or "\\" in username:
        click.echo("Error: Username must not contain path separators", err=True)
        sys.exit(1)

    config["host"] = server.host
    config["port"] = server.port
    config["username"] = username
    if library is not None:
        config["library"] = str(library.expanduser().resolve())

    save_config(config)

    click.echo(f"Server: {server.base_url}")
    click.echo(f"Username: {username}")
    if config.get("library"):
        click.echo(f"Library: {config['library']}")
    click.echo(f"Configuration saved to {get_config_file()}")
