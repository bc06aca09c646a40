"""Configuration utilities for photomirror CLI.

This module provides shared configuration functions used across CLI commands.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from photomirror.core.config import ServerConfig, SyncSettings


def get_config_dir() -> Path:
    """Get the configuration directory for photomirror.

    Returns:
        Path to ~/.photomirror or equivalent.
    """
    return Path.home() / ".photomirror"


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


def get_state_path() -> Path:
    """Get the path to the sync state database."""
    return get_config_dir() / "state.db"


def load_config() -> dict[str, Any]:
    """Load configuration from config file."""
    config_file = get_config_file()
    if config_file.exists():
        return dict(json.loads(config_file.read_text()))
    return {}


def save_config(config: dict[str, Any]) -> None:
    """Save configuration to config file."""
    config_file = get_config_file()
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(json.dumps(config, indent=2))


def get_library_folder() -> Path:
    """Get the photo library folder.

    Returns:
        Path to the library folder (configured or default ~/Pictures).
    """
    config = load_config()
    if config.get("library"):
        return Path(config["library"]).expanduser().resolve()
    return Path.home() / "Pictures"


def settings_from_config(config: dict[str, Any] | None = None) -> SyncSettings:
    """Build sync settings from the config file.

    Missing host, port or username leave the settings unconfigured.

    Raises:
        ConfigurationError: If host or port are present but invalid.
    """
    if config is None:
        config = load_config()
    server = ServerConfig.from_values(config.get("host"), config.get("port"))
    return SyncSettings(server=server, username=config.get("username"))
