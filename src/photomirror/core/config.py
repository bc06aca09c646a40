"""Shared configuration classes for photomirror.

This module provides:
- ServerConfig: Validated address of the file server
- SyncSettings: Mutable settings holder with change notification

Settings are passed explicitly to the components that need them.
Components that must react to changes subscribe to the holder they
were given; there is no process-wide configuration object.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass

from photomirror.core.types import PhotoMirrorError

logger = logging.getLogger(__name__)

MIN_PORT = 1
MAX_PORT = 65535


class ConfigurationError(PhotoMirrorError):
    """Configuration value is invalid."""


class ConfigurationMissing(PhotoMirrorError):
    """No server is configured."""


@dataclass(frozen=True)
class ServerConfig:
    """Address of the file server.

    Attributes:
        host: Host name or IP address (e.g., "192.168.1.100").
        port: TCP port in [1, 65535].
        timeout: Request timeout in seconds.
    """

    host: str
    port: int
    timeout: float = 30.0

    def __post_init__(self) -> None:
        """Validate and normalize host and port."""
        host = (self.host or "").strip()
        if not host:
            raise ConfigurationError("Server host must not be empty")

        try:
            port = int(str(self.port).strip())
        except (TypeError, ValueError):
            raise ConfigurationError(f"Invalid port: {self.port!r}") from None
        if not MIN_PORT <= port <= MAX_PORT:
            raise ConfigurationError(
                f"Port must be between {MIN_PORT} and {MAX_PORT}, got {port}"
            )

        object.__setattr__(self, "host", host.rstrip("/"))
        object.__setattr__(self, "port", port)

    @property
    def base_url(self) -> str:
        """Get the base HTTP URL of the server."""
        if self.host.startswith(("http://", "https://")):
            return f"{self.host}:{self.port}"
        return f"http://{self.host}:{self.port}"

    @classmethod
    def from_values(
        cls, host: str | None, port: str | int | None
    ) -> ServerConfig | None:
        """Build a config from persisted values.

        Returns:
            ServerConfig, or None if either value is absent.

        Raises:
            ConfigurationError: If the values are present but invalid.
        """
        if host is None or port is None or str(host).strip() == "" or str(port).strip() == "":
            return None
        return cls(host=str(host), port=port)  # type: ignore[arg-type]


SettingsListener = Callable[["SyncSettings", "ServerConfig | None"], None]


class SyncSettings:
    """Settings shared by the client, transport and scheduler.

    Listeners are called with ``(settings, previous_server)`` after every
    update, on the thread that performed the update.
    """

    def __init__(
        self,
        server: ServerConfig | None = None,
        username: str | None = None,
    ) -> None:
        self._lock = threading.RLock()
        self._server = server
        self._username = (username or "").strip() or None
        self._listeners: list[SettingsListener] = []

    @property
    def server(self) -> ServerConfig | None:
        """Get the configured server, if any."""
        with self._lock:
            return self._server

    @property
    def username(self) -> str | None:
        """Get the username used in remote paths."""
        with self._lock:
            return self._username

    @property
    def is_configured(self) -> bool:
        """True when both a server and a username are set."""
        with self._lock:
            return self._server is not None and bool(self._username)

    def require_server(self) -> ServerConfig:
        """Get the server config or raise ConfigurationMissing."""
        server = self.server
        if server is None:
            raise ConfigurationMissing("No server configured")
        return server

    def subscribe(self, listener: SettingsListener) -> Callable[[], None]:
        """Register a change listener.

        Returns:
            A function that removes the listener.
        """
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def update(
        self,
        *,
        server: ServerConfig | None = None,
        username: str | None = None,
        clear_server: bool = False,
    ) -> None:
        """Change settings and notify listeners.

        Args:
            server: New server address (None keeps the current one).
            username: New username (None keeps the current one).
            clear_server: Remove the server address entirely.
        """
        with self._lock:
            previous = self._server
            if clear_server:
                self._server = None
            elif server is not None:
                self._server = server
            if username is not None:
                self._username = username.strip() or None
            listeners = list(self._listeners)

        logger.debug("Settings updated (server: %s -> %s)", previous, self.server)
        for listener in listeners:
            listener(self, previous)
