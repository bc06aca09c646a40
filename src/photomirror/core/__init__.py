"""Core module - Shared configuration, hashing and types."""

from photomirror.core.config import (
    ConfigurationError,
    ConfigurationMissing,
    ServerConfig,
    SyncSettings,
)
from photomirror.core.hashing import DEFAULT_WINDOW_SIZE, ContentHasher, HashPolicy
from photomirror.core.types import EngineState, PhotoMirrorError

__all__ = [
    # Config
    "ConfigurationError",
    "ConfigurationMissing",
    "ServerConfig",
    "SyncSettings",
    # Hashing
    "ContentHasher",
    "DEFAULT_WINDOW_SIZE",
    "HashPolicy",
    # Types
    "EngineState",
    "PhotoMirrorError",
]
