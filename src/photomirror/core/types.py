"""Shared types for photomirror.

This module defines the exception root and enums used by both the
engine and the CLI.
"""

from __future__ import annotations

from enum import Enum


class PhotoMirrorError(Exception):
    """Base exception for all photomirror errors."""


class EngineState(str, Enum):
    """Coarse state of the sync engine.

    Reported by the scheduler and shown by ``photomirror status``.
    """

    UNCONFIGURED = "unconfigured"
    IDLE = "idle"
    SYNCING = "syncing"
