"""Shared types and dataclasses for the upload engine.

This module provides:
- SyncError, NetworkTransient, DataUnavailable, SerializationError: Exceptions
- UploadOutcome, UploadAttemptResult: Result of one upload attempt
- AssetStatus: Queue state of an asset
- QueueEntry: An admitted asset and its completion callback
- QueueStats: Counters kept by the queue
- Type aliases for callbacks
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import TYPE_CHECKING

from photomirror.core.types import PhotoMirrorError

if TYPE_CHECKING:
    from photomirror.client.library import Asset


class SyncError(PhotoMirrorError):
    """Base exception for sync errors."""


class NetworkTransient(SyncError):
    """Timeout, connection error or retryable HTTP status."""


class DataUnavailable(SyncError):
    """The local asset payload could not be read."""


class SerializationError(SyncError):
    """Digest or request body could not be built."""


class UploadOutcome(Enum):
    """Tag of an upload attempt result."""

    SUCCESS = auto()
    ALREADY_EXISTS = auto()
    TRANSIENT_FAILURE = auto()
    PERMANENT_FAILURE = auto()


@dataclass(frozen=True)
class UploadAttemptResult:
    """Outcome of one attempt to get an asset onto the server."""

    outcome: UploadOutcome
    reason: str | None = None
    status_code: int | None = None

    @classmethod
    def success(cls) -> UploadAttemptResult:
        return cls(UploadOutcome.SUCCESS)

    @classmethod
    def already_exists(cls) -> UploadAttemptResult:
        return cls(UploadOutcome.ALREADY_EXISTS)

    @classmethod
    def transient(cls, reason: str, status_code: int | None = None) -> UploadAttemptResult:
        return cls(UploadOutcome.TRANSIENT_FAILURE, reason, status_code)

    @classmethod
    def permanent(cls, reason: str, status_code: int | None = None) -> UploadAttemptResult:
        return cls(UploadOutcome.PERMANENT_FAILURE, reason, status_code)

    @property
    def ok(self) -> bool:
        """True when the server now holds the content."""
        return self.outcome in (UploadOutcome.SUCCESS, UploadOutcome.ALREADY_EXISTS)

    @property
    def retryable(self) -> bool:
        return self.outcome == UploadOutcome.TRANSIENT_FAILURE

    def __str__(self) -> str:
        if self.reason:
            return f"{self.outcome.name}({self.reason})"
        return self.outcome.name


class AssetStatus(Enum):
    """Queue state of an asset identifier."""

    NOT_QUEUED = auto()
    QUEUED = auto()
    IN_FLIGHT = auto()
    RETRYING = auto()


# Completion callback: (asset, success)
CompletionCallback = Callable[["Asset", bool], None]

# Progress callback: fraction in [0, 1]
ProgressCallback = Callable[[float], None]


@dataclass
class QueueEntry:
    """An admitted asset waiting for (or undergoing) transfer.

    Attributes:
        asset: The asset to upload.
        completion: Callback receiving the final result.
        attempt: Number of attempts already made.
    """

    asset: Asset
    completion: CompletionCallback | None = None
    attempt: int = 0

    @property
    def asset_id(self) -> str:
        return self.asset.asset_id


@dataclass
class QueueStats:
    """Counters kept by the upload queue."""

    uploaded: int = 0
    already_present: int = 0
    failed: int = 0
    retries: int = 0
    rejected: int = 0
    last_errors: list[str] = field(default_factory=list)

    def record_error(self, message: str, keep: int = 20) -> None:
        self.last_errors.append(message)
        del self.last_errors[:-keep]
