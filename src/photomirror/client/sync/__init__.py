"""Sync engine mirroring a photo library to the file server.

Architecture:
    SyncScheduler → UploadQueue → RemoteExistenceChecker → UploadTransport

Components:
- **SyncScheduler**: Polls for new assets and runs reconciliation passes
- **UploadQueue**: Deduplicated FIFO with a single drain thread
- **RemoteExistenceChecker**: Cached "already on server?" queries
- **UploadTransport**: Multipart upload with progress reporting
- **RetryPolicy**: Bounded re-submission of transient failures

Durable per-asset state and the watermark live in
photomirror.client.state.PersistentSyncState.
"""

from photomirror.client.sync.existence import RemoteExistenceChecker
from photomirror.client.sync.queue import UploadQueue
from photomirror.client.sync.retry import (
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_RETRY_DELAY,
    NETWORK_EXCEPTIONS,
    RetryPolicy,
    is_permanent_status,
)
from photomirror.client.sync.scheduler import DEFAULT_POLL_INTERVAL, SyncScheduler
from photomirror.client.sync.transport import (
    ProgressReader,
    UploadTransport,
    extension_for,
    file_name_for,
    progress_scope,
    target_path_for,
)
from photomirror.client.sync.types import (
    AssetStatus,
    CompletionCallback,
    DataUnavailable,
    NetworkTransient,
    ProgressCallback,
    QueueEntry,
    QueueStats,
    SerializationError,
    SyncError,
    UploadAttemptResult,
    UploadOutcome,
)

__all__ = [
    # Retry
    "DEFAULT_MAX_ATTEMPTS",
    "DEFAULT_RETRY_DELAY",
    "NETWORK_EXCEPTIONS",
    "RetryPolicy",
    "is_permanent_status",
    # Types and dataclasses
    "AssetStatus",
    "CompletionCallback",
    "DataUnavailable",
    "NetworkTransient",
    "ProgressCallback",
    "QueueEntry",
    "QueueStats",
    "SerializationError",
    "SyncError",
    "UploadAttemptResult",
    "UploadOutcome",
    # Transport
    "ProgressReader",
    "UploadTransport",
    "extension_for",
    "file_name_for",
    "progress_scope",
    "target_path_for",
    # Engine
    "DEFAULT_POLL_INTERVAL",
    "RemoteExistenceChecker",
    "SyncScheduler",
    "UploadQueue",
]
