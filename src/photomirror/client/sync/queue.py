"""Serial upload queue with per-asset deduplication.

This module provides:
- UploadQueue: FIFO of assets drained by a single worker thread

Per asset identifier the queue moves through:

    NOT_QUEUED -> QUEUED -> IN_FLIGHT -> done
                                      -> RETRYING -> QUEUED -> ...

An identifier is a member while QUEUED or IN_FLIGHT; enqueue() rejects
members. The FIFO and the membership map are only ever changed together,
under the same lock.

One drain thread dispatches everything, so exactly one asset is in
flight at a time. Progress values and persistent state are written from
that thread only. On IN_FLIGHT the existence check runs first; content
the server already holds is never uploaded again.

A transient failure releases membership and schedules a re-submission
after the retry delay, so the rest of the queue keeps moving. If the
asset was enqueued again in the meantime, the re-submission joins the
existing entry instead of creating a second one.

Writes that must not interleave with an upload (forgetting the previous
server, pruning deleted assets) are handed to the drain thread with
call_soon() and run between uploads.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from typing import TYPE_CHECKING

from photomirror.client.sync.retry import RetryPolicy
from photomirror.client.sync.transport import file_name_for, target_path_for
from photomirror.client.sync.types import (
    AssetStatus,
    CompletionCallback,
    QueueEntry,
    QueueStats,
    UploadAttemptResult,
    UploadOutcome,
)

if TYPE_CHECKING:
    from photomirror.client.library import Asset
    from photomirror.client.state import PersistentSyncState
    from photomirror.client.sync.existence import RemoteExistenceChecker
    from photomirror.client.sync.transport import UploadTransport
    from photomirror.core.config import SyncSettings
    from photomirror.core.hashing import ContentHasher

logger = logging.getLogger(__name__)


def _chain(
    first: CompletionCallback | None,
    second: CompletionCallback | None,
) -> CompletionCallback | None:
    """Combine two completion callbacks into one."""
    if first is None:
        return second
    if second is None:
        return first

    def both(asset: Asset, success: bool) -> None:
        first(asset, success)
        second(asset, success)

    return both


class UploadQueue:
    """Deduplicated FIFO of uploads with strictly serial dispatch.

    Usage:
        queue = UploadQueue(transport, checker, hasher, state, settings)
        queue.start()

        queue.enqueue(asset, lambda asset, ok: print(asset.asset_id, ok))

        queue.join(timeout=30)
        queue.stop()
    """

    def __init__(
        self,
        transport: UploadTransport,
        checker: RemoteExistenceChecker,
        hasher: ContentHasher,
        state: PersistentSyncState,
        settings: SyncSettings,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        """Initialize the queue.

        Args:
            transport: Performs the multipart upload.
            checker: Answers server-side existence queries.
            hasher: Computes content digests.
            state: Durable per-asset state.
            settings: Provides the username used in remote paths.
            retry_policy: Retry bounds for transient failures.
        """
        self._transport = transport
        self._checker = checker
        self._hasher = hasher
        self._state = state
        self._settings = settings
        self._retry = retry_policy or RetryPolicy()

        self._lock = threading.RLock()
        self._changed = threading.Condition(self._lock)
        self._fifo: deque[QueueEntry] = deque()
        self._members: dict[str, QueueEntry] = {}
        self._in_flight: str | None = None
        self._retrying: dict[str, list[threading.Timer]] = {}
        self._tasks: deque[Callable[[], None]] = deque()

        self._stats = QueueStats()
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()
        self._closed = False

    # === Lifecycle ===

    def start(self) -> None:
        """Start the drain thread."""
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                logger.warning("Upload queue already running")
                return
            self._closed = False
            self._stop_event.clear()
            self._thread = threading.Thread(
                target=self._run,
                name="UploadQueue",
                daemon=True,
            )
            self._thread.start()
        logger.info("Upload queue started")

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the drain thread.

        The in-flight upload, if any, runs to completion. Queued entries and
        pending retries are dropped without invoking their completions.
        Tasks handed over with call_soon() still run.
        """
        with self._lock:
            self._closed = True
            self._stop_event.set()
            timers = [timer for pending in self._retrying.values() for timer in pending]
            for timer in timers:
                timer.cancel()
            dropped = len(self._fifo) + len(timers)
            self._retrying.clear()
            for entry in self._fifo:
                self._members.pop(entry.asset_id, None)
            self._fifo.clear()
            self._changed.notify_all()
            thread = self._thread

        if thread is not None and thread.is_alive():
            thread.join(timeout=timeout)

        if thread is None or not thread.is_alive():
            self._run_tasks()
        else:
            logger.warning("Upload queue thread did not stop within %.1fs", timeout)

        with self._lock:
            self._thread = None
        if dropped:
            logger.info("Upload queue stopped, %d pending uploads dropped", dropped)
        else:
            logger.info("Upload queue stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def join(self, timeout: float | None = None) -> bool:
        """Wait until nothing is queued, in flight or waiting to retry.

        Returns:
            True if the queue went idle, False on timeout.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._changed:
            while self._busy():
                if deadline is None:
                    self._changed.wait()
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._changed.wait(timeout=remaining)
            return True

    @property
    def is_busy(self) -> bool:
        """True while anything is queued, in flight or waiting to retry."""
        with self._lock:
            return self._busy()

    def _busy(self) -> bool:
        return bool(self._fifo or self._in_flight or self._retrying or self._tasks)

    # === Drain-thread tasks ===

    def call_soon(self, task: Callable[[], None]) -> None:
        """Run a task on the drain thread, between two uploads.

        Tasks run in submission order, before the next entry is dispatched.
        When no drain thread is running (or this is the drain thread), the
        task runs right away on the caller's thread.
        """
        with self._lock:
            thread = self._thread
            if (
                thread is not None
                and thread.is_alive()
                and thread is not threading.current_thread()
                and not self._stop_event.is_set()
            ):
                self._tasks.append(task)
                self._changed.notify_all()
                return
        self._run_task(task)

    def reset_server(self) -> None:
        """Forget what is known about the previous server.

        The existence cache and the confirmed-remote flags are cleared once
        the in-flight upload, which still targets the previous server, has
        finished; everything dispatched afterwards sees the cleared state.
        """
        self.call_soon(self._forget_server)

    def _forget_server(self) -> None:
        self._checker.reset()
        self._state.reset()
        logger.info("Cleared remote state of the previous server")

    def _run_tasks(self) -> None:
        while True:
            with self._lock:
                if not self._tasks:
                    return
                task = self._tasks[0]
            self._run_task(task)
            with self._lock:
                self._tasks.popleft()
                self._changed.notify_all()

    def _run_task(self, task: Callable[[], None]) -> None:
        try:
            task()
        except Exception:
            logger.exception("Queue task %r failed", task)

    # === Admission ===

    def enqueue(self, asset: Asset, completion: CompletionCallback | None = None) -> bool:
        """Admit an asset for upload.

        Rejected (no-op, completion never invoked) when the asset is already
        queued or in flight, when the queue is stopped, or when no server is
        configured.

        Args:
            asset: Asset to upload.
            completion: Called once with ``(asset, success)`` when the asset
                reaches a final result.

        Returns:
            True if the asset was admitted.
        """
        if not self._settings.is_configured:
            logger.debug("Not configured, ignoring enqueue of %s", asset.asset_id)
            return False

        with self._lock:
            if self._closed:
                return False
            if asset.asset_id in self._members:
                self._stats.rejected += 1
                logger.debug("Already queued: %s", asset.asset_id)
                return False

            self._admit(QueueEntry(asset=asset, completion=completion))
            logger.debug("Queued %s (queue size: %d)", asset.asset_id, len(self._fifo))
            return True

    def _admit(self, entry: QueueEntry) -> None:
        """Append an entry and register its membership (lock held)."""
        self._fifo.append(entry)
        self._members[entry.asset_id] = entry
        self._changed.notify_all()

    def _resubmit(self, entry: QueueEntry) -> None:
        """Put a failed entry back after its retry delay (timer thread)."""
        with self._lock:
            # Runs on the timer's own thread
            timers = self._retrying.get(entry.asset_id, [])
            if threading.current_thread() in timers:
                timers.remove(threading.current_thread())  # type: ignore[arg-type]
            if not timers:
                self._retrying.pop(entry.asset_id, None)
            if self._closed:
                self._changed.notify_all()
                return

            existing = self._members.get(entry.asset_id)
            if existing is not None:
                # Enqueued again while waiting; keep the single existing entry
                existing.completion = _chain(existing.completion, entry.completion)
                logger.debug("Retry of %s merged into pending entry", entry.asset_id)
                self._changed.notify_all()
                return

            self._admit(entry)
            logger.info(
                "Retrying %s (attempt %d/%d)",
                entry.asset_id,
                entry.attempt + 1,
                self._retry.max_attempts,
            )

    # === Inspection ===

    def status(self, asset_id: str) -> AssetStatus:
        """Get the queue state of an asset."""
        with self._lock:
            if self._in_flight == asset_id:
                return AssetStatus.IN_FLIGHT
            if asset_id in self._members:
                return AssetStatus.QUEUED
            if asset_id in self._retrying:
                return AssetStatus.RETRYING
            return AssetStatus.NOT_QUEUED

    def progress(self, asset_id: str) -> float | None:
        """Get the upload progress of the in-flight asset."""
        return self._state.get_progress(asset_id)

    @property
    def stats(self) -> QueueStats:
        return self._stats

    def __contains__(self, asset_id: object) -> bool:
        with self._lock:
            return asset_id in self._members

    def __len__(self) -> int:
        """Get number of queued (not yet dispatched) entries."""
        with self._lock:
            return len(self._fifo)

    # === Drain loop ===

    def _next_entry(self, timeout: float) -> QueueEntry | None:
        with self._changed:
            if not self._fifo and not self._tasks and not self._stop_event.is_set():
                self._changed.wait(timeout=timeout)
            if not self._fifo or self._tasks or self._stop_event.is_set():
                return None
            entry = self._fifo.popleft()
            self._in_flight = entry.asset_id
            return entry

    def _run(self) -> None:
        """Main processing loop."""
        logger.debug("Upload queue processing loop started")

        while not self._stop_event.is_set():
            self._run_tasks()
            entry = self._next_entry(timeout=0.1)
            if entry is None:
                continue

            try:
                result = self._process(entry)
            except Exception as e:
                logger.exception("Unexpected error processing %s", entry.asset_id)
                result = UploadAttemptResult.permanent(str(e))

            self._finish(entry, result)

        logger.debug("Upload queue processing loop ended")

    def _process(self, entry: QueueEntry) -> UploadAttemptResult:
        """Run one attempt for the in-flight entry."""
        asset = entry.asset
        entry.attempt += 1

        username = self._settings.username
        if not self._settings.is_configured or not username:
            return UploadAttemptResult.permanent("No server configured")

        if self._state.is_confirmed(asset.asset_id):
            logger.debug("%s already confirmed on server", asset.asset_id)
            return UploadAttemptResult.already_exists()

        try:
            digest = self._hasher.digest_asset(asset)
        except Exception as e:
            logger.error("Cannot hash %s: %s", asset.asset_id, e)
            return UploadAttemptResult.permanent(f"DataUnavailable: {e}")

        target_path = target_path_for(username, asset.created_at)
        file_name = file_name_for(asset)

        if self._checker.exists(asset.asset_id, digest, target_path, file_name):
            logger.info("%s already on server, skipping upload", asset.asset_id)
            return UploadAttemptResult.already_exists()

        asset_id = asset.asset_id
        try:
            return self._transport.send(
                asset,
                target_path,
                file_name,
                digest,
                on_progress=lambda fraction: self._state.set_progress(asset_id, fraction),
            )
        finally:
            self._state.clear_progress(asset_id)

    def _finish(self, entry: QueueEntry, result: UploadAttemptResult) -> None:
        """Record an attempt's result and release the entry."""
        asset_id = entry.asset_id
        final = True

        if result.ok:
            self._state.mark_confirmed(asset_id)
            self._checker.remember(asset_id, True)

        with self._lock:
            self._members.pop(asset_id, None)
            self._in_flight = None

            if result.ok:
                if result.outcome == UploadOutcome.SUCCESS:
                    self._stats.uploaded += 1
                else:
                    self._stats.already_present += 1
            elif self._retry.should_retry(result, entry.attempt) and not self._closed:
                final = False
                self._stats.retries += 1
                delay = self._retry.delay_for(entry.attempt)
                timer = threading.Timer(delay, self._resubmit, args=(entry,))
                timer.daemon = True
                self._retrying.setdefault(asset_id, []).append(timer)
                timer.start()
                logger.warning(
                    "Upload of %s failed (%s), retrying in %.1fs", asset_id, result, delay
                )
            else:
                self._stats.failed += 1
                self._stats.record_error(f"{asset_id}: {result}")
                logger.error(
                    "Upload of %s failed after %d attempt(s): %s",
                    asset_id,
                    entry.attempt,
                    result,
                )

            self._changed.notify_all()

        if final and entry.completion is not None:
            try:
                entry.completion(entry.asset, result.ok)
            except Exception:
                logger.exception("Completion callback failed for %s", asset_id)
