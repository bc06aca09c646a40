"""Top-level driver of the sync engine.

This module provides:
- SyncScheduler: Periodic poll for new assets plus reconciliation passes

The periodic poll asks the library for assets created after the stored
watermark and feeds them into the upload queue. The watermark only moves
once outcomes are recorded, and never past an asset that is still queued,
retrying, or that failed; those are seen again by the next poll.

The reconciliation pass enqueues every asset not yet confirmed on the
server. It runs when the scheduler starts configured and whenever the
configuration becomes complete or points at another server. After a
server change it runs on the queue's drain thread, once the upload still
aimed at the previous server has finished and its state was cleared.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import TYPE_CHECKING

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from photomirror.core.types import EngineState

if TYPE_CHECKING:
    from photomirror.client.library import Asset, PhotoLibrary
    from photomirror.client.state import PersistentSyncState
    from photomirror.client.sync.queue import UploadQueue
    from photomirror.core.config import ServerConfig, SyncSettings

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 60.0  # seconds
POLL_JOB_ID = "library_poll"


class SyncScheduler:
    """Feeds new and unconfirmed assets into the upload queue.

    Does nothing while the settings are incomplete: no job is armed and
    enqueue() is a no-op.
    """

    def __init__(
        self,
        library: PhotoLibrary,
        queue: UploadQueue,
        state: PersistentSyncState,
        settings: SyncSettings,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        """Initialize the scheduler.

        Args:
            library: Local photo store.
            queue: Upload queue fed by this scheduler.
            state: Durable sync state holding the watermark.
            settings: Server and username settings.
            poll_interval: Seconds between polls.
        """
        self._library = library
        self._queue = queue
        self._state = state
        self._settings = settings
        self._poll_interval = poll_interval

        self._scheduler: BackgroundScheduler | None = None
        self._unsubscribe: Callable[[], None] | None = None
        self._lock = threading.RLock()
        self._poll_lock = threading.Lock()

        # Assets seen by a poll, keyed by id, valued by creation timestamp
        self._outstanding: dict[str, float] = {}
        self._failed: dict[str, float] = {}
        self._resolved: dict[str, float] = {}

    # === Lifecycle ===

    def start(self) -> None:
        """Start the scheduler and follow settings changes."""
        if self._scheduler is not None:
            return  # Already running

        self._scheduler = BackgroundScheduler()
        self._scheduler.start()
        self._unsubscribe = self._settings.subscribe(self._on_settings_changed)
        logger.info("Sync scheduler started (poll every %.0fs)", self._poll_interval)

        if self.is_configured:
            self._arm()
            self.reconcile()
        else:
            logger.info("No server configured, sync disabled until configured")

    def shutdown(self) -> None:
        """Stop polling and stop following settings changes."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Sync scheduler stopped")

    def _arm(self) -> None:
        """Schedule the poll job."""
        if self._scheduler is None:
            return
        if self._state.get_watermark() is None:
            self._state.advance_watermark(time.time())
        self._scheduler.add_job(
            self._poll_job,
            trigger=IntervalTrigger(seconds=self._poll_interval),
            id=POLL_JOB_ID,
            name="Library poll",
            replace_existing=True,
        )
        logger.info("Library poll armed")

    def _disarm(self) -> None:
        """Remove the poll job."""
        if self._scheduler is None:
            return
        if self._scheduler.get_job(POLL_JOB_ID) is not None:
            self._scheduler.remove_job(POLL_JOB_ID)
            logger.info("Library poll disarmed")

    @property
    def is_armed(self) -> bool:
        return self._scheduler is not None and self._scheduler.get_job(POLL_JOB_ID) is not None

    def _on_settings_changed(
        self, settings: SyncSettings, previous: ServerConfig | None
    ) -> None:
        server = settings.server
        moved = previous is not None and server is not None and server != previous
        if not settings.is_configured:
            self._disarm()
            return

        armed = self.is_armed
        if not armed:
            self._arm()

        if moved:
            logger.info("Server changed from %s to %s", previous.base_url, server.base_url)
            # The in-flight upload still targets the previous server
            self._queue.reset_server()
            self._queue.call_soon(self.reconcile)
        elif not armed:
            self.reconcile()

    # === Status ===

    @property
    def is_configured(self) -> bool:
        return self._settings.is_configured

    @property
    def watermark(self) -> float | None:
        """Get the stored watermark (epoch seconds)."""
        return self._state.get_watermark()

    @property
    def state(self) -> EngineState:
        """Get the coarse engine state."""
        if not self.is_configured:
            return EngineState.UNCONFIGURED
        with self._lock:
            waiting = bool(self._outstanding)
        if waiting or self._queue.is_busy:
            return EngineState.SYNCING
        return EngineState.IDLE

    # === Triggers ===

    def enqueue(self, asset: Asset) -> bool:
        """Enqueue one asset, e.g. because it was just seen on screen.

        Returns:
            True if the queue admitted the asset.
        """
        if not self.is_configured:
            return False
        return self._queue.enqueue(asset, self._on_complete)

    def _poll_job(self) -> None:
        """Job function for the periodic poll."""
        try:
            self.poll()
        except Exception:
            logger.exception("Error during library poll")

    def poll(self) -> int:
        """Enqueue assets created after the watermark.

        Returns:
            Number of assets admitted by the queue.
        """
        if not self.is_configured:
            logger.debug("Not configured, skipping poll")
            return 0

        with self._poll_lock:
            watermark = self._state.get_watermark()
            if watermark is None:
                watermark = time.time()
                self._state.advance_watermark(watermark)

            assets = sorted(
                self._library.assets_created_after(watermark),
                key=lambda a: (a.created_ts, a.asset_id),
            )

            admitted = 0
            with self._lock:
                # Failed assets are behind the watermark and come back in this query
                self._failed.clear()
                for asset in assets:
                    self._outstanding[asset.asset_id] = asset.created_ts
                    if self._queue.enqueue(asset, self._on_complete):
                        admitted += 1
                    elif asset.asset_id not in self._queue:
                        # Not admitted and not pending elsewhere
                        self._outstanding.pop(asset.asset_id, None)
                        self._failed[asset.asset_id] = asset.created_ts
                self._advance()

        if assets:
            logger.info("Poll found %d new assets, %d queued", len(assets), admitted)
        else:
            logger.debug("Poll found no new assets")
        return admitted

    def reconcile(self) -> int:
        """Enqueue every asset not yet confirmed on the server.

        State of assets no longer in the library is dropped.

        Returns:
            Number of assets admitted by the queue.
        """
        if not self.is_configured:
            logger.debug("Not configured, skipping reconciliation")
            return 0

        assets = self._library.all_assets()
        present = {asset.asset_id for asset in assets}

        gone = self._state.known_ids() - present
        if gone:
            self._queue.call_soon(lambda: self._prune(gone))

        admitted = 0
        pending = 0
        for asset in assets:
            if self._state.is_confirmed(asset.asset_id):
                continue
            pending += 1
            if self.enqueue(asset):
                admitted += 1

        logger.info(
            "Reconciliation: %d assets, %d unconfirmed, %d queued",
            len(assets),
            pending,
            admitted,
        )
        return admitted

    def _prune(self, asset_ids: set[str]) -> None:
        for asset_id in asset_ids:
            self._state.remove_asset(asset_id)
            logger.debug("Dropped state of deleted asset %s", asset_id)

    # === Watermark ===

    def _on_complete(self, asset: Asset, success: bool) -> None:
        """Record an asset's outcome (drain thread)."""
        with self._lock:
            created_ts = self._outstanding.pop(asset.asset_id, None)
            if created_ts is None:
                return
            if success:
                self._resolved[asset.asset_id] = created_ts
            else:
                self._failed[asset.asset_id] = created_ts
            self._advance()

    def _advance(self) -> None:
        """Move the watermark up to the newest resolved asset that has
        nothing unresolved at or before it (lock held)."""
        blockers = list(self._outstanding.values()) + list(self._failed.values())
        barrier = min(blockers) if blockers else float("inf")

        passed = [ts for ts in self._resolved.values() if ts < barrier]
        if not passed:
            return
        candidate = max(passed)
        self._resolved = {
            asset_id: ts for asset_id, ts in self._resolved.items() if ts > candidate
        }
        if self._state.advance_watermark(candidate):
            logger.debug("Watermark at %.3f", candidate)
