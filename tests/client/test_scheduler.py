"""Tests for the sync scheduler."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterator
from datetime import datetime, timedelta
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from photomirror.client.library import Asset
from photomirror.client.state import PersistentSyncState
from photomirror.client.sync.queue import UploadQueue
from photomirror.client.sync.retry import RetryPolicy
from photomirror.client.sync.scheduler import POLL_JOB_ID, SyncScheduler
from photomirror.client.sync.types import ProgressCallback, UploadAttemptResult
from photomirror.core.config import ServerConfig, SyncSettings
from photomirror.core.hashing import ContentHasher
from photomirror.core.types import EngineState

BASE_TIME = datetime(2024, 3, 15, 9, 0, 0).astimezone()


def make_asset(n: int) -> Asset:
    payload = f"photo-{n}".encode()
    return Asset(f"IMG_{n:04d}", BASE_TIME + timedelta(seconds=n), loader=lambda: payload)


class FakeLibrary:
    """In-memory photo library."""

    def __init__(self, assets: list[Asset] | None = None) -> None:
        self.assets = list(assets or [])

    def all_assets(self) -> list[Asset]:
        return sorted(self.assets, key=lambda a: (a.created_ts, a.asset_id))

    def assets_created_after(self, timestamp: float) -> list[Asset]:
        return [a for a in self.all_assets() if a.created_ts > timestamp]


class MockTransport:
    """Mock transport recording the watermark seen at send time."""

    def __init__(self, state: PersistentSyncState, results: list[UploadAttemptResult] | None = None) -> None:
        self.state = state
        self.results = list(results or [])
        self.sent: list[str] = []
        self.watermark_at_send: dict[str, float | None] = {}
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def send(
        self,
        asset: Asset,
        target_path: str,
        file_name: str,
        digest: str,
        on_progress: ProgressCallback | None = None,
    ) -> UploadAttemptResult:
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            self.sent.append(asset.asset_id)
            self.watermark_at_send[asset.asset_id] = self.state.get_watermark()
        try:
            time.sleep(0.001)
            if self.results:
                return self.results.pop(0)
            return UploadAttemptResult.success()
        finally:
            with self._lock:
                self.active -= 1


class HostRecordingTransport(MockTransport):
    """Mock transport recording the server each upload went to.

    The first upload blocks until the gate is set.
    """

    def __init__(
        self, state: PersistentSyncState, settings: SyncSettings, gate: threading.Event
    ) -> None:
        super().__init__(state)
        self.settings = settings
        self.gate = gate
        self.hosts: list[tuple[str, str]] = []

    def send(
        self,
        asset: Asset,
        target_path: str,
        file_name: str,
        digest: str,
        on_progress: ProgressCallback | None = None,
    ) -> UploadAttemptResult:
        self.hosts.append((asset.asset_id, self.settings.require_server().host))
        if len(self.hosts) == 1:
            self.gate.wait(timeout=5.0)
        return super().send(asset, target_path, file_name, digest, on_progress)


def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class MockChecker:
    """Existence checker that never finds anything."""

    def __init__(self) -> None:
        self.resets = 0

    def exists(self, asset_id: str, digest: str, target_path: str, file_name: str) -> bool:
        return False

    def remember(self, asset_id: str, exists: bool) -> None:
        pass

    def reset(self) -> None:
        self.resets += 1


@pytest.fixture
def state(tmp_path: Path) -> Iterator[PersistentSyncState]:
    state = PersistentSyncState(tmp_path / "state.db")
    yield state
    state.close()


@pytest.fixture
def settings() -> SyncSettings:
    return SyncSettings(server=ServerConfig("nas", 8080), username="alice")


def make_engine(
    state: PersistentSyncState,
    settings: SyncSettings,
    library: FakeLibrary,
    results: list[UploadAttemptResult] | None = None,
    checker: MockChecker | None = None,
    transport: MockTransport | None = None,
) -> tuple[SyncScheduler, UploadQueue, MockTransport]:
    transport = transport or MockTransport(state, results)
    queue = UploadQueue(
        transport,  # type: ignore[arg-type]
        checker or MockChecker(),  # type: ignore[arg-type]
        ContentHasher(),
        state,
        settings,
        retry_policy=RetryPolicy(max_attempts=1, delay=0.01),
    )
    scheduler = SyncScheduler(library, queue, state, settings)
    return scheduler, queue, transport


class TestUnconfigured:
    """Tests for the scheduler without server configuration."""

    def test_start_does_not_arm(self, state: PersistentSyncState) -> None:
        """No job and no reconciliation while unconfigured."""
        library = FakeLibrary([make_asset(1)])
        scheduler, queue, _ = make_engine(state, SyncSettings(), library)
        scheduler.start()
        try:
            assert scheduler.is_armed is False
            assert len(queue) == 0
            assert scheduler.state == EngineState.UNCONFIGURED
        finally:
            scheduler.shutdown()

    def test_poll_and_enqueue_are_noops(self, state: PersistentSyncState) -> None:
        """Triggers do nothing while unconfigured."""
        library = FakeLibrary([make_asset(1)])
        scheduler, queue, _ = make_engine(state, SyncSettings(), library)

        assert scheduler.poll() == 0
        assert scheduler.reconcile() == 0
        assert scheduler.enqueue(make_asset(1)) is False
        assert len(queue) == 0
        assert scheduler.watermark is None


class TestLifecycle:
    """Tests for start, shutdown and settings transitions."""

    def test_start_configured_arms_and_reconciles(
        self, state: PersistentSyncState, settings: SyncSettings
    ) -> None:
        """Starting configured arms the poll job and runs reconciliation."""
        library = FakeLibrary([make_asset(1), make_asset(2)])
        scheduler, queue, _ = make_engine(state, settings, library)
        scheduler.start()
        try:
            job = scheduler._scheduler.get_job(POLL_JOB_ID)  # type: ignore[union-attr]
            assert job is not None
            assert job.trigger.interval == timedelta(seconds=60)
            assert len(queue) == 2
            assert scheduler.watermark is not None
        finally:
            scheduler.shutdown()

        assert scheduler._scheduler is None

    def test_start_idempotent(self, state: PersistentSyncState, settings: SyncSettings) -> None:
        """Calling start twice keeps the same APScheduler instance."""
        scheduler, _, _ = make_engine(state, settings, FakeLibrary())
        scheduler.start()
        first = scheduler._scheduler
        scheduler.start()
        try:
            assert scheduler._scheduler is first
        finally:
            scheduler.shutdown()

    def test_becoming_configured_arms_and_reconciles(self, state: PersistentSyncState) -> None:
        """absent -> present arms the job and triggers one reconciliation."""
        settings = SyncSettings()
        library = FakeLibrary([make_asset(1), make_asset(2), make_asset(3)])
        state.mark_confirmed("IMG_0002")
        scheduler, queue, _ = make_engine(state, settings, library)
        scheduler.start()
        try:
            assert scheduler.is_armed is False

            settings.update(server=ServerConfig("nas", 8080), username="alice")

            assert scheduler.is_armed is True
            assert len(queue) == 2
            assert "IMG_0002" not in queue
        finally:
            scheduler.shutdown()

    def test_losing_configuration_disarms(
        self, state: PersistentSyncState, settings: SyncSettings
    ) -> None:
        """present -> absent removes the poll job."""
        scheduler, _, _ = make_engine(state, settings, FakeLibrary())
        scheduler.start()
        try:
            assert scheduler.is_armed is True

            settings.update(clear_server=True)

            assert scheduler.is_armed is False
        finally:
            scheduler.shutdown()

    def test_server_change_resets_caches(
        self, state: PersistentSyncState, settings: SyncSettings
    ) -> None:
        """Switching servers clears the existence cache and confirmations."""
        checker = MockChecker()
        library = FakeLibrary([make_asset(1)])
        state.mark_confirmed("IMG_0001")
        scheduler, queue, _ = make_engine(state, settings, library, checker=checker)
        scheduler.start()
        try:
            assert len(queue) == 0

            settings.update(server=ServerConfig("other-nas", 8080))

            assert checker.resets == 1
            assert state.is_confirmed("IMG_0001") is False
            assert "IMG_0001" in queue
        finally:
            scheduler.shutdown()

    def test_server_change_during_upload_reuploads(
        self, state: PersistentSyncState, settings: SyncSettings
    ) -> None:
        """An upload still going to the old server is not confirmed for the new one."""
        gate = threading.Event()
        transport = HostRecordingTransport(state, settings, gate)
        library = FakeLibrary([make_asset(1)])
        scheduler, queue, _ = make_engine(state, settings, library, transport=transport)
        queue.start()
        scheduler.start()
        try:
            assert wait_for(lambda: len(transport.hosts) == 1)

            settings.update(server=ServerConfig("new-nas", 8080))
            gate.set()

            assert queue.join(timeout=5.0)
        finally:
            scheduler.shutdown()
            queue.stop()

        assert transport.hosts == [("IMG_0001", "nas"), ("IMG_0001", "new-nas")]
        assert state.is_confirmed("IMG_0001") is True

    def test_shutdown_stops_following_settings(
        self, state: PersistentSyncState, settings: SyncSettings
    ) -> None:
        """After shutdown, settings changes have no effect."""
        checker = MockChecker()
        scheduler, _, _ = make_engine(state, settings, FakeLibrary(), checker=checker)
        scheduler.start()
        scheduler.shutdown()

        settings.update(server=ServerConfig("other-nas", 8080))

        assert checker.resets == 0

    def test_poll_job_swallows_errors(
        self, state: PersistentSyncState, settings: SyncSettings
    ) -> None:
        """An error inside the scheduled job is logged, not raised."""
        library = MagicMock()
        library.assets_created_after.side_effect = RuntimeError("library offline")
        scheduler, _, _ = make_engine(state, settings, library)

        scheduler._poll_job()


class TestPoll:
    """Tests for the periodic poll and the watermark."""

    def test_initializes_watermark(self, state: PersistentSyncState, settings: SyncSettings) -> None:
        """Without a stored watermark, poll starts from now."""
        library = FakeLibrary([make_asset(1)])
        scheduler, queue, _ = make_engine(state, settings, library)
        before = time.time()

        assert scheduler.poll() == 0

        assert scheduler.watermark is not None
        assert scheduler.watermark >= before
        assert len(queue) == 0

    def test_fifty_new_assets(self, state: PersistentSyncState, settings: SyncSettings) -> None:
        """50 new assets are uploaded one at a time and the watermark trails them."""
        assets = [make_asset(n) for n in range(1, 51)]
        library = FakeLibrary(assets)
        state.advance_watermark(BASE_TIME.timestamp())
        scheduler, queue, transport = make_engine(state, settings, library)

        assert scheduler.poll() == 50
        queue.start()
        try:
            assert queue.join(timeout=10.0)
        finally:
            queue.stop()

        assert transport.max_active == 1
        assert transport.sent == [a.asset_id for a in assets]
        for asset in assets:
            # Never past an asset before its outcome is recorded
            assert transport.watermark_at_send[asset.asset_id] < asset.created_ts
        assert scheduler.watermark == assets[-1].created_ts
        assert scheduler.state == EngineState.IDLE

    def test_failure_holds_watermark(self, state: PersistentSyncState, settings: SyncSettings) -> None:
        """A failed asset keeps the watermark below it until it succeeds."""
        assets = [make_asset(1), make_asset(2), make_asset(3)]
        library = FakeLibrary(assets)
        state.advance_watermark(BASE_TIME.timestamp())
        results = [
            UploadAttemptResult.success(),
            UploadAttemptResult.permanent("HTTP 400", 400),
            UploadAttemptResult.success(),
        ]
        scheduler, queue, transport = make_engine(state, settings, library, results)
        queue.start()
        try:
            scheduler.poll()
            assert queue.join(timeout=5.0)
            assert scheduler.watermark == assets[0].created_ts

            assert scheduler.poll() == 2
            assert queue.join(timeout=5.0)
        finally:
            queue.stop()

        assert scheduler.watermark == assets[2].created_ts
        # The confirmed third asset is not sent twice
        assert transport.sent == ["IMG_0001", "IMG_0002", "IMG_0003", "IMG_0002"]

    def test_watermark_never_decreases(
        self, state: PersistentSyncState, settings: SyncSettings
    ) -> None:
        """Polls never move the watermark backwards."""
        late = make_asset(10)
        library = FakeLibrary([late])
        state.advance_watermark(BASE_TIME.timestamp())
        scheduler, queue, _ = make_engine(state, settings, library)
        queue.start()
        try:
            scheduler.poll()
            assert queue.join(timeout=5.0)
            assert scheduler.watermark == late.created_ts

            # An older asset appearing later does not rewind the watermark
            library.assets.append(make_asset(5))
            assert scheduler.poll() == 0
            assert queue.join(timeout=5.0)
        finally:
            queue.stop()

        assert scheduler.watermark == late.created_ts

    def test_same_timestamp_not_skipped(
        self, state: PersistentSyncState, settings: SyncSettings
    ) -> None:
        """An unresolved asset holds back others created at the same instant."""
        twin_a = Asset("A", BASE_TIME + timedelta(seconds=1), loader=lambda: b"a")
        twin_b = Asset("B", BASE_TIME + timedelta(seconds=1), loader=lambda: b"b")
        library = FakeLibrary([twin_a, twin_b])
        state.advance_watermark(BASE_TIME.timestamp())
        results = [UploadAttemptResult.success(), UploadAttemptResult.permanent("HTTP 400", 400)]
        scheduler, queue, _ = make_engine(state, settings, library, results)
        queue.start()
        try:
            scheduler.poll()
            assert queue.join(timeout=5.0)
        finally:
            queue.stop()

        assert scheduler.watermark == BASE_TIME.timestamp()


class TestReconcile:
    """Tests for the reconciliation pass."""

    def test_enqueues_unconfirmed_only(
        self, state: PersistentSyncState, settings: SyncSettings
    ) -> None:
        """Confirmed assets are skipped."""
        library = FakeLibrary([make_asset(1), make_asset(2)])
        state.mark_confirmed("IMG_0001")
        scheduler, queue, _ = make_engine(state, settings, library)

        assert scheduler.reconcile() == 1
        assert "IMG_0002" in queue
        assert "IMG_0001" not in queue

    def test_prunes_deleted_assets(
        self, state: PersistentSyncState, settings: SyncSettings
    ) -> None:
        """State of assets gone from the library is dropped."""
        library = FakeLibrary([make_asset(1)])
        state.mark_confirmed("IMG_0001")
        state.mark_confirmed("IMG_0099")
        scheduler, _, _ = make_engine(state, settings, library)

        scheduler.reconcile()

        assert state.known_ids() == {"IMG_0001"}

    def test_prune_waits_for_in_flight_upload(
        self, state: PersistentSyncState, settings: SyncSettings
    ) -> None:
        """State is pruned on the drain thread, after the running upload."""
        gate = threading.Event()
        transport = HostRecordingTransport(state, settings, gate)
        library = FakeLibrary([make_asset(1)])
        state.mark_confirmed("IMG_0099")
        scheduler, queue, _ = make_engine(state, settings, library, transport=transport)
        queue.start()
        try:
            scheduler.enqueue(make_asset(1))
            assert wait_for(lambda: len(transport.hosts) == 1)

            scheduler.reconcile()
            assert "IMG_0099" in state.known_ids()

            gate.set()
            assert queue.join(timeout=5.0)
        finally:
            queue.stop()

        assert state.known_ids() == {"IMG_0001"}

    def test_opportunistic_enqueue_coalesces(
        self, state: PersistentSyncState, settings: SyncSettings
    ) -> None:
        """Concurrent triggers for one asset produce one queue entry."""
        library = FakeLibrary([make_asset(1)])
        scheduler, queue, _ = make_engine(state, settings, library)

        assert scheduler.enqueue(make_asset(1)) is True
        assert scheduler.reconcile() == 0
        assert len(queue) == 1
        assert scheduler.state == EngineState.SYNCING
