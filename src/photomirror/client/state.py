"""Persistent sync state for the upload engine.

This module provides:
- PersistentSyncState: SQLite-backed per-asset flags and the poll watermark
- AssetSyncState: Snapshot of one asset's state

Architecture:
    Confirmed-remote flags and the watermark are durable and survive
    restarts. Upload progress is transient: it lives in memory only and
    is cleared when an attempt ends.

    Confirmed flags are cached in memory after the first lookup. All
    writes go through the database first, then the cache.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

WATERMARK_KEY = "last_check_time"


@dataclass
class AssetSyncState:
    """State of one asset relative to the server.

    Attributes:
        asset_id: Asset identifier.
        confirmed_remote: The server is known to hold this asset's content.
        last_progress: Fraction of the current upload sent, if one is running.
    """

    asset_id: str
    confirmed_remote: bool = False
    last_progress: float | None = None


class PersistentSyncState:
    """SQLite-based durable state for the sync engine."""

    def __init__(self, db_path: Path) -> None:
        """Initialize the state database.

        Args:
            db_path: Path to SQLite database file.
        """
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        self._lock = threading.RLock()

        self._conn = sqlite3.connect(
            str(self._db_path),
            check_same_thread=False,
            isolation_level=None,  # Autocommit mode
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")

        self._confirmed: dict[str, bool] = {}
        self._progress: dict[str, float] = {}

        self._create_tables()

    def _create_tables(self) -> None:
        """Create database tables if they don't exist."""
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS asset_state (
                asset_id TEXT PRIMARY KEY,
                confirmed_remote INTEGER NOT NULL DEFAULT 0,
                updated_at REAL NOT NULL
            );

            CREATE TABLE IF NOT EXISTS sync_state (
                key TEXT PRIMARY KEY,
                value TEXT
            );
        """)

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()

    # === Confirmed-remote flags ===

    def is_confirmed(self, asset_id: str) -> bool:
        """Check whether the server is known to hold an asset."""
        with self._lock:
            cached = self._confirmed.get(asset_id)
            if cached is not None:
                return cached
            row = self._conn.execute(
                "SELECT confirmed_remote FROM asset_state WHERE asset_id = ?",
                (asset_id,),
            ).fetchone()
            confirmed = bool(row["confirmed_remote"]) if row else False
            self._confirmed[asset_id] = confirmed
            return confirmed

    def mark_confirmed(self, asset_id: str) -> None:
        """Record that the server holds an asset's content."""
        self._set_confirmed(asset_id, True)

    def clear_confirmed(self, asset_id: str) -> None:
        """Forget that the server holds an asset's content."""
        self._set_confirmed(asset_id, False)

    def _set_confirmed(self, asset_id: str, confirmed: bool) -> None:
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO asset_state (asset_id, confirmed_remote, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(asset_id) DO UPDATE SET
                    confirmed_remote = excluded.confirmed_remote,
                    updated_at = excluded.updated_at
                """,
                (asset_id, int(confirmed), time.time()),
            )
            self._confirmed[asset_id] = confirmed

    def confirmed_ids(self) -> set[str]:
        """Get the identifiers of every confirmed asset."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT asset_id FROM asset_state WHERE confirmed_remote = 1"
            ).fetchall()
        return {row["asset_id"] for row in rows}

    def known_ids(self) -> set[str]:
        """Get the identifiers of every asset with stored state."""
        with self._lock:
            rows = self._conn.execute("SELECT asset_id FROM asset_state").fetchall()
        return {row["asset_id"] for row in rows}

    def remove_asset(self, asset_id: str) -> None:
        """Drop all state for an asset deleted from the local library."""
        with self._lock:
            self._conn.execute("DELETE FROM asset_state WHERE asset_id = ?", (asset_id,))
            self._confirmed.pop(asset_id, None)
            self._progress.pop(asset_id, None)

    def get_asset_state(self, asset_id: str) -> AssetSyncState:
        """Get a snapshot of one asset's state."""
        with self._lock:
            return AssetSyncState(
                asset_id=asset_id,
                confirmed_remote=self.is_confirmed(asset_id),
                last_progress=self._progress.get(asset_id),
            )

    # === Transient upload progress ===

    def set_progress(self, asset_id: str, fraction: float) -> None:
        """Record upload progress in [0, 1] for an asset."""
        with self._lock:
            self._progress[asset_id] = min(max(fraction, 0.0), 1.0)

    def get_progress(self, asset_id: str) -> float | None:
        """Get the last recorded upload progress, if an upload is running."""
        with self._lock:
            return self._progress.get(asset_id)

    def clear_progress(self, asset_id: str) -> None:
        """Remove the progress value of a finished attempt."""
        with self._lock:
            self._progress.pop(asset_id, None)

    # === Watermark ===

    def get_state(self, key: str) -> str | None:
        """Get a sync state value."""
        with self._lock:
            row = self._conn.execute(
                "SELECT value FROM sync_state WHERE key = ?",
                (key,),
            ).fetchone()
        return row["value"] if row else None

    def set_state(self, key: str, value: str) -> None:
        """Set a sync state value."""
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO sync_state (key, value) VALUES (?, ?)",
                (key, value),
            )

    def get_watermark(self) -> float | None:
        """Get the last-check watermark (epoch seconds)."""
        value = self.get_state(WATERMARK_KEY)
        return float(value) if value else None

    def advance_watermark(self, timestamp: float) -> bool:
        """Move the watermark forward.

        The watermark never moves backwards; older timestamps are ignored.

        Returns:
            True if the stored watermark changed.
        """
        with self._lock:
            current = self.get_watermark()
            if current is not None and timestamp <= current:
                return False
            self.set_state(WATERMARK_KEY, repr(float(timestamp)))
        logger.debug("Watermark advanced to %.3f", timestamp)
        return True

    def reset(self) -> None:
        """Forget all confirmations, e.g. after switching servers.

        The watermark is kept; the reconciliation pass re-evaluates every
        asset against the new server.
        """
        with self._lock:
            self._conn.execute("UPDATE asset_state SET confirmed_remote = 0")
            self._confirmed.clear()
            self._progress.clear()
        logger.info("Cleared confirmed-remote flags")
