"""Server-side existence checks with a per-process cache.

This module provides:
- RemoteExistenceChecker: Asks the server whether content is already stored

Answers are cached by asset identifier for the lifetime of the process.
A failed check (network error, unexpected status) counts as "does not
exist" and is not cached, so the next attempt asks again. Failing open
means re-uploading, never skipping content the server lacks.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

import httpx

from photomirror.client.api import APIError
from photomirror.core.config import ConfigurationMissing

if TYPE_CHECKING:
    from photomirror.client.api import NasClient

logger = logging.getLogger(__name__)


class RemoteExistenceChecker:
    """Cached existence queries against the file server."""

    def __init__(self, client: NasClient) -> None:
        self._client = client
        self._lock = threading.Lock()
        self._cache: dict[str, bool] = {}

    def exists(
        self,
        asset_id: str,
        digest: str,
        target_path: str,
        file_name: str,
    ) -> bool:
        """Check whether the server already holds an asset's content.

        Args:
            asset_id: Cache key.
            digest: Content digest.
            target_path: Remote directory the asset would be uploaded to.
            file_name: Remote file name.

        Returns:
            True only if the server confirmed the content exists.
        """
        with self._lock:
            cached = self._cache.get(asset_id)
        if cached is not None:
            logger.debug("Existence cache hit for %s: %s", asset_id, cached)
            return cached

        try:
            found = self._client.file_exists(digest, file_name, target_path)
        except (httpx.HTTPError, APIError, ConfigurationMissing, ValueError) as e:
            logger.warning("Existence check failed for %s: %s", asset_id, e)
            return False

        self.remember(asset_id, found)
        logger.debug("Existence check for %s: %s", asset_id, found)
        return found

    def remember(self, asset_id: str, exists: bool) -> None:
        """Store a known answer, e.g. after a successful upload."""
        with self._lock:
            self._cache[asset_id] = exists

    def cached(self, asset_id: str) -> bool | None:
        """Get the cached answer for an asset, if any."""
        with self._lock:
            return self._cache.get(asset_id)

    def forget(self, asset_id: str) -> None:
        """Drop the cached answer for one asset."""
        with self._lock:
            self._cache.pop(asset_id, None)

    def reset(self) -> None:
        """Drop every cached answer, e.g. after the server changed."""
        with self._lock:
            count = len(self._cache)
            self._cache.clear()
        logger.info("Cleared %d cached existence results", count)
