"""Multipart upload of a single asset.

This module provides:
- UploadTransport: Sends one asset and classifies the outcome
- ProgressReader: Stream wrapper reporting how much of the body was read
- target_path_for, file_name_for, extension_for: Remote naming helpers

Every failure is converted into an UploadAttemptResult; send() never
raises. Progress callbacks only fire while send() is running.
"""

from __future__ import annotations

import io
import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import IO, TYPE_CHECKING

import httpx

from photomirror.client.sync.retry import NETWORK_EXCEPTIONS, is_permanent_status
from photomirror.client.sync.types import (
    DataUnavailable,
    NetworkTransient,
    ProgressCallback,
    SerializationError,
    UploadAttemptResult,
)
from photomirror.core.config import ConfigurationMissing

if TYPE_CHECKING:
    from photomirror.client.api import NasClient
    from photomirror.client.library import Asset

logger = logging.getLogger(__name__)

# Uniform type identifier -> (extension, MIME type)
MEDIA_TYPES: dict[str, tuple[str, str]] = {
    "public.jpeg": ("jpg", "image/jpeg"),
    "public.png": ("png", "image/png"),
    "public.heic": ("heic", "image/heic"),
    "public.heif": ("heif", "image/heif"),
    "com.compuserve.gif": ("gif", "image/gif"),
    "public.tiff": ("tiff", "image/tiff"),
    "org.webmproject.webp": ("webp", "image/webp"),
}
DEFAULT_MEDIA_TYPE = ("jpg", "image/jpeg")


def extension_for(uniform_type: str | None) -> tuple[str, str]:
    """Map a uniform type identifier to (extension, MIME type).

    Unknown or missing types fall back to JPEG.
    """
    if not uniform_type:
        return DEFAULT_MEDIA_TYPE
    return MEDIA_TYPES.get(uniform_type.lower(), DEFAULT_MEDIA_TYPE)


def file_name_for(asset: Asset) -> str:
    """Get the remote file name of an asset ("<assetId>.<ext>").

    Path separators in the identifier are replaced so the name stays a
    single path component.
    """
    ext, _ = extension_for(asset.uniform_type)
    safe_id = asset.asset_id.replace("/", "_").replace("\\", "_")
    return f"{safe_id}.{ext}"


def target_path_for(username: str, created_at: datetime) -> str:
    """Get the remote directory for an asset ("/<username>/<yyyyMMdd>")."""
    return f"/{username}/{created_at.strftime('%Y%m%d')}"


class ProgressReader:
    """Binary stream wrapper that reports bytes read.

    httpx reads file parts in blocks while streaming the multipart body;
    each read reports the running total.
    """

    def __init__(self, handle: IO[bytes], total: int, on_read: ProgressCallback) -> None:
        self._handle = handle
        self._total = total
        self._on_read = on_read

    def read(self, size: int = -1) -> bytes:
        chunk = self._handle.read(size)
        if self._total > 0:
            self._on_read(self._handle.tell() / self._total)
        return chunk

    def __getattr__(self, name: str) -> object:
        return getattr(self._handle, name)


class _ProgressScope:
    """Forwards monotonic progress to a callback until closed."""

    def __init__(self, callback: ProgressCallback | None) -> None:
        self._callback = callback
        self._lock = threading.Lock()
        self._best = 0.0
        self._open = True

    def report(self, fraction: float) -> None:
        with self._lock:
            if not self._open or self._callback is None:
                return
            fraction = min(max(fraction, 0.0), 1.0)
            if fraction < self._best:
                return
            self._best = fraction
            callback = self._callback
        callback(fraction)

    def close(self) -> None:
        with self._lock:
            self._open = False


@contextmanager
def progress_scope(callback: ProgressCallback | None) -> Iterator[_ProgressScope]:
    """Scope progress reporting to one attempt.

    Reports arriving after the scope exits (e.g. a body re-read) are
    dropped, on every exit path.
    """
    scope = _ProgressScope(callback)
    try:
        yield scope
    finally:
        scope.close()


class UploadTransport:
    """Uploads one asset per call as multipart/form-data."""

    def __init__(self, client: NasClient) -> None:
        self._client = client

    def send(
        self,
        asset: Asset,
        target_path: str,
        file_name: str,
        digest: str,
        on_progress: ProgressCallback | None = None,
    ) -> UploadAttemptResult:
        """Upload an asset.

        Args:
            asset: Asset to upload.
            target_path: Remote directory.
            file_name: Remote file name.
            digest: Content digest sent alongside the payload.
            on_progress: Optional callback receiving fractions in [0, 1].

        Returns:
            SUCCESS on HTTP 200, TRANSIENT_FAILURE for network errors and
            retryable statuses, PERMANENT_FAILURE otherwise.
        """
        try:
            handle, size = self._open(asset)
        except DataUnavailable as e:
            logger.error("Cannot read %s: %s", asset.asset_id, e)
            return UploadAttemptResult.permanent(str(e))

        _, content_type = extension_for(asset.uniform_type)

        with handle, progress_scope(on_progress) as scope:
            try:
                return self._post(
                    asset, handle, size, content_type, target_path, file_name, digest, scope
                )
            except NetworkTransient as e:
                logger.warning("Upload of %s failed: %s", asset.asset_id, e)
                return UploadAttemptResult.transient(str(e))
            except ConfigurationMissing as e:
                logger.warning("Upload of %s skipped: %s", asset.asset_id, e)
                return UploadAttemptResult.permanent(str(e))
            except Exception as e:
                logger.exception("Could not build upload request for %s", asset.asset_id)
                return UploadAttemptResult.permanent(f"{SerializationError.__name__}: {e}")

    def _open(self, asset: Asset) -> tuple[IO[bytes], int]:
        try:
            handle = asset.open_payload()
        except Exception as e:
            raise DataUnavailable(f"Payload of {asset.asset_id} unavailable: {e}") from e
        try:
            size = handle.seek(0, io.SEEK_END)
            handle.seek(0)
        except OSError as e:
            handle.close()
            raise DataUnavailable(f"Payload of {asset.asset_id} unavailable: {e}") from e
        return handle, size

    def _post(
        self,
        asset: Asset,
        handle: IO[bytes],
        size: int,
        content_type: str,
        target_path: str,
        file_name: str,
        digest: str,
        scope: _ProgressScope,
    ) -> UploadAttemptResult:
        logger.debug(
            "Uploading %s as %s%s (%d bytes)",
            asset.asset_id,
            target_path.rstrip("/") + "/",
            file_name,
            size,
        )
        scope.report(0.0)
        stream = ProgressReader(handle, size, scope.report)

        try:
            response = self._client.upload_file(
                path=target_path,
                name=file_name,
                create_time=int(asset.created_ts),
                md5=digest,
                content=stream,  # type: ignore[arg-type]
                content_type=content_type,
            )
        except NETWORK_EXCEPTIONS as e:
            raise NetworkTransient(f"{type(e).__name__}: {e}") from e
        except httpx.HTTPError as e:
            raise NetworkTransient(str(e)) from e

        status = response.status_code
        if status == 200:
            scope.report(1.0)
            logger.info("Uploaded %s to %s", asset.asset_id, target_path)
            return UploadAttemptResult.success()

        reason = f"HTTP {status}"
        if is_permanent_status(status):
            logger.error("Server rejected %s: %s", asset.asset_id, reason)
            return UploadAttemptResult.permanent(reason, status)
        logger.warning("Upload of %s failed: %s", asset.asset_id, reason)
        return UploadAttemptResult.transient(reason, status)
