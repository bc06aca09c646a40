"""Local photo library access.

This module provides:
- Asset: A photo in the local library
- PhotoLibrary: Protocol the sync engine consumes
- FolderPhotoLibrary: A library backed by a directory of image files

The engine only reads assets; it never modifies the library.
"""

from __future__ import annotations

import io
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import IO, Protocol

from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

# Extension -> uniform type identifier
UNIFORM_TYPES: dict[str, str] = {
    ".jpg": "public.jpeg",
    ".jpeg": "public.jpeg",
    ".png": "public.png",
    ".heic": "public.heic",
    ".heif": "public.heif",
    ".gif": "com.compuserve.gif",
    ".tif": "public.tiff",
    ".tiff": "public.tiff",
    ".webp": "org.webmproject.webp",
}

EXIF_IFD_POINTER = 0x8769
EXIF_DATETIME_ORIGINAL = 0x9003
EXIF_DATETIME = 0x0132
EXIF_DATE_FORMAT = "%Y:%m:%d %H:%M:%S"


@dataclass(frozen=True)
class Asset:
    """A photo in the local library.

    Attributes:
        asset_id: Identifier stable across launches.
        created_at: Creation time (aware, or naive local time).
        uniform_type: Uniform type identifier of the payload.
        source: File holding the payload, if it lives on disk.
        loader: Callable returning the payload, for assets not on disk.
    """

    asset_id: str
    created_at: datetime
    uniform_type: str = "public.jpeg"
    source: Path | None = None
    loader: Callable[[], bytes] | None = field(default=None, compare=False, repr=False)

    @property
    def created_ts(self) -> float:
        """Creation time as epoch seconds."""
        return self.created_at.timestamp()

    def read_payload(self) -> bytes:
        """Load the payload bytes.

        Raises:
            OSError: If the payload cannot be read.
        """
        if self.loader is not None:
            return self.loader()
        if self.source is not None:
            return self.source.read_bytes()
        raise FileNotFoundError(f"No payload for asset {self.asset_id}")

    def open_payload(self) -> IO[bytes]:
        """Open the payload as a binary stream.

        Files on disk are streamed, not loaded. The caller closes the
        stream.

        Raises:
            OSError: If the payload cannot be read.
        """
        if self.loader is None and self.source is not None:
            return open(self.source, "rb")
        return io.BytesIO(self.read_payload())


class PhotoLibrary(Protocol):
    """Read-only view of the local photo store."""

    def all_assets(self) -> list[Asset]:
        """List every asset, oldest first."""
        ...

    def assets_created_after(self, timestamp: float) -> list[Asset]:
        """List assets created strictly after ``timestamp``, oldest first."""
        ...


def read_creation_time(path: Path) -> datetime:
    """Get the creation time of an image file.

    Uses EXIF DateTimeOriginal (or DateTime) when the image carries one,
    otherwise the file modification time.
    """
    try:
        with Image.open(path) as image:
            exif = image.getexif()
            raw = exif.get_ifd(EXIF_IFD_POINTER).get(EXIF_DATETIME_ORIGINAL) or exif.get(
                EXIF_DATETIME
            )
        if raw:
            return datetime.strptime(str(raw).strip("\x00 "), EXIF_DATE_FORMAT).astimezone()
    except (OSError, UnidentifiedImageError, ValueError) as e:
        logger.debug("No EXIF creation time for %s: %s", path, e)
    return datetime.fromtimestamp(path.stat().st_mtime).astimezone()


class FolderPhotoLibrary:
    """Photo library backed by a directory tree of image files.

    Asset identifiers are POSIX paths relative to the root. Creation times
    are cached per (path, mtime) so repeated enumerations do not reopen
    unchanged images.
    """

    def __init__(self, root: Path) -> None:
        self._root = Path(root).expanduser().resolve()
        self._created_cache: dict[str, tuple[float, datetime]] = {}

    @property
    def root(self) -> Path:
        return self._root

    def is_image(self, path: Path) -> bool:
        """Check whether a path looks like a supported image."""
        return path.suffix.lower() in UNIFORM_TYPES and not path.name.startswith(".")

    def asset_for_path(self, path: Path) -> Asset | None:
        """Build the asset for a file under the root.

        Returns:
            Asset, or None if the path is not a readable image in the library.
        """
        path = Path(path)
        if not self.is_image(path):
            return None
        try:
            rel = path.relative_to(self._root)
            mtime = path.stat().st_mtime
        except (ValueError, OSError):
            return None

        asset_id = rel.as_posix()
        cached = self._created_cache.get(asset_id)
        if cached is not None and cached[0] == mtime:
            created_at = cached[1]
        else:
            created_at = read_creation_time(path)
            self._created_cache[asset_id] = (mtime, created_at)

        return Asset(
            asset_id=asset_id,
            created_at=created_at,
            uniform_type=UNIFORM_TYPES[path.suffix.lower()],
            source=path,
        )

    def all_assets(self) -> list[Asset]:
        """List every image under the root, oldest first."""
        if not self._root.is_dir():
            logger.warning("Photo library folder does not exist: %s", self._root)
            return []

        assets = []
        for path in self._root.rglob("*"):
            if not path.is_file():
                continue
            asset = self.asset_for_path(path)
            if asset is not None:
                assets.append(asset)
        assets.sort(key=lambda a: (a.created_ts, a.asset_id))
        return assets

    def assets_created_after(self, timestamp: float) -> list[Asset]:
        """List images created strictly after ``timestamp``, oldest first."""
        return [a for a in self.all_assets() if a.created_ts > timestamp]
