"""Content fingerprints for photo payloads.

This module provides:
- HashPolicy: How much of a payload feeds the digest
- ContentHasher: MD5 digests over whole payloads or head/tail windows

With the windowed policy, payloads larger than two windows are hashed
over the first and last window only. Two payloads that differ only in
the unsampled middle produce the same digest; this is accepted in
exchange for bounded hashing cost on very large files. The default
window matches the file server, which samples 20 MiB from each end, so
any photo up to 40 MiB is hashed whole on both sides.
"""

import hashlib
import os
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from photomirror.client.library import Asset

DEFAULT_WINDOW_SIZE = 20 * 1024 * 1024  # 20 MiB
READ_BLOCK_SIZE = 8192


@dataclass(frozen=True)
class HashPolicy:
    """Sampling policy for content digests.

    Attributes:
        window_size: Size in bytes of the head and tail windows.
        windowed: Hash only the windows for large payloads. When False,
            the whole payload is hashed.
    """

    window_size: int = DEFAULT_WINDOW_SIZE
    windowed: bool = True

    def __post_init__(self) -> None:
        if self.window_size <= 0:
            raise ValueError("window_size must be positive")

    def samples_whole(self, size: int) -> bool:
        """Check whether a payload of this size is hashed in full."""
        return not self.windowed or size <= 2 * self.window_size


class ContentHasher:
    """Computes stable hexadecimal digests for asset payloads.

    The same policy is applied on every call, so unchanged content always
    yields the same digest.
    """

    def __init__(self, policy: HashPolicy | None = None) -> None:
        self._policy = policy or HashPolicy()

    @property
    def policy(self) -> HashPolicy:
        return self._policy

    def digest_bytes(self, data: bytes) -> str:
        """Digest an in-memory payload.

        Args:
            data: Payload bytes (may be empty).

        Returns:
            32-character lowercase hexadecimal MD5 digest.
        """
        md5 = hashlib.md5(usedforsecurity=False)
        if self._policy.samples_whole(len(data)):
            md5.update(data)
        else:
            window = self._policy.window_size
            md5.update(data[:window])
            md5.update(data[-window:])
        return md5.hexdigest()

    def digest_file(self, path: Path) -> str:
        """Digest a file on disk, reading only the sampled windows.

        Args:
            path: Path to the file.

        Returns:
            32-character lowercase hexadecimal MD5 digest.

        Raises:
            OSError: If the file cannot be read.
        """
        md5 = hashlib.md5(usedforsecurity=False)
        size = os.path.getsize(path)
        with open(path, "rb") as f:
            if self._policy.samples_whole(size):
                for block in iter(lambda: f.read(READ_BLOCK_SIZE), b""):
                    md5.update(block)
            else:
                window = self._policy.window_size
                md5.update(f.read(window))
                f.seek(size - window)
                md5.update(f.read(window))
        return md5.hexdigest()

    def digest_asset(self, asset: "Asset") -> str:
        """Digest an asset, preferring its file on disk when it has one.

        Args:
            asset: Asset to digest.

        Returns:
            32-character lowercase hexadecimal MD5 digest.
        """
        if asset.source is not None:
            return self.digest_file(asset.source)
        return self.digest_bytes(asset.read_payload())
