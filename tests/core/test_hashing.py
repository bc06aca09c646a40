"""Tests for content hashing."""

from __future__ import annotations

import hashlib
import os
from pathlib import Path

import pytest

from photomirror.core.hashing import DEFAULT_WINDOW_SIZE, ContentHasher, HashPolicy


def md5(data: bytes) -> str:
    return hashlib.md5(data).hexdigest()


class TestHashPolicy:
    """Tests for HashPolicy."""

    def test_small_payload_hashed_whole(self) -> None:
        """Payloads up to two windows are hashed in full."""
        policy = HashPolicy()

        assert policy.samples_whole(0)
        assert policy.samples_whole(2 * DEFAULT_WINDOW_SIZE)
        assert not policy.samples_whole(2 * DEFAULT_WINDOW_SIZE + 1)

    def test_non_windowed_always_whole(self) -> None:
        """A non-windowed policy hashes every size in full."""
        assert HashPolicy(windowed=False).samples_whole(10**9)

    def test_rejects_bad_window(self) -> None:
        """Should reject a non-positive window size."""
        with pytest.raises(ValueError):
            HashPolicy(window_size=0)


class TestContentHasher:
    """Tests for ContentHasher."""

    def test_empty_payload(self) -> None:
        """Should digest empty data to the MD5 of nothing."""
        assert ContentHasher().digest_bytes(b"") == md5(b"")

    def test_small_payload_matches_md5(self) -> None:
        """Small payloads digest to their plain MD5."""
        data = b"hello world" * 100

        digest = ContentHasher().digest_bytes(data)

        assert digest == md5(data)
        assert len(digest) == 32

    def test_large_payload_uses_head_and_tail(self) -> None:
        """Large payloads digest head window followed by tail window."""
        window = 16
        data = bytes(range(256)) * 2
        hasher = ContentHasher(HashPolicy(window_size=window))

        assert hasher.digest_bytes(data) == md5(data[:window] + data[-window:])

    def test_middle_change_not_detected(self) -> None:
        """Changes outside the sampled windows keep the digest."""
        hasher = ContentHasher(HashPolicy(window_size=8))
        a = b"A" * 8 + b"x" * 100 + b"Z" * 8
        b = b"A" * 8 + b"y" * 100 + b"Z" * 8

        assert hasher.digest_bytes(a) == hasher.digest_bytes(b)

    def test_tail_change_detected(self) -> None:
        """Changes inside a window change the digest."""
        hasher = ContentHasher(HashPolicy(window_size=8))
        a = b"A" * 8 + b"x" * 100 + b"Z" * 8
        b = b"A" * 8 + b"x" * 100 + b"Z" * 7 + b"!"

        assert hasher.digest_bytes(a) != hasher.digest_bytes(b)

    def test_deterministic(self) -> None:
        """Same content yields the same digest across hashers."""
        data = b"\x00\x01" * 50_000

        assert ContentHasher().digest_bytes(data) == ContentHasher().digest_bytes(data)

    def test_whole_policy(self) -> None:
        """Non-windowed policy digests the full payload."""
        data = b"q" * 300

        assert ContentHasher(HashPolicy(window_size=16, windowed=False)).digest_bytes(data) == md5(data)

    @pytest.mark.parametrize("size", [0, 100, 2 * 1024, 5 * 1024 + 7])
    def test_file_matches_bytes(self, tmp_path: Path, size: int) -> None:
        """digest_file agrees with digest_bytes for every size class."""
        data = bytes(i % 251 for i in range(size))
        path = tmp_path / "photo.jpg"
        path.write_bytes(data)
        hasher = ContentHasher(HashPolicy(window_size=1024))

        assert hasher.digest_file(path) == hasher.digest_bytes(data)

    def test_file_missing(self, tmp_path: Path) -> None:
        """Should raise OSError for a missing file."""
        with pytest.raises(OSError):
            ContentHasher().digest_file(tmp_path / "missing.jpg")


def server_digest(path: Path, sample_kb: int = 20 * 1024) -> str:
    """Digest as computed by the file server for its existence keys."""
    sample = sample_kb * 1024
    size = path.stat().st_size
    digest = hashlib.md5()
    with open(path, "rb") as f:
        if size <= 2 * sample:
            digest.update(f.read())
        else:
            digest.update(f.read(sample))
            f.seek(size - sample)
            digest.update(f.read(sample))
    return digest.hexdigest()


class TestServerDigest:
    """The default policy yields the same digest as the file server."""

    def test_default_window_is_20_mib(self) -> None:
        assert DEFAULT_WINDOW_SIZE == 20 * 1024 * 1024

    def test_typical_photo_matches(self, tmp_path: Path) -> None:
        """A 3 MiB photo is hashed whole, as the server does."""
        data = os.urandom(3 * 1024 * 1024)
        path = tmp_path / "IMG_0001.jpg"
        path.write_bytes(data)
        hasher = ContentHasher()

        assert hasher.digest_file(path) == server_digest(path)
        assert hasher.digest_bytes(data) == server_digest(path)
        assert hasher.digest_bytes(data) == md5(data)

    def test_large_file_matches(self, tmp_path: Path) -> None:
        """Files over 40 MiB are sampled the same way on both sides."""
        path = tmp_path / "VID_0001.mov"
        size = 2 * DEFAULT_WINDOW_SIZE + 4096
        with open(path, "wb") as f:
            f.write(b"head" * 1024)
            f.seek(size - 4096)
            f.write(b"tail" * 1024)

        assert ContentHasher().digest_file(path) == server_digest(path)
