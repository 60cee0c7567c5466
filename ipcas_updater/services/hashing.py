"""
Whole-file digests for change detection.

Digests only tell two equal-sized files apart, so speed matters more
than cryptographic strength. Every algorithm offered here produces at
least 128 bits.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from enum import Enum, auto
from pathlib import Path
from typing import Optional

import xxhash

from ipcas_updater.core.models import CancellationToken


class HashAlgorithm(Enum):
    """Supported digest algorithms."""
    MD5 = auto()
    SHA1 = auto()
    SHA256 = auto()
    BLAKE2B = auto()  # 128-bit digest
    XXH128 = auto()   # xxh3, non-cryptographic

    @property
    def name(self) -> str:
        return self._name_.lower()

    @classmethod
    def from_string(cls, value: str) -> 'HashAlgorithm':
        """Case-insensitive lookup, falling back to MD5."""
        try:
            return cls[value.upper()]
        except (KeyError, AttributeError):
            return cls.MD5


@dataclass(frozen=True)
class FileDigest:
    """Digest of one file's content."""
    algorithm: HashAlgorithm
    hexdigest: str
    size: int

    def matches(self, other: 'FileDigest') -> bool:
        return self.algorithm == other.algorithm and self.hexdigest == other.hexdigest


class HashingService:
    """Reads files in chunks and digests them."""

    def __init__(
        self,
        default_algorithm: HashAlgorithm = HashAlgorithm.MD5,
        chunk_size: int = 65536
    ):
        self.default_algorithm = default_algorithm
        self.chunk_size = chunk_size

    def hash_file(
        self,
        path: Path | str,
        algorithm: Optional[HashAlgorithm] = None,
        token: Optional[CancellationToken] = None
    ) -> FileDigest:
        """
        Digest a file.

        Args:
            path: File to read
            algorithm: Overrides the default algorithm
            token: Polled between chunks so a large file does not delay
                cancellation

        Returns:
            FileDigest of the content

        Raises:
            OSError: If the file cannot be read
            OperationCancelled: If the token was tripped mid-file
        """
        algorithm = algorithm or self.default_algorithm
        hasher = self.new_hasher(algorithm)
        size = 0

        with open(path, 'rb') as f:
            while chunk := f.read(self.chunk_size):
                if token is not None:
                    token.raise_if_cancelled()
                hasher.update(chunk)
                size += len(chunk)

        return FileDigest(algorithm, hasher.hexdigest(), size)

    @staticmethod
    def new_hasher(algorithm: HashAlgorithm):
        if algorithm == HashAlgorithm.MD5:
            return hashlib.md5(usedforsecurity=False)
        if algorithm == HashAlgorithm.SHA1:
            return hashlib.sha1(usedforsecurity=False)
        if algorithm == HashAlgorithm.SHA256:
            return hashlib.sha256()
        if algorithm == HashAlgorithm.BLAKE2B:
            return hashlib.blake2b(digest_size=16)
        if algorithm == HashAlgorithm.XXH128:
            return xxhash.xxh3_128()
        raise ValueError(f"Unknown algorithm: {algorithm}")
