"""Content hashing utilities."""

from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Protocol

import xxhash

SUPPORTED_ALGORITHMS = ("xxh3_64", "md5", "sha256")
DEFAULT_CHUNK_SIZE = 1024 * 1024


class Hasher(Protocol):
    """Incremental hash object shared by hashlib and xxhash."""

    def update(self, data: bytes) -> None: ...

    def hexdigest(self) -> str: ...


def new_hasher(algorithm: str) -> Hasher:
    """Return a fresh incremental hasher for ``algorithm``.

    Raises:
        ValueError: If the algorithm is not supported.
    """
    normalized = algorithm.lower()
    if normalized == "xxh3_64":
        return xxhash.xxh3_64()
    if normalized in ("md5", "sha256"):
        return hashlib.new(normalized)
    raise ValueError(f"Unsupported hash algorithm: {algorithm}")


class HashComputer:
    """Compute content hashes for files already at rest."""

    def __init__(self, algorithm: str = "xxh3_64", chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        new_hasher(algorithm)
        self.algorithm = algorithm.lower()
        self.chunk_size = chunk_size

    def compute(self, path: Path) -> str:
        """Return a hex digest representing the file contents."""
        hasher = new_hasher(self.algorithm)
        with path.open("rb") as handle:
            while chunk := handle.read(self.chunk_size):
                hasher.update(chunk)
        return hasher.hexdigest()
