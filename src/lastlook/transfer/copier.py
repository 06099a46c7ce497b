"""Byte copier contract and the local filesystem implementation."""

from __future__ import annotations

import asyncio
import logging
import shutil
from pathlib import Path
from typing import Callable, Optional, Protocol

import aiofiles
import aiofiles.os

from lastlook.ingestion.detectors import DEFAULT_CHUNK_SIZE, new_hasher

from .errors import CopyCancelledError, CopyError
from .models import ProgressEvent, VerifyingEvent

LOGGER = logging.getLogger(__name__)

PARTIAL_SUFFIX = ".lastlook-partial"

ProgressCallback = Callable[[ProgressEvent], None]
VerifyingCallback = Callable[[VerifyingEvent], None]


class ByteCopier(Protocol):
    """Copies one file, hashes it, and honours a cooperative cancel signal."""

    hash_algorithm: str

    async def copy(
        self,
        source: Path,
        destination: Path,
        *,
        on_progress: Optional[ProgressCallback] = None,
        on_verifying: Optional[VerifyingCallback] = None,
    ) -> str:
        """Copy ``source`` to ``destination`` and return the content hash.

        Raises:
            CopyCancelledError: If the copy was cancelled.
            CopyError: For any other transfer failure.
        """
        ...

    def cancel(self) -> None:
        """Ask the in-flight copy to abort. Idempotent."""
        ...


class LocalByteCopier:
    """Copy files between local paths with read-back verification.

    Bytes are streamed into ``<destination>.lastlook-partial`` while the
    source digest is computed. The written file is then read back and hashed
    (the verifying phase); only when both digests agree is the partial file
    renamed over the destination, carrying the source timestamps with it.
    """

    def __init__(
        self, hash_algorithm: str = "xxh3_64", chunk_size: int = DEFAULT_CHUNK_SIZE
    ) -> None:
        new_hasher(hash_algorithm)
        self.hash_algorithm = hash_algorithm.lower()
        self.chunk_size = max(1, chunk_size)
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    async def copy(
        self,
        source: Path,
        destination: Path,
        *,
        on_progress: Optional[ProgressCallback] = None,
        on_verifying: Optional[VerifyingCallback] = None,
    ) -> str:
        self._cancelled = False
        name = destination.name
        partial = destination.with_name(destination.name + PARTIAL_SUFFIX)

        try:
            total = (await aiofiles.os.stat(source)).st_size
            source_digest = await self._copy_bytes(source, partial, name, total, on_progress)

            if on_verifying is not None:
                on_verifying(VerifyingEvent(filename=name))
            written_digest = await self._hash_file(partial)
            if written_digest != source_digest:
                raise CopyError(
                    f"Verification failed for {name}: "
                    f"source {source_digest} != copy {written_digest}"
                )

            await asyncio.to_thread(shutil.copystat, source, partial)
            await aiofiles.os.replace(partial, destination)
        except (CopyError, asyncio.CancelledError):
            await self._discard(partial)
            raise
        except OSError as exc:
            await self._discard(partial)
            raise CopyError(f"Failed to copy {source} -> {destination}: {exc}") from exc

        LOGGER.debug("Copied %s (%s %s)", name, self.hash_algorithm, source_digest)
        return source_digest

    async def _copy_bytes(
        self,
        source: Path,
        partial: Path,
        name: str,
        total: int,
        on_progress: Optional[ProgressCallback],
    ) -> str:
        hasher = new_hasher(self.hash_algorithm)
        transferred = 0
        async with aiofiles.open(source, "rb") as reader, aiofiles.open(partial, "wb") as writer:
            while chunk := await reader.read(self.chunk_size):
                self._raise_if_cancelled(name)
                await writer.write(chunk)
                hasher.update(chunk)
                transferred += len(chunk)
                if on_progress is not None:
                    on_progress(
                        ProgressEvent(
                            filename=name, bytes_transferred=transferred, bytes_total=total
                        )
                    )
        if on_progress is not None and transferred == 0:
            on_progress(ProgressEvent(filename=name, bytes_transferred=0, bytes_total=total))
        return hasher.hexdigest()

    async def _hash_file(self, path: Path) -> str:
        hasher = new_hasher(self.hash_algorithm)
        async with aiofiles.open(path, "rb") as reader:
            while chunk := await reader.read(self.chunk_size):
                self._raise_if_cancelled(path.name)
                hasher.update(chunk)
        return hasher.hexdigest()

    def _raise_if_cancelled(self, name: str) -> None:
        if self._cancelled:
            raise CopyCancelledError(f"Copy of {name} cancelled")

    async def _discard(self, partial: Path) -> None:
        try:
            await aiofiles.os.remove(partial)
        except FileNotFoundError:
            return
        except OSError as exc:
            LOGGER.warning("Could not remove partial copy %s: %s", partial, exc)


__all__ = [
    "PARTIAL_SUFFIX",
    "ByteCopier",
    "LocalByteCopier",
    "ProgressCallback",
    "VerifyingCallback",
]
