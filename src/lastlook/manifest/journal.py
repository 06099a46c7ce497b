"""Durable per-destination manifest journal.

The journal keeps the authoritative manifest for one destination folder in
memory and mirrors it to disk through a single writer task. Every flush
writes the complete in-memory document, so a failed write is healed by the
next one: the only state ever lost is a flush attempt, never a verified
entry that is still held in memory.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from enum import Enum
from pathlib import Path
from typing import Dict, Optional

from pydantic import ValidationError

from .errors import ManifestWriteError
from .models import ManifestEntry, ManifestFile, Provenance, utc_now_iso

LOGGER = logging.getLogger(__name__)

MANIFEST_FILENAME = "lastlook_manifest.json"
_TEMP_SUFFIX = ".tmp"


class JournalState(str, Enum):
    """Lifecycle of a journal for one destination."""

    UNLOADED = "unloaded"
    LOADED = "loaded"
    DIRTY = "dirty"


class ManifestJournal:
    """Own the manifest of one destination and serialize its disk writes.

    Callers only ever send upserts or request snapshots; the backing file is
    touched exclusively by the writer task, which drains a FIFO queue so
    flushes happen one at a time and in the order their upserts were issued.
    """

    def __init__(self, destination: Path, *, filename: str = MANIFEST_FILENAME) -> None:
        """Initialize the journal for a destination folder.

        Args:
            destination: Folder the manifest describes and is stored in.
            filename: Name of the manifest file inside ``destination``.
        """
        self._destination = destination
        self._path = destination / filename
        self._manifest: Optional[ManifestFile] = None
        self._state = JournalState.UNLOADED
        self._queue: Optional[asyncio.Queue[Optional[asyncio.Future[None]]]] = None
        self._writer: Optional[asyncio.Task[None]] = None
        self._flush_count = 0
        self._failed_flushes = 0

    @property
    def path(self) -> Path:
        """Return the manifest file location."""
        return self._path

    @property
    def destination(self) -> Path:
        """Return the destination folder this journal describes."""
        return self._destination

    @property
    def state(self) -> JournalState:
        """Return the current lifecycle state."""
        return self._state

    @property
    def manifest(self) -> Optional[ManifestFile]:
        """Return a copy of the in-memory manifest document, if any."""
        if self._manifest is None:
            return None
        return self._manifest.model_copy(deep=True)

    @property
    def flush_count(self) -> int:
        """Return the number of successful flushes performed."""
        return self._flush_count

    @property
    def failed_flushes(self) -> int:
        """Return the number of flush attempts that failed."""
        return self._failed_flushes

    def load(self) -> Dict[str, ManifestEntry]:
        """Read the manifest from disk into memory.

        A missing manifest leaves the journal unset until the first upsert.
        An unreadable or invalid manifest is treated the same way: the
        failure is logged and a fresh manifest is started on the next write.

        Returns:
            Dict[str, ManifestEntry]: Entries keyed by filename.
        """
        self._manifest = None
        self._state = JournalState.LOADED
        if not self._path.exists():
            return {}

        try:
            raw = self._path.read_text(encoding="utf-8")
            self._manifest = ManifestFile.model_validate_json(raw)
        except (OSError, UnicodeDecodeError, ValidationError) as exc:
            LOGGER.warning("Ignoring unreadable manifest at %s: %s", self._path, exc)
            self._manifest = None
            return {}

        entries = self.snapshot()
        LOGGER.info("Loaded manifest %s with %d entries.", self._path, len(entries))
        return entries

    def snapshot(self) -> Dict[str, ManifestEntry]:
        """Return a read-only copy of the entries keyed by filename."""
        if self._manifest is None:
            return {}
        return {entry.filename: entry.model_copy() for entry in self._manifest.files}

    def get(self, filename: str) -> Optional[ManifestEntry]:
        """Return a copy of the entry recorded for ``filename``, if any."""
        if self._manifest is None:
            return None
        for entry in self._manifest.files:
            if entry.filename == filename:
                return entry.model_copy()
        return None

    def upsert(self, entry: ManifestEntry, provenance: Provenance) -> asyncio.Future[None]:
        """Record ``entry`` in memory and queue a full-state flush.

        Must be called from a running event loop. The in-memory manifest is
        updated before this method returns; the returned future resolves
        once the queued flush has been attempted. Flush failures are logged
        and never raised through the future.

        Args:
            entry: Entry to insert or replace, keyed by ``filename``.
            provenance: Identity stamped on a newly created manifest.

        Returns:
            asyncio.Future[None]: Completion of the queued flush.
        """
        loop = asyncio.get_running_loop()
        now = utc_now_iso()
        if self._manifest is None:
            self._manifest = ManifestFile(
                session_id=provenance.session_id,
                created_at=now,
                last_updated=now,
                app_version=provenance.app_version,
                machine_name=provenance.machine_name,
                system_os=provenance.operating_system,
            )

        self._manifest.last_updated = now
        self._manifest.app_version = provenance.app_version
        self._manifest.session_id = provenance.session_id

        stored = entry.model_copy()
        for index, existing in enumerate(self._manifest.files):
            if existing.filename == stored.filename:
                self._manifest.files[index] = stored
                break
        else:
            self._manifest.files.append(stored)

        done: asyncio.Future[None] = loop.create_future()
        self._ensure_writer().put_nowait(done)
        self._state = JournalState.DIRTY
        return done

    async def flush(self) -> None:
        """Wait until every queued flush has been attempted."""
        if self._queue is not None:
            await self._queue.join()

    async def close(self) -> None:
        """Drain pending flushes and stop the writer task."""
        if self._queue is None or self._writer is None:
            return
        await self._queue.join()
        self._queue.put_nowait(None)
        await self._writer
        self._queue = None
        self._writer = None

    # Internal helpers -------------------------------------------------

    def _ensure_writer(self) -> asyncio.Queue[Optional[asyncio.Future[None]]]:
        if self._queue is None or self._writer is None or self._writer.done():
            self._queue = asyncio.Queue()
            self._writer = asyncio.get_running_loop().create_task(
                self._run_writer(self._queue), name=f"manifest-writer:{self._destination}"
            )
        return self._queue

    async def _run_writer(
        self, queue: asyncio.Queue[Optional[asyncio.Future[None]]]
    ) -> None:
        while True:
            done = await queue.get()
            if done is None:
                queue.task_done()
                return
            try:
                await self._flush_current()
            finally:
                queue.task_done()
                if not done.done():
                    done.set_result(None)
                if queue.empty():
                    self._state = JournalState.LOADED

    async def _flush_current(self) -> None:
        if self._manifest is None:
            return
        payload = self._manifest.model_dump_json(indent=2)
        try:
            await asyncio.to_thread(self._write_payload, payload)
        except ManifestWriteError as exc:
            self._failed_flushes += 1
            LOGGER.error(
                "Manifest write failed for %s; retrying on next update: %s", self._path, exc
            )
            return
        self._flush_count += 1

    def _write_payload(self, payload: str) -> None:
        """Atomically replace the manifest file with ``payload``."""
        temp_path = self._path.with_name(self._path.name + _TEMP_SUFFIX)
        try:
            temp_path.write_text(payload, encoding="utf-8")
            os.replace(temp_path, self._path)
        except OSError as exc:
            with contextlib.suppress(OSError):
                temp_path.unlink(missing_ok=True)
            raise ManifestWriteError(f"Unable to write {self._path}: {exc}") from exc


class JournalRegistry:
    """Hand out one journal per destination folder."""

    def __init__(self, *, filename: str = MANIFEST_FILENAME) -> None:
        self._filename = filename
        self._journals: Dict[Path, ManifestJournal] = {}

    def get(self, destination: Path) -> ManifestJournal:
        """Return the journal for ``destination``, creating it on first use."""
        key = destination.expanduser().resolve()
        journal = self._journals.get(key)
        if journal is None:
            journal = ManifestJournal(key, filename=self._filename)
            self._journals[key] = journal
        return journal

    async def close_all(self) -> None:
        """Drain and stop every journal's writer."""
        for journal in list(self._journals.values()):
            await journal.close()


__all__ = ["MANIFEST_FILENAME", "JournalState", "ManifestJournal", "JournalRegistry"]
