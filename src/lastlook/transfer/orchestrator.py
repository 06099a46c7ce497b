"""Transfer orchestration state machine.

The orchestrator drives one batch at a time through pre-flight conflict
detection, an optional pause for a resolution decision, and a sequential
per-file loop that decides between skipping, smart-resuming, and copying.
Each verified copy is recorded in the destination's manifest journal.
"""

from __future__ import annotations

import inspect
import logging
import time
from pathlib import Path
from typing import Awaitable, Callable, Dict, Iterable, Optional, Union

from lastlook.ingestion.discovery import DirectoryScanner
from lastlook.manifest import (
    JournalRegistry,
    ManifestEntry,
    ManifestJournal,
    Provenance,
    normalize_path,
    utc_now_iso,
)

from .conflicts import detect
from .copier import ByteCopier
from .errors import CopyCancelledError, CopyError, InvalidTransitionError
from .models import (
    FileOutcome,
    Origin,
    Outcome,
    ProgressEvent,
    ResolutionMode,
    Selected,
    TransferBatch,
    TransferReport,
    TransferState,
    VerifyingEvent,
)
from .resume import Comparison, FileStat, SmartResumeComparator

LOGGER = logging.getLogger(__name__)

Resolver = Callable[[list[str]], Union[ResolutionMode, str, Awaitable[Union[ResolutionMode, str]]]]

_STARTABLE_STATES = (TransferState.IDLE, TransferState.COMPLETED)


class TransferObserver:
    """Receives UI-facing notifications from the orchestrator.

    Every hook is a no-op; subclasses override the ones they render.
    """

    def file_started(self, name: str, size_bytes: int) -> None:
        """A file's decision procedure has begun."""

    def progress(self, event: ProgressEvent) -> None:
        """Bytes were copied for the file in flight."""

    def verifying(self, event: VerifyingEvent) -> None:
        """The file in flight entered post-copy verification."""

    def file_finished(self, outcome: FileOutcome, batch: TransferBatch) -> None:
        """A file's outcome is settled."""


class TransferOrchestrator:
    """Run transfer batches from a source folder into a destination folder."""

    def __init__(
        self,
        copier: ByteCopier,
        *,
        registry: Optional[JournalRegistry] = None,
        provenance: Optional[Provenance] = None,
        comparator: Optional[SmartResumeComparator] = None,
        scanner: Optional[DirectoryScanner] = None,
        observer: Optional[TransferObserver] = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            copier: Byte copier used for files that need a real copy.
            registry: Source of per-destination manifest journals.
            provenance: Identity stamped on manifests written by this process.
            comparator: Smart-resume comparator; defaults to a 3000 ms tolerance.
            scanner: Directory scanner used to list the destination.
            observer: Receiver for progress notifications.
        """
        self._copier = copier
        self._registry = registry or JournalRegistry()
        self._provenance = provenance or Provenance.current()
        self._comparator = comparator or SmartResumeComparator()
        self._scanner = scanner or DirectoryScanner()
        self.observer = observer or TransferObserver()

        self._state = TransferState.IDLE
        self._source_root: Optional[Path] = None
        self._destination_root: Optional[Path] = None
        self._journal: Optional[ManifestJournal] = None
        self._destination_listing: set[str] = set()
        self._batch: Optional[TransferBatch] = None
        self._conflicts: list[str] = []
        self._resolution: Optional[ResolutionMode] = None

        self.verified_files: set[str] = set()
        self.verifying_files: set[str] = set()

    # ------------------------------------------------------------------ #
    # Mounting                                                           #
    # ------------------------------------------------------------------ #

    @property
    def state(self) -> TransferState:
        return self._state

    @property
    def source_root(self) -> Optional[Path]:
        return self._source_root

    @property
    def destination_root(self) -> Optional[Path]:
        return self._destination_root

    @property
    def journal(self) -> Optional[ManifestJournal]:
        return self._journal

    @property
    def destination_listing(self) -> set[str]:
        """Names present at the destination, updated as files land."""
        return self._destination_listing

    @property
    def batch(self) -> Optional[TransferBatch]:
        return self._batch

    @property
    def conflicts(self) -> list[str]:
        return list(self._conflicts)

    @property
    def provenance(self) -> Provenance:
        return self._provenance

    def mount_source(self, root: Optional[Path]) -> None:
        """Set (or clear) the folder files are copied from."""
        self._require_not_executing()
        self._source_root = root.expanduser() if root is not None else None

    def mount_destination(
        self, root: Path, listing: Optional[Iterable[str]] = None
    ) -> Dict[str, ManifestEntry]:
        """Set the destination folder and load its manifest.

        Args:
            root: Destination folder.
            listing: Known destination file names; scanned from disk when omitted.

        Returns:
            Dict[str, ManifestEntry]: Manifest entries found at the destination.
        """
        self._require_not_executing()
        root = root.expanduser()
        journal = self._registry.get(root)
        entries = journal.load()

        if listing is None:
            names = self._scanner.scan_destination(root)
        else:
            names = set(listing)
        names.discard(journal.path.name)

        self._destination_root = root
        self._journal = journal
        self._destination_listing = names
        self.verified_files = {
            name for name, entry in entries.items() if entry.status == "verified"
        }
        self.verifying_files = set()
        return entries

    def unmount_destination(self) -> None:
        """Forget the destination folder, its listing, and verified marks."""
        self._require_not_executing()
        self._destination_root = None
        self._journal = None
        self._destination_listing = set()
        self.verified_files = set()
        self.verifying_files = set()

    # ------------------------------------------------------------------ #
    # State machine                                                      #
    # ------------------------------------------------------------------ #

    def preflight(self, selection: Iterable[Union[Selected, str]]) -> Optional[list[str]]:
        """Prepare a batch and detect name conflicts.

        A request without selected files, a source, or a destination is a
        no-op and returns ``None``. Otherwise the batch moves to ``CLEAN``
        (empty list returned) or ``AWAITING_RESOLUTION`` (conflicts returned).
        """
        if self._state not in _STARTABLE_STATES:
            raise InvalidTransitionError(f"Cannot start a transfer while {self._state.value}.")

        names = self._selected_names(selection)
        if not names or self._source_root is None or self._destination_root is None:
            LOGGER.debug("Transfer request ignored: missing selection, source, or destination.")
            return None

        files = [name for name in names if not (self._source_root / name).is_dir()]
        if not files:
            LOGGER.debug("Transfer request ignored: selection only contains folders.")
            return None

        total = 0
        for name in files:
            try:
                total += FileStat.from_path(self._source_root / name).size_bytes
            except OSError as exc:
                LOGGER.warning("Unable to stat %s during pre-flight: %s", name, exc)

        self._batch = TransferBatch(names=files, total_bytes=total)
        self._state = TransferState.PREFLIGHT_CHECKED
        self._conflicts = detect(files, self._destination_listing)

        if self._conflicts:
            self._state = TransferState.AWAITING_RESOLUTION
            self._resolution = None
            LOGGER.info("%d conflicting file(s) await a resolution.", len(self._conflicts))
        else:
            self._state = TransferState.CLEAN
            self._resolution = ResolutionMode.OVERWRITE_SMART
        return list(self._conflicts)

    def resolve(self, mode: Union[ResolutionMode, str]) -> bool:
        """Apply the user's conflict decision.

        Returns:
            bool: ``False`` when the batch was cancelled, ``True`` otherwise.
        """
        if self._state is not TransferState.AWAITING_RESOLUTION:
            raise InvalidTransitionError(f"No conflicts awaiting resolution ({self._state.value}).")

        mode = ResolutionMode(mode)
        if mode is ResolutionMode.CANCEL:
            LOGGER.info("Transfer cancelled at conflict resolution; no files touched.")
            self._reset()
            return False
        self._resolution = mode
        return True

    async def execute(self) -> TransferReport:
        """Run the prepared batch to completion or cancellation."""
        ready = self._state is TransferState.CLEAN or (
            self._state is TransferState.AWAITING_RESOLUTION and self._resolution is not None
        )
        if not ready or self._batch is None or self._resolution is None:
            raise InvalidTransitionError(f"Batch is not ready to execute ({self._state.value}).")

        batch = self._batch
        resolution = self._resolution
        conflicts = list(self._conflicts)
        self._state = TransferState.EXECUTING
        started = time.monotonic()
        outcomes: list[FileOutcome] = []
        LOGGER.info(
            "Transferring %d file(s) (%d bytes) with %s.",
            len(batch.names),
            batch.total_bytes,
            resolution.value,
        )

        finished = False
        try:
            for name in batch.names:
                if batch.cancelled:
                    break
                outcome = await self._process_file(name, batch, resolution)
                outcomes.append(outcome)
                self.observer.file_finished(outcome, batch)
                if outcome.outcome is Outcome.CANCELLED:
                    break
            finished = True
        finally:
            try:
                if self._journal is not None:
                    await self._journal.flush()
            finally:
                if not finished:
                    LOGGER.warning("Transfer aborted; returning to idle.")
                self._reset()

        cancelled = batch.cancelled
        report = TransferReport(
            state=TransferState.CANCELLED if cancelled else TransferState.COMPLETED,
            resolution=resolution,
            conflicts=conflicts,
            outcomes=outcomes,
            total_bytes=batch.total_bytes,
            completed_bytes=batch.completed_bytes,
            elapsed_seconds=time.monotonic() - started,
        )
        LOGGER.info(
            "Transfer %s: %d copied, %d identical, %d skipped, %d failed.",
            report.state.value,
            report.count(Outcome.COPIED),
            report.count(Outcome.IDENTICAL),
            report.count(Outcome.SKIPPED),
            report.count(Outcome.FAILED),
        )

        if not cancelled:
            self._state = TransferState.COMPLETED
        return report

    async def run(
        self,
        selection: Iterable[Union[Selected, str]],
        resolver: Optional[Resolver] = None,
    ) -> Optional[TransferReport]:
        """Drive a whole batch: pre-flight, resolution, execution.

        Args:
            selection: Files to transfer.
            resolver: Called with the conflicting names when there are any;
                may be sync or async. Defaults to smart overwrite.

        Returns:
            Optional[TransferReport]: ``None`` when the request was a no-op.
        """
        conflicts = self.preflight(selection)
        if conflicts is None:
            return None

        if conflicts:
            decision: Union[ResolutionMode, str] = ResolutionMode.OVERWRITE_SMART
            if resolver is not None:
                result = resolver(list(conflicts))
                decision = await result if inspect.isawaitable(result) else result
            total = self._batch.total_bytes if self._batch is not None else 0
            if not self.resolve(decision):
                return TransferReport(
                    state=TransferState.IDLE,
                    resolution=ResolutionMode.CANCEL,
                    conflicts=conflicts,
                    total_bytes=total,
                )

        return await self.execute()

    def cancel(self) -> None:
        """Request cancellation of the current batch. Idempotent."""
        if self._state is TransferState.AWAITING_RESOLUTION:
            self._reset()
            return
        if self._batch is not None:
            self._batch.cancel_event.set()
        self._copier.cancel()

    # ------------------------------------------------------------------ #
    # Per-file procedure                                                 #
    # ------------------------------------------------------------------ #

    async def _process_file(
        self, name: str, batch: TransferBatch, resolution: ResolutionMode
    ) -> FileOutcome:
        if self._source_root is None or self._destination_root is None:
            raise InvalidTransitionError("Source and destination must be mounted before copying.")
        source = self._source_root / name
        destination = self._destination_root / name

        try:
            source_stat: Optional[FileStat] = FileStat.from_path(source)
        except OSError as exc:
            LOGGER.warning("Unable to stat source %s: %s", source, exc)
            source_stat = None
        size = source_stat.size_bytes if source_stat is not None else 0
        self.observer.file_started(name, size)

        present = name in self._destination_listing
        if present and resolution is ResolutionMode.SKIP_EXISTING:
            batch.complete(size)
            LOGGER.debug("Skipping %s; already present at destination.", name)
            return FileOutcome(name=name, outcome=Outcome.SKIPPED, size_bytes=size)

        if present and resolution is ResolutionMode.OVERWRITE_SMART:
            destination_stat = _stat_or_none(destination)
            if self._comparator.compare(source_stat, destination_stat) is Comparison.IDENTICAL:
                batch.complete(size)
                self._mark_verified(name)
                self._restamp_entry(name)
                LOGGER.debug("Smart resume: %s already identical at destination.", name)
                return FileOutcome(name=name, outcome=Outcome.IDENTICAL, size_bytes=size)

        def _on_progress(event: ProgressEvent) -> None:
            batch.current_file_bytes = event.bytes_transferred
            self.observer.progress(event)

        def _on_verifying(event: VerifyingEvent) -> None:
            self.verifying_files.add(event.filename)
            self.observer.verifying(event)

        try:
            digest = await self._copier.copy(
                source, destination, on_progress=_on_progress, on_verifying=_on_verifying
            )
        except CopyCancelledError:
            self.verifying_files.discard(name)
            batch.current_file_bytes = 0
            batch.cancel_event.set()
            LOGGER.info("Copy of %s cancelled; stopping batch.", name)
            return FileOutcome(name=name, outcome=Outcome.CANCELLED, size_bytes=size)
        except (CopyError, OSError) as exc:
            self.verifying_files.discard(name)
            batch.current_file_bytes = 0
            LOGGER.error("Failed to transfer %s: %s", name, exc)
            return FileOutcome(name=name, outcome=Outcome.FAILED, size_bytes=size, error=str(exc))
        except Exception as exc:
            self.verifying_files.discard(name)
            batch.current_file_bytes = 0
            LOGGER.exception("Unexpected error while transferring %s.", name)
            return FileOutcome(name=name, outcome=Outcome.FAILED, size_bytes=size, error=repr(exc))

        recorded = source_stat or _stat_or_none(destination)
        entry = ManifestEntry(
            filename=name,
            rel_path=name,
            source_path=normalize_path(source),
            size_bytes=recorded.size_bytes if recorded is not None else 0,
            modified_timestamp=recorded.modified_ms if recorded is not None else 0,
            hash_type=self._copier.hash_algorithm,
            hash_value=digest,
            status="verified",
            verified_at=utc_now_iso(),
        )
        if self._journal is not None:
            self._journal.upsert(entry, self._provenance)
        self._mark_verified(name)
        batch.complete(size)
        return FileOutcome(name=name, outcome=Outcome.COPIED, size_bytes=size, hash_value=digest)

    def _mark_verified(self, name: str) -> None:
        self._destination_listing.add(name)
        self.verifying_files.discard(name)
        self.verified_files.add(name)

    def _restamp_entry(self, name: str) -> None:
        """Refresh ``verified_at`` of an existing entry; never invent a hash."""
        if self._journal is None:
            return
        existing = self._journal.get(name)
        if existing is None:
            return
        refreshed = existing.model_copy(update={"verified_at": utc_now_iso(), "status": "verified"})
        self._journal.upsert(refreshed, self._provenance)

    # ------------------------------------------------------------------ #
    # Helpers                                                            #
    # ------------------------------------------------------------------ #

    def _selected_names(self, selection: Iterable[Union[Selected, str]]) -> list[str]:
        names: list[str] = []
        seen: set[str] = set()
        for item in selection:
            if isinstance(item, Selected):
                if item.origin is not Origin.SOURCE:
                    LOGGER.debug("Ignoring destination-side selection %s.", item.name)
                    continue
                name = item.name
            else:
                name = item
            if name and name not in seen:
                seen.add(name)
                names.append(name)
        return names

    def _require_not_executing(self) -> None:
        if self._state is TransferState.EXECUTING:
            raise InvalidTransitionError("Cannot change folders while a transfer is running.")

    def _reset(self) -> None:
        self._state = TransferState.IDLE
        self._batch = None
        self._conflicts = []
        self._resolution = None
        self.verifying_files = set()


def _stat_or_none(path: Path) -> Optional[FileStat]:
    try:
        return FileStat.from_path(path)
    except OSError as exc:
        LOGGER.debug("Unable to stat %s: %s", path, exc)
        return None


__all__ = ["Resolver", "TransferObserver", "TransferOrchestrator"]
