"""Deletion safety gate.

Files are only removed from the source after the manifest says they were
verified, the file on the source is still the one that was backed up, and a
fresh look at the destination confirms the backup is still there.
The gate reads the manifest but never writes to it.
"""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path
from typing import Iterable, Mapping, Optional

from pydantic import BaseModel

from lastlook.ingestion.detectors import HashComputer
from lastlook.manifest import ManifestEntry
from lastlook.transfer.models import Origin, Selected
from lastlook.transfer.resume import (
    SMART_RESUME_TOLERANCE_MS,
    Comparison,
    FileStat,
    SmartResumeComparator,
)

LOGGER = logging.getLogger(__name__)


class SafetyVerdict(str, Enum):
    """Result of checking one file before deletion."""

    SAFE = "safe"
    MISSING = "missing"
    UNVERIFIED = "unverified"
    MISMATCH = "mismatch"
    CHANGED = "changed"
    NOT_SOURCE = "not_source"


class SafetyStatus(BaseModel):
    """Verdict for one selected file.

    Attributes:
        name: Selected file name.
        verdict: Whether the file may be deleted from the source.
        detail: Human-readable reason for non-safe verdicts.
    """

    name: str
    verdict: SafetyVerdict
    detail: Optional[str] = None

    @property
    def safe(self) -> bool:
        return self.verdict is SafetyVerdict.SAFE


class DeletionGate:
    """Decide which source files are backed up well enough to delete."""

    def __init__(
        self,
        destination: Path,
        entries: Mapping[str, ManifestEntry],
        *,
        deep: bool = False,
        verify_destination: bool = True,
        source_root: Optional[Path] = None,
        tolerance_ms: int = SMART_RESUME_TOLERANCE_MS,
    ) -> None:
        """Initialize the gate.

        Args:
            destination: Destination folder holding the backups.
            entries: Manifest snapshot keyed by filename.
            deep: Re-hash destination files and compare against the manifest.
            verify_destination: When false, trust the manifest without looking
                at the destination (the unchecked, forced path).
            source_root: Source folder. When given, each source file must still
                match the size and modification time recorded in the manifest
                (and, with ``deep``, its hash) so a reused clip name is never
                mistaken for the file that was backed up.
            tolerance_ms: Allowed modification-time drift for that comparison.
        """
        self._destination = destination
        self._entries = dict(entries)
        self._deep = deep
        self._verify_destination = verify_destination
        self._source_root = source_root
        self._comparator = SmartResumeComparator(tolerance_ms)

    def check(self, selections: Iterable[Selected]) -> list[SafetyStatus]:
        """Return a verdict for each selection, in order."""
        return [self._check_one(selection) for selection in selections]

    def delete(self, source_root: Path, statuses: Iterable[SafetyStatus]) -> list[str]:
        """Remove the ``safe`` files from ``source_root``.

        Returns:
            list[str]: Names that were deleted.
        """
        deleted: list[str] = []
        for status in statuses:
            if not status.safe:
                continue
            target = source_root / status.name
            try:
                target.unlink()
            except FileNotFoundError:
                LOGGER.warning("Source file %s already gone.", target)
                continue
            except OSError as exc:
                LOGGER.error("Failed to delete %s: %s", target, exc)
                continue
            LOGGER.info("Deleted verified source file %s.", target)
            deleted.append(status.name)
        return deleted

    def _check_one(self, selection: Selected) -> SafetyStatus:
        name = selection.name
        if selection.origin is not Origin.SOURCE:
            return SafetyStatus(
                name=name,
                verdict=SafetyVerdict.NOT_SOURCE,
                detail="Only source-side files can be deleted.",
            )

        entry = self._entries.get(name)
        if entry is None or entry.status != "verified":
            return SafetyStatus(
                name=name,
                verdict=SafetyVerdict.UNVERIFIED,
                detail="No verified manifest entry.",
            )

        if self._source_root is not None:
            changed = self._check_source(self._source_root / name, entry)
            if changed is not None:
                return changed

        if not self._verify_destination:
            return SafetyStatus(
                name=name,
                verdict=SafetyVerdict.SAFE,
                detail="Destination not checked.",
            )

        backup = self._destination / name
        try:
            size = backup.stat().st_size
        except OSError as exc:
            LOGGER.warning("Safety check could not find %s: %s", backup, exc)
            return SafetyStatus(name=name, verdict=SafetyVerdict.MISSING, detail=str(exc))

        if not backup.is_file():
            return SafetyStatus(name=name, verdict=SafetyVerdict.MISSING, detail="Not a file.")

        if size != entry.size_bytes:
            return SafetyStatus(
                name=name,
                verdict=SafetyVerdict.MISMATCH,
                detail=f"Size {size} differs from recorded {entry.size_bytes}.",
            )

        if self._deep:
            try:
                digest = HashComputer(entry.hash_type).compute(backup)
            except OSError as exc:
                return SafetyStatus(name=name, verdict=SafetyVerdict.MISSING, detail=str(exc))
            if digest != entry.hash_value:
                return SafetyStatus(
                    name=name,
                    verdict=SafetyVerdict.MISMATCH,
                    detail=f"Hash {digest} differs from recorded {entry.hash_value}.",
                )

        return SafetyStatus(name=name, verdict=SafetyVerdict.SAFE)

    def _check_source(self, path: Path, entry: ManifestEntry) -> Optional[SafetyStatus]:
        name = entry.filename
        try:
            current = FileStat.from_path(path)
        except OSError as exc:
            LOGGER.warning("Safety check could not stat source %s: %s", path, exc)
            return SafetyStatus(name=name, verdict=SafetyVerdict.MISSING, detail=str(exc))

        recorded = FileStat(size_bytes=entry.size_bytes, modified_ms=entry.modified_timestamp)
        if self._comparator.compare(current, recorded) is Comparison.DIFFERS:
            LOGGER.warning("Source %s no longer matches its manifest entry.", path)
            return SafetyStatus(
                name=name,
                verdict=SafetyVerdict.CHANGED,
                detail="Source file differs from the backed-up version.",
            )

        if self._deep:
            try:
                digest = HashComputer(entry.hash_type).compute(path)
            except OSError as exc:
                return SafetyStatus(name=name, verdict=SafetyVerdict.MISSING, detail=str(exc))
            if digest != entry.hash_value:
                return SafetyStatus(
                    name=name,
                    verdict=SafetyVerdict.CHANGED,
                    detail=f"Source hash {digest} differs from recorded {entry.hash_value}.",
                )
        return None


__all__ = ["DeletionGate", "SafetyStatus", "SafetyVerdict"]
