"""Smart-resume comparison of a source file against its destination copy."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

LOGGER = logging.getLogger(__name__)

# FAT-family filesystems store modification times with two-second granularity.
SMART_RESUME_TOLERANCE_MS = 3000


class Comparison(str, Enum):
    """Outcome of a smart-resume comparison."""

    IDENTICAL = "identical"
    DIFFERS = "differs"


@dataclass(frozen=True, slots=True)
class FileStat:
    """Size and modification time of a file.

    Attributes:
        size_bytes: File size in bytes.
        modified_ms: Modification time in epoch milliseconds.
    """

    size_bytes: int
    modified_ms: int

    @classmethod
    def from_path(cls, path: Path) -> "FileStat":
        """Stat ``path``; raises ``OSError`` when the file cannot be read."""
        return cls.from_stat_result(path.stat())

    @classmethod
    def from_stat_result(cls, result: os.stat_result) -> "FileStat":
        """Build a stat from an ``os.stat_result``."""
        return cls(size_bytes=result.st_size, modified_ms=result.st_mtime_ns // 1_000_000)


class SmartResumeComparator:
    """Decide whether a destination file already matches its source."""

    def __init__(self, tolerance_ms: int = SMART_RESUME_TOLERANCE_MS) -> None:
        self.tolerance_ms = tolerance_ms

    def compare(self, source: Optional[FileStat], destination: Optional[FileStat]) -> Comparison:
        """Compare two stats; a missing stat always counts as a difference."""
        if source is None or destination is None:
            return Comparison.DIFFERS
        if source.size_bytes != destination.size_bytes:
            return Comparison.DIFFERS
        if abs(source.modified_ms - destination.modified_ms) >= self.tolerance_ms:
            return Comparison.DIFFERS
        return Comparison.IDENTICAL

    def compare_paths(self, source: Path, destination: Path) -> Comparison:
        """Stat both paths and compare them, treating stat failures as differences."""
        return self.compare(_safe_stat(source), _safe_stat(destination))


def _safe_stat(path: Path) -> Optional[FileStat]:
    try:
        return FileStat.from_path(path)
    except OSError as exc:
        LOGGER.debug("Unable to stat %s: %s", path, exc)
        return None


__all__ = ["SMART_RESUME_TOLERANCE_MS", "Comparison", "FileStat", "SmartResumeComparator"]
