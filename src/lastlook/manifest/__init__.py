"""Durable manifest journal recording verified transfers per destination."""

from .errors import ManifestError, ManifestWriteError
from .journal import MANIFEST_FILENAME, JournalRegistry, JournalState, ManifestJournal
from .models import (
    MANIFEST_VERSION,
    ManifestEntry,
    ManifestFile,
    Provenance,
    normalize_path,
    utc_now_iso,
)

__all__ = [
    "MANIFEST_FILENAME",
    "MANIFEST_VERSION",
    "JournalRegistry",
    "JournalState",
    "ManifestJournal",
    "ManifestEntry",
    "ManifestFile",
    "Provenance",
    "ManifestError",
    "ManifestWriteError",
    "normalize_path",
    "utc_now_iso",
]
