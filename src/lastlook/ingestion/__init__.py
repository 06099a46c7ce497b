"""Directory listing and content hashing helpers."""

from .detectors import SUPPORTED_ALGORITHMS, HashComputer, new_hasher
from .discovery import DirectoryScanner
from .models import SourceEntry

__all__ = ["DirectoryScanner", "HashComputer", "SourceEntry", "SUPPORTED_ALGORITHMS", "new_hasher"]
