"""Directory listing models."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

from pydantic import BaseModel


class SourceEntry(BaseModel):
    """A file or folder found on the source volume.

    Attributes:
        path: Absolute path of the entry.
        name: Entry name relative to the scanned root.
        is_directory: Whether the entry is a folder.
        size_bytes: File size; zero for folders.
        modified_at: Modification time of the entry.
    """

    path: Path
    name: str
    is_directory: bool = False
    size_bytes: int = 0
    modified_at: datetime
