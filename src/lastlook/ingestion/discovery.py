"""Source and destination directory listings."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable

from .models import SourceEntry

LOGGER = logging.getLogger(__name__)


def _is_hidden(name: str) -> bool:
    return name.startswith(".")


class DirectoryScanner:
    """List the top level of source and destination folders."""

    def __init__(self, *, include_hidden: bool = False, exclude: Iterable[str] = ()) -> None:
        self.include_hidden = include_hidden
        self.exclude = frozenset(exclude)

    def scan_source(self, root: Path) -> list[SourceEntry]:
        """Return entries under ``root``: folders first, then files, each alphabetically.

        An unreadable root yields an empty listing.
        """
        root = root.expanduser()
        try:
            children = list(root.iterdir())
        except OSError as exc:
            LOGGER.error("Failed to read source directory %s: %s", root, exc)
            return []

        entries: list[SourceEntry] = []
        for path in children:
            if path.name in self.exclude:
                continue
            if not self.include_hidden and _is_hidden(path.name):
                continue
            try:
                stat = path.stat()
            except OSError as exc:
                LOGGER.debug("Skipping unreadable entry %s: %s", path, exc)
                continue
            is_directory = path.is_dir()
            entries.append(
                SourceEntry(
                    path=path,
                    name=path.name,
                    is_directory=is_directory,
                    size_bytes=0 if is_directory else stat.st_size,
                    modified_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                )
            )

        entries.sort(key=lambda entry: (not entry.is_directory, entry.name.casefold(), entry.name))
        return entries

    def scan_destination(self, root: Path) -> set[str]:
        """Return the names of regular files directly under ``root``.

        An unreadable root yields an empty set.
        """
        root = root.expanduser()
        try:
            children = list(root.iterdir())
        except OSError as exc:
            LOGGER.error("Failed to read destination directory %s: %s", root, exc)
            return set()
        return {
            path.name
            for path in children
            if path.name not in self.exclude and path.is_file()
        }
