"""Manifest data models persisted inside each destination folder."""

from __future__ import annotations

import platform
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Literal

from pydantic import BaseModel, ConfigDict, Field

MANIFEST_VERSION = "1.0"

HashType = Literal["xxh3_64", "md5", "sha256"]
EntryStatus = Literal["verified", "failed", "skipped"]


def utc_now_iso() -> str:
    """Return the current UTC time as an ISO-8601 string with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def normalize_path(path: Path | str) -> str:
    """Return ``path`` using forward slashes regardless of the host platform."""
    return str(path).replace("\\", "/")


class ManifestEntry(BaseModel):
    """One verified transfer record.

    Attributes:
        filename: Name of the file inside the destination; unique per manifest.
        rel_path: Path relative to the manifest file.
        source_path: Forward-slash normalized origin path.
        size_bytes: Size of the source at transfer time.
        modified_timestamp: Source modification time in epoch milliseconds.
        hash_type: Algorithm used for ``hash_value``.
        hash_value: Content fingerprint computed during verification.
        status: Outcome recorded for the file.
        verified_at: Creation time of this record.
    """

    model_config = ConfigDict(extra="ignore")

    filename: str
    rel_path: str
    source_path: str
    size_bytes: int = Field(ge=0)
    modified_timestamp: int
    hash_type: HashType
    hash_value: str
    status: EntryStatus = "verified"
    verified_at: str = Field(default_factory=utc_now_iso)


class ManifestFile(BaseModel):
    """A destination folder's journal document."""

    model_config = ConfigDict(extra="ignore")

    manifest_version: str = MANIFEST_VERSION
    session_id: str
    created_at: str = Field(default_factory=utc_now_iso)
    last_updated: str = Field(default_factory=utc_now_iso)
    app_version: str
    machine_name: str
    system_os: str
    files: List[ManifestEntry] = Field(default_factory=list)


@dataclass(frozen=True, slots=True)
class Provenance:
    """Identity of the process writing a manifest.

    Attributes:
        machine_name: Host name of the writing machine.
        operating_system: Operating system description.
        app_version: Application name and version string.
        session_id: Identifier of the transfer session.
    """

    machine_name: str
    operating_system: str
    app_version: str
    session_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @classmethod
    def current(cls, session_id: str | None = None) -> "Provenance":
        """Build provenance for the running process."""
        from lastlook import APP_NAME, __version__

        system = " ".join(part for part in (platform.system(), platform.release()) if part)
        return cls(
            machine_name=platform.node() or "unknown",
            operating_system=system or "unknown",
            app_version=f"{APP_NAME} v{__version__}",
            session_id=session_id or str(uuid.uuid4()),
        )


__all__ = [
    "MANIFEST_VERSION",
    "HashType",
    "EntryStatus",
    "ManifestEntry",
    "ManifestFile",
    "Provenance",
    "utc_now_iso",
    "normalize_path",
]
