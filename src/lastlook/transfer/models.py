"""Transfer engine data models."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ResolutionMode(str, Enum):
    """Decision taken when selected files already exist at the destination."""

    OVERWRITE_SMART = "overwrite_smart"
    FORCE_OVERWRITE = "force_overwrite"
    SKIP_EXISTING = "skip_existing"
    CANCEL = "cancel"


class TransferState(str, Enum):
    """States of the transfer orchestrator."""

    IDLE = "idle"
    PREFLIGHT_CHECKED = "preflight_checked"
    CLEAN = "clean"
    AWAITING_RESOLUTION = "awaiting_resolution"
    EXECUTING = "executing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Origin(str, Enum):
    """Panel a selected entry belongs to."""

    SOURCE = "source"
    DESTINATION = "destination"


class Selected(BaseModel):
    """A selected file name tagged with the side it was selected on."""

    model_config = ConfigDict(frozen=True)

    name: str
    origin: Origin = Origin.SOURCE


class Outcome(str, Enum):
    """Per-file result of a transfer batch."""

    COPIED = "copied"
    IDENTICAL = "identical"
    SKIPPED = "skipped"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True, slots=True)
class ProgressEvent:
    """Bytes copied so far for the file in flight."""

    filename: str
    bytes_transferred: int
    bytes_total: int


@dataclass(frozen=True, slots=True)
class VerifyingEvent:
    """Copy phase finished; post-copy hash verification has started."""

    filename: str


class FileOutcome(BaseModel):
    """Result recorded for one file of a batch.

    Attributes:
        name: File name relative to the source and destination roots.
        outcome: What happened to the file.
        size_bytes: Source size observed before the decision was made.
        hash_value: Content hash when the file was copied and verified.
        error: Failure description for failed files.
    """

    name: str
    outcome: Outcome
    size_bytes: int = 0
    hash_value: Optional[str] = None
    error: Optional[str] = None


@dataclass(slots=True)
class TransferBatch:
    """Ephemeral counters for one running batch.

    Attributes:
        names: Checked file names in selection order.
        total_bytes: Estimated size of the whole batch.
        completed_bytes: Bytes of files whose outcome is settled.
        current_file_bytes: Bytes copied so far for the file in flight.
        started_at: Wall-clock start time in seconds.
        cancel_event: Shared cancellation flag.
    """

    names: List[str]
    total_bytes: int = 0
    completed_bytes: int = 0
    current_file_bytes: int = 0
    started_at: float = field(default_factory=time.time)
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def cancelled(self) -> bool:
        """Return whether cancellation has been requested."""
        return self.cancel_event.is_set()

    def complete(self, size_bytes: int) -> None:
        """Settle ``size_bytes`` into the completed counter."""
        self.completed_bytes += max(0, size_bytes)
        self.current_file_bytes = 0


class TransferReport(BaseModel):
    """Summary of a finished, cancelled, or abandoned batch."""

    state: TransferState
    resolution: Optional[ResolutionMode] = None
    conflicts: List[str] = Field(default_factory=list)
    outcomes: List[FileOutcome] = Field(default_factory=list)
    total_bytes: int = 0
    completed_bytes: int = 0
    elapsed_seconds: float = 0.0

    def count(self, outcome: Outcome) -> int:
        """Return how many files ended with ``outcome``."""
        return sum(1 for item in self.outcomes if item.outcome == outcome)


__all__ = [
    "ResolutionMode",
    "TransferState",
    "Origin",
    "Selected",
    "Outcome",
    "ProgressEvent",
    "VerifyingEvent",
    "FileOutcome",
    "TransferBatch",
    "TransferReport",
]
