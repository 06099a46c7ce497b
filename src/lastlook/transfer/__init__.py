"""Transfer orchestration engine."""

from .conflicts import detect
from .copier import ByteCopier, LocalByteCopier
from .errors import CopyCancelledError, CopyError, InvalidTransitionError, TransferError
from .metrics import MetricsAggregator, MetricsSnapshot, format_duration, format_size
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
from .orchestrator import TransferObserver, TransferOrchestrator
from .resume import SMART_RESUME_TOLERANCE_MS, Comparison, FileStat, SmartResumeComparator

__all__ = [
    "detect",
    "ByteCopier",
    "LocalByteCopier",
    "CopyCancelledError",
    "CopyError",
    "InvalidTransitionError",
    "TransferError",
    "MetricsAggregator",
    "MetricsSnapshot",
    "format_duration",
    "format_size",
    "FileOutcome",
    "Origin",
    "Outcome",
    "ProgressEvent",
    "ResolutionMode",
    "Selected",
    "TransferBatch",
    "TransferReport",
    "TransferState",
    "VerifyingEvent",
    "TransferObserver",
    "TransferOrchestrator",
    "SMART_RESUME_TOLERANCE_MS",
    "Comparison",
    "FileStat",
    "SmartResumeComparator",
]
