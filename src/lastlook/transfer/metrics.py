"""Throughput and ETA derived from batch byte counters."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Optional

_UNITS = ("B", "KB", "MB", "GB", "TB")


@dataclass(frozen=True, slots=True)
class MetricsSnapshot:
    """Point-in-time batch metrics.

    Attributes:
        processed_bytes: Settled bytes plus progress of the file in flight.
        percent: Batch progress from 0 to 100.
        bytes_per_second: Average speed since the batch started.
        eta_seconds: Estimated seconds remaining.
    """

    processed_bytes: int
    percent: int
    bytes_per_second: Optional[float]
    eta_seconds: Optional[float]


class MetricsAggregator:
    """Compute average speed and remaining time for a batch."""

    def __init__(self, total_bytes: int, started_at: Optional[float] = None) -> None:
        self.total_bytes = max(0, total_bytes)
        self.started_at = started_at if started_at is not None else time.time()

    def snapshot(
        self,
        completed_bytes: int,
        current_file_bytes: int = 0,
        now: Optional[float] = None,
    ) -> MetricsSnapshot:
        """Return metrics for the given counters.

        Speed and ETA stay unknown until at least one second has elapsed.
        """
        processed = completed_bytes + current_file_bytes
        percent = 0
        if self.total_bytes > 0:
            percent = min(100, round(processed / self.total_bytes * 100))

        elapsed = (now if now is not None else time.time()) - self.started_at
        if elapsed < 1.0:
            return MetricsSnapshot(processed, percent, None, None)

        speed = processed / elapsed
        eta: Optional[float] = None
        if speed > 0:
            eta = max(0.0, self.total_bytes / speed - elapsed)
        return MetricsSnapshot(processed, percent, speed, eta)


def format_size(num_bytes: float) -> str:
    """Render a byte count using 1024-based units, e.g. ``1.5 MB``."""
    if num_bytes <= 0:
        return "0 B"
    value = float(num_bytes)
    for unit in _UNITS:
        if value < 1024 or unit == _UNITS[-1]:
            if unit == "B":
                return f"{int(value)} B"
            return f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} {_UNITS[-1]}"


def format_duration(seconds: float) -> str:
    """Render a duration as ``MM:SS`` or ``H:MM:SS``."""
    total = max(0, int(round(seconds)))
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


__all__ = ["MetricsAggregator", "MetricsSnapshot", "format_size", "format_duration"]
