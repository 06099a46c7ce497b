"""Smart-resume comparator tests."""

import os
from pathlib import Path

import pytest

from lastlook.transfer import SMART_RESUME_TOLERANCE_MS, Comparison, FileStat, SmartResumeComparator


@pytest.mark.parametrize(
    ("drift_ms", "expected"),
    [
        (0, Comparison.IDENTICAL),
        (2999, Comparison.IDENTICAL),
        (-2999, Comparison.IDENTICAL),
        (3000, Comparison.DIFFERS),
        (3001, Comparison.DIFFERS),
    ],
)
def test_modification_time_tolerance(drift_ms: int, expected: Comparison) -> None:
    comparator = SmartResumeComparator()
    source = FileStat(size_bytes=100, modified_ms=1_700_000_000_000)
    destination = FileStat(size_bytes=100, modified_ms=source.modified_ms + drift_ms)

    assert comparator.compare(source, destination) is expected


def test_size_mismatch_differs() -> None:
    comparator = SmartResumeComparator()

    result = comparator.compare(FileStat(100, 0), FileStat(99, 0))

    assert result is Comparison.DIFFERS


def test_missing_stat_differs() -> None:
    comparator = SmartResumeComparator()

    assert comparator.compare(None, FileStat(1, 0)) is Comparison.DIFFERS
    assert comparator.compare(FileStat(1, 0), None) is Comparison.DIFFERS


def test_custom_tolerance() -> None:
    comparator = SmartResumeComparator(tolerance_ms=10)

    assert comparator.compare(FileStat(1, 0), FileStat(1, 9)) is Comparison.IDENTICAL
    assert comparator.compare(FileStat(1, 0), FileStat(1, 10)) is Comparison.DIFFERS
    assert SMART_RESUME_TOLERANCE_MS == 3000


def test_compare_paths_uses_filesystem_stats(tmp_path: Path) -> None:
    source = tmp_path / "source.mov"
    destination = tmp_path / "destination.mov"
    source.write_bytes(b"x" * 64)
    destination.write_bytes(b"y" * 64)
    os.utime(source, (1_700_000_000, 1_700_000_000))
    os.utime(destination, (1_700_000_001, 1_700_000_001))

    comparator = SmartResumeComparator()

    assert comparator.compare_paths(source, destination) is Comparison.IDENTICAL
    assert comparator.compare_paths(source, tmp_path / "missing.mov") is Comparison.DIFFERS
