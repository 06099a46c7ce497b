"""Deletion safety gate tests."""

from __future__ import annotations

import os
from pathlib import Path

from lastlook.ingestion import HashComputer
from lastlook.manifest import ManifestEntry
from lastlook.safety import DeletionGate, SafetyVerdict
from lastlook.transfer import FileStat, Origin, Selected


def _layout(tmp_path: Path) -> tuple[Path, Path, dict[str, ManifestEntry]]:
    source = tmp_path / "card"
    destination = tmp_path / "backup"
    source.mkdir()
    destination.mkdir()
    for name, payload in (("A001.mov", b"alpha"), ("A002.mov", b"bravo")):
        (source / name).write_bytes(payload)
        (destination / name).write_bytes(payload)
    entries = {
        name: ManifestEntry(
            filename=name,
            rel_path=name,
            source_path=(source / name).as_posix(),
            size_bytes=5,
            modified_timestamp=FileStat.from_path(source / name).modified_ms,
            hash_type="xxh3_64",
            hash_value=HashComputer().compute(destination / name),
        )
        for name in ("A001.mov", "A002.mov")
    }
    return source, destination, entries


def test_verified_and_present_files_are_safe(tmp_path: Path) -> None:
    _, destination, entries = _layout(tmp_path)
    gate = DeletionGate(destination, entries, deep=True)

    statuses = gate.check([Selected(name="A001.mov"), Selected(name="A002.mov")])

    assert [status.verdict for status in statuses] == [SafetyVerdict.SAFE, SafetyVerdict.SAFE]


def test_unverified_missing_and_mismatched_files_are_blocked(tmp_path: Path) -> None:
    source, destination, entries = _layout(tmp_path)
    (source / "A003.mov").write_bytes(b"charlie")
    (destination / "A001.mov").unlink()
    (destination / "A002.mov").write_bytes(b"brave")

    gate = DeletionGate(destination, entries, deep=True)
    statuses = gate.check(
        [
            Selected(name="A001.mov"),
            Selected(name="A002.mov"),
            Selected(name="A003.mov"),
            Selected(name="A002.mov", origin=Origin.DESTINATION),
        ]
    )

    assert [status.verdict for status in statuses] == [
        SafetyVerdict.MISSING,
        SafetyVerdict.MISMATCH,
        SafetyVerdict.UNVERIFIED,
        SafetyVerdict.NOT_SOURCE,
    ]


def test_size_mismatch_is_detected_without_deep_check(tmp_path: Path) -> None:
    _, destination, entries = _layout(tmp_path)
    (destination / "A001.mov").write_bytes(b"truncated-and-longer")

    statuses = DeletionGate(destination, entries).check([Selected(name="A001.mov")])

    assert statuses[0].verdict is SafetyVerdict.MISMATCH


def test_skipping_destination_check_trusts_manifest(tmp_path: Path) -> None:
    _, destination, entries = _layout(tmp_path)
    (destination / "A001.mov").unlink()

    statuses = DeletionGate(destination, entries, verify_destination=False).check(
        [Selected(name="A001.mov")]
    )

    assert statuses[0].safe
    assert statuses[0].detail == "Destination not checked."


def test_delete_only_removes_safe_files(tmp_path: Path) -> None:
    source, destination, entries = _layout(tmp_path)
    (destination / "A002.mov").unlink()
    gate = DeletionGate(destination, entries)
    statuses = gate.check([Selected(name="A001.mov"), Selected(name="A002.mov")])

    deleted = gate.delete(source, statuses)

    assert deleted == ["A001.mov"]
    assert not (source / "A001.mov").exists()
    assert (source / "A002.mov").exists()
    assert (destination / "A001.mov").exists()


def test_reused_clip_name_on_card_is_not_deleted(tmp_path: Path) -> None:
    source, destination, entries = _layout(tmp_path)
    (source / "A001.mov").write_bytes(b"a brand new take after format")
    gate = DeletionGate(destination, entries, source_root=source)

    statuses = gate.check([Selected(name="A001.mov"), Selected(name="A002.mov")])

    assert [status.verdict for status in statuses] == [SafetyVerdict.CHANGED, SafetyVerdict.SAFE]
    assert gate.delete(source, statuses) == ["A002.mov"]
    assert (source / "A001.mov").read_bytes() == b"a brand new take after format"


def test_source_outside_mtime_tolerance_is_changed(tmp_path: Path) -> None:
    source, destination, entries = _layout(tmp_path)
    recorded_ms = entries["A001.mov"].modified_timestamp
    shifted = (recorded_ms + 5000) / 1000
    os.utime(source / "A001.mov", (shifted, shifted))

    statuses = DeletionGate(destination, entries, source_root=source).check(
        [Selected(name="A001.mov")]
    )

    assert statuses[0].verdict is SafetyVerdict.CHANGED


def test_deep_check_rehashes_source(tmp_path: Path) -> None:
    source, destination, entries = _layout(tmp_path)
    stamp = os.stat(source / "A001.mov")
    (source / "A001.mov").write_bytes(b"ALPHA")
    os.utime(source / "A001.mov", ns=(stamp.st_atime_ns, stamp.st_mtime_ns))

    shallow = DeletionGate(destination, entries, source_root=source)
    deep = DeletionGate(destination, entries, source_root=source, deep=True)

    assert shallow.check([Selected(name="A001.mov")])[0].safe
    assert deep.check([Selected(name="A001.mov")])[0].verdict is SafetyVerdict.CHANGED


def test_missing_source_file_is_not_safe(tmp_path: Path) -> None:
    source, destination, entries = _layout(tmp_path)
    (source / "A001.mov").unlink()

    statuses = DeletionGate(destination, entries, source_root=source).check(
        [Selected(name="A001.mov")]
    )

    assert statuses[0].verdict is SafetyVerdict.MISSING
