"""Transfer orchestrator tests."""

from __future__ import annotations

import asyncio
import os
import shutil
from pathlib import Path
from typing import Optional

import pytest

from lastlook.manifest import JournalRegistry, ManifestEntry, ManifestJournal, Provenance
from lastlook.transfer import (
    CopyCancelledError,
    CopyError,
    FileOutcome,
    InvalidTransitionError,
    Origin,
    Outcome,
    ProgressEvent,
    ResolutionMode,
    Selected,
    TransferBatch,
    TransferObserver,
    TransferOrchestrator,
    TransferState,
    VerifyingEvent,
)

PROVENANCE = Provenance(
    machine_name="test-host",
    operating_system="Linux",
    app_version="LastLook v0.2.0",
    session_id="session-1",
)
MTIME = 1_700_000_000


class FakeCopier:
    """Copier double that copies with shutil and records each call."""

    hash_algorithm = "xxh3_64"

    def __init__(
        self,
        *,
        fail: tuple[str, ...] = (),
        crash: tuple[str, ...] = (),
        cancel_on: Optional[str] = None,
    ) -> None:
        self.calls: list[str] = []
        self.cancel_requests = 0
        self._fail = set(fail)
        self._crash = set(crash)
        self._cancel_on = cancel_on

    def cancel(self) -> None:
        self.cancel_requests += 1

    async def copy(self, source, destination, *, on_progress=None, on_verifying=None) -> str:
        name = destination.name
        self.calls.append(name)
        await asyncio.sleep(0)
        if name == self._cancel_on:
            raise CopyCancelledError(f"Copy of {name} cancelled")
        if name in self._fail:
            raise CopyError(f"simulated failure for {name}")
        if name in self._crash:
            raise RuntimeError("device unplugged")
        size = source.stat().st_size
        if on_progress is not None:
            on_progress(ProgressEvent(filename=name, bytes_transferred=size, bytes_total=size))
        if on_verifying is not None:
            on_verifying(VerifyingEvent(filename=name))
        shutil.copy2(source, destination)
        return f"hash-{name}"


class RecordingObserver(TransferObserver):
    def __init__(self) -> None:
        self.started: list[str] = []
        self.finished: list[tuple[str, Outcome, int]] = []
        self.verifying_names: list[str] = []

    def file_started(self, name: str, size_bytes: int) -> None:
        self.started.append(name)

    def verifying(self, event: VerifyingEvent) -> None:
        self.verifying_names.append(event.filename)

    def file_finished(self, outcome: FileOutcome, batch: TransferBatch) -> None:
        self.finished.append((outcome.name, outcome.outcome, batch.completed_bytes))


def _write(path: Path, payload: bytes, mtime: int = MTIME) -> Path:
    path.write_bytes(payload)
    os.utime(path, (mtime, mtime))
    return path


def _roots(tmp_path: Path) -> tuple[Path, Path]:
    source = tmp_path / "card"
    destination = tmp_path / "backup"
    source.mkdir()
    destination.mkdir()
    return source, destination


def _orchestrator(
    source: Path,
    destination: Path,
    copier: FakeCopier,
    observer: Optional[TransferObserver] = None,
) -> TransferOrchestrator:
    orchestrator = TransferOrchestrator(
        copier,
        registry=JournalRegistry(),
        provenance=PROVENANCE,
        observer=observer,
    )
    orchestrator.mount_source(source)
    orchestrator.mount_destination(destination)
    return orchestrator


@pytest.mark.asyncio
async def test_two_video_smart_resume_scenario(tmp_path: Path) -> None:
    source, destination = _roots(tmp_path)
    _write(source / "video1.mp4", b"1" * 100)
    _write(source / "video2.mp4", b"2" * 200)
    _write(destination / "video1.mp4", b"1" * 100)
    copier = FakeCopier()
    orchestrator = _orchestrator(source, destination, copier)

    conflicts = orchestrator.preflight(["video1.mp4", "video2.mp4"])
    assert conflicts == ["video1.mp4"]
    assert orchestrator.state is TransferState.AWAITING_RESOLUTION

    assert orchestrator.resolve(ResolutionMode.OVERWRITE_SMART) is True
    report = await orchestrator.execute()

    assert copier.calls == ["video2.mp4"]
    assert [(item.name, item.outcome) for item in report.outcomes] == [
        ("video1.mp4", Outcome.IDENTICAL),
        ("video2.mp4", Outcome.COPIED),
    ]
    assert orchestrator.verified_files == {"video1.mp4", "video2.mp4"}
    assert orchestrator.state is TransferState.COMPLETED

    entries = ManifestJournal(destination).load()
    # No prior entry for video1.mp4, so the identical branch records nothing.
    assert list(entries) == ["video2.mp4"]
    assert entries["video2.mp4"].hash_value == "hash-video2.mp4"
    assert entries["video2.mp4"].size_bytes == 200
    assert entries["video2.mp4"].modified_timestamp == MTIME * 1000


@pytest.mark.asyncio
async def test_identical_file_restamps_existing_entry(tmp_path: Path) -> None:
    source, destination = _roots(tmp_path)
    _write(source / "video1.mp4", b"1" * 100)
    _write(destination / "video1.mp4", b"1" * 100)
    seed = ManifestJournal(destination)
    seed.load()
    await seed.upsert(
        ManifestEntry(
            filename="video1.mp4",
            rel_path="video1.mp4",
            source_path="/old/card/video1.mp4",
            size_bytes=100,
            modified_timestamp=MTIME * 1000,
            hash_type="xxh3_64",
            hash_value="original-hash",
            verified_at="2024-01-01T00:00:00.000Z",
        ),
        PROVENANCE,
    )
    await seed.close()

    copier = FakeCopier()
    orchestrator = _orchestrator(source, destination, copier)
    report = await orchestrator.run(["video1.mp4"], lambda conflicts: "overwrite_smart")

    assert report is not None
    assert report.count(Outcome.IDENTICAL) == 1
    assert copier.calls == []
    entry = ManifestJournal(destination).load()["video1.mp4"]
    assert entry.hash_value == "original-hash"
    assert entry.verified_at != "2024-01-01T00:00:00.000Z"


@pytest.mark.asyncio
async def test_byte_accounting_closes_across_outcomes(tmp_path: Path) -> None:
    source, destination = _roots(tmp_path)
    _write(source / "a.mov", b"a" * 10)
    _write(source / "b.mov", b"b" * 20)
    _write(source / "c.mov", b"c" * 30)
    _write(destination / "a.mov", b"a" * 10)
    _write(destination / "b.mov", b"b" * 20, mtime=MTIME + 60)
    observer = RecordingObserver()
    orchestrator = _orchestrator(source, destination, FakeCopier(), observer)

    report = await orchestrator.run(["a.mov", "b.mov", "c.mov"])

    assert report is not None
    assert report.total_bytes == 60
    assert report.completed_bytes == report.total_bytes
    assert [(name, outcome) for name, outcome, _ in observer.finished] == [
        ("a.mov", Outcome.IDENTICAL),
        ("b.mov", Outcome.COPIED),
        ("c.mov", Outcome.COPIED),
    ]
    completed = [bytes_done for _, _, bytes_done in observer.finished]
    assert completed == sorted(completed) == [10, 30, 60]
    assert observer.verifying_names == ["b.mov", "c.mov"]
    assert orchestrator.verifying_files == set()


@pytest.mark.asyncio
async def test_skip_existing_counts_bytes_without_copy(tmp_path: Path) -> None:
    source, destination = _roots(tmp_path)
    _write(source / "a.mov", b"new contents")
    _write(destination / "a.mov", b"old")
    _write(source / "b.mov", b"b")
    copier = FakeCopier()
    orchestrator = _orchestrator(source, destination, copier)

    report = await orchestrator.run(["a.mov", "b.mov"], lambda conflicts: "skip_existing")

    assert report is not None
    assert [item.outcome for item in report.outcomes] == [Outcome.SKIPPED, Outcome.COPIED]
    assert copier.calls == ["b.mov"]
    assert report.completed_bytes == report.total_bytes
    assert (destination / "a.mov").read_bytes() == b"old"
    assert list(ManifestJournal(destination).load()) == ["b.mov"]


@pytest.mark.asyncio
async def test_force_overwrite_recopies_identical_files(tmp_path: Path) -> None:
    source, destination = _roots(tmp_path)
    _write(source / "a.mov", b"same")
    _write(destination / "a.mov", b"same")
    copier = FakeCopier()
    orchestrator = _orchestrator(source, destination, copier)

    report = await orchestrator.run(["a.mov"], lambda conflicts: ResolutionMode.FORCE_OVERWRITE)

    assert report is not None
    assert copier.calls == ["a.mov"]
    assert report.outcomes[0].outcome is Outcome.COPIED


@pytest.mark.asyncio
async def test_cancel_resolution_touches_nothing(tmp_path: Path) -> None:
    source, destination = _roots(tmp_path)
    _write(source / "a.mov", b"new")
    _write(destination / "a.mov", b"old")
    _write(source / "b.mov", b"b")
    copier = FakeCopier()
    orchestrator = _orchestrator(source, destination, copier)

    report = await orchestrator.run(["a.mov", "b.mov"], lambda conflicts: ResolutionMode.CANCEL)

    assert report is not None
    assert report.resolution is ResolutionMode.CANCEL
    assert report.conflicts == ["a.mov"]
    assert report.outcomes == []
    assert copier.calls == []
    assert orchestrator.state is TransferState.IDLE
    assert orchestrator.batch is None
    assert not (destination / "b.mov").exists()
    assert not (destination / "lastlook_manifest.json").exists()


@pytest.mark.asyncio
async def test_async_resolver_is_awaited(tmp_path: Path) -> None:
    source, destination = _roots(tmp_path)
    _write(source / "a.mov", b"new")
    _write(destination / "a.mov", b"old")
    seen: list[list[str]] = []

    async def _resolver(conflicts: list[str]) -> ResolutionMode:
        seen.append(conflicts)
        return ResolutionMode.SKIP_EXISTING

    orchestrator = _orchestrator(source, destination, FakeCopier())
    report = await orchestrator.run(["a.mov"], _resolver)

    assert seen == [["a.mov"]]
    assert report is not None
    assert report.outcomes[0].outcome is Outcome.SKIPPED


@pytest.mark.asyncio
async def test_cancellation_stops_after_current_file(tmp_path: Path) -> None:
    source, destination = _roots(tmp_path)
    for name in ("a.mov", "b.mov", "c.mov"):
        _write(source / name, name.encode())
    copier = FakeCopier()
    orchestrator = _orchestrator(source, destination, copier)

    class _CancelAfterFirst(TransferObserver):
        def file_finished(self, outcome: FileOutcome, batch: TransferBatch) -> None:
            orchestrator.cancel()

    orchestrator.observer = _CancelAfterFirst()
    report = await orchestrator.run(["a.mov", "b.mov", "c.mov"])

    assert report is not None
    assert report.state is TransferState.CANCELLED
    assert copier.calls == ["a.mov"]
    assert copier.cancel_requests == 1
    assert [item.name for item in report.outcomes] == ["a.mov"]
    assert orchestrator.state is TransferState.IDLE
    assert list(ManifestJournal(destination).load()) == ["a.mov"]


@pytest.mark.asyncio
async def test_copier_cancellation_ends_batch(tmp_path: Path) -> None:
    source, destination = _roots(tmp_path)
    for name in ("a.mov", "b.mov", "c.mov"):
        _write(source / name, name.encode())
    copier = FakeCopier(cancel_on="b.mov")
    orchestrator = _orchestrator(source, destination, copier)

    report = await orchestrator.run(["a.mov", "b.mov", "c.mov"])

    assert report is not None
    assert report.state is TransferState.CANCELLED
    assert [(item.name, item.outcome) for item in report.outcomes] == [
        ("a.mov", Outcome.COPIED),
        ("b.mov", Outcome.CANCELLED),
    ]
    assert copier.calls == ["a.mov", "b.mov"]
    assert report.completed_bytes == 5
    assert list(ManifestJournal(destination).load()) == ["a.mov"]


@pytest.mark.asyncio
async def test_failed_file_does_not_stop_batch(tmp_path: Path) -> None:
    source, destination = _roots(tmp_path)
    for name in ("a.mov", "b.mov", "c.mov"):
        _write(source / name, name.encode())
    copier = FakeCopier(fail=("b.mov",))
    orchestrator = _orchestrator(source, destination, copier)

    report = await orchestrator.run(["a.mov", "b.mov", "c.mov"])

    assert report is not None
    assert report.state is TransferState.COMPLETED
    assert [item.outcome for item in report.outcomes] == [
        Outcome.COPIED,
        Outcome.FAILED,
        Outcome.COPIED,
    ]
    assert "simulated failure" in (report.outcomes[1].error or "")
    assert report.completed_bytes == 10
    assert sorted(ManifestJournal(destination).load()) == ["a.mov", "c.mov"]
    assert "b.mov" not in orchestrator.verified_files


@pytest.mark.asyncio
async def test_noop_requests_return_none(tmp_path: Path) -> None:
    source, destination = _roots(tmp_path)
    (source / "folder").mkdir()
    copier = FakeCopier()

    unmounted = TransferOrchestrator(copier, provenance=PROVENANCE)
    assert unmounted.preflight(["a.mov"]) is None

    orchestrator = _orchestrator(source, destination, copier)
    assert orchestrator.preflight([]) is None
    assert await orchestrator.run(["folder"]) is None
    assert orchestrator.state is TransferState.IDLE


def test_destination_selections_are_ignored(tmp_path: Path) -> None:
    source, destination = _roots(tmp_path)
    _write(source / "a.mov", b"a")
    _write(destination / "b.mov", b"b")
    orchestrator = _orchestrator(source, destination, FakeCopier())

    result = orchestrator.preflight(
        [Selected(name="b.mov", origin=Origin.DESTINATION), Selected(name="a.mov")]
    )

    assert result == []
    assert orchestrator.state is TransferState.CLEAN
    assert orchestrator.batch is not None
    assert orchestrator.batch.names == ["a.mov"]


def test_invalid_transitions_raise(tmp_path: Path) -> None:
    source, destination = _roots(tmp_path)
    _write(source / "a.mov", b"a")
    orchestrator = _orchestrator(source, destination, FakeCopier())

    with pytest.raises(InvalidTransitionError):
        orchestrator.resolve(ResolutionMode.SKIP_EXISTING)

    orchestrator.preflight(["a.mov"])
    with pytest.raises(InvalidTransitionError):
        orchestrator.preflight(["a.mov"])


@pytest.mark.asyncio
async def test_execute_requires_resolution(tmp_path: Path) -> None:
    source, destination = _roots(tmp_path)
    _write(source / "a.mov", b"a")
    _write(destination / "a.mov", b"b")
    orchestrator = _orchestrator(source, destination, FakeCopier())

    orchestrator.preflight(["a.mov"])
    with pytest.raises(InvalidTransitionError):
        await orchestrator.execute()

    orchestrator.cancel()
    assert orchestrator.state is TransferState.IDLE


@pytest.mark.asyncio
async def test_mount_destination_seeds_verified_files_and_hides_manifest(tmp_path: Path) -> None:
    source, destination = _roots(tmp_path)
    _write(source / "a.mov", b"a")
    first = _orchestrator(source, destination, FakeCopier())
    await first.run(["a.mov"])

    second = _orchestrator(source, destination, FakeCopier())

    assert second.verified_files == {"a.mov"}
    assert second.destination_listing == {"a.mov"}


@pytest.mark.asyncio
async def test_unexpected_copier_error_fails_only_that_file(tmp_path: Path) -> None:
    source, destination = _roots(tmp_path)
    for name in ("a.mov", "b.mov"):
        _write(source / name, name.encode())
    copier = FakeCopier(crash=("a.mov",))
    orchestrator = _orchestrator(source, destination, copier)

    report = await orchestrator.run(["a.mov", "b.mov"])

    assert report is not None
    assert copier.calls == ["a.mov", "b.mov"]
    assert [item.outcome for item in report.outcomes] == [Outcome.FAILED, Outcome.COPIED]
    assert "device unplugged" in (report.outcomes[0].error or "")
    assert orchestrator.state is TransferState.COMPLETED
    assert (destination / "b.mov").read_bytes() == b"b.mov"
    assert orchestrator.preflight(["a.mov"]) == []


class ExplodingObserver(TransferObserver):
    def file_finished(self, outcome: FileOutcome, batch: TransferBatch) -> None:
        raise ValueError("display went away")


@pytest.mark.asyncio
async def test_observer_error_returns_orchestrator_to_idle(tmp_path: Path) -> None:
    source, destination = _roots(tmp_path)
    _write(source / "a.mov", b"a")
    orchestrator = _orchestrator(source, destination, FakeCopier(), ExplodingObserver())

    with pytest.raises(ValueError):
        await orchestrator.run(["a.mov"])

    assert orchestrator.state is TransferState.IDLE
    assert sorted(ManifestJournal(destination).load()) == ["a.mov"]
    assert orchestrator.preflight(["a.mov"]) == ["a.mov"]


class StallingCopier(FakeCopier):
    def __init__(self) -> None:
        super().__init__()
        self.entered = asyncio.Event()

    async def copy(self, source, destination, *, on_progress=None, on_verifying=None) -> str:
        self.entered.set()
        await asyncio.Event().wait()
        return "unreachable"


@pytest.mark.asyncio
async def test_task_cancellation_returns_orchestrator_to_idle(tmp_path: Path) -> None:
    source, destination = _roots(tmp_path)
    _write(source / "a.mov", b"a")
    copier = StallingCopier()
    orchestrator = _orchestrator(source, destination, copier)

    task = asyncio.create_task(orchestrator.run(["a.mov"]))
    await copier.entered.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert orchestrator.state is TransferState.IDLE
    assert orchestrator.preflight(["a.mov"]) == []


@pytest.mark.asyncio
async def test_per_file_step_requires_mounted_roots() -> None:
    orchestrator = TransferOrchestrator(FakeCopier(), provenance=PROVENANCE)
    batch = TransferBatch(names=["a.mov"], total_bytes=0)

    with pytest.raises(InvalidTransitionError):
        await orchestrator._process_file("a.mov", batch, ResolutionMode.OVERWRITE_SMART)
