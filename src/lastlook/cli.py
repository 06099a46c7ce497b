"""Command line interface for LastLook."""

from __future__ import annotations

import asyncio
import difflib
import signal
from pathlib import Path
from typing import Any, Optional

import click
import yaml
from click.core import ParameterSource
from rich.console import Console
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TaskID,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)
from rich.syntax import Syntax
from rich.table import Table

from lastlook.config import (
    ConfigError,
    ConfigManager,
    LastLookConfig,
    flatten_for_env,
    resolve_with_precedence,
)
from lastlook.config.resolver import expand_dotted
from lastlook.ingestion import DirectoryScanner
from lastlook.log_setup import setup_logging
from lastlook.manifest import JournalRegistry, ManifestJournal
from lastlook.safety import DeletionGate, SafetyStatus, SafetyVerdict
from lastlook.transfer import (
    FileOutcome,
    LocalByteCopier,
    Outcome,
    ProgressEvent,
    ResolutionMode,
    Selected,
    SmartResumeComparator,
    TransferBatch,
    TransferObserver,
    TransferOrchestrator,
    TransferReport,
    TransferState,
    VerifyingEvent,
    format_size,
)

console = Console()

_RESOLUTION_CHOICES = [mode.value for mode in ResolutionMode]
_RESOLUTION_ALIASES = {
    "smart": ResolutionMode.OVERWRITE_SMART.value,
    "force": ResolutionMode.FORCE_OVERWRITE.value,
    "skip": ResolutionMode.SKIP_EXISTING.value,
}


def _emit_message(message: Any, *, mode: str, quiet: bool, summary_only: bool) -> None:
    """Conditionally print CLI output according to quiet/summary settings.

    Args:
        message: Renderable or string to emit.
        mode: Output mode identifier (`detail`, `summary`, `warning`, or `error`).
        quiet: Whether quiet mode is active.
        summary_only: Whether only summary lines should be emitted.
    """

    if quiet and mode != "error":
        return
    if summary_only and mode not in {"summary", "warning", "error"}:
        return
    console.print(message)


def _format_summary_line(command: str, root: Path | str, metrics: dict[str, Any]) -> str:
    """Return a consistent summary line for CLI commands.

    Args:
        command: Command name to include in the summary.
        root: Target root path relevant to the command.
        metrics: Ordered mapping of metric names to values.

    Returns:
        str: Rich-formatted summary string.
    """

    parts = ", ".join(f"{key}={value}" for key, value in metrics.items())
    return f"[green]{command} summary for {root}: {parts}.[/green]"


def _load_config() -> LastLookConfig:
    """Load the effective configuration and configure logging from it.

    Raises:
        click.ClickException: If the configuration is invalid.
    """

    try:
        config = ConfigManager().load()
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc
    setup_logging(config.logging)
    return config


def _output_modes(
    ctx: click.Context,
    config: LastLookConfig,
    *,
    quiet: bool,
    summary_mode: bool,
    json_output: bool,
) -> tuple[bool, bool]:
    """Resolve quiet/summary flags against configured defaults.

    Returns:
        tuple[bool, bool]: Effective quiet and summary-only flags.

    Raises:
        click.ClickException: If incompatible modes are requested.
    """

    explicit_quiet = ctx.get_parameter_source("quiet") == ParameterSource.COMMANDLINE
    explicit_summary = ctx.get_parameter_source("summary_mode") == ParameterSource.COMMANDLINE
    quiet_enabled = quiet if explicit_quiet else config.cli.quiet_default
    summary_only = summary_mode if explicit_summary else config.cli.summary_default

    if json_output:
        if explicit_quiet and quiet_enabled:
            raise click.ClickException("--json cannot be combined with --quiet.")
        if explicit_summary and summary_only:
            raise click.ClickException("--json cannot be combined with --summary.")
        return False, False

    if quiet_enabled and summary_only:
        raise click.ClickException(
            "Quiet and summary modes cannot both be enabled. Adjust CLI defaults or flags."
        )
    return quiet_enabled, summary_only


def _source_selection(
    scanner: DirectoryScanner, source_root: Path, names: tuple[str, ...]
) -> list[Selected]:
    if names:
        return [Selected(name=name) for name in names]
    entries = scanner.scan_source(source_root)
    return [Selected(name=entry.name) for entry in entries if not entry.is_directory]


class _ProgressObserver(TransferObserver):
    """Render per-file and batch progress bars with Rich.

    The live display starts with the first file so conflict prompts are not
    drawn underneath it.
    """

    def __init__(self, progress: Progress) -> None:
        self._progress = progress
        self._started = False
        self._file_task: Optional[TaskID] = None
        self._batch_task: Optional[TaskID] = None

    def _ensure_started(self) -> tuple[TaskID, TaskID]:
        if self._file_task is None or self._batch_task is None:
            self._batch_task = self._progress.add_task("[blue]Batch", total=None)
            self._file_task = self._progress.add_task("waiting", total=None)
        if not self._started:
            self._progress.start()
            self._started = True
        return self._file_task, self._batch_task

    def stop(self) -> None:
        if self._started:
            self._progress.stop()
            self._started = False

    def file_started(self, name: str, size_bytes: int) -> None:
        file_task, _ = self._ensure_started()
        self._progress.reset(file_task, total=size_bytes or None, description=name)

    def progress(self, event: ProgressEvent) -> None:
        file_task, _ = self._ensure_started()
        self._progress.update(
            file_task,
            completed=event.bytes_transferred,
            total=event.bytes_total or None,
        )

    def verifying(self, event: VerifyingEvent) -> None:
        file_task, _ = self._ensure_started()
        self._progress.update(file_task, description=f"[yellow]verifying {event.filename}")

    def file_finished(self, outcome: FileOutcome, batch: TransferBatch) -> None:
        _, batch_task = self._ensure_started()
        self._progress.update(
            batch_task, completed=batch.completed_bytes, total=batch.total_bytes or None
        )
        if outcome.outcome is Outcome.FAILED:
            self._progress.console.print(f"[red]Failed: {outcome.name}: {outcome.error}[/red]")


def _resolve_conflicts(
    conflicts: list[str], mode: Optional[str], *, interactive: bool
) -> ResolutionMode:
    """Pick a resolution for conflicting names.

    An explicit or configured mode wins; otherwise the user is prompted, and
    non-interactive runs leave the destination untouched.
    """
    if mode is not None:
        return ResolutionMode(_RESOLUTION_ALIASES.get(mode, mode))
    if not interactive:
        return ResolutionMode.CANCEL

    console.print(f"[red]Destination already contains {len(conflicts)} selected file(s):[/red]")
    for name in conflicts:
        console.print(f"  - {name}")
    choice = click.prompt(
        "Resolve conflicts",
        type=click.Choice(_RESOLUTION_CHOICES + sorted(_RESOLUTION_ALIASES)),
        default=ResolutionMode.OVERWRITE_SMART.value,
    )
    return ResolutionMode(_RESOLUTION_ALIASES.get(choice, choice))


async def _execute_batch(
    orchestrator: TransferOrchestrator, registry: JournalRegistry
) -> TransferReport:
    """Execute the prepared batch with Ctrl+C mapped to cancellation."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, orchestrator.cancel)
        installed = True
    except (NotImplementedError, RuntimeError, ValueError):
        installed = False
    try:
        return await orchestrator.execute()
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)
        await registry.close_all()


def _report_metrics(report: TransferReport) -> dict[str, Any]:
    return {
        "copied": report.count(Outcome.COPIED),
        "identical": report.count(Outcome.IDENTICAL),
        "skipped": report.count(Outcome.SKIPPED),
        "failed": report.count(Outcome.FAILED),
        "bytes": format_size(report.completed_bytes),
    }


def _render_statuses(statuses: list[SafetyStatus]) -> Table:
    table = Table(title="Safety check")
    table.add_column("File")
    table.add_column("Status")
    table.add_column("Detail", overflow="fold")
    colors = {
        SafetyVerdict.SAFE: "green",
        SafetyVerdict.MISSING: "red",
        SafetyVerdict.MISMATCH: "red",
        SafetyVerdict.CHANGED: "red",
        SafetyVerdict.UNVERIFIED: "yellow",
        SafetyVerdict.NOT_SOURCE: "yellow",
    }
    for status in statuses:
        color = colors[status.verdict]
        verdict = f"[{color}]{status.verdict.value}[/{color}]"
        table.add_row(status.name, verdict, status.detail or "")
    return table


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(package_name="lastlook")
def cli() -> None:
    """LastLook copies media to a backup drive and proves every file arrived intact."""


@cli.command()
@click.argument("source", type=click.Path(exists=True, file_okay=False, path_type=str))
@click.argument("destination", type=click.Path(file_okay=False, path_type=str))
@click.argument("names", nargs=-1)
@click.option(
    "--on-conflict",
    type=click.Choice(_RESOLUTION_CHOICES + sorted(_RESOLUTION_ALIASES)),
    help="Resolve destination name conflicts without prompting.",
)
@click.option("--json", "json_output", is_flag=True, help="Emit a JSON transfer report.")
@click.option("--summary", "summary_mode", is_flag=True, help="Only emit summary lines.")
@click.option("--quiet", is_flag=True, help="Suppress non-error output.")
@click.pass_context
def transfer(
    ctx: click.Context,
    source: str,
    destination: str,
    names: tuple[str, ...],
    on_conflict: str | None,
    json_output: bool,
    summary_mode: bool,
    quiet: bool,
) -> None:
    """Copy files from SOURCE into DESTINATION and record verified hashes.

    NAMES restricts the batch to specific files; by default every file
    directly inside SOURCE is transferred.
    """

    config = _load_config()
    quiet_enabled, summary_only = _output_modes(
        ctx, config, quiet=quiet, summary_mode=summary_mode, json_output=json_output
    )

    source_root = Path(source).expanduser().resolve()
    destination_root = Path(destination).expanduser().resolve()
    destination_root.mkdir(parents=True, exist_ok=True)

    settings = config.transfer
    scanner = DirectoryScanner(
        include_hidden=settings.include_hidden,
        exclude={config.manifest.filename},
    )
    registry = JournalRegistry(filename=config.manifest.filename)
    orchestrator = TransferOrchestrator(
        LocalByteCopier(settings.hash_algorithm, settings.chunk_size_kb * 1024),
        registry=registry,
        comparator=SmartResumeComparator(settings.smart_resume_tolerance_ms),
        scanner=scanner,
    )
    orchestrator.mount_source(source_root)
    orchestrator.mount_destination(destination_root)

    selection = _source_selection(scanner, source_root, names)
    report: Optional[TransferReport] = None
    conflicts = orchestrator.preflight(selection)
    if conflicts is not None:
        mode = on_conflict or settings.default_resolution
        if conflicts and not orchestrator.resolve(
            _resolve_conflicts(conflicts, mode, interactive=not json_output)
        ):
            report = TransferReport(
                state=TransferState.IDLE,
                resolution=ResolutionMode.CANCEL,
                conflicts=conflicts,
            )
        elif json_output or quiet_enabled or summary_only:
            report = asyncio.run(_execute_batch(orchestrator, registry))
        else:
            observer = _ProgressObserver(
                Progress(
                    TextColumn("{task.description}"),
                    BarColumn(),
                    DownloadColumn(),
                    TransferSpeedColumn(),
                    TimeRemainingColumn(),
                    console=console,
                    transient=True,
                )
            )
            orchestrator.observer = observer
            try:
                report = asyncio.run(_execute_batch(orchestrator, registry))
            finally:
                observer.stop()

    journal_path = destination_root / config.manifest.filename
    if report is None:
        if json_output:
            console.print_json(data={"report": None, "reason": "nothing to transfer"})
        else:
            _emit_message(
                "[yellow]Nothing to transfer.[/yellow]",
                mode="warning",
                quiet=quiet_enabled,
                summary_only=summary_only,
            )
        return

    failed = report.count(Outcome.FAILED)
    if json_output:
        payload = report.model_dump(mode="json")
        payload["context"] = {
            "source_root": source_root.as_posix(),
            "destination_root": destination_root.as_posix(),
            "manifest_path": journal_path.as_posix(),
        }
        console.print_json(data=payload)
    else:
        if report.resolution is ResolutionMode.CANCEL:
            _emit_message(
                f"[yellow]Transfer cancelled; {len(report.conflicts)} conflict(s) left "
                "untouched.[/yellow]",
                mode="warning",
                quiet=quiet_enabled,
                summary_only=summary_only,
            )
            return
        for outcome in report.outcomes:
            _emit_message(
                f"  {outcome.outcome.value:<9} {outcome.name}",
                mode="detail",
                quiet=quiet_enabled,
                summary_only=summary_only,
            )
        if report.state is TransferState.CANCELLED:
            _emit_message(
                "[yellow]Transfer was cancelled.[/yellow]",
                mode="warning",
                quiet=quiet_enabled,
                summary_only=summary_only,
            )
        _emit_message(
            _format_summary_line("Transfer", destination_root, _report_metrics(report)),
            mode="summary",
            quiet=quiet_enabled,
            summary_only=summary_only,
        )

    if failed:
        raise SystemExit(1)


@cli.command()
@click.argument("destination", type=click.Path(exists=True, file_okay=False, path_type=str))
@click.option("--json", "json_output", is_flag=True, help="Emit the manifest as JSON.")
def manifest(destination: str, json_output: bool) -> None:
    """Show the verified-transfer manifest stored in DESTINATION."""

    config = _load_config()
    journal = ManifestJournal(
        Path(destination).expanduser().resolve(), filename=config.manifest.filename
    )
    entries = journal.load()
    document = journal.manifest

    if json_output:
        console.print_json(data=document.model_dump(mode="json") if document else {"files": []})
        return

    if document is None:
        console.print(f"[yellow]No manifest found at {journal.path}.[/yellow]")
        return

    table = Table(title=f"{journal.path} (session {document.session_id})")
    table.add_column("File")
    table.add_column("Size", justify="right")
    table.add_column("Hash")
    table.add_column("Status")
    table.add_column("Verified at")
    for entry in entries.values():
        table.add_row(
            entry.filename,
            format_size(entry.size_bytes),
            f"{entry.hash_type}:{entry.hash_value}",
            entry.status,
            entry.verified_at,
        )
    console.print(table)
    console.print(
        f"[cyan]Written by {document.app_version} on {document.machine_name} "
        f"({document.system_os}); last updated {document.last_updated}.[/cyan]"
    )


@cli.command()
@click.argument("source", type=click.Path(exists=True, file_okay=False, path_type=str))
@click.argument("destination", type=click.Path(exists=True, file_okay=False, path_type=str))
@click.argument("names", nargs=-1)
@click.option("--deep", is_flag=True, help="Re-hash source and backup files against the manifest.")
@click.option("--json", "json_output", is_flag=True, help="Emit verdicts as JSON.")
def check(
    source: str, destination: str, names: tuple[str, ...], deep: bool, json_output: bool
) -> None:
    """Report which SOURCE files are safely backed up in DESTINATION."""

    config = _load_config()
    source_root = Path(source).expanduser().resolve()
    destination_root = Path(destination).expanduser().resolve()
    scanner = DirectoryScanner(
        include_hidden=config.transfer.include_hidden,
        exclude={config.manifest.filename},
    )
    entries = ManifestJournal(destination_root, filename=config.manifest.filename).load()
    gate = DeletionGate(
        destination_root,
        entries,
        deep=deep,
        source_root=source_root,
        tolerance_ms=config.transfer.smart_resume_tolerance_ms,
    )
    statuses = gate.check(_source_selection(scanner, source_root, names))

    if json_output:
        console.print_json(data={"files": [status.model_dump(mode="json") for status in statuses]})
        return

    console.print(_render_statuses(statuses))
    safe = sum(1 for status in statuses if status.safe)
    console.print(
        _format_summary_line("Check", destination_root, {"safe": safe, "total": len(statuses)})
    )


@cli.command()
@click.argument("source", type=click.Path(exists=True, file_okay=False, path_type=str))
@click.argument("destination", type=click.Path(exists=True, file_okay=False, path_type=str))
@click.argument("names", nargs=-1, required=True)
@click.option(
    "--skip-check",
    is_flag=True,
    help="Trust the manifest without confirming backups still exist (dangerous).",
)
@click.option("--deep", is_flag=True, help="Re-hash source and backup files before deleting.")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation.")
def delete(
    source: str,
    destination: str,
    names: tuple[str, ...],
    skip_check: bool,
    deep: bool,
    yes: bool,
) -> None:
    """Permanently delete NAMES from SOURCE once verified in DESTINATION."""

    config = _load_config()
    source_root = Path(source).expanduser().resolve()
    destination_root = Path(destination).expanduser().resolve()
    entries = ManifestJournal(destination_root, filename=config.manifest.filename).load()
    gate = DeletionGate(
        destination_root,
        entries,
        deep=deep,
        verify_destination=not skip_check,
        source_root=source_root,
        tolerance_ms=config.transfer.smart_resume_tolerance_ms,
    )
    statuses = gate.check([Selected(name=name) for name in names])
    console.print(_render_statuses(statuses))

    safe = [status for status in statuses if status.safe]
    if not safe:
        console.print("[yellow]No files are safe to delete.[/yellow]")
        return

    if not yes:
        if skip_check:
            console.print(
                "[red]The safety check was skipped. If the backup drive is corrupted or "
                "disconnected these files will be lost.[/red]"
            )
        if not click.confirm(f"Permanently delete {len(safe)} file(s) from {source_root}?"):
            console.print("[yellow]Deletion cancelled.[/yellow]")
            return

    deleted = gate.delete(source_root, safe)
    console.print(
        _format_summary_line(
            "Delete", source_root, {"deleted": len(deleted), "kept": len(statuses) - len(deleted)}
        )
    )


@cli.group()
def config() -> None:
    """Inspect and change ~/.lastlook/config.yaml."""


def _validated_file_layer(data: dict[str, Any]) -> LastLookConfig:
    try:
        return resolve_with_precedence(defaults=LastLookConfig(), file_overrides=data)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc


@config.command("view")
@click.option("--no-env", is_flag=True, help="Ignore LASTLOOK__ environment overrides.")
@click.option("--env", "as_env", is_flag=True, help="Print settings as environment assignments.")
def config_view(no_env: bool, as_env: bool) -> None:
    """Show the effective settings after file and environment overrides."""
    manager = ConfigManager()
    try:
        effective = manager.load(include_env=not no_env)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    if as_env:
        for name, value in flatten_for_env(effective).items():
            click.echo(f"{name}={value}")
        return

    rendered = yaml.safe_dump(effective.model_dump(mode="python"), sort_keys=False)
    console.print(Syntax(rendered, "yaml", word_wrap=True))
    console.print(f"[cyan]Source: {manager.config_path}[/cyan]")


@config.command("set")
@click.argument("key")
@click.option("--value", required=True, help="YAML scalar assigned to KEY.")
def config_set(key: str, value: str) -> None:
    """Store VALUE under the dotted KEY, e.g. ``transfer.default_resolution``."""
    dotted = ".".join(part.strip() for part in key.split(".") if part.strip())
    if "." not in dotted:
        raise click.ClickException(
            "KEY must name a section and a setting, e.g. 'transfer.chunk_size_kb'."
        )
    try:
        parsed = yaml.safe_load(value)
    except yaml.YAMLError as exc:
        raise click.ClickException(f"Unable to parse value: {exc}") from exc

    manager = ConfigManager()
    try:
        manager.ensure_exists()
        stored = manager.load_file_overrides()
        updated = resolve_with_precedence(
            defaults=LastLookConfig(), file_overrides=stored, cli_overrides={dotted: parsed}
        )
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    previous = manager.read_text().splitlines()
    section, _, setting = dotted.partition(".")
    stored.setdefault(section, {})
    stored[section] = {**stored[section], **expand_dotted({setting: parsed})}
    manager.save(stored)

    diff = "\n".join(
        difflib.unified_diff(
            previous,
            manager.read_text().splitlines(),
            fromfile="config.yaml (before)",
            tofile="config.yaml (after)",
            lineterm="",
        )
    )
    if diff:
        console.print(Syntax(diff, "diff"))
    current = updated.model_dump(mode="python")[section]
    for part in setting.split("."):
        current = current[part]
    console.print(f"[green]{dotted} = {current!r}[/green]")


@config.command("edit")
def config_edit() -> None:
    """Edit the settings file in $EDITOR and validate the result before saving."""
    manager = ConfigManager()
    manager.ensure_exists()

    original = manager.read_text()
    edited = click.edit(original, extension=".yaml")
    if edited is None or edited == original:
        console.print("[yellow]No changes applied.[/yellow]")
        return

    try:
        data = yaml.safe_load(edited) or {}
    except yaml.YAMLError as exc:
        raise click.ClickException(f"Invalid YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise click.ClickException("The settings file must contain a top-level mapping.")

    _validated_file_layer(data)
    manager.save(data)
    console.print("[green]Configuration updated.[/green]")


def main() -> None:
    """Console script entry point."""
    cli()


__all__ = ["cli", "main"]
