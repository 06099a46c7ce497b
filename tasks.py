"""Invoke tasks for local development of LastLook.

Every task shells out to the `uv` CLI so the environment used for tests,
linting, and the offload demo matches the one `uv sync` produces.
"""

from __future__ import annotations

import os
import shlex
import shutil
import tempfile
from collections.abc import Mapping, Sequence
from pathlib import Path

from invoke import Collection, Context, task

PROJECT_ROOT = Path(__file__).parent
DIST_DIR = PROJECT_ROOT / "dist"


def _run_uv(
    ctx: Context,
    args: Sequence[str],
    *,
    echo: bool = True,
    env: Mapping[str, str] | None = None,
) -> None:
    """Run `uv ARGS...` through invoke with a PTY, merging `env` into the task environment."""
    command = shlex.join(("uv", *args))
    run_env = dict(ctx.config.run.env or {})
    if env:
        run_env.update(env)
    ctx.run(command, echo=echo, pty=True, env=run_env)


@task
def sync(ctx: Context, dev: bool = True) -> None:
    """Synchronize the virtual environment, including dev extras by default."""
    args = ["sync"]
    if dev:
        args.extend(["--extra", "dev"])
    _run_uv(ctx, args)


@task(help={"clean": "Delete dist/ first."})
def build(ctx: Context, clean: bool = False) -> None:
    """Build source and wheel distributions in `dist/`."""
    if clean and DIST_DIR.exists():
        shutil.rmtree(DIST_DIR)
    _run_uv(ctx, ["build"])


@task(
    help={
        "k": "Only run tests whose names match this expression.",
        "path": "Test file or directory (tests/ when omitted).",
        "options": "Extra pytest flags, split with shlex.",
    }
)
def tests(ctx: Context, k: str = "", path: str = "tests", options: str = "") -> None:
    """Run pytest inside the uv-managed environment."""
    args = ["run", "pytest"]
    if k:
        args.extend(["-k", k])
    if options:
        args.extend(shlex.split(options))
    if path:
        args.append(path)
    _run_uv(ctx, args)


@task(help={"fix": "Apply auto-fixes where possible (ruff --fix)."})
def lint(ctx: Context, fix: bool = False) -> None:
    """Check formatting and lint rules with Ruff."""
    _run_uv(ctx, ["run", "ruff", "format", "--check", "src", "tests", "tasks.py"])
    lint_args: list[str] = ["run", "ruff", "check", "src", "tests", "tasks.py"]
    if fix:
        lint_args.append("--fix")
    _run_uv(ctx, lint_args)


@task
def mypy(ctx: Context) -> None:
    """Type-check the package sources."""
    _run_uv(ctx, ["run", "mypy", "src"])


@task(
    help={
        "files": "Number of sample clips to generate on the fake card.",
        "size_kb": "Size of each sample clip in KiB.",
    }
)
def demo(ctx: Context, files: int = 3, size_kb: int = 512) -> None:
    """Offload a generated card twice to show copying and smart resume.

    The second run finds every clip already at the destination and reports
    them as identical without copying again.
    """
    with tempfile.TemporaryDirectory(prefix="lastlook-demo-") as scratch:
        root = Path(scratch)
        card = root / "card"
        backup = root / "backup"
        card.mkdir()
        for index in range(1, files + 1):
            (card / f"A{index:03d}.mov").write_bytes(os.urandom(size_kb * 1024))

        env = {"HOME": str(root / "home")}
        transfer = ["run", "lastlook", "transfer", str(card), str(backup)]
        _run_uv(ctx, transfer, env=env)
        _run_uv(ctx, [*transfer, "--on-conflict", "smart"], env=env)
        _run_uv(ctx, ["run", "lastlook", "manifest", str(backup)], env=env)


@task
def ci(ctx: Context) -> None:
    """Replicate the CI workflow locally."""
    ctx.invoke(lint)
    ctx.invoke(mypy)
    ctx.invoke(tests)


namespace = Collection(sync, build, tests, lint, mypy, demo, ci)
