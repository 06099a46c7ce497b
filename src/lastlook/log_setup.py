"""Logging configuration for the LastLook CLI."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

from lastlook.config.models import LoggingSettings

DEFAULT_LOG_DIR = Path("~/.lastlook")
LOG_FILENAME = "lastlook.log"

_HANDLER_MARKER = "_lastlook_handler"


def setup_logging(
    settings: LoggingSettings,
    *,
    log_dir: Path | None = None,
    console: Console | None = None,
) -> Path | None:
    """Configure the ``lastlook`` logger from settings.

    Records go to a rotating file in ``log_dir``; warnings and errors are also
    rendered on stderr through Rich. Repeated calls replace the handlers
    installed by earlier calls.

    Returns:
        Path | None: The log file path, or ``None`` when it could not be opened.
    """
    level = logging.getLevelName(settings.level.upper())
    if not isinstance(level, int):
        level = logging.WARNING

    root = logging.getLogger("lastlook")
    root.setLevel(level)
    for handler in list(root.handlers):
        if getattr(handler, _HANDLER_MARKER, False):
            root.removeHandler(handler)
            handler.close()

    stderr_handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=False,
    )
    stderr_handler.setLevel(max(level, logging.WARNING))
    setattr(stderr_handler, _HANDLER_MARKER, True)
    root.addHandler(stderr_handler)

    directory = (log_dir or DEFAULT_LOG_DIR).expanduser()
    log_path = directory / LOG_FILENAME
    try:
        directory.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=max(1, settings.max_size_mb) * 1024 * 1024,
            backupCount=max(0, settings.backup_count),
            encoding="utf-8",
        )
    except OSError as exc:
        root.warning("File logging disabled; cannot open %s: %s", log_path, exc)
        return None

    file_handler.setLevel(level)
    file_handler.setFormatter(
        logging.Formatter(
            "%(asctime)s [%(levelname)-7s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    setattr(file_handler, _HANDLER_MARKER, True)
    root.addHandler(file_handler)
    return log_path


__all__ = ["setup_logging", "DEFAULT_LOG_DIR", "LOG_FILENAME"]
