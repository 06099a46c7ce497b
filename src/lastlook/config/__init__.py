"""Configuration management for LastLook."""

from __future__ import annotations

import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping

import yaml

from .exceptions import ConfigError
from .models import LastLookConfig
from .resolver import ENV_PREFIX, flatten_for_env, parse_env, resolve_with_precedence

DEFAULT_CONFIG_PATH = Path("~/.lastlook/config.yaml")

_HEADER_LINES = (
    "# LastLook configuration file",
    "# Edit with `lastlook config edit` or `lastlook config set KEY --value VALUE`.",
    f"# Environment variables named {ENV_PREFIX}SECTION__KEY take precedence over this file.",
)


class ConfigManager:
    """Read, validate, and persist the LastLook settings file.

    The file only needs to hold the values a user changed; everything else
    falls back to the defaults in :class:`LastLookConfig`.
    """

    def __init__(
        self,
        config_path: Path | None = None,
        *,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self._config_path = (config_path or DEFAULT_CONFIG_PATH).expanduser()
        self._env = env if env is not None else os.environ

    @property
    def config_path(self) -> Path:
        """Return the expanded configuration path."""
        return self._config_path

    def load(
        self,
        *,
        cli_overrides: Mapping[str, Any] | None = None,
        include_env: bool = True,
        ensure_file: bool = True,
        env_overrides: Mapping[str, str] | None = None,
    ) -> LastLookConfig:
        """Return the effective settings.

        Args:
            cli_overrides: Highest-precedence values, nested or dotted keys.
            include_env: Whether ``LASTLOOK__`` variables are applied.
            ensure_file: Create a default file first when none exists.
            env_overrides: Environment to read instead of the process one.

        Raises:
            ConfigError: If the file or any override layer is invalid.
        """
        if ensure_file:
            self.ensure_exists()

        env_layer: dict[str, Any] | None = None
        if include_env:
            env_layer = parse_env(env_overrides if env_overrides is not None else self._env)

        return resolve_with_precedence(
            defaults=LastLookConfig(),
            file_overrides=self._read_mapping(),
            env_overrides=env_layer,
            cli_overrides=cli_overrides,
        )

    def load_file_overrides(self) -> dict[str, Any]:
        """Return the raw mapping stored on disk (empty when absent)."""
        return self._read_mapping()

    def save(self, config: LastLookConfig | Mapping[str, Any]) -> None:
        """Write ``config`` to disk, replacing the previous file atomically."""
        if isinstance(config, LastLookConfig):
            data: dict[str, Any] = config.model_dump(mode="python")
        else:
            data = dict(config)
        self._write_mapping(data)

    def ensure_exists(self) -> Path:
        """Create the file with default settings if it does not exist yet."""
        if not self._config_path.exists():
            self.save(LastLookConfig())
        return self._config_path

    def read_text(self) -> str:
        """Return the file contents, or an empty string when absent."""
        try:
            return self._config_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return ""

    def _read_mapping(self) -> dict[str, Any]:
        text = self.read_text()
        if not text.strip():
            return {}
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise ConfigError(f"Failed to parse {self._config_path}: {exc}") from exc
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(f"{self._config_path} must contain a mapping at the top level.")
        return data

    def _write_mapping(self, data: Mapping[str, Any]) -> None:
        stamp = datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")
        body = yaml.safe_dump(dict(data), sort_keys=False)
        text = "\n".join((*_HEADER_LINES, f"# Last updated: {stamp}", body))

        path = self._config_path
        path.parent.mkdir(parents=True, exist_ok=True)
        staging = path.with_name(path.name + ".tmp")
        staging.write_text(text, encoding="utf-8")
        os.replace(staging, path)


__all__ = [
    "ConfigManager",
    "DEFAULT_CONFIG_PATH",
    "ENV_PREFIX",
    "LastLookConfig",
    "resolve_with_precedence",
    "flatten_for_env",
    "parse_env",
    "ConfigError",
]
