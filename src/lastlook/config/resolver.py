"""Layered configuration resolution.

Settings are built from up to four layers, lowest precedence first:
built-in defaults, the YAML file, ``LASTLOOK__SECTION__KEY`` environment
variables, and CLI overrides. Each layer is validated as it is applied so a
bad value is reported against the layer that introduced it.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from copy import deepcopy
from typing import Any, Dict

import yaml
from pydantic import ValidationError

from .exceptions import ConfigError
from .models import LastLookConfig

ENV_PREFIX = "LASTLOOK__"
_ENV_SEPARATOR = "__"


def resolve_with_precedence(
    *,
    defaults: LastLookConfig,
    file_overrides: Mapping[str, Any] | None = None,
    env_overrides: Mapping[str, Any] | None = None,
    cli_overrides: Mapping[str, Any] | None = None,
) -> LastLookConfig:
    """Merge configuration sources: defaults < file < environment < CLI.

    Override mappings may be nested (``{"transfer": {"chunk_size_kb": 64}}``)
    or use dotted keys (``{"transfer.chunk_size_kb": 64}``).

    Raises:
        ConfigError: If a layer is malformed or produces invalid settings.
    """
    resolved = defaults
    layers = (("file", file_overrides), ("environment", env_overrides), ("cli", cli_overrides))
    for layer, overrides in layers:
        if not overrides:
            continue
        merged = resolved.model_dump(mode="python")
        _merge_into(merged, expand_dotted(overrides, layer=layer))
        try:
            resolved = LastLookConfig.model_validate(merged)
        except ValidationError as exc:
            raise ConfigError(_describe(layer, exc)) from exc
    return resolved


def expand_dotted(overrides: Mapping[str, Any], *, layer: str = "cli") -> dict[str, Any]:
    """Return ``overrides`` as a nested mapping, splitting dotted keys.

    Raises:
        ConfigError: If keys are not strings or paths collide with scalars.
    """
    if not isinstance(overrides, Mapping):
        raise ConfigError(f"{layer.capitalize()} overrides must be a mapping.")

    nested: dict[str, Any] = {}
    for key, value in overrides.items():
        if not isinstance(key, str):
            raise ConfigError(f"{layer.capitalize()} override keys must be strings.")
        *parents, leaf = key.split(".")
        node = nested
        for segment in parents:
            child = node.setdefault(segment, {})
            if not isinstance(child, dict):
                raise ConfigError(f"{layer.capitalize()} override '{key}' collides with a value.")
            node = child
        if isinstance(value, Mapping):
            value = expand_dotted(value, layer=layer)
            existing = node.get(leaf)
            if isinstance(existing, dict):
                _merge_into(existing, value)
                continue
        node[leaf] = value
    return nested


def parse_env(env: Mapping[str, str]) -> dict[str, Any]:
    """Collect ``LASTLOOK__`` variables into a nested override mapping.

    Values are parsed as YAML scalars so ``true``, ``3000`` and ``null``
    arrive typed; anything YAML rejects is kept as the raw string.
    """
    overrides: dict[str, Any] = {}
    for name, raw in env.items():
        if not name.startswith(ENV_PREFIX):
            continue
        segments = [part.lower() for part in name[len(ENV_PREFIX) :].split(_ENV_SEPARATOR) if part]
        if not segments:
            continue
        try:
            value: Any = yaml.safe_load(raw)
        except yaml.YAMLError:
            value = raw
        overrides[".".join(segments)] = value
    return expand_dotted(overrides, layer="environment")


def flatten_for_env(config: LastLookConfig) -> Dict[str, str]:
    """Render ``config`` as ``LASTLOOK__SECTION__KEY`` environment assignments."""
    return {
        ENV_PREFIX + _ENV_SEPARATOR.join(part.upper() for part in path): _render(value)
        for path, value in _walk(config.model_dump(mode="python"))
    }


def _walk(
    data: Mapping[str, Any], prefix: tuple[str, ...] = ()
) -> Iterator[tuple[tuple[str, ...], Any]]:
    for key, value in data.items():
        path = (*prefix, str(key))
        if isinstance(value, Mapping):
            yield from _walk(value, path)
        else:
            yield path, value


def _render(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return yaml.safe_dump(list(value), default_flow_style=True).strip()
    return str(value)


def _merge_into(target: dict[str, Any], overrides: Mapping[str, Any]) -> None:
    for key, value in overrides.items():
        current = target.get(key)
        if isinstance(value, Mapping) and isinstance(current, dict):
            _merge_into(current, value)
        else:
            target[key] = deepcopy(value)


def _describe(layer: str, exc: ValidationError) -> str:
    problems = "; ".join(
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
    )
    return f"Invalid configuration values from {layer}: {problems}"


__all__ = ["ENV_PREFIX", "resolve_with_precedence", "expand_dotted", "parse_env", "flatten_for_env"]
