"""Merging of configuration sources into a validated ``KeynavConfig``."""

from __future__ import annotations

from collections.abc import Mapping as MappingABC
from copy import deepcopy
from typing import Any, Iterable, Mapping

import yaml
from pydantic import ValidationError as PydanticValidationError

from keynav.errors import ConfigError

from .models import KeynavConfig

ENV_PREFIX = "KEYNAV__"


def resolve_with_precedence(
    *,
    defaults: KeynavConfig,
    file_overrides: Mapping[str, Any] | None = None,
    env_overrides: Mapping[str, Any] | None = None,
    cli_overrides: Mapping[str, Any] | None = None,
) -> KeynavConfig:
    """Merge configuration sources: defaults < file < environment < CLI.

    Args:
        defaults: Baseline configuration.
        file_overrides: Values read from the YAML configuration file.
        env_overrides: Nested values extracted from ``KEYNAV__`` variables.
        cli_overrides: Values supplied on the command line, dotted keys allowed.

    Returns:
        KeynavConfig: Validated configuration.

    Raises:
        ConfigError: If a source is malformed or the merged result is invalid.
    """
    layers = (
        ("file", file_overrides),
        ("environment", env_overrides),
        ("cli", cli_overrides),
    )
    merged = defaults.model_dump(mode="python")
    for source_name, layer in layers:
        if layer:
            merged = _deep_merge(merged, _expand_dotted(layer, source_name))

    try:
        return KeynavConfig.model_validate(merged)
    except PydanticValidationError as exc:
        raise ConfigError(f"Invalid configuration values: {exc}") from exc


def extract_env_overrides(env: Mapping[str, str]) -> dict[str, Any]:
    """Collect ``KEYNAV__SECTION__KEY`` variables into a nested mapping.

    Values are parsed as YAML scalars so ``false`` and ``250`` arrive typed;
    text that does not parse, or parses to a mapping such as ``:``, is kept
    verbatim.
    """
    overrides: dict[str, Any] = {}
    for name, raw in env.items():
        if not name.startswith(ENV_PREFIX):
            continue
        path = [segment.lower() for segment in name[len(ENV_PREFIX) :].split("__")]
        if not all(path):
            continue
        try:
            value = yaml.safe_load(raw)
        except yaml.YAMLError:
            value = raw
        if isinstance(value, dict):
            value = raw
        _set_path(overrides, path, value, "environment")
    return overrides


def env_var_name(path: Iterable[str]) -> str:
    return ENV_PREFIX + "__".join(segment.upper() for segment in path)


def flatten_for_env(config: KeynavConfig) -> dict[str, str]:
    """Render every setting as the ``KEYNAV__`` variable that would override it."""
    flat: dict[str, str] = {}
    pending: list[tuple[tuple[str, ...], Any]] = [
        ((section,), value) for section, value in config.model_dump(mode="python").items()
    ]
    while pending:
        path, value = pending.pop()
        if isinstance(value, dict):
            pending.extend(((*path, str(key)), child) for key, child in value.items())
        else:
            flat[env_var_name(path)] = _render_env_value(value)
    return dict(sorted(flat.items()))


def assign_dotted(target: dict[str, Any], key: str, value: Any) -> list[str]:
    """Assign ``value`` into ``target`` at the dotted ``key`` path.

    Returns:
        list[str]: The path segments that were assigned.

    Raises:
        ConfigError: If the key is empty or crosses a non-mapping value.
    """
    segments = [segment.strip() for segment in key.split(".") if segment.strip()]
    if not segments:
        raise ConfigError("KEY must specify a dotted path such as 'navigator.page_size'.")
    _set_path(target, segments, value, "cli")
    return segments


def _render_env_value(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return yaml.safe_dump(list(value), default_flow_style=True).strip()
    return str(value)


def _expand_dotted(layer: Mapping[str, Any], source_name: str) -> dict[str, Any]:
    if not isinstance(layer, MappingABC):
        raise ConfigError(f"{source_name.capitalize()} overrides must be a mapping.")

    expanded: dict[str, Any] = {}
    for key, value in layer.items():
        if not isinstance(key, str):
            raise ConfigError(f"{source_name.capitalize()} override keys must be strings.")
        _set_path(expanded, key.split("."), value, source_name)
    return expanded


def _set_path(target: dict[str, Any], path: list[str], value: Any, source_name: str) -> None:
    *parents, leaf = path
    node = target
    for segment in parents:
        child = node.setdefault(segment, {})
        if not isinstance(child, dict):
            raise ConfigError(
                f"{source_name.capitalize()} override for {'.'.join(path)} "
                "conflicts with existing value."
            )
        node = child

    if isinstance(value, MappingABC):
        current = node.get(leaf)
        base = current if isinstance(current, dict) else {}
        node[leaf] = _deep_merge(base, _expand_dotted(value, source_name))
    else:
        node[leaf] = value


def _deep_merge(base: Mapping[str, Any], overrides: Mapping[str, Any]) -> dict[str, Any]:
    merged = deepcopy(dict(base))
    for key, value in overrides.items():
        current = merged.get(key)
        if isinstance(value, MappingABC) and isinstance(current, MappingABC):
            merged[key] = _deep_merge(current, value)
        else:
            merged[key] = deepcopy(value)
    return merged


__all__ = [
    "ENV_PREFIX",
    "assign_dotted",
    "env_var_name",
    "extract_env_overrides",
    "flatten_for_env",
    "resolve_with_precedence",
]
