"""Configuration management for keynav.

Settings live in ``~/.keynav/config.yaml`` (or the file named by
``KEYNAV_CONFIG``). ``ConfigManager.load`` layers that file over the model
defaults, then ``KEYNAV__SECTION__KEY`` environment variables, then values
passed on the command line.
"""

from __future__ import annotations

import os
import textwrap
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping

import yaml

from keynav.errors import ConfigError

from .models import KeynavConfig
from .resolver import (
    ENV_PREFIX,
    assign_dotted,
    extract_env_overrides,
    flatten_for_env,
    resolve_with_precedence,
)

DEFAULT_CONFIG_PATH = Path("~/.keynav/config.yaml")
CONFIG_PATH_ENV = "KEYNAV_CONFIG"

_CONFIG_HEADER = textwrap.dedent(
    f"""\
    # keynav configuration file
    # Manage via `keynav config edit` or `keynav config set KEY --value VALUE`.
    # Environment overrides use {ENV_PREFIX}SECTION__KEY, e.g. {ENV_PREFIX}NAVIGATOR__PAGE_SIZE=500.
    """
)


def resolve_config_path(path: Path | None = None, env: Mapping[str, str] | None = None) -> Path:
    """Return ``path``, else ``$KEYNAV_CONFIG``, else the default location, expanded."""
    if path is None:
        override = (env or {}).get(CONFIG_PATH_ENV)
        path = Path(override) if override else DEFAULT_CONFIG_PATH
    return path.expanduser()


def render_config(data: Mapping[str, Any]) -> str:
    """Serialize ``data`` beneath the generated header and a UTC timestamp."""
    stamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    body = yaml.safe_dump(dict(data), sort_keys=False, default_flow_style=False)
    return f"{_CONFIG_HEADER}# Last updated: {stamp}\n{body}"


class ConfigManager:
    """Read, validate and write the keynav configuration file."""

    def __init__(
        self,
        config_path: Path | None = None,
        *,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self._env: Mapping[str, str] = os.environ if env is None else env
        self._config_path = resolve_config_path(config_path, self._env)

    @property
    def config_path(self) -> Path:
        return self._config_path

    def load(
        self,
        *,
        cli_overrides: Mapping[str, Any] | None = None,
        include_env: bool = True,
        ensure_file: bool = True,
        env_overrides: Mapping[str, str] | None = None,
    ) -> KeynavConfig:
        """Return the effective configuration.

        Args:
            cli_overrides: Highest-precedence values, dotted keys allowed.
            include_env: Whether ``KEYNAV__`` variables take part.
            ensure_file: Create the file with defaults when it is missing.
            env_overrides: Variables to read instead of the process environment.

        Raises:
            ConfigError: If the file is malformed or a value fails validation.
        """
        if ensure_file:
            self.ensure_exists()

        env_layer: dict[str, Any] = {}
        if include_env:
            env_layer = extract_env_overrides(
                self._env if env_overrides is None else env_overrides
            )

        return resolve_with_precedence(
            defaults=KeynavConfig(),
            file_overrides=self.load_file_overrides(),
            env_overrides=env_layer,
            cli_overrides=cli_overrides,
        )

    def load_file_overrides(self) -> dict[str, Any]:
        """Return the mapping stored in the file, or an empty mapping when absent."""
        text = self.read_text()
        try:
            raw = yaml.safe_load(text) if text else None
        except yaml.YAMLError as exc:
            raise ConfigError(f"Failed to parse configuration file: {exc}") from exc

        if raw is None:
            return {}
        if not isinstance(raw, dict):
            raise ConfigError("Configuration file must contain a mapping at the top level.")
        return raw

    def save(self, config: KeynavConfig | Mapping[str, Any]) -> None:
        """Replace the file contents with ``config``."""
        if isinstance(config, KeynavConfig):
            data = config.model_dump(mode="python")
        else:
            data = dict(config)
        try:
            self._config_path.parent.mkdir(parents=True, exist_ok=True)
            self._config_path.write_text(render_config(data), encoding="utf-8")
        except OSError as exc:
            raise ConfigError(f"Unable to write {self._config_path}: {exc}") from exc

    def ensure_exists(self) -> Path:
        if not self._config_path.exists():
            self.save(KeynavConfig())
        return self._config_path

    def read_text(self) -> str:
        try:
            return self._config_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return ""


__all__ = [
    "CONFIG_PATH_ENV",
    "ConfigError",
    "ConfigManager",
    "DEFAULT_CONFIG_PATH",
    "KeynavConfig",
    "assign_dotted",
    "flatten_for_env",
    "render_config",
    "resolve_config_path",
    "resolve_with_precedence",
]
