"""JSON-backed persistence for named connection configurations."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from keynav.errors import StorageError

from .models import ConnectionConfig

DEFAULT_CONNECTIONS_PATH = Path("~/.keynav/connections.json")

_CONFIGS_ADAPTER: TypeAdapter[Dict[str, ConnectionConfig]] = TypeAdapter(
    Dict[str, ConnectionConfig]
)


class ConnectionStore:
    """Manage the persistence of connection configurations."""

    def __init__(self, path: Path | None = None) -> None:
        """Initialize the store.

        Args:
            path: Location of the JSON document; defaults to ``~/.keynav/connections.json``.
        """
        self._path = (path or DEFAULT_CONNECTIONS_PATH).expanduser()

    @property
    def path(self) -> Path:
        """Return the resolved storage path."""
        return self._path

    def list_configs(self) -> Dict[str, ConnectionConfig]:
        """Return every stored configuration keyed by connection name.

        Returns:
            Dict[str, ConnectionConfig]: Stored configurations in insertion order.

        Raises:
            StorageError: If stored data cannot be parsed.
        """
        if not self._path.exists():
            return {}
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise StorageError(f"Invalid connection data in {self._path}: {exc}") from exc
        if not isinstance(raw, dict):
            raise StorageError(f"Connection data in {self._path} must be a JSON object.")
        try:
            return _CONFIGS_ADAPTER.validate_python(raw)
        except PydanticValidationError as exc:
            raise StorageError(f"Invalid connection data in {self._path}: {exc}") from exc

    def get(self, name: str) -> Optional[ConnectionConfig]:
        """Return the configuration stored under ``name``, if any."""
        return self.list_configs().get(name)

    def save(self, name: str, config: ConnectionConfig) -> None:
        """Persist ``config`` under ``name``, replacing any existing entry."""
        configs = self.list_configs()
        configs[name] = config
        self._write(configs)

    def delete(self, name: str) -> bool:
        """Remove ``name`` from the store.

        Returns:
            bool: ``True`` when an entry was removed.
        """
        configs = self.list_configs()
        if name not in configs:
            return False
        del configs[name]
        self._write(configs)
        return True

    def _write(self, configs: Dict[str, ConnectionConfig]) -> None:
        payload: Dict[str, Any] = _CONFIGS_ADAPTER.dump_python(configs, mode="json")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError as exc:
            raise StorageError(f"Unable to write connection data to {self._path}: {exc}") from exc


__all__ = ["ConnectionStore", "DEFAULT_CONNECTIONS_PATH"]
