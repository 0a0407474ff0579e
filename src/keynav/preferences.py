"""Durable per-scope view preferences.

Preferences are keyed by ``(connection, database)``. Absent or malformed data
always resolves to defaults; individual well-formed fields are kept when other
fields fail validation. There is no migration logic.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Literal, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field, field_serializer
from pydantic import ValidationError as PydanticValidationError

from keynav.errors import StorageError

LOGGER = logging.getLogger(__name__)

DEFAULT_PREFERENCES_PATH = Path("~/.keynav/preferences.json")

ViewMode = Literal["by_type", "by_namespace"]


class AutoRefresh(BaseModel):
    """Periodic key-list refresh settings."""

    model_config = ConfigDict(extra="forbid")

    enabled: bool = False
    interval_seconds: float = Field(default=5.0, gt=0)


class ViewPreferences(BaseModel):
    """View state remembered for one connection and database.

    Attributes:
        collapsed_groups: Type groups collapsed in the by-type view.
        collapsed_paths: Namespace paths collapsed in the tree view.
        view_mode: Active key list presentation.
        auto_refresh: Periodic refresh settings.
        last_path: Namespace path of the most recently visited key or branch.
        sidebar_collapsed: Whether the key list panel is hidden.
    """

    model_config = ConfigDict(extra="forbid")

    collapsed_groups: set[str] = Field(default_factory=set)
    collapsed_paths: set[str] = Field(default_factory=set)
    view_mode: ViewMode = "by_type"
    auto_refresh: AutoRefresh = Field(default_factory=AutoRefresh)
    last_path: Optional[str] = None
    sidebar_collapsed: bool = False

    @field_serializer("collapsed_groups", "collapsed_paths")
    def _sorted(self, value: set[str]) -> list[str]:
        return sorted(value)

    @classmethod
    def from_raw(cls, raw: Any) -> "ViewPreferences":
        """Validate stored data, salvaging well-formed fields from malformed payloads."""
        if not isinstance(raw, dict):
            return cls()
        try:
            return cls.model_validate(raw)
        except PydanticValidationError as exc:
            LOGGER.debug("Stored view preferences are malformed: %s", exc)

        salvaged: Dict[str, Any] = {}
        for name in cls.model_fields:
            if name not in raw:
                continue
            try:
                cls.model_validate({name: raw[name]})
            except PydanticValidationError:
                continue
            salvaged[name] = raw[name]
        return cls.model_validate(salvaged)


def scope_key(connection: str, database: int) -> str:
    """Return the storage key for a ``(connection, database)`` scope."""
    return f"{connection}:{database}"


class ViewPreferencesStore(Protocol):
    """Protocol for preference persistence backends."""

    def load(self, connection: str, database: int) -> ViewPreferences:
        """Return the preferences for a scope, or defaults when none are stored."""
        ...

    def save(self, connection: str, database: int, preferences: ViewPreferences) -> None:
        ...


class MemoryPreferencesStore:
    """In-process preference store."""

    def __init__(self) -> None:
        self._entries: Dict[str, Dict[str, Any]] = {}

    def load(self, connection: str, database: int) -> ViewPreferences:
        return ViewPreferences.from_raw(self._entries.get(scope_key(connection, database)))

    def save(self, connection: str, database: int, preferences: ViewPreferences) -> None:
        self._entries[scope_key(connection, database)] = preferences.model_dump(mode="json")


class JsonPreferencesStore:
    """Preference store backed by one JSON document holding every scope."""

    def __init__(self, path: Path | None = None) -> None:
        self._path = (path or DEFAULT_PREFERENCES_PATH).expanduser()

    @property
    def path(self) -> Path:
        return self._path

    def load(self, connection: str, database: int) -> ViewPreferences:
        return ViewPreferences.from_raw(self._read().get(scope_key(connection, database)))

    def save(self, connection: str, database: int, preferences: ViewPreferences) -> None:
        """Persist ``preferences`` for the scope.

        Raises:
            StorageError: If the preferences file cannot be written.
        """
        entries = self._read()
        entries[scope_key(connection, database)] = preferences.model_dump(mode="json")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(json.dumps(entries, indent=2), encoding="utf-8")
        except OSError as exc:
            raise StorageError(f"Unable to write preferences to {self._path}: {exc}") from exc

    def _read(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            LOGGER.warning("Ignoring unreadable preferences file %s: %s", self._path, exc)
            return {}
        if not isinstance(data, dict):
            LOGGER.warning("Ignoring preferences file %s: expected a JSON object", self._path)
            return {}
        return data


__all__ = [
    "AutoRefresh",
    "DEFAULT_PREFERENCES_PATH",
    "JsonPreferencesStore",
    "MemoryPreferencesStore",
    "ViewMode",
    "ViewPreferences",
    "ViewPreferencesStore",
    "scope_key",
]
