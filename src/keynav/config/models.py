"""Configuration models describing keynav settings."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class KeynavBaseModel(BaseModel):
    """Shared configuration for keynav Pydantic models."""

    model_config = ConfigDict(extra="forbid")


class GatewaySettings(KeynavBaseModel):
    """Options applied to every store connection.

    Attributes:
        retries: Number of automatic retries after a connection or timeout failure.
        retry_delay_ms: Fixed delay between retry attempts.
        socket_timeout_seconds: Socket timeout handed to the Redis client.
    """

    retries: int = Field(default=3, ge=0)
    retry_delay_ms: int = Field(default=200, ge=0)
    socket_timeout_seconds: float = Field(default=5.0, gt=0)


class NavigatorSettings(KeynavBaseModel):
    """Key enumeration and grouping defaults.

    Attributes:
        page_size: COUNT hint sent with each SCAN request.
        delimiter: Namespace delimiter used to build the key tree.
        default_pattern: MATCH pattern used when none is supplied.
        default_database: Database index selected when a connection opens.
        database_count: Number of logical databases offered for selection.
    """

    page_size: int = Field(default=100, gt=0)
    delimiter: str = ":"
    default_pattern: str = "*"
    default_database: int = Field(default=0, ge=0)
    database_count: int = Field(default=16, gt=0)


class DetailSettings(KeynavBaseModel):
    """Key detail presentation options.

    Attributes:
        tick_interval_seconds: Interval between local TTL decrements.
        detect_structured_strings: Whether string values are inspected for JSON content.
    """

    tick_interval_seconds: float = Field(default=1.0, gt=0)
    detect_structured_strings: bool = True


class StorageSettings(KeynavBaseModel):
    """Locations of persisted client data.

    Attributes:
        connections_file: JSON file holding saved connection configurations.
        preferences_file: JSON file holding per-scope view preferences.
    """

    connections_file: str = "~/.keynav/connections.json"
    preferences_file: str = "~/.keynav/preferences.json"


class LoggingSettings(KeynavBaseModel):
    """Runtime logging configuration.

    Attributes:
        level: Logging verbosity level.
        file: Optional log file path; rotation applies when set.
        max_size_mb: Maximum log size before rotation.
        backup_count: Number of historical log files to retain.
    """

    level: str = "WARNING"
    file: Optional[str] = None
    max_size_mb: int = 10
    backup_count: int = 5


class CLIOptions(KeynavBaseModel):
    """CLI behavior defaults and presentation preferences.

    Attributes:
        quiet_default: Whether commands suppress non-error output by default.
        max_display_items: Maximum collection members rendered in detail views.
    """

    quiet_default: bool = False
    max_display_items: int = 200


class KeynavConfig(KeynavBaseModel):
    """Top-level configuration struct for keynav.

    Attributes:
        gateway: Store connection settings.
        navigator: Enumeration and grouping settings.
        detail: Key detail settings.
        storage: Persisted data locations.
        logging: Logging configuration.
        cli: CLI presentation defaults.
    """

    gateway: GatewaySettings = Field(default_factory=GatewaySettings)
    navigator: NavigatorSettings = Field(default_factory=NavigatorSettings)
    detail: DetailSettings = Field(default_factory=DetailSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    cli: CLIOptions = Field(default_factory=CLIOptions)


__all__ = [
    "KeynavBaseModel",
    "GatewaySettings",
    "NavigatorSettings",
    "DetailSettings",
    "StorageSettings",
    "LoggingSettings",
    "CLIOptions",
    "KeynavConfig",
]
