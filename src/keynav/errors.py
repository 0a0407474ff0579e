"""Error taxonomy shared by the navigator, connection, and gateway layers."""

from __future__ import annotations


class KeynavError(Exception):
    """Base exception for keynav operations."""


class ValidationError(KeynavError):
    """Raised when user-supplied input is missing or malformed."""


class ParseError(KeynavError):
    """Raised when a credential-bearing address cannot be parsed."""


class StateError(KeynavError):
    """Raised when an operation targets an absent or superseded scan or selection."""


class StorageError(KeynavError):
    """Raised when persisted connection data cannot be read or written."""


class ConfigError(KeynavError):
    """Raised when configuration data cannot be processed."""


class GatewayError(KeynavError):
    """Raised when a remote store call fails.

    Attributes:
        code: Machine-readable failure identifier (e.g. ``connection_error``).
        message: Human-readable description suitable for display.
    """

    def __init__(self, code: str, message: str) -> None:
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message


__all__ = [
    "KeynavError",
    "ValidationError",
    "ParseError",
    "StateError",
    "StorageError",
    "ConfigError",
    "GatewayError",
]
