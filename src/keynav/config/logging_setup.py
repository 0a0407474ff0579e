"""Logging configuration for keynav.

Provides configure_logging() to route records to a Rich console handler on
stderr and, when a log file is configured, a rotating file handler.
"""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

from .models import LoggingSettings

_LEVEL_MAP: dict[str, int] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

_FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def resolve_level(name: str) -> int:
    """Map a configured level name onto a logging constant (defaults to WARNING)."""
    return _LEVEL_MAP.get(name.casefold(), logging.WARNING)


def configure_logging(settings: LoggingSettings, *, verbose: bool = False) -> None:
    """Configure the ``keynav`` logger hierarchy.

    Args:
        settings: Logging section of the loaded configuration.
        verbose: Force DEBUG level regardless of the configured level.
    """
    level = logging.DEBUG if verbose else resolve_level(settings.level)

    logger = logging.getLogger("keynav")
    logger.setLevel(level)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console_handler = RichHandler(
        console=Console(stderr=True),
        show_path=False,
        rich_tracebacks=False,
    )
    console_handler.setLevel(level)
    logger.addHandler(console_handler)

    if settings.file:
        file_path = Path(settings.file).expanduser()
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                file_path,
                maxBytes=settings.max_size_mb * 1024 * 1024,
                backupCount=settings.backup_count,
                encoding="utf-8",
            )
        except OSError as exc:
            logger.warning("Log file %s unavailable, logging to stderr only: %s", file_path, exc)
        else:
            file_handler.setLevel(level)
            file_handler.setFormatter(logging.Formatter(_FILE_FORMAT))
            logger.addHandler(file_handler)

    logger.propagate = False


__all__ = ["configure_logging", "resolve_level"]
