"""Logging setup for the OpenInPlace CLI and library consumers."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

from openinplace.config.models import LoggingSettings

_HANDLER_MARKER = "_openinplace_handler"


def configure_logging(settings: LoggingSettings, *, console: Console | None = None) -> logging.Logger:
    """Attach console and optional rotating file handlers to the package logger.

    Calling this again replaces handlers installed by a previous call.

    Args:
        settings: Logging configuration section.
        console: Rich console to render log records on; stderr by default.

    Returns:
        logging.Logger: The configured ``openinplace`` logger.
    """
    logger = logging.getLogger("openinplace")
    level = logging.getLevelName(settings.level.upper())
    if not isinstance(level, int):
        level = logging.WARNING
    logger.setLevel(level)

    for handler in list(logger.handlers):
        if getattr(handler, _HANDLER_MARKER, False):
            logger.removeHandler(handler)
            handler.close()

    rich_handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
    )
    setattr(rich_handler, _HANDLER_MARKER, True)
    logger.addHandler(rich_handler)

    if settings.file:
        log_path = Path(settings.file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=max(1, settings.max_size_mb) * 1024 * 1024,
            backupCount=max(0, settings.backup_count),
            encoding="utf-8",
        )
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        setattr(file_handler, _HANDLER_MARKER, True)
        logger.addHandler(file_handler)

    return logger


__all__ = ["configure_logging"]
