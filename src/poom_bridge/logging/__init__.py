from __future__ import annotations

import logging
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Mapping

from poom_bridge.config.models import FileLoggingSettings, LoggingSettings

LOG_FORMAT = "[%(asctime)s][%(levelname)s][%(name)s] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Library loggers that never go below INFO unless named in `logger_levels`.
_CHATTY_LIBRARY_LOGGERS = ("aiohttp", "discord")


def _resolve_level(name: str) -> int:
    level = logging.getLevelNamesMapping().get(name.strip().upper())
    if level is None:
        raise ValueError(f"Invalid logging level: {name}")
    return level


def _add_file_handler(root_logger: logging.Logger, settings: FileLoggingSettings, level: int, formatter: logging.Formatter) -> None:
    file_path = settings.path.strip()
    if not file_path:
        return

    try:
        target = Path(file_path)
        target.parent.mkdir(parents=True, exist_ok=True)
        handler = TimedRotatingFileHandler(
            filename=str(target),
            when="midnight",
            interval=1,
            backupCount=settings.rotation.backup_count,
            encoding="utf-8",
        )
    except OSError:
        root_logger.error("File logging handler failed to initialize path=%s", file_path, exc_info=True)
        return

    handler.suffix = "%Y-%m-%d"
    handler.setLevel(level)
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)


def _apply_logger_levels(default_level: int, overrides: Mapping[str, str]) -> None:
    for name in _CHATTY_LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(max(default_level, logging.INFO))
    for name, level_name in overrides.items():
        logging.getLogger(name).setLevel(_resolve_level(level_name))


def init_logging(settings: LoggingSettings) -> None:
    """
    Configure the root logger for the bridge process.

    Replaces any existing root handlers with a console handler and, when `file.path` is set,
    a handler that rotates at midnight. Per-logger levels from `logger_levels` are applied last.
    """
    level = _resolve_level(settings.level)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    console = logging.StreamHandler()
    console.setLevel(level)
    console.setFormatter(formatter)
    root_logger.addHandler(console)

    _add_file_handler(root_logger, settings.file, level, formatter)
    _apply_logger_levels(level, settings.logger_levels)


__all__ = ["init_logging"]
