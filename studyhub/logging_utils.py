"""Centralized logging configuration for the StudyHub presence service."""

from __future__ import annotations

import logging
from logging import Logger
from pathlib import Path
from typing import Iterable, List, Optional, Union


DEFAULT_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_LOG_FILE_NAME = "studyhub_presence.log"


def resolve_log_level(value: Union[int, str, None], default: int = logging.INFO) -> int:
    """Translate ``"debug"``/``"INFO"``/``10`` style values into a logging level."""

    if value is None:
        return default
    if isinstance(value, int):
        return value
    candidate = logging.getLevelName(str(value).strip().upper())
    return candidate if isinstance(candidate, int) else default


def configure_logging(
    level: int = logging.INFO,
    *,
    handlers: Iterable[logging.Handler] | None = None,
) -> Logger:
    """Configure the root logger, attaching a stream handler unless *handlers* are given."""

    logger = logging.getLogger()
    logger.setLevel(level)

    if handlers is None:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(logging.Formatter(DEFAULT_LOG_FORMAT))
        logger.addHandler(stream_handler)
    else:
        for handler in handlers:
            logger.addHandler(handler)

    return logger


def get_log_file_path(storage_root: Path) -> Path:
    """Return the default path for the application log file."""

    return storage_root / _LOG_FILE_NAME


def build_default_handlers(storage_root: Optional[Path]) -> List[logging.Handler]:
    """Return a stream handler plus a file handler under *storage_root* when possible."""

    formatter = logging.Formatter(DEFAULT_LOG_FORMAT)
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    handlers: List[logging.Handler] = [stream_handler]
    if storage_root is None:
        return handlers
    try:
        file_handler = logging.FileHandler(get_log_file_path(storage_root), encoding="utf-8")
    except OSError as error:
        logging.getLogger(__name__).warning(
            "Could not open log file under %s: %s", storage_root, error
        )
        return handlers
    file_handler.setFormatter(formatter)
    handlers.append(file_handler)
    return handlers


__all__ = [
    "DEFAULT_LOG_FORMAT",
    "build_default_handlers",
    "configure_logging",
    "get_log_file_path",
    "resolve_log_level",
]
