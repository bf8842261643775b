"""Logging setup shared by the bzlvis CLI commands."""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from .config import ConfigError, LoggingConfig

FILE_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
MAIN_LOG_NAME = "bzlvis.log"
DEBUG_LOG_NAME = "debug.log"
LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "warn": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}


class ConsoleFormatter(logging.Formatter):
    """Prefix console records with a short, optionally coloured, level tag."""

    TAGS: dict[int, tuple[str, str]] = {
        logging.DEBUG: ("debug", "\x1b[36m"),
        logging.INFO: ("info", "\x1b[32m"),
        logging.WARNING: ("warning", "\x1b[33m"),
        logging.ERROR: ("error", "\x1b[31m"),
        logging.CRITICAL: ("fatal", "\x1b[35m"),
    }

    RESET = "\x1b[0m"

    def __init__(self, use_color: bool) -> None:
        super().__init__("%(message)s")
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        tag, color = self.TAGS.get(record.levelno, (record.levelname.lower(), "\x1b[37m"))
        message = super().format(record)
        if self.use_color:
            return f"{color}{tag}:{self.RESET} {message}"
        return f"{tag}: {message}"


def configure_logging(
    logging_config: LoggingConfig,
    root_dir: Path,
    *,
    verbose: bool = False,
) -> None:
    """Route records to ``<root_dir>/logs`` and to stderr.

    The console only shows warnings and errors unless ``verbose`` is set, so
    that command output on stdout stays readable.
    """

    level = level_from_string(logging_config.level)
    log_dir = (root_dir / "logs").expanduser()
    log_dir.mkdir(parents=True, exist_ok=True)

    handlers: list[logging.Handler] = [
        _file_handler(log_dir / MAIN_LOG_NAME, logging.INFO),
        _console_handler(level if verbose else max(level, logging.WARNING)),
    ]
    if logging_config.debug_file:
        handlers.append(_file_handler(log_dir / DEBUG_LOG_NAME, logging.DEBUG))

    logging.basicConfig(
        level=logging.DEBUG if logging_config.debug_file else level,
        handlers=handlers,
        force=True,
    )


def level_from_string(level: str) -> int:
    try:
        return LEVELS[level.strip().lower()]
    except KeyError as exc:
        raise ConfigError(f"Unknown log level: {level}") from exc


def _file_handler(path: Path, level: int) -> logging.Handler:
    handler = RotatingFileHandler(path, maxBytes=2_000_000, backupCount=3, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(FILE_FORMAT))
    return handler


def _console_handler(level: int) -> logging.Handler:
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    isatty = getattr(handler.stream, "isatty", None)
    handler.setFormatter(ConsoleFormatter(bool(isatty and isatty())))
    return handler


__all__ = ["configure_logging", "level_from_string"]
