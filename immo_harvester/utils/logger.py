"""Immo Harvester — Logging Setup.

Provides a centralized logging configuration with colored console output
and a rotating file handler. All modules obtain their logger through
get_logger() so that handlers are installed exactly once.
"""

from __future__ import annotations

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

# ── Constants ─────────────────────────────────────────────
LOG_DIR = Path(os.environ.get("HARVESTER_LOG_DIR", Path(__file__).resolve().parent.parent.parent / "logs"))
LOG_FILE = LOG_DIR / "immo_harvester.log"
MAX_BYTES = 10 * 1024 * 1024  # 10 MB
BACKUP_COUNT = 5

# ── ANSI Color Codes ─────────────────────────────────────
COLORS = {
    "DEBUG": "\033[36m",     # Cyan
    "INFO": "\033[32m",      # Green
    "WARNING": "\033[33m",   # Yellow
    "ERROR": "\033[31m",     # Red
    "CRITICAL": "\033[41m",  # Red background
}
RESET = "\033[0m"

_initialized = False
_console_handler: logging.Handler | None = None


class ColoredFormatter(logging.Formatter):
    """Formatter that colors the level name and timestamp on the console."""

    def format(self, record: logging.LogRecord) -> str:
        """Format the record with ANSI colors.

        The record is copied first so the file handler, which shares the
        same record, still receives the plain level name.

        Args:
            record: The log record to format.

        Returns:
            Formatted log string with ANSI color codes.
        """
        record = logging.makeLogRecord(record.__dict__)
        color = COLORS.get(record.levelname, "")
        record.levelname = f"{color}{record.levelname:<8}{RESET}"
        record.asctime = f"{color}{self.formatTime(record, self.datefmt)}{RESET}"
        return super().format(record)


def _setup_logging() -> None:
    """Initialize the global logging configuration.

    Sets up two handlers on the root logger:
    - Console handler: INFO level with colored timestamps.
    - Rotating file handler: DEBUG level, 10MB max, 5 backups.

    Calling this more than once has no effect.
    """
    global _initialized, _console_handler
    if _initialized:
        return

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    # ── Console Handler (INFO) ───────────────────────────
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(ColoredFormatter(
        fmt="%(asctime)s │ %(levelname)s │ %(name)s │ %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))
    root_logger.addHandler(console_handler)
    _console_handler = console_handler

    # ── Rotating File Handler (DEBUG) ────────────────────
    try:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            filename=str(LOG_FILE),
            maxBytes=MAX_BYTES,
            backupCount=BACKUP_COUNT,
            encoding="utf-8",
        )
    except OSError as e:
        # Read-only checkouts still get console logging
        root_logger.warning("File logging disabled (%s): %s", LOG_FILE, e)
    else:
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(
            fmt="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))
        root_logger.addHandler(file_handler)

    # Third-party clients are chatty at DEBUG
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)

    _initialized = True


def set_console_level(level: str) -> None:
    """Apply the configured log level to the console handler.

    Args:
        level: Level name from the configuration (e.g. "DEBUG", "INFO").
    """
    _setup_logging()
    if _console_handler is not None:
        _console_handler.setLevel(getattr(logging, level.upper(), logging.INFO))


def get_logger(name: str) -> logging.Logger:
    """Get a named logger instance with the global configuration applied.

    Args:
        name: The logger name, typically __name__ of the calling module.

    Returns:
        A configured logging.Logger instance.
    """
    _setup_logging()
    return logging.getLogger(name)
