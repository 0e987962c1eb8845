"""Spend Notifier — Logging Setup.

Centralized logging configuration with colored console output and a
rotating file handler. All modules obtain their logger via get_logger().
The log directory can be redirected with SPEND_NOTIFIER_LOG_DIR.
"""

from __future__ import annotations

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

# ── Constants ─────────────────────────────────────────────
DEFAULT_LOG_DIR = Path(__file__).resolve().parent.parent.parent / "logs"
LOG_FILE_NAME = "spend_notifier.log"
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


class ColoredFormatter(logging.Formatter):
    """Formatter that colors the level name and timestamp on the console."""

    def format(self, record: logging.LogRecord) -> str:
        """Format the record with ANSI colors.

        Args:
            record: The log record to format.

        Returns:
            Formatted log line.
        """
        # Other handlers share the record; color a copy.
        record = logging.makeLogRecord(record.__dict__)
        color = COLORS.get(record.levelname, "")
        record.levelname = f"{color}{record.levelname:<8}{RESET}"
        record.asctime = f"{color}{self.formatTime(record, self.datefmt)}{RESET}"
        return super().format(record)


def _log_dir() -> Path:
    override = os.environ.get("SPEND_NOTIFIER_LOG_DIR")
    return Path(override) if override else DEFAULT_LOG_DIR


def _setup_logging() -> None:
    """Initialize the root logger once.

    Console handler at INFO with colors, rotating file handler at DEBUG
    (10MB, 5 backups). Subsequent calls are no-ops.
    """
    global _initialized
    if _initialized:
        return

    log_dir = _log_dir()
    log_dir.mkdir(parents=True, exist_ok=True)

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

    # ── Rotating File Handler (DEBUG) ────────────────────
    file_handler = RotatingFileHandler(
        filename=str(log_dir / LOG_FILE_NAME),
        maxBytes=MAX_BYTES,
        backupCount=BACKUP_COUNT,
        encoding="utf-8",
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(
        fmt="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))
    root_logger.addHandler(file_handler)

    _initialized = True


def set_console_level(level: str) -> None:
    """Adjust the console handler threshold (e.g. from config.log_level).

    Args:
        level: Logging level name such as "DEBUG" or "WARNING".
    """
    _setup_logging()
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        return
    for handler in logging.getLogger().handlers:
        if isinstance(handler, logging.StreamHandler) and not isinstance(
            handler, RotatingFileHandler
        ):
            handler.setLevel(numeric)


def token_preview(token: str) -> str:
    """Shorten a device token for log output."""
    return f"{str(token)[:8]}..." if token else "none"


def get_logger(name: str) -> logging.Logger:
    """Get a named logger with the global configuration applied.

    Args:
        name: Logger name, typically __name__ of the calling module.

    Returns:
        A configured logging.Logger instance.
    """
    _setup_logging()
    return logging.getLogger(name)
