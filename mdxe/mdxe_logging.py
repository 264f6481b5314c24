"""Logging configuration for mdxe."""

import json
import logging
import logging.handlers
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

_RESERVED = frozenset((
    "name", "msg", "args", "levelname", "levelno", "pathname", "filename",
    "module", "lineno", "funcName", "created", "msecs", "relativeCreated",
    "thread", "threadName", "processName", "process", "getMessage",
    "exc_info", "exc_text", "stack_info", "taskName", "message",
))


class JsonFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        # Extra fields passed through `extra=`
        for key, value in record.__dict__.items():
            if key not in _RESERVED:
                log_entry[key] = value

        return json.dumps(log_entry, separators=(",", ":"), default=str)


def setup_logging(
    level: Optional[str] = None,
    log_dir: Optional[str] = None,
    enable_console: bool = True,
    json_format: Optional[bool] = None,
    max_file_size_mb: int = 10,
    backup_count: int = 5,
) -> None:
    """
    Configure the ``mdxe`` logger hierarchy.

    Args:
        level: Log level name; defaults to ``MDXE_LOG_LEVEL`` or INFO
        log_dir: Directory for a rotating log file; defaults to ``MDXE_LOG_DIR``,
            no file logging when neither is set
        enable_console: Log to stderr
        json_format: Emit JSON lines; defaults to true when ``MDXE_ENV`` is production
        max_file_size_mb: Maximum size per log file in MB
        backup_count: Number of rotated files to keep
    """
    if level is None:
        level = os.getenv("MDXE_LOG_LEVEL", "INFO")
    level = level.upper()

    if json_format is None:
        json_format = os.getenv("MDXE_ENV", "development").lower() == "production"

    if log_dir is None:
        log_dir = os.getenv("MDXE_LOG_DIR")

    logger = logging.getLogger("mdxe")
    logger.setLevel(getattr(logging, level))
    logger.handlers.clear()

    if json_format:
        formatter: logging.Formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    if enable_console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(getattr(logging, level))
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    if log_dir:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_path / "mdxe.log",
            maxBytes=max_file_size_mb * 1024 * 1024,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(getattr(logging, level))
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    # Per-module overrides, e.g. MDXE_LOG_LEVEL_EVENTS=DEBUG
    for logger_name in ("engine", "events", "scope", "cache", "watch", "fragment"):
        override = os.getenv(f"MDXE_LOG_LEVEL_{logger_name.upper()}")
        if override:
            logging.getLogger(f"mdxe.{logger_name}").setLevel(getattr(logging, override.upper()))


def get_logger(name: str) -> logging.Logger:
    """Get logger for specific module."""
    if name != "mdxe" and not name.startswith("mdxe."):
        name = f"mdxe.{name}"
    return logging.getLogger(name)
