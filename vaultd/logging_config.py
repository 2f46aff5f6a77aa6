"""
Logging configuration for vaultd.

Console output always goes to stderr, since stdout carries the stdio MCP
transport. File output is optional, rotating, and may be JSON formatted.
"""

import json
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class JsonFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Structured fields passed as logger.info(..., extra={"extra": {...}})
        extra = getattr(record, "extra", None)
        if isinstance(extra, dict):
            log_data.update(extra)

        return json.dumps(log_data, default=str)


def _parse_level(level: str) -> int:
    value = logging.getLevelName(level.upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level: {level}")
    return value


def setup_logging(
    level: str = "INFO",
    log_file: Optional[Path] = None,
    json_format: bool = False,
    max_log_size_mb: int = 10,
    log_backups: int = 5,
) -> None:
    """
    Configure application-wide logging for vaultd.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path to log file for file output
        json_format: Use JSON formatting for logs
        max_log_size_mb: Maximum log file size in MB before rotation
        log_backups: Number of backup log files to keep

    Raises:
        ValueError: If the level name is unknown

    Example:
        setup_logging(level="DEBUG", log_file=Path(".vaultd/vaultd.log"))
    """
    numeric_level = _parse_level(level)

    if json_format:
        formatter: logging.Formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(fmt=TEXT_FORMAT, datefmt=DATE_FORMAT)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    console_handler.setLevel(numeric_level)
    root_logger.addHandler(console_handler)

    if log_file:
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                filename=str(log_file),
                maxBytes=max_log_size_mb * 1024 * 1024,
                backupCount=log_backups,
                encoding="utf-8",
            )
            file_handler.setFormatter(formatter)
            file_handler.setLevel(numeric_level)
            root_logger.addHandler(file_handler)
            root_logger.info(f"Logging to file: {log_file}")
        except OSError as e:
            root_logger.warning(f"Failed to set up file logging: {e}. Using console only.")

    root_logger.debug(
        f"Logging initialized: level={level}, "
        f"file={'enabled' if log_file else 'disabled'}, "
        f"format={'JSON' if json_format else 'text'}"
    )


def set_log_level(level: str) -> None:
    """
    Dynamically change the log level for all loggers.

    Args:
        level: New log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    numeric_level = _parse_level(level)
    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    for handler in root_logger.handlers:
        handler.setLevel(numeric_level)

    root_logger.info(f"Log level changed to: {level}")
