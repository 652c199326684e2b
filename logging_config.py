"""
Logging configuration for the POS Agent.

Console output plus an optional rotating log file in the storage directory.
Setting values and key material must never be passed to a logger.
"""

import json
import logging
import sys
import time
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

# Agent log levels -> logging levels
LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class StructuredFormatter(logging.Formatter):
    """JSON-lines formatter for the log file."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": time.strftime('%Y-%m-%dT%H:%M:%SZ', time.gmtime(record.created)),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data)


def configure_logging(
    level: str = "info",
    log_file: Optional[Path] = None,
    json_format: bool = False,
) -> None:
    """
    Configure logging for the application.

    Args:
        level: debug, info, warn or error
        log_file: Optional file path for log output (rotated at 5 MB)
        json_format: Use JSON lines on the console as well
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(LEVELS.get(level.lower(), logging.INFO))

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if json_format:
        console_formatter: logging.Formatter = StructuredFormatter()
    else:
        console_formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    # stdout can be None in a windowed/frozen build
    if sys.stdout is not None:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(console_formatter)
        root_logger.addHandler(console_handler)

    if log_file:
        file_handler = RotatingFileHandler(
            log_file, maxBytes=5 * 1024 * 1024, backupCount=3, encoding="utf-8"
        )
        file_handler.setFormatter(StructuredFormatter())
        root_logger.addHandler(file_handler)
