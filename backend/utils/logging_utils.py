"""
Logging setup: a colored single-line console format and an operation timer.

Each line carries the current request id (when one is set) so that gate
decisions, store calls and audit events for one request can be correlated.
"""

import logging
import sys
import time
from datetime import datetime
from typing import Optional


class ColoredFormatter(logging.Formatter):
    """Custom formatter with colors for different log levels."""

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
    }
    RESET = '\033[0m'

    def format(self, record):
        color = self.COLORS.get(record.levelname, '')
        timestamp = datetime.fromtimestamp(record.created).strftime('%Y-%m-%d %H:%M:%S.%f')[:-3]
        level_str = f"{color}{record.levelname:8}{self.RESET}"
        location = f"{record.module}.{record.funcName}" if record.funcName != '<module>' else record.module

        extras = []
        if hasattr(record, 'duration_ms'):
            extras.append(f"duration={record.duration_ms:.1f}ms")
        if hasattr(record, 'record_count'):
            extras.append(f"records={record.record_count}")

        from utils.audit import audit
        request_id = audit.get_request_id()
        if request_id:
            extras.append(f"rid={request_id[:8]}")

        extra_str = f" [{', '.join(extras)}]" if extras else ""
        message = record.getMessage()
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"

        return f"{timestamp} | {level_str} | {location:30} | {message}{extra_str}"


def setup_logging(level: str = "INFO") -> None:
    """
    Set up console logging for the service.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ColoredFormatter())
    handler.setLevel(getattr(logging, level.upper()))

    root.setLevel(getattr(logging, level.upper()))
    root.addHandler(handler)

    logging.getLogger('uvicorn').setLevel(logging.INFO)
    logging.getLogger('uvicorn.access').setLevel(logging.WARNING)
    logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)
    logging.getLogger('httpx').setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class LogTimer:
    """
    Context manager for timing operations with automatic logging.

    Usage:
        with LogTimer(logger, "Session sweep") as timer:
            removed = await store.sweep()
            timer.set_record_count(removed)
    """

    def __init__(
        self,
        logger: logging.Logger,
        operation: str,
        level: int = logging.INFO,
    ):
        self.logger = logger
        self.operation = operation
        self.level = level
        self.start_time: Optional[float] = None
        self.record_count: Optional[int] = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        self.logger.debug(f"Starting: {self.operation}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        extra = {'duration_ms': (time.perf_counter() - self.start_time) * 1000}
        if self.record_count is not None:
            extra['record_count'] = self.record_count

        if exc_type is not None:
            self.logger.error(f"Failed: {self.operation} - {exc_val}", extra=extra)
        else:
            self.logger.log(self.level, f"Completed: {self.operation}", extra=extra)
        return False

    def set_record_count(self, count: int) -> None:
        """Set the number of records processed."""
        self.record_count = count
