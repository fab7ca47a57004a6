"""
Logging setup: console, optional rotating file and an in-memory buffer
"""
import logging
import os
from collections import deque
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Deque, Dict, List, Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Marks handlers installed by configure_logging so a later call can replace them
_HANDLER_MARKER = "_greensupia_handler"


class RecentLogBuffer(logging.Handler):
    """Keeps the most recent log records in memory"""

    def __init__(self, capacity: int = 100, level: int = logging.NOTSET):
        super().__init__(level)
        self.records: Deque[Dict] = deque(maxlen=capacity)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self.records.append(
                {
                    "timestamp": datetime.fromtimestamp(
                        record.created, tz=timezone.utc
                    ).isoformat(),
                    "level": record.levelname,
                    "logger": record.name,
                    "message": record.getMessage(),
                }
            )
        except Exception:
            self.handleError(record)

    def get_recent(self, limit: int = 50) -> List[Dict]:
        """Return up to ``limit`` newest entries, oldest first"""
        if limit <= 0:
            return []
        return list(self.records)[-limit:]


def configure_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    buffer_capacity: int = 100,
) -> RecentLogBuffer:
    """
    Configure root logging for the application

    Args:
        level: Log level name
        log_file: Path of a size-rotated log file, or None for console only
        max_bytes: Rotate the file when it grows past this size
        backup_count: Number of rotated files to keep
        buffer_capacity: Number of records kept in memory

    Returns:
        The in-memory log buffer, for the caller to hold on to
    """
    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, _HANDLER_MARKER, False):
            root.removeHandler(handler)
            handler.close()

    formatter = logging.Formatter(LOG_FORMAT)
    handlers: List[logging.Handler] = []

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    handlers.append(console)

    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        )
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    buffer = RecentLogBuffer(capacity=buffer_capacity)
    handlers.append(buffer)

    for handler in handlers:
        setattr(handler, _HANDLER_MARKER, True)
        root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    return buffer
