# -*- coding: utf-8 -*-
"""
Recent Log Buffer - P6/EBS Integration Core

A ``logging.Handler`` that keeps the newest integration log records in
memory so reports and the REST API can show what happened recently
without reading log files. The buffer is bounded; once full, the oldest
entries are discarded.

Example:
    >>> handler = RecentLogHandler(capacity=500)
    >>> logging.getLogger("p6ebs").addHandler(handler)
    >>> warnings = handler.get_recent_logs("WARNING")

Author: P6/EBS Integration Team
Date: October 2026
Status: Production Ready
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Deque, List, Union

#: Default number of log entries kept in memory.
DEFAULT_LOG_CAPACITY = 1000


@dataclass(frozen=True)
class LogEntry:
    """One captured log record."""

    timestamp: datetime
    level: str
    levelno: int
    logger_name: str
    message: str

    def format(self) -> str:
        return (
            f"{self.timestamp.strftime('%Y-%m-%d %H:%M:%S')} "
            f"[{self.level}] {self.message}"
        )


def level_number(level: Union[int, str]) -> int:
    """Resolve a level given as a number or a name such as ``"WARNING"``.

    Raises:
        ValueError: If the name is not a known logging level.
    """
    if isinstance(level, int):
        return level
    number = logging.getLevelName(level.strip().upper())
    if not isinstance(number, int):
        raise ValueError(f"Unknown log level: {level}")
    return number


class RecentLogHandler(logging.Handler):
    """Bounded in-memory buffer of formatted log records."""

    def __init__(
        self,
        capacity: int = DEFAULT_LOG_CAPACITY,
        level: int = logging.NOTSET,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        super().__init__(level)
        self._entries: Deque[LogEntry] = deque(maxlen=capacity)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            message = record.getMessage()
            if record.exc_info and record.exc_info[1] is not None:
                message = f"{message}: {record.exc_info[1]}"
            entry = LogEntry(
                timestamp=datetime.fromtimestamp(record.created, tz=timezone.utc),
                level=record.levelname,
                levelno=record.levelno,
                logger_name=record.name,
                message=message,
            )
        except Exception:
            self.handleError(record)
            return
        self._entries.append(entry)

    def get_recent_logs(
        self,
        min_level: Union[int, str] = logging.NOTSET,
    ) -> List[LogEntry]:
        """Buffered entries at or above ``min_level``, oldest first."""
        threshold = level_number(min_level)
        with self.lock:
            entries = list(self._entries)
        return [e for e in entries if e.levelno >= threshold]

    def clear(self) -> None:
        with self.lock:
            self._entries.clear()

    @property
    def capacity(self) -> int:
        return self._entries.maxlen


__all__ = [
    "DEFAULT_LOG_CAPACITY",
    "LogEntry",
    "RecentLogHandler",
    "level_number",
]
