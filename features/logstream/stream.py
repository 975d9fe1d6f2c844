"""
Log Stream — the append-only message channel of a dashboard session.

Entries are only ever appended; the pipeline never reads them back for
control decisions. Every entry is mirrored onto the Python logger so the
server log carries the same history as the dashboard.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterator

from features.logstream.models import LogEntry, LogLevel

log = logging.getLogger(__name__)

_PY_LEVELS = {
    LogLevel.INFO: logging.INFO,
    LogLevel.SUCCESS: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


class LogStream:
    """Ordered, append-only sequence of LogEntry."""

    def __init__(self) -> None:
        self._entries: list[LogEntry] = []

    def append(self, level: LogLevel | str, message: str) -> LogEntry:
        level = LogLevel(level)
        entry = LogEntry(
            timestamp=datetime.now().strftime("%H:%M:%S"),
            level=level,
            message=message,
        )
        self._entries.append(entry)
        log.log(_PY_LEVELS[level], "[PIPELINE] %s: %s", level.value, message)
        return entry

    def info(self, message: str) -> LogEntry:
        return self.append(LogLevel.INFO, message)

    def success(self, message: str) -> LogEntry:
        return self.append(LogLevel.SUCCESS, message)

    def warning(self, message: str) -> LogEntry:
        return self.append(LogLevel.WARNING, message)

    def error(self, message: str) -> LogEntry:
        return self.append(LogLevel.ERROR, message)

    @property
    def entries(self) -> tuple[LogEntry, ...]:
        return tuple(self._entries)

    def __iter__(self) -> Iterator[LogEntry]:
        return iter(tuple(self._entries))

    def __len__(self) -> int:
        return len(self._entries)

    def to_list(self) -> list[dict]:
        """Export all entries as a list of dicts."""
        return [e.to_dict() for e in self._entries]
