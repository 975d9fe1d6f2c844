"""
Log stream feature — the append-only, leveled message channel of a session.

Public API:
    from features.logstream import LogStream, LogEntry, LogLevel
"""

from features.logstream.models import LogEntry, LogLevel
from features.logstream.stream import LogStream

__all__ = ["LogEntry", "LogLevel", "LogStream"]
