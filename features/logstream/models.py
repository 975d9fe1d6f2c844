"""
Data models for the log stream feature.

LogEntry and LogLevel are the records the dashboard log viewer renders.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class LogLevel(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class LogEntry:
    """A single timestamped pipeline message."""
    timestamp: str  # wall-clock "HH:MM:SS"
    level: LogLevel
    message: str

    def to_dict(self) -> dict:
        return {"timestamp": self.timestamp, "level": self.level.value, "message": self.message}
