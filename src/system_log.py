"""Bounded in-memory operator log, newest entry first."""

import logging
import threading
from collections import deque
from dataclasses import asdict, dataclass, field
from typing import Any

from src.models import utcnow

SYSTEM_LOG_LEVELS = ("info", "warning", "error", "success")
DEFAULT_CAPACITY = 1000


@dataclass
class SystemLogEntry:
    level: str
    message: str
    details: dict[str, Any] | None = None
    timestamp: str = field(default_factory=lambda: utcnow().isoformat())

    def to_dict(self) -> dict:
        return asdict(self)


class SystemLog:
    """Ring buffer of recent operator-facing events. Oldest entries fall off."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        self._entries: deque[SystemLogEntry] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def append(self, level: str, message: str, details: dict | None = None) -> SystemLogEntry:
        if level not in SYSTEM_LOG_LEVELS:
            raise ValueError(f"Unknown system log level: {level}")
        entry = SystemLogEntry(level=level, message=message, details=details)
        with self._lock:
            self._entries.appendleft(entry)
        return entry

    def recent(self, limit: int | None = None, level: str | None = None) -> list[SystemLogEntry]:
        with self._lock:
            entries = [e for e in self._entries if level is None or e.level == level]
        return entries[:limit] if limit else entries

    def count_by_level(self) -> dict[str, int]:
        counts = dict.fromkeys(SYSTEM_LOG_LEVELS, 0)
        with self._lock:
            for entry in self._entries:
                counts[entry.level] += 1
        return counts

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class SystemLogHandler(logging.Handler):
    """Mirrors WARNING and ERROR records into a SystemLog."""

    def __init__(self, system_log: SystemLog, level: int = logging.WARNING):
        super().__init__(level)
        self.system_log = system_log

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = "error" if record.levelno >= logging.ERROR else "warning"
            self.system_log.append(level, record.getMessage(), {"logger": record.name})
        except Exception:
            self.handleError(record)
