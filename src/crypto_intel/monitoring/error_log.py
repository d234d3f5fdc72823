"""
Error log - process-wide record of health checks, failures and recovery.

Append-only from the caller's point of view, but backed by a bounded
ring buffer: once max_entries is reached the oldest entries drop off.
Retrieval is most-recent-N.
"""
from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 500
DEFAULT_RETRIEVAL_LIMIT = 20


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorType(str, Enum):
    """Known entry types. Free-form strings are accepted as well."""

    DATA_FETCH = "data_fetch"
    SCORING = "scoring"
    HEALTH_CHECK = "health_check"
    RECOVERY_ATTEMPT = "recovery_attempt"
    RECOVERY_FAILED = "recovery_failed"
    RETRAIN = "retrain"


@dataclass(frozen=True)
class ErrorLogEntry:
    """One log entry."""

    type: str
    severity: Severity
    message: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    details: Optional[Any] = None

    def to_dict(self) -> dict:
        details = self.details
        if details is not None and not isinstance(details, (dict, list, str, int, float, bool)):
            details = str(details)
        return {
            "type": self.type,
            "severity": self.severity.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            "details": details,
        }


class ErrorLog:
    """
    Bounded error log.

    Usage:
        log = ErrorLog(max_entries=500)
        log.append("data_fetch", "error", "Failed to fetch market data")
        recent = log.recent(20)
    """

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES) -> None:
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self._entries: deque[ErrorLogEntry] = deque(maxlen=max_entries)
        self._total = 0

    @property
    def max_entries(self) -> int:
        return self._entries.maxlen or 0

    @property
    def total_recorded(self) -> int:
        """Entries ever appended, including evicted ones."""
        return self._total

    def __len__(self) -> int:
        return len(self._entries)

    def append(
        self,
        type: ErrorType | str,
        severity: Severity | str,
        message: str,
        details: Optional[Any] = None,
    ) -> ErrorLogEntry:
        entry = ErrorLogEntry(
            type=type.value if isinstance(type, ErrorType) else str(type),
            severity=Severity(severity),
            message=message,
            details=details,
        )
        self._entries.append(entry)
        self._total += 1
        return entry

    def recent(self, limit: int = DEFAULT_RETRIEVAL_LIMIT) -> list[ErrorLogEntry]:
        """Most recent entries, oldest first."""
        if limit <= 0:
            return []
        return list(self._entries)[-limit:]

    def count(self, severity: Optional[Severity | str] = None) -> int:
        if severity is None:
            return len(self._entries)
        severity = Severity(severity)
        return sum(1 for e in self._entries if e.severity is severity)

    def clear(self) -> None:
        """Drop all entries (for testing)."""
        self._entries.clear()
        self._total = 0
