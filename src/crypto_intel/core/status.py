"""
Status line shown at the top of the dashboard.

Reflects the latest outcome with per-level styling; warnings and
errors also set a blink flag to draw attention.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class StatusLevel(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"

    @property
    def color(self) -> str:
        return STATUS_COLORS[self]

    @property
    def blink(self) -> bool:
        return self in (StatusLevel.WARNING, StatusLevel.ERROR)


STATUS_COLORS = {
    StatusLevel.INFO: "#e6e6e6",
    StatusLevel.SUCCESS: "#4cc9f0",
    StatusLevel.WARNING: "#fca311",
    StatusLevel.ERROR: "#f72585",
}


@dataclass(frozen=True)
class StatusLine:
    message: str
    level: StatusLevel = StatusLevel.INFO
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def color(self) -> str:
        return self.level.color

    @property
    def blink(self) -> bool:
        return self.level.blink

    def to_dict(self) -> dict:
        return {
            "message": self.message,
            "level": self.level.value,
            "color": self.color,
            "blink": self.blink,
            "updated_at": self.updated_at.isoformat(),
        }


class StatusReporter:
    """
    Holds the current status line and notifies a listener on change.

    Usage:
        status = StatusReporter(on_change=dashboard.broadcast_event)
        status.update("Fetching market data...", "info")
    """

    def __init__(
        self,
        initial: str = "Initializing...",
        on_change: Optional[Callable[[dict], None]] = None,
    ) -> None:
        self._current = StatusLine(initial)
        self._on_change = on_change

    @property
    def current(self) -> StatusLine:
        return self._current

    def set_listener(self, on_change: Optional[Callable[[dict], None]]) -> None:
        self._on_change = on_change

    def update(self, message: str, level: StatusLevel | str = StatusLevel.INFO) -> StatusLine:
        """Replace the status line."""
        self._current = StatusLine(message=message, level=StatusLevel(level))

        log_level = {
            StatusLevel.WARNING: logging.WARNING,
            StatusLevel.ERROR: logging.ERROR,
        }.get(self._current.level, logging.INFO)
        logger.log(log_level, f"Status: {message}")

        if self._on_change:
            try:
                self._on_change({"type": "status", **self._current.to_dict()})
            except Exception as e:
                logger.warning(f"Status listener failed: {e}")

        return self._current
