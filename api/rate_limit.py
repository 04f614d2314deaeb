"""
Per-(subject, operation) admission control.

Fixed-window counters: the first call (or the first call after the window
expired) opens a window of `window_seconds` with count=1; further calls are
admitted until `max_calls` is reached and denied without touching the counter
after that. It is best-effort admission control, not billing: with the
default in-process store every server instance enforces its own budget and
counters are lost on restart. Pass a SqlWindowStore to share counters.
"""
from __future__ import annotations
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional, Protocol, Tuple

from api.errors import RateLimitExceeded
from db.timestamps import utc_now

logger = logging.getLogger(__name__)

# endpoint budgets: operation -> (max_calls, window_seconds)
LIMITS: Dict[str, Tuple[int, float]] = {
    "heartbeat": (1, 15),
    "agent-pull": (30, 60),
    "agent-pull-ack": (20, 60),
    "config-read": (60, 60),
    "config-write": (20, 60),
    "config-status": (30, 60),
    "billing-usage": (30, 60),
    "settings": (30, 60),
}


class WindowStore(Protocol):
    def check_and_increment(self, subject: str, operation: str, max_calls: int,
                            window: timedelta, now: datetime) -> bool: ...

    def reset(self) -> None: ...


@dataclass
class _Window:
    count: int
    reset_at: datetime


class MemoryWindowStore:
    def __init__(self) -> None:
        self._windows: Dict[Tuple[str, str], _Window] = {}
        self._lock = threading.Lock()

    def check_and_increment(self, subject: str, operation: str, max_calls: int,
                            window: timedelta, now: datetime) -> bool:
        key = (subject, operation)
        with self._lock:
            entry = self._windows.get(key)
            if entry is None or now > entry.reset_at:
                self._windows[key] = _Window(count=1, reset_at=now + window)
                return True
            if entry.count >= max_calls:
                return False
            entry.count += 1
            return True

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()


class RateLimiter:
    def __init__(self, store: Optional[WindowStore] = None,
                 clock: Callable[[], datetime] = utc_now):
        self.store = store if store is not None else MemoryWindowStore()
        self.clock = clock

    def allow(self, subject: str, operation: str, max_calls: int, window_seconds: float) -> bool:
        if max_calls < 1:
            raise ValueError("max_calls must be >= 1")
        return self.store.check_and_increment(
            subject, operation, max_calls, timedelta(seconds=window_seconds), self.clock()
        )

    def enforce(self, subject: str, operation: str) -> None:
        """Admit one call for a named endpoint budget or raise RateLimitExceeded."""
        max_calls, window_seconds = LIMITS[operation]
        if not self.allow(subject, operation, max_calls, window_seconds):
            logger.info("rate limited subject=%s operation=%s", subject, operation)
            raise RateLimitExceeded(operation, max_calls, window_seconds)
