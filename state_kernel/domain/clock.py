"""
Clocks stamping ``TransitionLog.created_at``.

Writers never call ``datetime.now()`` themselves; a host class picks its
clock through ``__state_clock__`` (default: ``SystemClock``).  Tests pin
time with ``DeterministicClock``.
"""

import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

DEFAULT_START = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    """Source of timezone-aware timestamps for log rows."""

    @abstractmethod
    def now(self) -> datetime: ...


class SystemClock(Clock):
    """Wall-clock UTC time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Controlled clock, safe to share between threads.

    ``now()`` returns the current instant and then moves it forward by
    ``step`` (zero by default, so repeated calls agree until ``advance()``
    or ``set_time()``).  A non-zero step gives every stamped row a
    distinct, increasing ``created_at``.
    """

    def __init__(self, start: datetime | None = None, step: timedelta = timedelta(0)):
        if step < timedelta(0):
            raise ValueError(f"step must not be negative, got {step}")
        self._current = start or DEFAULT_START
        self._step = step
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            stamp = self._current
            self._current += self._step
            return stamp

    def peek(self) -> datetime:
        """The instant the next ``now()`` will return, without stepping."""
        with self._lock:
            return self._current

    def set_time(self, instant: datetime) -> None:
        if instant.tzinfo is None:
            raise ValueError("DeterministicClock needs a timezone-aware datetime")
        with self._lock:
            self._current = instant

    def advance(self, seconds: float = 1) -> None:
        with self._lock:
            self._current += timedelta(seconds=seconds)
