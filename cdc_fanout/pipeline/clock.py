"""Processing-time clock for domain events."""

import threading
from datetime import datetime, timedelta, timezone
from typing import Callable

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
ONE_MS = timedelta(milliseconds=1)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class MonotonicClock:
    """UTC clock truncated to milliseconds that never repeats a value.

    Archival keys end in the event's epoch millis, so two events for the same
    entity stamped in the same millisecond would collide. Readings that would
    repeat or go backwards are bumped one millisecond past the last one.

    Parameters
    ----------
    now : Callable[[], datetime] | None
        Source of wall-clock time (must return aware datetimes).
    """

    def __init__(self, now: Callable[[], datetime] | None = None) -> None:
        self._now = now or utc_now
        self._last_ms = 0
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            millis = (self._now() - EPOCH) // ONE_MS
            if millis <= self._last_ms:
                millis = self._last_ms + 1
            self._last_ms = millis
        return EPOCH + millis * ONE_MS
