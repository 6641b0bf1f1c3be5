"""Per-recipient send limits over fixed hourly and daily windows.

Counters live in buckets keyed by ``(recipient, window, floor(now / window))``.
A bucket stops mattering once the clock moves into the next window, so no
timers are needed; ``sweep`` only reclaims memory.
"""

import threading
import time

import structlog

logger = structlog.get_logger(__name__)

HOUR = 3600
DAY = 86400


class RateLimiter:
    """Thread-safe hourly/daily send counter."""

    def __init__(self, max_per_hour: int = 100, max_per_day: int = 1000, clock=time.time):
        self.max_per_hour = max_per_hour
        self.max_per_day = max_per_day
        self._clock = clock
        self._counts: dict[tuple[str, int, int], int] = {}
        self._lock = threading.Lock()

    def _keys(self, recipient: str) -> tuple[tuple[str, int, int], tuple[str, int, int]]:
        now = self._clock()
        return (recipient, HOUR, int(now // HOUR)), (recipient, DAY, int(now // DAY))

    def check_rate_limit(self, recipient: str) -> bool:
        """Return False when either the hourly or the daily budget is used up."""
        hour_key, day_key = self._keys(recipient)
        with self._lock:
            hourly = self._counts.get(hour_key, 0)
            daily = self._counts.get(day_key, 0)
        return hourly < self.max_per_hour and daily < self.max_per_day

    def update_rate_limit(self, recipient: str) -> None:
        """Count one send against both current windows."""
        hour_key, day_key = self._keys(recipient)
        with self._lock:
            self._counts[hour_key] = self._counts.get(hour_key, 0) + 1
            self._counts[day_key] = self._counts.get(day_key, 0) + 1

    def try_acquire(self, recipient: str) -> bool:
        """Reserve one send for ``recipient`` if both windows have room.

        The check and the increment happen under one lock, so concurrent
        dispatches to the same address can never overshoot the limits.
        Hand the slot back with ``release`` when the send does not go out.
        """
        hour_key, day_key = self._keys(recipient)
        with self._lock:
            hourly = self._counts.get(hour_key, 0)
            daily = self._counts.get(day_key, 0)
            if hourly >= self.max_per_hour or daily >= self.max_per_day:
                return False
            self._counts[hour_key] = hourly + 1
            self._counts[day_key] = daily + 1
        return True

    def release(self, recipient: str) -> None:
        """Return a slot taken by ``try_acquire``; counts never go below zero."""
        hour_key, day_key = self._keys(recipient)
        with self._lock:
            for key in (hour_key, day_key):
                remaining = self._counts.get(key, 0) - 1
                if remaining > 0:
                    self._counts[key] = remaining
                else:
                    self._counts.pop(key, None)

    def reset_rate_limit(self, recipient: str) -> None:
        hour_key, day_key = self._keys(recipient)
        with self._lock:
            self._counts.pop(hour_key, None)
            self._counts.pop(day_key, None)
        logger.info("Rate limit reset", recipient=recipient)

    def usage(self, recipient: str) -> dict:
        hour_key, day_key = self._keys(recipient)
        with self._lock:
            return {
                "hourly": self._counts.get(hour_key, 0),
                "daily": self._counts.get(day_key, 0),
                "max_per_hour": self.max_per_hour,
                "max_per_day": self.max_per_day,
            }

    def forget(self, recipient: str) -> int:
        """Drop every bucket held for ``recipient``. Returns how many were removed."""
        with self._lock:
            stale = [key for key in self._counts if key[0] == recipient]
            for key in stale:
                del self._counts[key]
        return len(stale)

    def sweep(self) -> int:
        """Remove buckets whose window has already closed."""
        now = self._clock()
        with self._lock:
            stale = [key for key in self._counts if key[2] < int(now // key[1])]
            for key in stale:
                del self._counts[key]
        if stale:
            logger.debug("Swept expired rate-limit buckets", removed=len(stale))
        return len(stale)

    def __len__(self):
        with self._lock:
            return len(self._counts)
