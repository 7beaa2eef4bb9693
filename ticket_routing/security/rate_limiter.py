"""
Webhook Rate Limiter

Per-source admission control with two tiers:
- Burst: at most `burst_limit` requests per window (default 10 per second)
- Sustain: a source that stayed above `sustain_limit` req/s through the
  previous window is held to that average in the current one (after the
  first two requests)

A fresh source may therefore burst up to the hard ceiling once, while
continuous abuse is cut down to the sustained rate. Applying the sustained
check inside every fresh window would block the fourth instant request and
break the 10-per-second burst, so it is gated on `entry.sustained` on purpose.

State is process-local and not shared across replicas.
"""

import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class RateLimitEntry:
    source_key: str
    window_start: float
    count: int
    last_seen: float
    sustained: bool = False


@dataclass
class RateLimitResult:
    allowed: bool
    retry_after_seconds: int = 0


class RateLimiter:
    """
    Sliding-window limiter keyed by caller (usually the client IP).

    Limits:
    - 10 requests per 1-second window (burst)
    - 2 requests per second average for sources active across windows
    """

    def __init__(
        self,
        burst_limit: int = 10,
        sustain_limit: float = 2.0,
        window_seconds: float = 1.0,
        idle_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic
    ):
        self.burst_limit = burst_limit
        self.sustain_limit = sustain_limit
        self.window_seconds = window_seconds
        self.idle_seconds = idle_seconds
        self._clock = clock
        self._entries: Dict[str, RateLimitEntry] = {}
        self._lock = threading.Lock()

    def check_limit(self, source_key: str) -> RateLimitResult:
        """Record a request from source_key and decide whether to admit it."""
        with self._lock:
            now = self._clock()
            entry = self._entries.get(source_key)

            if entry is None:
                self._entries[source_key] = RateLimitEntry(
                    source_key=source_key, window_start=now, count=1, last_seen=now
                )
                return RateLimitResult(allowed=True)

            elapsed = now - entry.window_start
            entry.last_seen = now

            if elapsed >= self.window_seconds:
                # Continuous traffic above the sustained ceiling carries over
                previous_rate = entry.count / self.window_seconds
                contiguous = elapsed < 2 * self.window_seconds
                entry.sustained = contiguous and previous_rate > self.sustain_limit
                entry.window_start = now
                entry.count = 1
                return RateLimitResult(allowed=True)

            if entry.count >= self.burst_limit:
                return RateLimitResult(allowed=False, retry_after_seconds=self._retry_after(elapsed))

            if entry.sustained and entry.count > 2:
                average_rate = entry.count / elapsed if elapsed > 0 else math.inf
                if average_rate > self.sustain_limit:
                    return RateLimitResult(allowed=False, retry_after_seconds=self._retry_after(elapsed))

            entry.count += 1
            return RateLimitResult(allowed=True)

    def _retry_after(self, elapsed: float) -> int:
        return max(1, math.ceil(self.window_seconds - elapsed))

    def sweep(self) -> int:
        """Drop sources idle longer than idle_seconds, taking the lock once per key."""
        removed = 0
        for key in list(self._entries.keys()):
            with self._lock:
                entry = self._entries.get(key)
                if entry is not None and self._clock() - entry.last_seen > self.idle_seconds:
                    del self._entries[key]
                    removed += 1

        if removed:
            logger.info("rate_limiter_swept", removed=removed, tracked_sources=len(self._entries))
        return removed

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def get_stats(self) -> dict:
        return {
            "tracked_sources": len(self._entries),
            "burst_limit": self.burst_limit,
            "sustain_limit": self.sustain_limit,
            "window_seconds": self.window_seconds,
        }
