"""
Replay Protection Cache

Rejects webhook events already processed within a short TTL. Entries older
than the TTL count as absent even before the periodic sweep removes them.

State is process-local: with more than one replica each process keeps its
own cache and a replay delivered to a different replica is not detected.
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import structlog

from ticket_routing.models.events import InboundEvent

logger = structlog.get_logger(__name__)


@dataclass
class ReplayCacheEntry:
    key: str
    first_seen_at: float
    task_id: Optional[str] = None


class ReplayCache:
    """TTL cache of processed event keys."""

    def __init__(self, ttl_seconds: float = 600.0, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, ReplayCacheEntry] = {}
        self._lock = threading.Lock()

    def _expired(self, entry: ReplayCacheEntry, now: float) -> bool:
        return now - entry.first_seen_at > self.ttl_seconds

    def is_replay(self, event: InboundEvent) -> bool:
        """True if the event's key was seen within the TTL. Expired hits are evicted."""
        key = event.replay_key()
        with self._lock:
            return self._live(key, self._clock())

    def mark_seen(self, event: InboundEvent) -> str:
        key = event.replay_key()
        with self._lock:
            self._entries[key] = ReplayCacheEntry(key=key, first_seen_at=self._clock(), task_id=event.task_id)
        return key

    def check_and_mark(self, event: InboundEvent) -> tuple:
        """
        Atomically test and claim an event's key.

        Returns:
            (is_replay, key)
        """
        key = event.replay_key()
        with self._lock:
            now = self._clock()
            if self._live(key, now):
                return True, key
            self._entries[key] = ReplayCacheEntry(key=key, first_seen_at=now, task_id=event.task_id)
            return False, key

    def forget(self, key: str) -> None:
        """Release a claimed key (processing failed and the provider may retry)."""
        with self._lock:
            self._entries.pop(key, None)

    def _live(self, key: str, now: float) -> bool:
        # Caller holds the lock
        entry = self._entries.get(key)
        if entry is None:
            return False
        if self._expired(entry, now):
            del self._entries[key]
            return False
        return True

    def sweep(self) -> int:
        """Remove expired entries, taking the lock once per key."""
        removed = 0
        for key in list(self._entries.keys()):
            with self._lock:
                entry = self._entries.get(key)
                if entry is not None and self._expired(entry, self._clock()):
                    del self._entries[key]
                    removed += 1

        if removed:
            logger.info("replay_cache_swept", removed=removed, remaining=len(self._entries))
        return removed

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def get_stats(self) -> dict:
        return {
            "size": len(self._entries),
            "ttl_minutes": self.ttl_seconds / 60,
        }
