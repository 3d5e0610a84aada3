"""TTL cache for loaded schedules, injected into the service layer."""

from __future__ import annotations

import time
from dataclasses import dataclass
from threading import RLock
from typing import Callable, Dict, Optional

from ..models import Schedule


def _normalize_key(path_id: str) -> str:
    normalized = path_id.strip()
    if not normalized:
        raise ValueError("Path id cannot be empty when caching schedules.")
    return normalized


@dataclass
class _ScheduleEntry:
    schedule: Schedule
    expires_at: float


class ScheduleCache:
    """Process-local schedule cache with explicit expiry.

    Entries older than ``ttl_seconds`` are evicted on read. A TTL of zero
    disables caching entirely.
    """

    def __init__(self, ttl_seconds: float = 300.0, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = max(float(ttl_seconds), 0.0)
        self._clock = clock
        self._entries: Dict[str, _ScheduleEntry] = {}
        self._lock = RLock()

    def get(self, path_id: str) -> Optional[Schedule]:
        key = _normalize_key(path_id)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() >= entry.expires_at:
                del self._entries[key]
                return None
            return entry.schedule.model_copy(deep=True)

    def set(self, path_id: str, schedule: Schedule) -> None:
        if self._ttl <= 0:
            return
        key = _normalize_key(path_id)
        with self._lock:
            self._entries[key] = _ScheduleEntry(
                schedule=schedule.model_copy(deep=True),
                expires_at=self._clock() + self._ttl,
            )

    def invalidate(self, path_id: str) -> None:
        key = _normalize_key(path_id)
        with self._lock:
            self._entries.pop(key, None)

    def evict_expired(self) -> int:
        now = self._clock()
        with self._lock:
            stale = [key for key, entry in self._entries.items() if now >= entry.expires_at]
            for key in stale:
                del self._entries[key]
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


__all__ = ["ScheduleCache"]
