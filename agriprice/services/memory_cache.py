from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional


@dataclass
class MemoryEntry:
    value: Any
    expires_at: float


class MemoryCache:
    """
    In-process short-TTL cache for today's resolutions.

    Owned by a resolver instance rather than shared module state, so each
    test (or each engine) gets its own. Lock-guarded so it is also safe
    when the resolver is driven from several threads.
    """

    DEFAULT_TTL = 600  # 10 minutes
    MAX_ENTRIES = 5000  # Prevent unbounded growth
    CLEANUP_INTERVAL = 300  # Clean expired entries every 5 minutes

    def __init__(self, ttl: int = DEFAULT_TTL, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[str, MemoryEntry] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0
        self._last_cleanup = clock()

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        expiry = self._clock() + (ttl or self.ttl)
        with self._lock:
            self._entries[key] = MemoryEntry(value=value, expires_at=expiry)

    def get(self, key: str) -> Any | None:
        with self._lock:
            self._maybe_cleanup()

            entry = self._entries.get(key)
            if not entry:
                self.misses += 1
                return None
            if entry.expires_at <= self._clock():
                self._entries.pop(key, None)
                self.misses += 1
                return None
            self.hits += 1
            return entry.value

    def _maybe_cleanup(self) -> None:
        """Drop expired entries if the interval elapsed (must hold lock)."""
        now = self._clock()
        if now - self._last_cleanup < self.CLEANUP_INTERVAL:
            return

        for key in [k for k, v in self._entries.items() if v.expires_at <= now]:
            self._entries.pop(key, None)

        # Still too big: evict the entries closest to expiry
        if len(self._entries) > self.MAX_ENTRIES:
            to_remove = max(10, len(self._entries) // 10)
            oldest = sorted(self._entries.items(), key=lambda item: item[1].expires_at)
            for key, _ in oldest[:to_remove]:
                self._entries.pop(key, None)

        self._last_cleanup = now

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self.hits = 0
            self.misses = 0
            self._last_cleanup = self._clock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get_stats(self) -> Dict[str, int | float]:
        with self._lock:
            total_requests = self.hits + self.misses
            hit_rate = (self.hits / total_requests * 100) if total_requests > 0 else 0
            return {
                "keys": len(self._entries),
                "hits": self.hits,
                "misses": self.misses,
                "hit_rate": round(hit_rate, 2),
                "ttl_seconds": self.ttl,
                "max_entries": self.MAX_ENTRIES,
            }
