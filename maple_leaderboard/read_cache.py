"""In-process TTL cache fronting leaderboard queries."""

from __future__ import annotations

import time
from typing import Any, Callable


class ReadCache:
    """Short-lived result cache keyed by query string.

    No locking: entries are only touched from the event loop, and two racing
    misses on one key compute the same result, so last writer wins.
    """

    def __init__(self, ttl_seconds: float = 30.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}  # {key: (expiry_ts, data)}
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Any | None:
        """Return cached value if not expired, else None."""
        if key in self._entries:
            expiry, data = self._entries[key]
            if self._clock() < expiry:
                self.hits += 1
                return data
            del self._entries[key]
        self.misses += 1
        return None

    def set(self, key: str, data: Any) -> None:
        """Cache a result with the configured TTL."""
        self._entries[key] = (self._clock() + self.ttl_seconds, data)

    def clear(self) -> None:
        self._entries.clear()

    def purge_expired(self) -> int:
        """Drop expired entries. Returns how many were removed."""
        now = self._clock()
        expired = [k for k, (expiry, _) in self._entries.items() if expiry <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)
