"""
Event deduplication cache.

The messaging platform redelivers events it believes were not acknowledged.
EventDedupCache remembers every event id for a fixed window so a redelivery
does not trigger a second download.

The window is the same for every entry, so insertion order is expiry order:
a single FIFO of (expires_at, event_id) pairs is enough to evict in O(1)
amortised per call, and memory stays proportional to the number of events
seen inside one window.
"""

import time
from collections import deque
from typing import Callable, Deque, Dict, Tuple

from loguru import logger


class EventDedupCache:
    """In-memory, bounded-lifetime membership set of event ids."""

    def __init__(self, window_seconds: float = 600.0, clock: Callable[[], float] = time.monotonic):
        """
        Initialize dedup cache.

        Args:
            window_seconds: How long an event id is remembered
            clock: Monotonic time source, replaceable in tests
        """
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")

        self.window_seconds = window_seconds
        self._clock = clock
        self._expiries: Deque[Tuple[float, str]] = deque()
        self._seen: Dict[str, float] = {}

    def is_duplicate(self, event_id: str) -> bool:
        """
        Check an event id and remember it on first sighting.

        Returns:
            False the first time an id is seen inside the window, True after.
            A repeated sighting does not extend the window.
        """
        now = self._clock()
        self._evict(now)

        if event_id in self._seen:
            return True

        expires_at = now + self.window_seconds
        self._seen[event_id] = expires_at
        self._expiries.append((expires_at, event_id))
        return False

    def _evict(self, now: float) -> None:
        evicted = 0
        while self._expiries and self._expiries[0][0] <= now:
            _, event_id = self._expiries.popleft()
            self._seen.pop(event_id, None)
            evicted += 1

        if evicted:
            logger.debug(f"Evicted {evicted} expired event ids")

    def __len__(self) -> int:
        self._evict(self._clock())
        return len(self._seen)

    def __contains__(self, event_id: str) -> bool:
        self._evict(self._clock())
        return event_id in self._seen

    def clear(self) -> None:
        """Forget every event id."""
        self._expiries.clear()
        self._seen.clear()
