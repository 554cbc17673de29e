"""
In-flight guard for per-shop syncs

A set of shop keys with atomic test-and-set. Owned by whichever
orchestrator instance creates it; nothing here is process-global.
"""
import threading
from typing import FrozenSet


class InFlightGuard:
    """Tracks which shops currently have a sync running"""

    def __init__(self):
        self._in_flight: set[str] = set()
        self._lock = threading.Lock()

    def try_acquire(self, key: str) -> bool:
        """Add key if absent. Returns False when it was already held."""
        with self._lock:
            if key in self._in_flight:
                return False
            self._in_flight.add(key)
            return True

    def release(self, key: str) -> None:
        with self._lock:
            self._in_flight.discard(key)

    def is_held(self, key: str) -> bool:
        with self._lock:
            return key in self._in_flight

    def snapshot(self) -> FrozenSet[str]:
        with self._lock:
            return frozenset(self._in_flight)
