"""
In-process cache for dashboard analytics responses.

Entries are keyed "analytics:{shop_domain}:{period}" so that one shop's
entries can be dropped together once a sync of that shop finishes:

    key = analytics_key("my-store.myshopify.com", "30d")
    response_cache.set(key, payload, ttl=300)
    ...
    response_cache.invalidate(analytics_key_prefix("my-store.myshopify.com"))
"""
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass
class _Entry:
    value: Any
    expires_at: float

    def expired(self, now: float) -> bool:
        return now > self.expires_at


class ResponseCache:
    """TTL cache guarded by a lock; shared by request handlers and sync runs."""

    def __init__(self, max_entries: int = 200, default_ttl: int = 300):
        self._entries: Dict[str, _Entry] = {}
        self._lock = threading.Lock()
        self.max_entries = max_entries
        self.default_ttl = default_ttl

    def get(self, key: str) -> Optional[Any]:
        now = time.time()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expired(now):
                self._entries.pop(key, None)
                return None
            return entry.value

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        now = time.time()
        with self._lock:
            if key not in self._entries and len(self._entries) >= self.max_entries:
                self._make_room(now)
            self._entries[key] = _Entry(value, now + (self.default_ttl if ttl is None else ttl))

    def _make_room(self, now: float) -> None:
        for key in [k for k, e in self._entries.items() if e.expired(now)]:
            del self._entries[key]
        if len(self._entries) >= self.max_entries:
            soonest = min(self._entries, key=lambda k: self._entries[k].expires_at)
            del self._entries[soonest]

    def invalidate(self, prefix: str) -> int:
        """Drop every key starting with prefix; returns how many were dropped."""
        with self._lock:
            doomed = [k for k in self._entries if k.startswith(prefix)]
            for key in doomed:
                del self._entries[key]
            return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def analytics_key_prefix(shop_domain: str) -> str:
    return f"analytics:{shop_domain}:"


def analytics_key(shop_domain: str, period: str) -> str:
    return f"{analytics_key_prefix(shop_domain)}{period}"


response_cache = ResponseCache()
