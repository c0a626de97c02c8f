from __future__ import annotations

import os
import threading
from typing import Any

from cachetools import TTLCache


def user_cache_key(email: str) -> str:
    return "USER:" + str(email or "").strip().lower()


class _UserCache:
    """Short-lived cache of authorized-user lookups keyed by normalized email."""

    def __init__(self):
        ttl = int(os.getenv("USER_CACHE_TTL_SECONDS", "60") or "60")
        max_items = int(os.getenv("USER_CACHE_MAX_ITEMS", "5000") or "5000")
        ttl = max(1, min(3600, ttl))
        max_items = max(100, min(200_000, max_items))
        self._cache = TTLCache(maxsize=max_items, ttl=ttl)
        self._lock = threading.RLock()

    def get(self, key: str) -> Any:
        with self._lock:
            return self._cache.get(key)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._cache[key] = value

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()


_cache = _UserCache()


def cache_get(key: str) -> Any:
    return _cache.get(key)


def cache_set(key: str, value: Any) -> None:
    _cache.set(key, value)


def cache_clear() -> None:
    _cache.clear()
