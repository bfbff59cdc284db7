"""
backend/oddsline/services/cache.py

Purpose:
    Short-TTL read-through cache for feed responses and computed aggregates.
    Stale-while-revalidate with a per-key mutex: one caller refreshes, callers
    arriving during the refresh get the stale value instead of stacking more
    upstream calls.

Dependencies:
    - asyncio
    - time
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any, Optional

logger = logging.getLogger("oddsline.cache")


class TTLCache:
    """In-memory TTL cache with stale-while-revalidate semantics."""

    def __init__(self, ttl: float, *, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._data: dict[str, dict[str, Any]] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Optional[Any]:
        entry = self._data.get(key)
        if not entry:
            return None
        return entry["data"]

    def is_fresh(self, key: str) -> bool:
        entry = self._data.get(key)
        if not entry:
            return False
        return (self._clock() - entry["timestamp"]) < self.ttl

    def set(self, key: str, data: Any) -> None:
        self._data[key] = {"data": data, "timestamp": self._clock()}
        self._cleanup()

    def invalidate(self, key: str) -> None:
        self._data.pop(key, None)

    def invalidate_prefix(self, prefix: str) -> int:
        keys = [k for k in self._data if k.startswith(prefix)]
        for k in keys:
            del self._data[k]
        return len(keys)

    def get_lock(self, key: str) -> asyncio.Lock:
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    async def get_or_load(self, key: str, loader: Callable[[], Awaitable[Any]]) -> Any:
        """Return a fresh value, loading it through ``loader`` at most once at a time.

        If a refresh is already running, the stale value (or None) is served.
        If ``loader`` raises, the stale value is served and the error re-raised
        only when there is nothing to serve.
        """
        if self.is_fresh(key):
            self.hits += 1
            return self.get(key)

        lock = self.get_lock(key)
        if lock.locked():
            self.hits += 1
            return self.get(key)

        async with lock:
            if self.is_fresh(key):
                self.hits += 1
                return self.get(key)
            self.misses += 1
            try:
                value = await loader()
            except Exception:
                stale = self.get(key)
                if stale is None:
                    raise
                logger.warning("Cache refresh failed for %s, serving stale", key, exc_info=True)
                return stale
            self.set(key, value)
            return value

    def stats(self) -> dict[str, int]:
        return {"entries": len(self._data), "hits": self.hits, "misses": self.misses}

    def _cleanup(self) -> None:
        """Remove long-expired entries to prevent unbounded memory growth."""
        now = self._clock()
        expired = [k for k, v in self._data.items() if (now - v["timestamp"]) > self.ttl * 10]
        for k in expired:
            del self._data[k]
            lock = self._locks.get(k)
            if lock is not None and not lock.locked():
                self._locks.pop(k, None)
