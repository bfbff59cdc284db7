"""
backend/oddsline/providers/throttle.py

Purpose:
    Process-local request throttle for the upstream odds feed. Combines a
    token bucket (requests per minute, shared by every endpoint) with a quota
    gate: once the feed reports zero remaining requests, calls are refused
    until a cooldown has passed, then one trial request is let through.

Dependencies:
    - asyncio
    - time
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable

logger = logging.getLogger("oddsline.throttle")


class FeedThrottle:
    """Token bucket + quota gate for one provider inside one process."""

    def __init__(
        self,
        rpm: int,
        *,
        quota_cooldown_seconds: float = 900.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._clock = clock
        self._lock = asyncio.Lock()
        self._quota_cooldown = max(0.0, float(quota_cooldown_seconds))
        self._exhausted_at: float | None = None
        self.configure(rpm)
        self._tokens = self._capacity
        self._updated_at = self._clock()

    def configure(self, rpm: int) -> None:
        """Apply a new RPM immediately; ``rpm <= 0`` disables the bucket."""
        self._rpm = int(rpm or 0)
        self._capacity = max(1.0, float(self._rpm))
        self._refill_per_second = self._capacity / 60.0
        if getattr(self, "_tokens", 0.0) > self._capacity:
            self._tokens = self._capacity

    def note_quota(self, remaining: int | None) -> None:
        if remaining is None:
            return
        if remaining <= 0:
            if self._exhausted_at is None:
                logger.warning("Feed quota exhausted; pausing requests for %.0fs", self._quota_cooldown)
            self._exhausted_at = self._clock()
        else:
            self._exhausted_at = None

    @property
    def quota_blocked(self) -> bool:
        if self._exhausted_at is None:
            return False
        return (self._clock() - self._exhausted_at) < self._quota_cooldown

    async def acquire(self) -> bool:
        """Wait for a request slot. Returns False if the quota gate is closed."""
        if self.quota_blocked:
            return False
        if self._rpm <= 0:
            return True
        while True:
            async with self._lock:
                now = self._clock()
                elapsed = max(0.0, now - self._updated_at)
                if elapsed > 0:
                    self._tokens = min(self._capacity, self._tokens + elapsed * self._refill_per_second)
                self._updated_at = now

                if self._tokens >= 1.0:
                    self._tokens -= 1.0
                    return True

                wait_seconds = (1.0 - self._tokens) / max(self._refill_per_second, 1e-9)

            await asyncio.sleep(wait_seconds)
