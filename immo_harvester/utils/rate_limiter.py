"""Immo Harvester — Async Rate Limiter.

Sliding-window limiter shared by all coroutines talking to one source,
so that concurrently fetched pages still respect a per-source request
budget.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque

from immo_harvester.utils.logger import get_logger

logger = get_logger(__name__)


class AsyncRateLimiter:
    """Allow at most ``max_calls`` acquisitions per ``period`` seconds.

    A ``max_calls`` of zero or less disables limiting entirely.

    Attributes:
        max_calls: Maximum number of calls allowed within the time window.
        period: Time window in seconds.
    """

    def __init__(self, max_calls: int, period_seconds: float) -> None:
        self.max_calls = max_calls
        self.period = period_seconds
        self._timestamps: deque[float] = deque()
        self._lock = asyncio.Lock()

    @property
    def enabled(self) -> bool:
        return self.max_calls > 0 and self.period > 0

    def _reserve(self) -> float:
        """Record a call if a slot is free, else return the seconds to wait."""
        now = time.monotonic()
        while self._timestamps and self._timestamps[0] <= now - self.period:
            self._timestamps.popleft()
        if len(self._timestamps) < self.max_calls:
            self._timestamps.append(now)
            return 0.0
        return self._timestamps[0] + self.period - now

    async def acquire(self) -> None:
        """Block until a slot in the current window is available."""
        if not self.enabled:
            return
        while True:
            async with self._lock:
                wait_time = self._reserve()
            if wait_time <= 0:
                return
            logger.debug(
                "Rate limit reached (%d/%.1fs). Waiting %.2fs...",
                self.max_calls, self.period, wait_time,
            )
            await asyncio.sleep(wait_time)

    async def __aenter__(self) -> "AsyncRateLimiter":
        await self.acquire()
        return self

    async def __aexit__(self, *args: object) -> None:
        pass

    def __repr__(self) -> str:
        return f"AsyncRateLimiter(max_calls={self.max_calls}, period={self.period}s)"
