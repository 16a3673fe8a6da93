"""Sliding-window dispatch limiter."""
from __future__ import annotations

import asyncio
import time
from collections import deque
from typing import Awaitable, Callable, Deque

import structlog

LOGGER = structlog.get_logger(__name__)


class IntervalLimiter:
    """Allows at most ``cap`` acquisitions in any ``interval`` seconds."""

    def __init__(
        self,
        *,
        interval: float,
        cap: int,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if cap < 1:
            raise ValueError("interval cap must be at least 1")
        self.interval = interval
        self.cap = cap
        self._clock = clock
        self._sleep = sleep
        self._stamps: Deque[float] = deque()
        self._lock = asyncio.Lock()

    def _prune(self, now: float) -> None:
        while self._stamps and self._stamps[0] <= now - self.interval:
            self._stamps.popleft()

    async def acquire(self) -> None:
        """Wait until the window has room, then take a slot."""
        async with self._lock:
            while True:
                now = self._clock()
                self._prune(now)
                if len(self._stamps) < self.cap:
                    self._stamps.append(now)
                    return
                wait_time = self._stamps[0] + self.interval - now
                LOGGER.debug("rate_limit.waiting", seconds=round(wait_time, 3))
                await self._sleep(max(wait_time, 0.0))

    def usage(self) -> int:
        self._prune(self._clock())
        return len(self._stamps)
