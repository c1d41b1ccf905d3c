"""Sliding-window request budget for the translation provider."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, Optional

logger = logging.getLogger(__name__)


class SlidingWindowRateLimiter:
    """Allow at most ``max_requests`` calls in any rolling ``window_s`` seconds.

    ``acquire`` suspends (never spins) until a slot is free, then records the
    call. The clock and sleep are injectable for deterministic tests.
    """

    def __init__(
        self,
        max_requests: int = 500,
        window_s: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if max_requests <= 0 or window_s <= 0:
            raise ValueError("max_requests and window_s must be positive")
        self.max_requests = int(max_requests)
        self.window_s = float(window_s)
        self._clock = clock
        self._sleep = sleep
        self._stamps: Deque[float] = deque()

    def _prune(self, now: float) -> None:
        while self._stamps and now - self._stamps[0] >= self.window_s:
            self._stamps.popleft()

    def wait_time(self, now: Optional[float] = None) -> float:
        """Seconds until the next call would be admitted (0 when a slot is free)."""
        now = self._clock() if now is None else now
        self._prune(now)
        if len(self._stamps) < self.max_requests:
            return 0.0
        return max(0.0, self._stamps[0] + self.window_s - now)

    async def acquire(self) -> float:
        """Wait for a free slot and take it. Returns the total time waited."""
        waited = 0.0
        while True:
            now = self._clock()
            delay = self.wait_time(now)
            if delay <= 0:
                self._stamps.append(now)
                return waited
            logger.debug("Rate limit reached; waiting %.3fs", delay)
            await self._sleep(delay)
            waited += delay

    def status(self) -> Dict[str, float]:
        now = self._clock()
        self._prune(now)
        reset_in = self._stamps[0] + self.window_s - now if self._stamps else 0.0
        return {
            "remaining": self.max_requests - len(self._stamps),
            "reset_in": max(0.0, reset_in),
            "max_requests": self.max_requests,
            "window_s": self.window_s,
        }

    def reset(self) -> None:
        self._stamps.clear()
