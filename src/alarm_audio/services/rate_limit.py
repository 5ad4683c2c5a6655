"""Sliding-window rate limiting for outbound API calls.

A RateLimiter is created per client and injected into it, so every caller of
that client shares one budget. Nothing here is process-global.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class RateLimiter:
    """Allows at most `max_calls` acquisitions in any `period` seconds.

    acquire() waits until a slot is free rather than rejecting the call.
    """

    def __init__(
        self,
        max_calls: int,
        period: float = 60.0,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_calls < 1:
            msg = f"max_calls must be at least 1, got {max_calls}"
            raise ValueError(msg)
        if period <= 0:
            msg = f"period must be positive, got {period}"
            raise ValueError(msg)
        self.max_calls = max_calls
        self.period = period
        self._clock = clock
        self._sleep = sleep
        self._calls: deque[float] = deque()
        self._lock = asyncio.Lock()

    def _prune(self, now: float) -> None:
        while self._calls and now - self._calls[0] >= self.period:
            self._calls.popleft()

    @property
    def current_usage(self) -> int:
        """Number of calls counted in the current window."""
        self._prune(self._clock())
        return len(self._calls)

    async def acquire(self) -> None:
        """Wait for a free slot and take it."""
        while True:
            async with self._lock:
                now = self._clock()
                self._prune(now)
                if len(self._calls) < self.max_calls:
                    self._calls.append(now)
                    return
                wait = self.period - (now - self._calls[0])

            logger.debug("Rate limit reached, waiting %.2fs", wait)
            await self._sleep(wait)
