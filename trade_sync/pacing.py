"""Spacing of consecutive requests to one exchange."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]


class RequestPacer:
    """Guarantee at least ``interval`` seconds between request starts.

    The lock is held while sleeping, so concurrent workers queue up behind each
    other instead of sending a burst.
    """

    def __init__(
        self,
        interval: float,
        *,
        sleep: Optional[SleepFunc] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.interval = max(0.0, float(interval))
        self._sleep = sleep or asyncio.sleep
        self._clock = clock
        self._lock = asyncio.Lock()
        self._last_start: Optional[float] = None

    async def wait(self) -> None:
        async with self._lock:
            if self._last_start is not None and self.interval > 0:
                remaining = self._last_start + self.interval - self._clock()
                if remaining > 0:
                    logger.debug("Pacing request for %.3fs", remaining)
                    await self._sleep(remaining)
            self._last_start = self._clock()


__all__ = ["RequestPacer", "SleepFunc"]
