"""Fixed-period timer driving rate limiter decay."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable


class DecayTicker:
    """Periodic timer with a fixed cadence that never bursts to catch up.

    The first tick is due one period after construction. Ticks that are
    awaited on time keep the original cadence; a tick that is already overdue
    when ``wait()`` is called fires immediately and the following one is
    scheduled a full period later.
    """

    def __init__(
        self,
        period_seconds: float,
        *,
        clock: Callable[[], float],
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if period_seconds <= 0:
            raise ValueError("period_seconds must be > 0")

        self._period = period_seconds
        self._clock = clock
        self._sleep = sleep
        self._deadline = clock() + period_seconds

    async def wait(self) -> None:
        """Suspend until the next tick is due."""
        now = self._clock()
        if self._deadline > now:
            await self._sleep(self._deadline - now)
            self._deadline += self._period
        else:
            self._deadline = now + self._period
