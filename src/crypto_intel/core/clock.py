"""
Clock abstraction for the periodic loops.

SystemClock is used in production. ManualClock keeps virtual time so the
scheduler and health loops can be driven step by step in tests:

    clock = ManualClock()
    await manager.start()
    await clock.advance(60)   # sixty ticks, one refresh pass
"""
from __future__ import annotations

import asyncio
import heapq
import itertools
import time
from typing import List, Protocol, Tuple, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    def now(self) -> float:
        """Monotonic seconds."""
        ...

    async def sleep(self, seconds: float) -> None:
        ...


class SystemClock:
    """Wall-clock time backed by asyncio.sleep."""

    def now(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class ManualClock:
    """Virtual time that only moves when advance() is called."""

    # Loop iterations granted to woken sleepers after each wake-up
    SETTLE_ITERATIONS = 20

    def __init__(self, start: float = 0.0) -> None:
        self._now = start
        self._sleepers: List[Tuple[float, int, asyncio.Future]] = []
        self._seq = itertools.count()

    def now(self) -> float:
        return self._now

    @property
    def pending_sleepers(self) -> int:
        return sum(1 for _, _, fut in self._sleepers if not fut.done())

    async def sleep(self, seconds: float) -> None:
        if seconds <= 0:
            await asyncio.sleep(0)
            return
        future = asyncio.get_running_loop().create_future()
        heapq.heappush(self._sleepers, (self._now + seconds, next(self._seq), future))
        await future

    async def advance(self, seconds: float) -> None:
        """
        Move time forward, waking sleepers in deadline order.

        Woken coroutines get a chance to run (and to schedule new sleeps)
        before the next deadline is processed.
        """
        target = self._now + seconds
        await self._settle()

        while self._sleepers and self._sleepers[0][0] <= target:
            deadline, _, future = heapq.heappop(self._sleepers)
            self._now = max(self._now, deadline)
            if not future.done():
                future.set_result(None)
                await self._settle()

        self._now = target
        await self._settle()

    async def _settle(self) -> None:
        for _ in range(self.SETTLE_ITERATIONS):
            await asyncio.sleep(0)
