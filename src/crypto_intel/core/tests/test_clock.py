"""Tests for the clock abstraction."""
import asyncio

import pytest

from crypto_intel.core.clock import Clock, ManualClock, SystemClock


class TestManualClock:
    """Tests for ManualClock."""

    def test_satisfies_protocol(self):
        assert isinstance(ManualClock(), Clock)
        assert isinstance(SystemClock(), Clock)

    @pytest.mark.asyncio
    async def test_sleep_waits_for_advance(self):
        clock = ManualClock()
        task = asyncio.create_task(clock.sleep(5))
        await asyncio.sleep(0)

        await clock.advance(4)
        assert not task.done()
        assert clock.pending_sleepers == 1

        await clock.advance(1)
        assert task.done()
        assert clock.now() == 5

    @pytest.mark.asyncio
    async def test_wakes_in_deadline_order(self):
        clock = ManualClock()
        woke = []

        async def sleeper(name, seconds):
            await clock.sleep(seconds)
            woke.append((name, clock.now()))

        tasks = [
            asyncio.create_task(sleeper("late", 3)),
            asyncio.create_task(sleeper("early", 1)),
        ]
        await asyncio.sleep(0)

        await clock.advance(10)
        await asyncio.gather(*tasks)

        assert woke == [("early", 1), ("late", 3)]
        assert clock.now() == 10

    @pytest.mark.asyncio
    async def test_repeating_sleeper_runs_once_per_period(self):
        clock = ManualClock()
        ticks = []

        async def loop():
            while True:
                await clock.sleep(1)
                ticks.append(clock.now())

        task = asyncio.create_task(loop())
        await clock.advance(5)
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

        assert ticks == [1, 2, 3, 4, 5]

    @pytest.mark.asyncio
    async def test_zero_sleep_returns_immediately(self):
        clock = ManualClock(start=7.0)

        await clock.sleep(0)

        assert clock.now() == 7.0
        assert clock.pending_sleepers == 0
