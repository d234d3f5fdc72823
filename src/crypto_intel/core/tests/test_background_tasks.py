"""
Tests for RefreshScheduler and BackgroundTasksManager.

Periodic loops run on a ManualClock so every tick is deterministic.
"""
import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from crypto_intel.core.background_tasks import (
    BackgroundTaskConfig,
    BackgroundTasksManager,
    RefreshScheduler,
)
from crypto_intel.core.clock import ManualClock


class GatedPass:
    """A refresh pass that blocks until released."""

    def __init__(self):
        self.calls = 0
        self.gate = asyncio.Event()

    async def __call__(self):
        self.calls += 1
        await self.gate.wait()
        self.gate.clear()


# =============================================================================
# RefreshScheduler
# =============================================================================


class TestRefreshSchedulerCountdown:
    """Tests for tick() and the countdown."""

    def test_rejects_period_below_one(self):
        with pytest.raises(ValueError):
            RefreshScheduler(AsyncMock(), period=0)

    @pytest.mark.asyncio
    async def test_triggers_every_period_ticks(self):
        run_pass = AsyncMock()
        scheduler = RefreshScheduler(run_pass, period=3)

        fired = [scheduler.tick() for _ in range(6)]
        await scheduler.wait_idle()

        assert fired == [False, False, True, False, False, True]
        assert scheduler.seconds_remaining == 3

    @pytest.mark.asyncio
    async def test_countdown_decrements(self):
        scheduler = RefreshScheduler(AsyncMock(), period=60)

        scheduler.tick()
        scheduler.tick()

        assert scheduler.seconds_remaining == 58

    @pytest.mark.asyncio
    async def test_trigger_now_resets_countdown(self):
        run_pass = AsyncMock()
        scheduler = RefreshScheduler(run_pass, period=10)
        for _ in range(4):
            scheduler.tick()

        await scheduler.trigger_now()

        assert run_pass.await_count == 1
        assert scheduler.seconds_remaining == 10
        assert not scheduler.pass_running


class TestRefreshSchedulerSingleFlight:
    """At most one pass runs; at most one is queued behind it."""

    @pytest.mark.asyncio
    async def test_trigger_while_running_queues_one(self):
        run_pass = GatedPass()
        scheduler = RefreshScheduler(run_pass, period=1)

        scheduler.trigger()
        await asyncio.sleep(0)
        assert scheduler.pass_running

        scheduler.trigger()
        scheduler.trigger()
        scheduler.trigger()
        assert scheduler.pending

        run_pass.gate.set()
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        assert run_pass.calls == 2

        run_pass.gate.set()
        await scheduler.wait_idle()

        assert run_pass.calls == 2
        assert scheduler.passes_completed == 2
        assert not scheduler.pending

    @pytest.mark.asyncio
    async def test_failed_pass_is_not_retried_immediately(self):
        run_pass = AsyncMock(side_effect=RuntimeError("boom"))
        scheduler = RefreshScheduler(run_pass, period=5)

        await scheduler.trigger_now()

        assert run_pass.await_count == 1
        assert scheduler.passes_failed == 1
        assert scheduler.passes_completed == 0

    @pytest.mark.asyncio
    async def test_stop_cancels_in_flight_pass(self):
        run_pass = GatedPass()
        scheduler = RefreshScheduler(run_pass, period=1)
        scheduler.trigger()
        await asyncio.sleep(0)
        scheduler.trigger()

        await scheduler.stop()

        assert not scheduler.pass_running
        assert not scheduler.pending


# =============================================================================
# BackgroundTasksManager
# =============================================================================


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def monitor():
    monitor = MagicMock()
    monitor.check_system_health = AsyncMock()
    return monitor


class TestBackgroundTasksManager:
    """Tests for BackgroundTasksManager."""

    @pytest.mark.asyncio
    async def test_refresh_loop_triggers_pass_after_period(self, clock):
        run_pass = AsyncMock()
        scheduler = RefreshScheduler(run_pass, period=60)
        manager = BackgroundTasksManager(
            scheduler=scheduler,
            config=BackgroundTaskConfig(health_check_enabled=False),
            clock=clock,
        )

        await manager.start()
        await clock.advance(59)
        assert run_pass.await_count == 0
        assert scheduler.seconds_remaining == 1

        await clock.advance(1)
        await scheduler.wait_idle()
        assert run_pass.await_count == 1

        await clock.advance(120)
        await scheduler.wait_idle()
        assert run_pass.await_count == 3

        await manager.stop()

    @pytest.mark.asyncio
    async def test_health_loop_runs_on_interval(self, clock, monitor):
        manager = BackgroundTasksManager(
            monitor=monitor,
            config=BackgroundTaskConfig(refresh_enabled=False, health_check_interval_seconds=30),
            clock=clock,
        )

        await manager.start()
        await clock.advance(29)
        assert monitor.check_system_health.await_count == 0

        await clock.advance(61)
        assert monitor.check_system_health.await_count == 3
        assert manager.health_checks_run == 3

        await manager.stop()

    @pytest.mark.asyncio
    async def test_health_loop_survives_errors(self, clock, monitor):
        monitor.check_system_health.side_effect = [RuntimeError("probe crashed"), None]
        manager = BackgroundTasksManager(
            monitor=monitor,
            config=BackgroundTaskConfig(
                refresh_enabled=False,
                health_check_interval_seconds=10,
                error_backoff_seconds=5,
            ),
            clock=clock,
        )

        await manager.start()
        await clock.advance(10)
        await clock.advance(5)
        await clock.advance(10)

        assert monitor.check_system_health.await_count == 2
        assert manager.health_checks_run == 1
        assert manager.is_running

        await manager.stop()

    @pytest.mark.asyncio
    async def test_start_twice_is_noop(self, clock, monitor):
        manager = BackgroundTasksManager(monitor=monitor, clock=clock)

        await manager.start()
        await manager.start()

        assert len(manager._tasks) == 1
        await manager.stop()

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, clock, monitor):
        scheduler = RefreshScheduler(AsyncMock(), period=5)
        manager = BackgroundTasksManager(scheduler=scheduler, monitor=monitor, clock=clock)

        await manager.start()
        assert manager.is_running

        await manager.stop()
        await manager.stop()

        assert not manager.is_running
        assert manager._tasks == []

    @pytest.mark.asyncio
    async def test_stop_interrupts_sleeping_loops(self, clock, monitor):
        manager = BackgroundTasksManager(monitor=monitor, clock=clock)
        await manager.start()
        await asyncio.sleep(0)

        await asyncio.wait_for(manager.stop(), timeout=1.0)

        assert monitor.check_system_health.await_count == 0
