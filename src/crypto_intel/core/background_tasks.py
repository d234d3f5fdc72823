"""
Refresh scheduler and background loops.

Two independent periodic loops run on the event loop:
- Refresh countdown: one tick per tick_seconds; every refresh_period_ticks
  ticks a fetch -> score -> views pass is triggered
- Health check: SelfHealingMonitor.check_system_health() every
  health_check_interval_seconds

A failed pass is retried by the next scheduled trigger, never immediately.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, List, Optional

from .clock import Clock, SystemClock

if TYPE_CHECKING:
    from crypto_intel.monitoring.self_healing import SelfHealingMonitor

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_PERIOD = 60


class RefreshScheduler:
    """
    Countdown-driven trigger for refresh passes.

    The countdown starts at `period`. Each tick() decrements it; reaching
    zero triggers a pass and resets the countdown. The pass runs as its own
    task so ticking continues while it is in flight.

    At most one pass runs at a time. A trigger arriving mid-pass is queued
    (at most one pending pass) and runs once the current pass finishes.

    Usage:
        scheduler = RefreshScheduler(pipeline.run_pass, period=60)
        scheduler.tick()               # from the countdown loop
        await scheduler.trigger_now()  # manual refresh
    """

    def __init__(
        self,
        run_pass: Callable[[], Awaitable[Any]],
        period: int = DEFAULT_REFRESH_PERIOD,
    ) -> None:
        if period < 1:
            raise ValueError("period must be at least 1 tick")
        self._run_pass = run_pass
        self._period = period
        self._remaining = period
        self._pass_task: Optional[asyncio.Task] = None
        self._pending = False

        self.passes_started = 0
        self.passes_completed = 0
        self.passes_failed = 0

    @property
    def period(self) -> int:
        return self._period

    @property
    def seconds_remaining(self) -> int:
        """Ticks until the next scheduled pass."""
        return self._remaining

    @property
    def pass_running(self) -> bool:
        return self._pass_task is not None and not self._pass_task.done()

    @property
    def pending(self) -> bool:
        return self._pending

    def tick(self) -> bool:
        """
        Advance the countdown by one tick.

        Returns:
            True if this tick triggered a pass
        """
        self._remaining -= 1
        if self._remaining > 0:
            return False

        self._remaining = self._period
        self.trigger()
        return True

    def trigger(self) -> None:
        """Start a pass now, or queue one if a pass is in flight."""
        if self.pass_running:
            if not self._pending:
                logger.debug("Refresh pass in progress; queued one more")
            self._pending = True
            return

        self._pass_task = asyncio.get_running_loop().create_task(
            self._run(), name="refresh_pass"
        )

    async def trigger_now(self) -> None:
        """Manual refresh: reset the countdown, trigger and wait for it."""
        self._remaining = self._period
        self.trigger()
        await self.wait_idle()

    async def wait_idle(self) -> None:
        """Wait until no pass is running or pending."""
        while self.pass_running:
            await asyncio.wait({self._pass_task})

    async def _run(self) -> None:
        while True:
            self._pending = False
            self.passes_started += 1
            try:
                await self._run_pass()
                self.passes_completed += 1
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.passes_failed += 1
                logger.error(f"Refresh pass failed: {e}")

            if not self._pending:
                break

    async def stop(self) -> None:
        """Cancel the in-flight pass and drop any pending one."""
        self._pending = False
        task = self._pass_task
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)


@dataclass
class BackgroundTaskConfig:
    """Configuration for background tasks."""

    # Refresh countdown
    tick_seconds: float = 1.0
    refresh_enabled: bool = True

    # Health monitor
    health_check_interval_seconds: float = 30
    health_check_enabled: bool = True

    # Pause after an unexpected loop error
    error_backoff_seconds: float = 5


class BackgroundTasksManager:
    """
    Manages the refresh countdown and health check loops.

    Loops survive errors (logged, brief pause, continue). The manager
    handles graceful shutdown.

    Usage:
        manager = BackgroundTasksManager(
            scheduler=scheduler,
            monitor=monitor,
            config=BackgroundTaskConfig(),
        )
        await manager.start()
        # ... app runs ...
        await manager.stop()
    """

    def __init__(
        self,
        scheduler: Optional[RefreshScheduler] = None,
        monitor: Optional["SelfHealingMonitor"] = None,
        config: Optional[BackgroundTaskConfig] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        """
        Initialize the background tasks manager.

        Args:
            scheduler: RefreshScheduler ticked by the countdown loop
            monitor: SelfHealingMonitor run by the health loop
            config: Task configuration
            clock: Time source (ManualClock in tests)
        """
        self._scheduler = scheduler
        self._monitor = monitor
        self._config = config or BackgroundTaskConfig()
        self._clock = clock or SystemClock()

        self._running = False
        self._tasks: List[asyncio.Task] = []
        self._stop_event = asyncio.Event()

        self.health_checks_run = 0

    @property
    def is_running(self) -> bool:
        """Whether the manager is running."""
        return self._running

    async def start(self) -> None:
        """Start all background tasks."""
        if self._running:
            logger.warning("BackgroundTasksManager already running")
            return

        logger.info("Starting background tasks...")
        self._running = True
        self._stop_event.clear()

        if self._config.refresh_enabled and self._scheduler:
            task = asyncio.create_task(
                self._refresh_countdown_loop(),
                name="refresh_countdown",
            )
            self._tasks.append(task)
            logger.info(
                f"Started refresh countdown task "
                f"(tick={self._config.tick_seconds}s, period={self._scheduler.period} ticks)"
            )

        if self._config.health_check_enabled and self._monitor:
            task = asyncio.create_task(
                self._health_check_loop(),
                name="health_check",
            )
            self._tasks.append(task)
            logger.info(
                f"Started health check task "
                f"(interval={self._config.health_check_interval_seconds}s)"
            )

        logger.info(f"Background tasks started: {len(self._tasks)} tasks")

    async def stop(self) -> None:
        """Stop all background tasks gracefully."""
        if not self._running:
            return

        logger.info("Stopping background tasks...")
        self._running = False
        self._stop_event.set()

        for task in self._tasks:
            if not task.done():
                task.cancel()

        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

        self._tasks.clear()

        if self._scheduler:
            await self._scheduler.stop()

        logger.info("Background tasks stopped")

    async def _wait(self, seconds: float) -> bool:
        """
        Sleep on the clock unless stop is requested first.

        Returns:
            True if stop was requested
        """
        sleeper = asyncio.ensure_future(self._clock.sleep(seconds))
        stopper = asyncio.ensure_future(self._stop_event.wait())
        try:
            await asyncio.wait({sleeper, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for fut in (sleeper, stopper):
                if not fut.done():
                    fut.cancel()
        return self._stop_event.is_set()

    async def _refresh_countdown_loop(self) -> None:
        """Tick the refresh scheduler once per tick_seconds."""
        interval = self._config.tick_seconds

        while self._running:
            try:
                if await self._wait(interval):
                    break  # Stop requested

                if not self._running:
                    break

                if self._scheduler.tick():
                    logger.debug("Refresh countdown elapsed, pass triggered")

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in refresh countdown: {e}")
                await self._wait(self._config.error_backoff_seconds)

    async def _health_check_loop(self) -> None:
        """Periodically evaluate system health (recovery included)."""
        interval = self._config.health_check_interval_seconds

        while self._running:
            try:
                if await self._wait(interval):
                    break  # Stop requested

                if not self._running:
                    break

                logger.debug("Running system health check...")
                await self._monitor.check_system_health()
                self.health_checks_run += 1

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in health check: {e}")
                await self._wait(self._config.error_backoff_seconds)
