"""
RefreshPipeline - One fetch -> score -> views pass, plus the UI actions.

The pipeline owns the current coin batch and the active sort/filter
selection. Each pass replaces the batch wholesale; scores are never
carried over between passes.

Flow per pass:
1. Fetch a batch from the MarketDataSource
2. Score every coin with the ScoringEngine (failures get neutral scores)
3. Build the dashboard views
4. Notify the listener (SSE broadcast)

Errors are logged to the monitor's error log and shown on the status
line; nothing propagates out of run_pass().
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

from crypto_intel.ingestion import Coin, DataUnavailableError

from .status import StatusLevel, StatusReporter
from .views import (
    DEFAULT_SORT_FIELD,
    MAX_ROWS,
    DashboardViews,
    FilterMode,
    SortDirection,
    SystemInfo,
    build_views,
    resolve_sort_field,
)

if TYPE_CHECKING:
    from crypto_intel.core.score_service import ScoringEngine
    from crypto_intel.ingestion import MarketDataSource
    from crypto_intel.monitoring.health_checker import HealthReport
    from crypto_intel.monitoring.self_healing import SelfHealingMonitor

logger = logging.getLogger(__name__)

OPTIMIZE_LATENCY = 2.0

Sleep = Callable[[float], Awaitable[None]]


class RefreshPipeline:
    """
    Coordinates a refresh pass and the dashboard's user actions.

    Usage:
        pipeline = RefreshPipeline(source, engine, monitor, status)
        await pipeline.run_pass()
        views = pipeline.views

        pipeline.set_sort("change24h")
        pipeline.set_filter("gainers")
    """

    def __init__(
        self,
        data_source: "MarketDataSource",
        scoring_engine: "ScoringEngine",
        monitor: "SelfHealingMonitor",
        status: Optional[StatusReporter] = None,
        max_rows: int = MAX_ROWS,
        on_views: Optional[Callable[[dict], None]] = None,
        sleep: Optional[Sleep] = None,
        optimize_latency: float = OPTIMIZE_LATENCY,
    ) -> None:
        """
        Initialize the pipeline.

        Args:
            data_source: Where batches come from
            scoring_engine: Annotates each batch
            monitor: Receives error log entries
            status: Status line (a fresh one is created if omitted)
            max_rows: Rows per table/chart
            on_views: Called with a "views" event after views change
            sleep: Awaitable sleep for simulated jobs
            optimize_latency: Simulated feature optimization time
        """
        self._data_source = data_source
        self._scoring_engine = scoring_engine
        self._monitor = monitor
        self._status = status or StatusReporter()
        self._max_rows = max_rows
        self._on_views = on_views
        self._sleep = sleep or asyncio.sleep
        self._optimize_latency = optimize_latency

        self._coins: list[Coin] = []
        self._views: Optional[DashboardViews] = None
        self._sort_field = DEFAULT_SORT_FIELD
        self._sort_direction = SortDirection.DESC
        self._filter_mode = FilterMode.ALL
        self._last_refresh_at: Optional[datetime] = None

        self.passes_succeeded = 0
        self.passes_failed = 0

    # =========================================================================
    # State
    # =========================================================================

    @property
    def status(self) -> StatusReporter:
        return self._status

    @property
    def coins(self) -> list[Coin]:
        """The current scored batch."""
        return list(self._coins)

    @property
    def views(self) -> Optional[DashboardViews]:
        return self._views

    @property
    def sort_field(self) -> str:
        return self._sort_field

    @property
    def sort_direction(self) -> SortDirection:
        return self._sort_direction

    @property
    def filter_mode(self) -> FilterMode:
        return self._filter_mode

    @property
    def last_refresh_at(self) -> Optional[datetime]:
        return self._last_refresh_at

    def set_listener(self, on_views: Optional[Callable[[dict], None]]) -> None:
        self._on_views = on_views

    # =========================================================================
    # Refresh pass
    # =========================================================================

    async def run_pass(self) -> bool:
        """
        Fetch, score and rebuild the views.

        Returns:
            True if the pass produced new views
        """
        self._status.update("Fetching market data...", StatusLevel.INFO)

        try:
            raw = await self._data_source.fetch_batch()
        except DataUnavailableError as e:
            self.passes_failed += 1
            self._status.update(f"Data fetch failed: {e}", StatusLevel.ERROR)
            self._monitor.log_error(
                "data_fetch", "error", "Failed to fetch market data", details=e.detail
            )
            return False

        self._status.update("Running AI analysis...", StatusLevel.INFO)
        scored = await self._scoring_engine.annotate_batch(raw)
        for failure in scored.failures:
            self._monitor.log_error(
                "scoring",
                "error",
                f"Failed to process coin {failure.symbol}",
                details={"error": failure.error, "error_type": failure.error_type},
            )
        self._status.update("AI analysis complete", StatusLevel.SUCCESS)

        self._coins = scored.coins
        self._last_refresh_at = datetime.now(timezone.utc)
        self.refresh_views()

        self.passes_succeeded += 1
        self._status.update("Data updated successfully", StatusLevel.SUCCESS)
        return True

    def refresh_views(self) -> DashboardViews:
        """Rebuild views from the current batch and selection (no fetch)."""
        self._views = build_views(
            self._coins,
            filter_mode=self._filter_mode,
            sort_field=self._sort_field,
            sort_direction=self._sort_direction,
            history=self._data_source.get_history(),
            system=self.get_system_info(),
            max_rows=self._max_rows,
        )

        if self._on_views:
            try:
                self._on_views({"type": "views", "data": self._views.to_dict()})
            except Exception as e:
                logger.warning(f"Views listener failed: {e}")

        return self._views

    # =========================================================================
    # UI actions
    # =========================================================================

    def set_sort(self, field_name: str) -> DashboardViews:
        """
        Select the sort field.

        Selecting the active field toggles the direction; a new field
        starts descending.

        Raises:
            ValueError: If the field is not a Coin field
        """
        attr = resolve_sort_field(field_name)
        if attr == self._sort_field:
            self._sort_direction = self._sort_direction.toggled()
        else:
            self._sort_field = attr
            self._sort_direction = SortDirection.DESC

        logger.debug(f"Sort: {self._sort_field} {self._sort_direction.value}")
        return self.refresh_views()

    def set_filter(self, mode: FilterMode | str) -> DashboardViews:
        """
        Select the filter.

        Raises:
            ValueError: If the mode is unknown
        """
        self._filter_mode = FilterMode(mode)
        logger.debug(f"Filter: {self._filter_mode.value}")
        return self.refresh_views()

    async def retrain_models(self) -> bool:
        self._status.update("Retraining AI models...", StatusLevel.INFO)
        try:
            await self._scoring_engine.retrain_models(self._coins)
        except Exception as e:
            logger.error(f"Failed to retrain models: {e}")
            self._status.update(f"Model retraining failed: {e}", StatusLevel.ERROR)
            self._monitor.log_error("retrain", "error", "Model retraining failed", details=str(e))
            return False

        self._status.update("Models retrained successfully", StatusLevel.SUCCESS)
        if self._views is not None:
            self.refresh_views()
        return True

    async def optimize_features(self) -> bool:
        """Simulated feature-engineering job."""
        self._status.update("Optimizing feature engineering...", StatusLevel.INFO)
        await self._sleep(self._optimize_latency)
        self._status.update("Feature optimization complete", StatusLevel.SUCCESS)
        return True

    async def run_diagnostics(self) -> "HealthReport":
        """
        Manual health check.

        A healthy result also resets the recovery fuse.
        """
        self._status.update("Running system diagnostics...", StatusLevel.INFO)
        report = await self._monitor.check_system_health()

        if report.is_healthy:
            self._monitor.reset_recovery_attempts()
            self._status.update("System diagnostics passed", StatusLevel.SUCCESS)
        else:
            self._status.update("System issues detected", StatusLevel.WARNING)

        return report

    def get_system_info(self) -> SystemInfo:
        return SystemInfo(
            model_version=self._scoring_engine.model_version,
            hours_since_retrain=self._scoring_engine.hours_since_retrain(),
        )
