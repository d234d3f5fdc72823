"""
Crypto Intelligence Dashboard - Main Entry Point

Runs the mock market data source, the scoring engine, the refresh
scheduler, the self-healing health monitor and the Flask dashboard on a
single asyncio event loop.

Usage:
    python -m crypto_intel.main [--log-level DEBUG] [--no-dashboard] [--seed 42]

Configuration:
    The app reads configuration from:
    1. Environment variables (optionally loaded from .env)
    2. Command line arguments

Environment Variables:
    LOG_LEVEL                       Logging level (DEBUG/INFO/WARNING/ERROR)
    REFRESH_PERIOD_TICKS            Ticks between refresh passes (default: 60)
    TICK_SECONDS                    Seconds per countdown tick (default: 1.0)
    HEALTH_CHECK_INTERVAL_SECONDS   Health check period (default: 30)
    MAX_RECOVERY_ATTEMPTS           Recovery fuse limit (default: 5)
    MAX_HISTORY_POINTS              Market history cap (default: 50)
    ERROR_LOG_SIZE                  Error log ring buffer size (default: 500)
    MAX_ROWS                        Rows per table/chart (default: 10)
    FETCH_LATENCY_SECONDS           Simulated fetch latency (default: 1.0)
    MODEL_LOAD_SECONDS              Simulated model load time (default: 2.0)
    INITIAL_LOAD_DELAY_SECONDS      Delay before the first pass (default: 2.0)
    RETRY_ATTEMPTS                  Startup initialization attempts (default: 3)
    RETRY_DELAY_SECONDS             Delay between startup attempts (default: 5.0)
    MOCK_SEED                       Seed for repeatable mock data (default: unset)
    DASHBOARD_ENABLED               Set to "false" to disable the dashboard
    DASHBOARD_HOST                  Dashboard bind host (default: 127.0.0.1)
    DASHBOARD_PORT                  Dashboard port (default: 9060)
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import random
import signal
import sys
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

# Configure logging before imports
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


@dataclass
class AppConfig:
    """Complete application configuration."""

    # Refresh scheduler
    refresh_period_ticks: int = 60
    tick_seconds: float = 1.0

    # Health monitor
    health_check_interval_seconds: float = 30
    max_recovery_attempts: int = 5
    error_log_size: int = 500

    # Data and views
    max_history_points: int = 50
    max_rows: int = 10
    mock_seed: Optional[int] = None

    # Simulated latency
    fetch_latency_seconds: float = 1.0
    model_load_seconds: float = 2.0

    # Startup
    initial_load_delay_seconds: float = 2.0
    retry_attempts: int = 3
    retry_delay_seconds: float = 5.0

    # Dashboard
    dashboard_enabled: bool = True
    dashboard_host: str = "127.0.0.1"
    dashboard_port: int = 9060

    @classmethod
    def from_env(cls) -> "AppConfig":
        """Load configuration from environment variables."""
        seed = os.environ.get("MOCK_SEED")
        return cls(
            refresh_period_ticks=int(os.environ.get("REFRESH_PERIOD_TICKS", "60")),
            tick_seconds=float(os.environ.get("TICK_SECONDS", "1.0")),
            health_check_interval_seconds=float(os.environ.get("HEALTH_CHECK_INTERVAL_SECONDS", "30")),
            max_recovery_attempts=int(os.environ.get("MAX_RECOVERY_ATTEMPTS", "5")),
            error_log_size=int(os.environ.get("ERROR_LOG_SIZE", "500")),
            max_history_points=int(os.environ.get("MAX_HISTORY_POINTS", "50")),
            max_rows=int(os.environ.get("MAX_ROWS", "10")),
            mock_seed=int(seed) if seed else None,
            fetch_latency_seconds=float(os.environ.get("FETCH_LATENCY_SECONDS", "1.0")),
            model_load_seconds=float(os.environ.get("MODEL_LOAD_SECONDS", "2.0")),
            initial_load_delay_seconds=float(os.environ.get("INITIAL_LOAD_DELAY_SECONDS", "2.0")),
            retry_attempts=int(os.environ.get("RETRY_ATTEMPTS", "3")),
            retry_delay_seconds=float(os.environ.get("RETRY_DELAY_SECONDS", "5.0")),
            dashboard_enabled=os.environ.get("DASHBOARD_ENABLED", "true").lower() == "true",
            dashboard_host=os.environ.get("DASHBOARD_HOST", "127.0.0.1"),
            dashboard_port=int(os.environ.get("DASHBOARD_PORT", "9060")),
        )


class CryptoIntelApp:
    """
    Main application orchestrator.

    Manages the lifecycle of all components:
    - Market data source and scoring engine (with startup retries)
    - Refresh pipeline and scheduler
    - Self-healing health monitor
    - Dashboard (Flask in a background thread)
    """

    def __init__(self, config: AppConfig):
        self.config = config
        self._running = False
        self._shutdown_event = asyncio.Event()
        self._started_at: Optional[datetime] = None

        # Components (built on start)
        self.data_source = None
        self.scoring_engine = None
        self.monitor = None
        self.status = None
        self.pipeline = None
        self.scheduler = None
        self._background_tasks = None
        self._dashboard = None
        self._dashboard_thread: Optional[threading.Thread] = None
        self._flask_server = None

    @property
    def is_running(self) -> bool:
        return self._running

    def build_components(self) -> None:
        """Create and wire all components (no I/O)."""
        from crypto_intel.core import (
            BackgroundTaskConfig,
            BackgroundTasksManager,
            RefreshPipeline,
            RefreshScheduler,
            ScoringEngine,
            StatusReporter,
        )
        from crypto_intel.ingestion import MarketDataSource
        from crypto_intel.monitoring import ErrorLog, HealthChecker, SelfHealingMonitor
        from crypto_intel.monitoring.health_checker import DATA_SOURCE, SCORING_ENGINE

        rng = random.Random(self.config.mock_seed)

        self.data_source = MarketDataSource(
            rng=rng,
            latency_seconds=self.config.fetch_latency_seconds,
            max_history_points=self.config.max_history_points,
        )
        self.scoring_engine = ScoringEngine(load_latency=self.config.model_load_seconds)

        self.monitor = SelfHealingMonitor(
            HealthChecker(self.data_source, self.scoring_engine),
            recovery_targets={
                DATA_SOURCE: self.data_source,
                SCORING_ENGINE: self.scoring_engine,
            },
            error_log=ErrorLog(self.config.error_log_size),
            max_recovery_attempts=self.config.max_recovery_attempts,
        )

        self.status = StatusReporter()
        self.pipeline = RefreshPipeline(
            self.data_source,
            self.scoring_engine,
            self.monitor,
            status=self.status,
            max_rows=self.config.max_rows,
        )
        self.scheduler = RefreshScheduler(
            self.pipeline.run_pass,
            period=self.config.refresh_period_ticks,
        )
        self._background_tasks = BackgroundTasksManager(
            scheduler=self.scheduler,
            monitor=self.monitor,
            config=BackgroundTaskConfig(
                tick_seconds=self.config.tick_seconds,
                health_check_interval_seconds=self.config.health_check_interval_seconds,
            ),
        )

    async def start(self) -> None:
        """Start the app and run until shutdown."""
        logger.info("=" * 60)
        logger.info("CRYPTO INTELLIGENCE DASHBOARD")
        logger.info("=" * 60)

        self._running = True
        self._started_at = datetime.now(timezone.utc)
        self._shutdown_event.clear()

        # Setup signal handlers FIRST to catch early signals
        self._setup_signal_handlers()

        try:
            self.build_components()

            if self.config.dashboard_enabled:
                self._init_dashboard()
            else:
                logger.info("Dashboard: Disabled via config")

            await self._initialize_components()

            if self._shutdown_event.is_set():
                logger.info("Shutdown requested during startup")
                return

            # Initial data load
            if await self._wait_for_shutdown(self.config.initial_load_delay_seconds):
                logger.info("Shutdown requested during startup")
                return
            await self.scheduler.trigger_now()

            await self._background_tasks.start()

            logger.info("=" * 60)
            logger.info("App started successfully")
            logger.info("Press Ctrl+C to stop")
            logger.info("=" * 60)

            await self._shutdown_event.wait()

        except Exception as e:
            logger.exception(f"Fatal error: {e}")
            raise
        finally:
            await self.stop()

    async def _initialize_components(self) -> bool:
        """
        Initialize data source and models, retrying a bounded number of times.

        A final failure is logged; the health loop keeps trying afterwards.
        """
        from crypto_intel.core import StatusLevel

        attempts = max(1, self.config.retry_attempts)
        for attempt in range(1, attempts + 1):
            source_ok = self.data_source.is_connected or await self.data_source.initialize()
            models_ok = self.scoring_engine.is_initialized or await self.scoring_engine.initialize()

            if source_ok and models_ok:
                self.status.update("System operational. Monitoring markets...", StatusLevel.SUCCESS)
                return True

            logger.warning(
                f"Initialization attempt {attempt}/{attempts} failed "
                f"(data_service={source_ok}, ml_models={models_ok})"
            )
            if attempt < attempts:
                if await self._wait_for_shutdown(self.config.retry_delay_seconds):
                    return False

        self.status.update("Initialization failed: components unavailable", StatusLevel.ERROR)
        self.monitor.log_error(
            "startup",
            "error",
            f"Initialization failed after {attempts} attempts",
        )
        return False

    async def _wait_for_shutdown(self, seconds: float) -> bool:
        """Sleep unless shutdown is requested first. Returns True on shutdown."""
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False

    async def stop(self) -> None:
        """Stop the app gracefully."""
        if not self._running:
            return

        logger.info("Shutting down...")
        self._running = False
        self._shutdown_event.set()

        # Stop components in reverse order
        if self._background_tasks:
            try:
                await self._background_tasks.stop()
            except Exception as e:
                logger.warning(f"Error stopping background tasks: {e}")

        if self.monitor:
            try:
                await self.monitor.stop()
            except Exception as e:
                logger.warning(f"Error stopping health monitor: {e}")

        if self._dashboard:
            try:
                self._stop_dashboard()
            except Exception as e:
                logger.warning(f"Error stopping dashboard: {e}")

        if self.scoring_engine:
            await self.scoring_engine.shutdown()
        if self.data_source:
            await self.data_source.shutdown()

        logger.info("Shutdown complete")

    def request_shutdown(self, reason: str = "manual") -> None:
        if not self._running:
            return
        logger.warning(f"Shutdown requested: {reason}")
        self._shutdown_event.set()

    def _init_dashboard(self) -> None:
        """Create the dashboard and start it in a background thread."""
        from crypto_intel.monitoring import Dashboard

        self._dashboard = Dashboard(
            pipeline=self.pipeline,
            monitor=self.monitor,
            data_source=self.data_source,
            scoring_engine=self.scoring_engine,
            scheduler=self.scheduler,
            event_loop=asyncio.get_running_loop(),
            started_at=self._started_at,
        )
        self.status.set_listener(self._dashboard.broadcast_event)
        self.pipeline.set_listener(self._dashboard.broadcast_event)
        self._start_dashboard()

    def _start_dashboard(self) -> None:
        """Start the Flask dashboard in a background thread.

        Uses werkzeug's threaded server with graceful shutdown support.
        """
        from werkzeug.serving import make_server

        def run_flask():
            try:
                if not self._running:
                    logger.info("Dashboard: Skipping start (shutdown in progress)")
                    return

                app = self._dashboard.create_app()

                self._flask_server = make_server(
                    host=self.config.dashboard_host,
                    port=self.config.dashboard_port,
                    app=app,
                    threaded=True,
                )

                if not self._running:
                    self._flask_server.server_close()
                    logger.info("Dashboard: Skipping serve (shutdown in progress)")
                    return

                logger.info(
                    f"Dashboard: http://{self.config.dashboard_host}:{self.config.dashboard_port}"
                )
                self._flask_server.serve_forever()

            except Exception as e:
                logger.error(f"Dashboard failed to start: {e}")

        self._dashboard_thread = threading.Thread(target=run_flask, daemon=True)
        self._dashboard_thread.start()

    def _stop_dashboard(self) -> None:
        """Stop the Flask dashboard gracefully."""
        if self._flask_server:
            logger.info("Dashboard: Shutting down...")
            self._flask_server.shutdown()
            self._flask_server.server_close()
            self._flask_server = None

        if self._dashboard_thread:
            if self._dashboard_thread.is_alive():
                self._dashboard_thread.join(timeout=5)
                if self._dashboard_thread.is_alive():
                    logger.warning("Dashboard thread did not stop cleanly")
            self._dashboard_thread = None

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        def handle_signal(sig):
            logger.info(f"Received signal {sig}")
            self._shutdown_event.set()

        try:
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))
        except (NotImplementedError, RuntimeError):
            # Windows, or not on the main thread
            pass


def load_env_file(path: str = ".env") -> None:
    """Load environment variables from .env file if it exists."""
    env_path = Path(path)
    if env_path.exists():
        logger.info(f"Loading environment from {env_path}")
        with open(env_path) as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith("#") and "=" in line:
                    key, _, value = line.partition("=")
                    value = value.strip().strip('"').strip("'")
                    os.environ.setdefault(key.strip(), value)


def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Crypto Intelligence Dashboard",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Override log level",
    )
    parser.add_argument(
        "--no-dashboard",
        action="store_true",
        help="Run without the web dashboard",
    )
    parser.add_argument(
        "--seed",
        type=int,
        help="Seed for repeatable mock market data",
    )
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> AppConfig:
    """Environment config with command line overrides."""
    config = AppConfig.from_env()

    if args.no_dashboard:
        config.dashboard_enabled = False
    if args.seed is not None:
        config.mock_seed = args.seed

    return config


async def main_async(args: argparse.Namespace) -> int:
    """Async main function."""
    config = build_config(args)

    if config.refresh_period_ticks < 1:
        logger.error("REFRESH_PERIOD_TICKS must be at least 1")
        return 1
    if config.max_recovery_attempts < 0:
        logger.error("MAX_RECOVERY_ATTEMPTS must not be negative")
        return 1
    if config.max_rows < 1:
        logger.error("MAX_ROWS must be at least 1")
        return 1

    app = CryptoIntelApp(config)

    try:
        await app.start()
        return 0
    except KeyboardInterrupt:
        logger.info("Shutdown requested")
        return 0
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        return 1


def main() -> int:
    """Main entry point."""
    load_env_file()

    args = parse_args()

    if args.log_level:
        logging.getLogger().setLevel(getattr(logging, args.log_level))

    try:
        return asyncio.run(main_async(args))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())
