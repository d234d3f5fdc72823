"""
Monitoring layer test fixtures.

Tests health checks, self-healing, the error log and dashboard endpoints.
Components run with zero latency and a deterministic API probe.
"""
import asyncio
import random
from unittest.mock import AsyncMock, MagicMock

import pytest

from crypto_intel.core.pipeline import RefreshPipeline
from crypto_intel.core.score_service import ScoringEngine
from crypto_intel.ingestion import MarketDataSource
from crypto_intel.monitoring.error_log import ErrorLog
from crypto_intel.monitoring.health_checker import (
    DATA_SOURCE,
    SCORING_ENGINE,
    HealthChecker,
)
from crypto_intel.monitoring.self_healing import SelfHealingMonitor


async def _no_sleep(_seconds: float) -> None:
    return None


ALL_APIS_UP = {"coinMarketCap": True, "twitter": True, "news": True}


# =============================================================================
# Component Fixtures
# =============================================================================


@pytest.fixture
def api_probe():
    """Deterministic API probe (all reachable unless a test changes it)."""
    return AsyncMock(return_value=dict(ALL_APIS_UP))


@pytest.fixture
def data_source():
    return MarketDataSource(rng=random.Random(7), sleep=_no_sleep)


@pytest.fixture
def engine():
    return ScoringEngine(sleep=_no_sleep)


@pytest.fixture
def checker(data_source, engine, api_probe):
    return HealthChecker(data_source, engine, api_probe=api_probe)


@pytest.fixture
def error_log():
    return ErrorLog()


@pytest.fixture
def monitor(checker, data_source, engine, error_log):
    return SelfHealingMonitor(
        checker,
        recovery_targets={DATA_SOURCE: data_source, SCORING_ENGINE: engine},
        error_log=error_log,
        max_recovery_attempts=3,
    )


@pytest.fixture
def mock_data_source_healthy():
    """Connected source holding data."""
    source = MagicMock()
    source.is_connected = True
    source.get_all_coins = MagicMock(return_value=[MagicMock()] * 30)
    return source


@pytest.fixture
def mock_data_source_empty():
    """Connected source with no coins (first fetch never landed)."""
    source = MagicMock()
    source.is_connected = True
    source.get_all_coins = MagicMock(return_value=[])
    return source


@pytest.fixture
def mock_data_source_disconnected():
    source = MagicMock()
    source.is_connected = False
    source.get_all_coins = MagicMock(return_value=[MagicMock()])
    return source


@pytest.fixture
def mock_engine_ready():
    engine = MagicMock()
    engine.get_model_info = MagicMock(return_value={"is_initialized": True})
    return engine


@pytest.fixture
def mock_engine_unloaded():
    engine = MagicMock()
    engine.get_model_info = MagicMock(return_value={"is_initialized": False})
    return engine


# =============================================================================
# Dashboard Fixtures
# =============================================================================


@pytest.fixture
def pipeline(data_source, engine, monitor):
    return RefreshPipeline(data_source, engine, monitor, sleep=_no_sleep)


@pytest.fixture
def loaded_pipeline(pipeline, engine):
    """Pipeline after model load and one successful pass."""
    asyncio.run(engine.initialize())
    asyncio.run(pipeline.run_pass())
    return pipeline


@pytest.fixture
def app(loaded_pipeline, monitor, data_source, engine):
    from crypto_intel.monitoring.dashboard import create_app

    return create_app(
        pipeline=loaded_pipeline,
        monitor=monitor,
        data_source=data_source,
        scoring_engine=engine,
        testing=True,
    )


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()
