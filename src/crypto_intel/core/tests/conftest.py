"""
Core layer test fixtures.

Core tests verify scoring, aggregation and orchestration logic. The data
source and scoring engine run with zero latency; the health monitor is
mocked unless a test needs the real one.
"""
import random
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from crypto_intel.core.score_service import ScoringEngine
from crypto_intel.core.status import StatusReporter
from crypto_intel.ingestion import Coin, MarketDataSource


async def _no_sleep(_seconds: float) -> None:
    return None


def make_coin(symbol: str = "BTC", **overrides) -> Coin:
    """Coin with neutral raw values (scores to the 0.5 baseline except rank)."""
    values = dict(
        symbol=symbol,
        name=f"{symbol} coin",
        price=100.0,
        change_24h=1.0,
        price_change_1h=0.5,
        price_change_7d=2.0,
        volume=1_000_000.0,
        market_cap=1_000_000_000.0,
        market_cap_rank=100,
        volume_change_24h=1.0,
        social_volume=100,
        development_activity=10,
        community_score=10,
        age=30,
    )
    values.update(overrides)
    return Coin(**values)


# =============================================================================
# Helpers
# =============================================================================


@pytest.fixture
def no_sleep():
    """Replacement for asyncio.sleep in tests."""
    return _no_sleep


@pytest.fixture
def coin_factory():
    return make_coin


@pytest.fixture
def scored_factory():
    """Build a coin that already carries scores."""

    def build(symbol="BTC", breakout=0.5, inflow=0.5, fundamental=0.5, **overrides):
        return make_coin(symbol, **overrides).with_scores(breakout, inflow, fundamental)

    return build


# =============================================================================
# Component Fixtures
# =============================================================================


@pytest.fixture
def engine():
    """Scoring engine with zero latency, not yet initialized."""
    return ScoringEngine(sleep=_no_sleep)


@pytest_asyncio.fixture
async def ready_engine(engine):
    await engine.initialize()
    return engine


@pytest.fixture
def data_source():
    return MarketDataSource(rng=random.Random(1), sleep=_no_sleep)


@pytest.fixture
def mock_monitor():
    """Mock SelfHealingMonitor."""
    monitor = MagicMock()
    monitor.log_error = MagicMock()
    monitor.check_system_health = AsyncMock()
    monitor.reset_recovery_attempts = MagicMock()
    return monitor


@pytest.fixture
def status():
    return StatusReporter()
