"""
Ingestion layer test fixtures.

The data source is built with a seeded random generator and a no-op
sleep so fetches are fast and repeatable.
"""
import random

import pytest

from crypto_intel.ingestion import Coin, MarketDataSource


async def _no_sleep(_seconds: float) -> None:
    return None


def make_coin(symbol: str = "BTC", **overrides) -> Coin:
    """Coin with sensible raw values; override any field."""
    values = dict(
        symbol=symbol,
        name=f"{symbol} coin",
        price=100.0,
        change_24h=1.0,
        price_change_1h=0.5,
        price_change_7d=2.0,
        volume=1_000_000.0,
        market_cap=1_000_000_000.0,
        market_cap_rank=1,
        volume_change_24h=1.0,
    )
    values.update(overrides)
    return Coin(**values)


@pytest.fixture
def rng():
    return random.Random(42)


@pytest.fixture
def data_source(rng):
    """Mock data source with zero latency."""
    return MarketDataSource(rng=rng, sleep=_no_sleep)


@pytest.fixture
def no_sleep():
    """Replacement for asyncio.sleep in tests."""
    return _no_sleep


@pytest.fixture
def coin_factory():
    return make_coin
