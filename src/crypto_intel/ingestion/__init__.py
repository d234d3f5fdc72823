"""
Ingestion Layer - Market data source and its models.

This module provides:
    - MarketDataSource: Mock market data source (one fetch = one batch)
    - DataUnavailableError: Raised when a batch cannot be produced
    - Coin: One asset snapshot plus derived scores
    - HistoricalSnapshot: Market aggregate appended per fetch
    - Influencer / InfluencerActivity: Mock social feed

Usage:
    from crypto_intel.ingestion import MarketDataSource

    source = MarketDataSource()
    await source.initialize()
    coins = await source.fetch_batch()
"""

from .data_source import (
    DataUnavailableError,
    MarketDataSource,
    compute_btc_dominance,
    generate_mock_coins,
)
from .models import (
    COIN_WIRE_FIELDS,
    Coin,
    HistoricalSnapshot,
    Influencer,
    InfluencerActivity,
)

__all__ = [
    # Data source
    "MarketDataSource",
    "DataUnavailableError",
    "generate_mock_coins",
    "compute_btc_dominance",
    # Models
    "Coin",
    "COIN_WIRE_FIELDS",
    "HistoricalSnapshot",
    "Influencer",
    "InfluencerActivity",
]
