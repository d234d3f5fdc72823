"""
Market Data Source - produces Coin batches on demand.

There is no external API behind this source: every fetch generates a
fresh batch of realistic mock records. The contract with the rest of
the system is the same one a REST-backed source would have:

    - fetch_batch() returns an ordered list of Coin or raises
      DataUnavailableError
    - the connected flag only becomes True after a successful fetch
    - every successful fetch appends one HistoricalSnapshot
"""
from __future__ import annotations

import asyncio
import logging
import random
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

from .models import Coin, HistoricalSnapshot, Influencer, InfluencerActivity

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]
BatchGenerator = Callable[[random.Random], list[Coin]]

# Top cryptocurrencies by market cap (name, symbol)
MOCK_ASSETS: tuple[tuple[str, str], ...] = (
    ("Bitcoin", "BTC"),
    ("Ethereum", "ETH"),
    ("Binance Coin", "BNB"),
    ("Cardano", "ADA"),
    ("XRP", "XRP"),
    ("Solana", "SOL"),
    ("Polkadot", "DOT"),
    ("Dogecoin", "DOGE"),
    ("Avalanche", "AVAX"),
    ("Polygon", "MATIC"),
    ("Litecoin", "LTC"),
    ("Chainlink", "LINK"),
    ("Uniswap", "UNI"),
    ("Algorand", "ALGO"),
    ("Bitcoin Cash", "BCH"),
    ("Stellar", "XLM"),
    ("VeChain", "VET"),
    ("Cosmos", "ATOM"),
    ("Ethereum Classic", "ETC"),
    ("Theta Network", "THETA"),
    ("Filecoin", "FIL"),
    ("TRON", "TRX"),
    ("Monero", "XMR"),
    ("Tezos", "XTZ"),
    ("EOS", "EOS"),
    ("Aave", "AAVE"),
    ("Compound", "COMP"),
    ("Crypto.com Coin", "CRO"),
    ("Shiba Inu", "SHIB"),
    ("Maker", "MKR"),
)

# Known influencer impact per symbol
INFLUENCER_IMPACT: dict[str, float] = {
    "DOGE": 0.8,
    "ETH": 0.6,
}

MOCK_INFLUENCERS: tuple[tuple[str, str, int, float], ...] = (
    ("Elon Musk", "elonmusk", 78_000_000, 0.95),
    ("Donald Trump", "realDonaldTrump", 87_000_000, 0.85),
    ("Vitalik Buterin", "VitalikButerin", 4_300_000, 0.75),
    ("Roger Ver", "rogerkver", 710_000, 0.65),
    ("Pomp", "APompliano", 1_100_000, 0.70),
)

MENTIONABLE_SYMBOLS = ("BTC", "ETH", "DOGE", "SHIB", "ADA", "XRP", "SOL", "DOT")


class DataUnavailableError(Exception):
    """Raised when a market data batch cannot be produced."""

    def __init__(self, message: str = "Market data unavailable", detail: Optional[str] = None):
        self.message = message
        self.detail = detail
        super().__init__(message)


def generate_mock_coins(rng: random.Random) -> list[Coin]:
    """Generate one batch of mock coins in market-cap rank order."""
    coins = []
    for rank, (name, symbol) in enumerate(MOCK_ASSETS, start=1):
        coins.append(Coin(
            symbol=symbol,
            name=name,
            price=rng.random() * 1000 + 10,
            change_24h=(rng.random() - 0.5) * 20,
            price_change_1h=(rng.random() - 0.5) * 5,
            price_change_7d=(rng.random() - 0.5) * 30,
            volume=rng.random() * 1_000_000_000 + 1_000_000,
            market_cap=rng.random() * 100_000_000_000 + 1_000_000_000,
            market_cap_rank=rank,
            volume_change_24h=rng.random() * 5,
            social_volume=int(rng.random() * 1000),
            development_activity=int(rng.random() * 100),
            community_score=int(rng.random() * 100),
            age=int(rng.random() * 2000) + 100,
            influencer_impact=INFLUENCER_IMPACT.get(symbol, 0.0),
        ))
    return coins


def compute_btc_dominance(coins: list[Coin]) -> float:
    """
    BTC market cap as a percentage of the batch total.

    Returns 0.0 when the total is zero or BTC is absent.
    """
    total = sum(c.market_cap for c in coins)
    if total <= 0:
        return 0.0
    btc_cap = next((c.market_cap for c in coins if c.symbol == "BTC"), 0.0)
    return btc_cap / total * 100


class MarketDataSource:
    """
    Mock market data source.

    Usage:
        source = MarketDataSource()
        await source.initialize()

        coins = await source.fetch_batch()
        history = source.get_history()
    """

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        generator: Optional[BatchGenerator] = None,
        latency_seconds: float = 1.0,
        max_history_points: int = 50,
        sleep: Optional[Sleep] = None,
    ) -> None:
        """
        Initialize the data source.

        Args:
            rng: Random source for mock values (seed it for repeatable runs)
            generator: Batch generator, defaults to generate_mock_coins
            latency_seconds: Simulated fetch latency
            max_history_points: History cap, oldest snapshots evicted first
            sleep: Awaitable sleep used for simulated latency
        """
        self._rng = rng or random.Random()
        self._generator = generator or generate_mock_coins
        self._latency_seconds = latency_seconds
        self._sleep = sleep or asyncio.sleep

        self._coins: list[Coin] = []
        self._history: deque[HistoricalSnapshot] = deque(maxlen=max_history_points)
        self._influencers: list[Influencer] = []
        self._connected = False
        self._fetch_count = 0
        self._last_fetch_at: Optional[datetime] = None

    @property
    def is_connected(self) -> bool:
        """Whether the last fetch succeeded."""
        return self._connected

    @property
    def fetch_count(self) -> int:
        return self._fetch_count

    @property
    def last_fetch_at(self) -> Optional[datetime]:
        return self._last_fetch_at

    async def initialize(self) -> bool:
        """
        Connect the source by performing one fetch.

        Also the recovery entry point used by the health monitor.

        Returns:
            True if the source is connected afterwards
        """
        logger.info("Initializing data service...")
        try:
            await self.fetch_batch()
        except DataUnavailableError as e:
            logger.error(f"Failed to initialize data service: {e}")
            return False

        logger.info("Data service initialized successfully")
        return True

    async def shutdown(self) -> None:
        """Mark the source as disconnected."""
        self._connected = False
        logger.info("Data service stopped")

    async def fetch_batch(self) -> list[Coin]:
        """
        Fetch one batch of market data.

        Returns:
            Coins ordered by market cap rank

        Raises:
            DataUnavailableError: If the batch could not be produced
        """
        logger.debug("Fetching market data...")

        try:
            coins = self._generator(self._rng)
            await self._sleep(self._latency_seconds)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._connected = False
            logger.error(f"Failed to fetch market data: {e}")
            raise DataUnavailableError("Failed to fetch market data", detail=str(e)) from e

        self._coins = list(coins)
        self._store_snapshot(self._coins)
        self._connected = True
        self._fetch_count += 1
        self._last_fetch_at = datetime.now(timezone.utc)

        logger.debug(f"Market data fetched successfully ({len(self._coins)} coins)")
        return list(self._coins)

    async def fetch_influencer_data(self) -> list[Influencer]:
        """Fetch mock influencer accounts with one recent post each."""
        logger.debug("Fetching influencer data...")
        now = datetime.now(timezone.utc)

        influencers = []
        for name, username, followers, impact_score in MOCK_INFLUENCERS:
            activity = InfluencerActivity(
                type="tweet",
                content=f"Just mentioned {self._rng.choice(MENTIONABLE_SYMBOLS)} in a tweet",
                timestamp=now - timedelta(seconds=self._rng.random() * 86400),
                impact=self._rng.random() * 0.3 + 0.1,
            )
            influencers.append(Influencer(
                name=name,
                username=username,
                followers=followers,
                impact_score=impact_score,
                recent_activity=(activity,),
            ))

        await self._sleep(self._latency_seconds * 0.8)
        self._influencers = influencers
        return list(influencers)

    def _store_snapshot(self, coins: list[Coin]) -> None:
        """Append a HistoricalSnapshot for the batch."""
        self._history.append(HistoricalSnapshot(
            timestamp=datetime.now(timezone.utc),
            total_market_cap=sum(c.market_cap for c in coins),
            btc_dominance=compute_btc_dominance(coins),
            fear_greed=self._rng.randrange(100),
        ))

    def get_history(self) -> list[HistoricalSnapshot]:
        """Historical snapshots, newest last."""
        return list(self._history)

    def get_all_coins(self) -> list[Coin]:
        """Coins from the latest successful fetch."""
        return list(self._coins)

    def get_coin(self, symbol: str) -> Optional[Coin]:
        """Look up a coin in the latest batch by symbol."""
        return next((c for c in self._coins if c.symbol == symbol), None)

    def get_influencers(self) -> list[Influencer]:
        return list(self._influencers)

    def get_top_gainers(self, limit: int = 10) -> list[Coin]:
        """Coins with positive 24h change, biggest first."""
        gainers = [c for c in self._coins if c.change_24h is not None and c.change_24h > 0]
        return sorted(gainers, key=lambda c: c.change_24h, reverse=True)[:limit]

    def get_top_losers(self, limit: int = 10) -> list[Coin]:
        """Coins with negative 24h change, biggest drop first."""
        losers = [c for c in self._coins if c.change_24h is not None and c.change_24h < 0]
        return sorted(losers, key=lambda c: c.change_24h)[:limit]
