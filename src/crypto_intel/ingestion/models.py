"""
Data models for the ingestion layer.

These models represent data structures for:
- Coin snapshots produced by the market data source
- Historical market aggregates used by the dominance chart
- Influencer activity from the social feed

Wire format:
    A batch is an ordered list of Coin-shaped JSON objects using the
    camelCase keys in COIN_WIRE_FIELDS. One fetch produces one batch.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from typing import Any, Optional


# Python attribute -> JSON key
COIN_WIRE_FIELDS: dict[str, str] = {
    "symbol": "symbol",
    "name": "name",
    "price": "price",
    "change_24h": "change24h",
    "price_change_1h": "priceChange1h",
    "price_change_7d": "priceChange7d",
    "volume": "volume",
    "market_cap": "marketCap",
    "market_cap_rank": "marketCapRank",
    "volume_change_24h": "volumeChange24h",
    "social_volume": "socialVolume",
    "development_activity": "developmentActivity",
    "community_score": "communityScore",
    "age": "age",
    "influencer_impact": "influencerImpact",
    "breakout_score": "breakoutScore",
    "inflow_score": "inflowScore",
    "fundamental_score": "fundamentalScore",
}

WIRE_TO_ATTRIBUTE: dict[str, str] = {v: k for k, v in COIN_WIRE_FIELDS.items()}


@dataclass(frozen=True)
class Coin:
    """
    One market asset snapshot.

    Raw fields come from the data source. The three score fields are
    derived and stay None until the scoring engine produces a new Coin
    via with_scores(); they are never carried from one pass to the next.

    Attributes:
        symbol: Ticker, unique within a batch
        name: Display name
        price: Price in USD (> 0)
        change_24h: 24h price change in percent
        price_change_1h: 1h price change in percent
        price_change_7d: 7d price change in percent
        volume: 24h volume in USD
        market_cap: Market capitalisation in USD
        market_cap_rank: 1-based rank by market cap
        volume_change_24h: 24h volume change ratio
        social_volume: Social mentions count
        development_activity: 0-100
        community_score: 0-100
        age: Days since launch
        influencer_impact: 0-1
    """
    symbol: str
    name: str
    price: float
    change_24h: Optional[float]
    price_change_1h: Optional[float]
    price_change_7d: Optional[float]
    volume: float
    market_cap: float
    market_cap_rank: int
    volume_change_24h: Optional[float]
    social_volume: int = 0
    development_activity: int = 0
    community_score: int = 0
    age: int = 0
    influencer_impact: float = 0.0
    breakout_score: Optional[float] = None
    inflow_score: Optional[float] = None
    fundamental_score: Optional[float] = None

    @property
    def is_scored(self) -> bool:
        """Whether the derived scores are present."""
        return (
            self.breakout_score is not None
            and self.inflow_score is not None
            and self.fundamental_score is not None
        )

    @property
    def display_name(self) -> str:
        return f"{self.name} ({self.symbol})"

    def with_scores(
        self,
        breakout: float,
        inflow: float,
        fundamental: float,
    ) -> "Coin":
        """Return a copy carrying freshly computed scores."""
        return replace(
            self,
            breakout_score=breakout,
            inflow_score=inflow,
            fundamental_score=fundamental,
        )

    def to_dict(self) -> dict:
        """Convert to the camelCase wire shape."""
        return {
            wire: getattr(self, attr)
            for attr, wire in COIN_WIRE_FIELDS.items()
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Coin":
        """
        Build a Coin from a wire-shaped dict.

        Unknown keys are ignored. Snake_case keys are accepted as well.
        """
        known = {f.name for f in fields(cls)}
        kwargs: dict[str, Any] = {}
        for key, value in data.items():
            attr = WIRE_TO_ATTRIBUTE.get(key, key)
            if attr in known:
                kwargs[attr] = value
        return cls(**kwargs)


@dataclass(frozen=True)
class HistoricalSnapshot:
    """Market aggregate recorded once per successful fetch."""
    timestamp: datetime
    total_market_cap: float
    btc_dominance: float  # percent
    fear_greed: int  # 0-100 mock index

    @property
    def altcoin_share(self) -> float:
        """Share of total market cap not held by BTC (percent)."""
        return 100.0 - self.btc_dominance

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "totalMarketCap": self.total_market_cap,
            "btcDominance": self.btc_dominance,
            "fearGreed": self.fear_greed,
        }


@dataclass(frozen=True)
class InfluencerActivity:
    """A single recent post by an influencer."""
    type: str
    content: str
    timestamp: datetime
    impact: float


@dataclass(frozen=True)
class Influencer:
    """Social account whose posts are assumed to move prices."""
    name: str
    username: str
    followers: int
    impact_score: float
    recent_activity: tuple[InfluencerActivity, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "username": self.username,
            "followers": self.followers,
            "impactScore": self.impact_score,
            "recentActivity": [
                {
                    "type": a.type,
                    "content": a.content,
                    "timestamp": a.timestamp.isoformat(),
                    "impact": a.impact,
                }
                for a in self.recent_activity
            ],
        }
