"""
Heuristic scoring for coin snapshots.

Computes three independent scores in [0.01, 0.99]:
- breakout: likelihood of a sharp upward move
- inflow: likelihood of money flowing into the asset
- fundamental: strength of the project behind the asset

These are NOT model outputs - each score starts at a 0.5 baseline and
is nudged by a fixed, ordered set of threshold rules.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from crypto_intel.ingestion.models import Coin

logger = logging.getLogger(__name__)

BASELINE_SCORE = 0.5
MIN_SCORE = 0.01
MAX_SCORE = 0.99


@dataclass(frozen=True)
class CoinFeatures:
    """
    Model input derived from a Coin.

    Price changes are normalized from percent to fractions
    (5.0 -> 0.05). Everything else is passed through raw.
    """

    volume_change_24h: float
    price_change_24h: float
    price_change_1h: float
    price_change_7d: float
    social_volume: int
    market_cap_rank: int
    age: int
    development_activity: int
    community_score: int


@dataclass(frozen=True)
class CoinScores:
    """The three scores for one coin."""

    breakout: float
    inflow: float
    fundamental: float

    @classmethod
    def neutral(cls) -> "CoinScores":
        """Fallback used when scoring a coin fails."""
        return cls(BASELINE_SCORE, BASELINE_SCORE, BASELINE_SCORE)


def extract_features(coin: "Coin") -> CoinFeatures:
    """
    Build model features from a coin's raw fields.

    Raises:
        TypeError: If a price change field is missing
    """
    return CoinFeatures(
        volume_change_24h=coin.volume_change_24h,
        price_change_24h=coin.change_24h / 100,
        price_change_1h=coin.price_change_1h / 100,
        price_change_7d=coin.price_change_7d / 100,
        social_volume=coin.social_volume,
        market_cap_rank=coin.market_cap_rank,
        age=coin.age,
        development_activity=coin.development_activity,
        community_score=coin.community_score,
    )


def clamp_score(score: float) -> float:
    """Clamp a score into [MIN_SCORE, MAX_SCORE]."""
    return min(MAX_SCORE, max(MIN_SCORE, score))


def breakout_score(f: CoinFeatures) -> float:
    """Volume surge plus short and medium term momentum."""
    score = BASELINE_SCORE

    if f.volume_change_24h > 2:
        score += 0.2
    if f.price_change_24h > 0.1:
        score += 0.15
    if f.price_change_7d > 0.3:
        score += 0.1
    if f.social_volume > 500:
        score += 0.05

    return clamp_score(score)


def inflow_score(f: CoinFeatures) -> float:
    """Volume growth, last-hour momentum and large-cap bias."""
    score = BASELINE_SCORE

    if f.volume_change_24h > 1.5:
        score += 0.2
    if f.price_change_1h > 0.05:
        score += 0.15
    if f.market_cap_rank < 50:
        score += 0.1

    return clamp_score(score)


def fundamental_score(f: CoinFeatures) -> float:
    """Project age, developer activity and community strength."""
    score = BASELINE_SCORE

    if f.age > 365:
        score += 0.2
    if f.development_activity > 50:
        score += 0.15
    if f.community_score > 70:
        score += 0.1

    return clamp_score(score)


@runtime_checkable
class ScoreModel(Protocol):
    """
    Protocol for score models.

    Models are pure: one method per score kind, features in, float out.
    Swap in a different implementation to change scoring without
    touching the engine or the pipeline.
    """

    @property
    def name(self) -> str:
        """Model name for logs and system info."""
        ...

    def breakout(self, features: CoinFeatures) -> float:
        ...

    def inflow(self, features: CoinFeatures) -> float:
        ...

    def fundamental(self, features: CoinFeatures) -> float:
        ...


class HeuristicScoreModel:
    """Default ScoreModel backed by the threshold rules above."""

    @property
    def name(self) -> str:
        return "heuristic"

    def breakout(self, features: CoinFeatures) -> float:
        return breakout_score(features)

    def inflow(self, features: CoinFeatures) -> float:
        return inflow_score(features)

    def fundamental(self, features: CoinFeatures) -> float:
        return fundamental_score(features)


def score_coin(coin: "Coin", model: ScoreModel | None = None) -> CoinScores:
    """
    Score a single coin synchronously.

    Raises whatever feature extraction or the model raises on malformed
    input; callers decide on the fallback.
    """
    model = model or HeuristicScoreModel()
    features = extract_features(coin)
    return CoinScores(
        breakout=clamp_score(model.breakout(features)),
        inflow=clamp_score(model.inflow(features)),
        fundamental=clamp_score(model.fundamental(features)),
    )
