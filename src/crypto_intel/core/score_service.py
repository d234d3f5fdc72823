"""
Scoring Engine - model lifecycle and batch annotation.

Wraps a ScoreModel with:
1. Initialization state (the health monitor probes it, recovery re-runs it)
2. Simulated per-call latency
3. Model version bookkeeping and retraining
4. Batch annotation that never aborts on a single bad coin

Scoring is stateless: annotate_batch() always returns NEW Coin objects
with scores recomputed from raw fields. Nothing is merged across passes.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

from .scoring import (
    CoinFeatures,
    CoinScores,
    HeuristicScoreModel,
    ScoreModel,
    clamp_score,
    extract_features,
)

if TYPE_CHECKING:
    from crypto_intel.ingestion.models import Coin

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]

# Simulated latencies (seconds)
BREAKOUT_LATENCY = 0.010
INFLOW_LATENCY = 0.005
FUNDAMENTAL_LATENCY = 0.005
MODEL_LOAD_LATENCY = 2.0
RETRAIN_LATENCY = 3.0

INITIAL_VERSIONS = {
    "breakout": "1.2",
    "inflow": "1.1",
    "fundamentals": "1.0",
}


class ModelNotInitializedError(Exception):
    """Raised when predicting with a model that was never loaded."""
    pass


@dataclass
class ModelInfo:
    """Version metadata for one score kind."""

    version: str
    last_trained: datetime

    def bump_minor(self) -> None:
        """Advance 1.N -> 1.(N+1) and stamp the training time."""
        major, _, minor = self.version.partition(".")
        self.version = f"{major}.{int(minor or 0) + 1}"
        self.last_trained = datetime.now(timezone.utc)

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "last_trained": self.last_trained.isoformat(),
        }


@dataclass(frozen=True)
class ScoringFailure:
    """A coin that could not be scored in a batch."""

    symbol: str
    error: str
    error_type: str


@dataclass
class ScoredBatch:
    """Result of annotating a batch."""

    coins: list["Coin"]
    failures: list[ScoringFailure] = field(default_factory=list)

    @property
    def failure_count(self) -> int:
        return len(self.failures)


class ScoringEngine:
    """
    Scores coins with a pluggable ScoreModel.

    Usage:
        engine = ScoringEngine()
        await engine.initialize()

        scores = await engine.score(coin)
        batch = await engine.annotate_batch(coins)
        for failure in batch.failures:
            log(failure)
    """

    def __init__(
        self,
        model: Optional[ScoreModel] = None,
        sleep: Optional[Sleep] = None,
        load_latency: float = MODEL_LOAD_LATENCY,
        retrain_latency: float = RETRAIN_LATENCY,
    ) -> None:
        """
        Initialize the engine (models are NOT loaded until initialize()).

        Args:
            model: Score model, defaults to HeuristicScoreModel
            sleep: Awaitable sleep used for simulated latency
            load_latency: Simulated model load time
            retrain_latency: Simulated retraining time
        """
        self._model: ScoreModel = model or HeuristicScoreModel()
        self._sleep = sleep or asyncio.sleep
        self._load_latency = load_latency
        self._retrain_latency = retrain_latency

        self._initialized = False
        self._models: dict[str, ModelInfo] = {}

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def model(self) -> ScoreModel:
        return self._model

    async def initialize(self) -> bool:
        """
        Load the models.

        Also the recovery entry point used by the health monitor.

        Returns:
            True once the models are usable
        """
        logger.info("Initializing ML models...")
        try:
            await self._sleep(self._load_latency)

            now = datetime.now(timezone.utc)
            self._models = {
                kind: ModelInfo(version=version, last_trained=now)
                for kind, version in INITIAL_VERSIONS.items()
            }
            self._initialized = True
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Failed to initialize ML models: {e}")
            self._initialized = False
            return False

        logger.info(f"ML models initialized successfully (model={self._model.name})")
        return True

    async def shutdown(self) -> None:
        """Unload the models."""
        self._initialized = False
        logger.info("ML models unloaded")

    def _require_initialized(self, kind: str) -> None:
        if not self._initialized or kind not in self._models:
            raise ModelNotInitializedError(f"{kind.capitalize()} model not initialized")

    async def predict_breakout(self, features: CoinFeatures) -> float:
        self._require_initialized("breakout")
        await self._sleep(BREAKOUT_LATENCY)
        return clamp_score(self._model.breakout(features))

    async def predict_inflow(self, features: CoinFeatures) -> float:
        self._require_initialized("inflow")
        await self._sleep(INFLOW_LATENCY)
        return clamp_score(self._model.inflow(features))

    async def predict_fundamentals(self, features: CoinFeatures) -> float:
        self._require_initialized("fundamentals")
        await self._sleep(FUNDAMENTAL_LATENCY)
        return clamp_score(self._model.fundamental(features))

    async def score(self, coin: "Coin") -> CoinScores:
        """
        Score one coin.

        Reads only the coin passed in. Errors from malformed input or an
        uninitialized engine propagate to the caller.
        """
        features = extract_features(coin)
        return CoinScores(
            breakout=await self.predict_breakout(features),
            inflow=await self.predict_inflow(features),
            fundamental=await self.predict_fundamentals(features),
        )

    async def _score_or_default(
        self,
        coin: "Coin",
    ) -> tuple[CoinScores, Optional[ScoringFailure]]:
        try:
            return await self.score(coin), None
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Failed to process coin {coin.symbol}: {e}")
            return CoinScores.neutral(), ScoringFailure(
                symbol=coin.symbol,
                error=str(e),
                error_type=type(e).__name__,
            )

    async def annotate_batch(self, coins: list["Coin"]) -> ScoredBatch:
        """
        Score every coin in the batch concurrently.

        Output order matches input order. A coin that fails to score gets
        the neutral 0.5 scores and is reported in ScoredBatch.failures.
        """
        results = await asyncio.gather(
            *(self._score_or_default(coin) for coin in coins)
        )

        scored = []
        failures = []
        for coin, (scores, failure) in zip(coins, results):
            scored.append(coin.with_scores(
                breakout=scores.breakout,
                inflow=scores.inflow,
                fundamental=scores.fundamental,
            ))
            if failure is not None:
                failures.append(failure)

        if failures:
            logger.warning(f"Scoring: {len(failures)}/{len(coins)} coins fell back to defaults")

        return ScoredBatch(coins=scored, failures=failures)

    async def retrain_models(self, coins: Optional[list["Coin"]] = None) -> bool:
        """
        Retrain the models on the latest batch.

        Only the breakout model version moves; training itself is simulated.
        """
        sample = len(coins) if coins else 0
        logger.info(f"Retraining models with new data ({sample} samples)...")

        await self._sleep(self._retrain_latency)

        breakout = self._models.get("breakout")
        if breakout is not None:
            breakout.bump_minor()

        logger.info("Models retrained successfully")
        return True

    def get_model_info(self) -> dict:
        """Per-model version info plus the initialized flag."""
        info: dict = {
            kind: (self._models[kind].to_dict() if kind in self._models else None)
            for kind in INITIAL_VERSIONS
        }
        info["is_initialized"] = self._initialized
        return info

    @property
    def model_version(self) -> Optional[str]:
        """Version string shown on the dashboard (breakout model)."""
        breakout = self._models.get("breakout")
        return breakout.version if breakout else None

    @property
    def last_trained(self) -> Optional[datetime]:
        breakout = self._models.get("breakout")
        return breakout.last_trained if breakout else None

    def hours_since_retrain(self, now: Optional[datetime] = None) -> Optional[int]:
        """Whole hours since the breakout model was last trained."""
        if self.last_trained is None:
            return None
        now = now or datetime.now(timezone.utc)
        return int((now - self.last_trained).total_seconds() // 3600)
