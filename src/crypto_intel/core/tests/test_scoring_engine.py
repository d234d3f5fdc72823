"""
Tests for ScoringEngine.

The engine wraps a ScoreModel with initialization state, simulated
latency, version bookkeeping and failure-tolerant batch annotation.
"""
from datetime import datetime, timedelta, timezone

import pytest

from crypto_intel.core.score_service import (
    INITIAL_VERSIONS,
    ModelInfo,
    ModelNotInitializedError,
    ScoringEngine,
)
from crypto_intel.core.scoring import CoinScores, score_coin


class TestLifecycle:
    """Tests for initialize/shutdown."""

    @pytest.mark.asyncio
    async def test_not_initialized_by_default(self, engine):
        assert not engine.is_initialized
        assert engine.model_version is None
        assert engine.hours_since_retrain() is None

    @pytest.mark.asyncio
    async def test_initialize_loads_models(self, engine):
        assert await engine.initialize() is True

        assert engine.is_initialized
        assert engine.model_version == INITIAL_VERSIONS["breakout"]

    @pytest.mark.asyncio
    async def test_initialize_waits_for_load_latency(self):
        slept = []

        async def record(seconds):
            slept.append(seconds)

        engine = ScoringEngine(sleep=record, load_latency=2.0)
        await engine.initialize()

        assert slept == [2.0]

    @pytest.mark.asyncio
    async def test_initialize_failure_returns_false(self):
        async def broken(_seconds):
            raise OSError("disk gone")

        engine = ScoringEngine(sleep=broken)

        assert await engine.initialize() is False
        assert not engine.is_initialized

    @pytest.mark.asyncio
    async def test_shutdown(self, ready_engine):
        await ready_engine.shutdown()

        assert not ready_engine.is_initialized


class TestScore:
    """Tests for single-coin scoring."""

    @pytest.mark.asyncio
    async def test_uninitialized_engine_raises(self, engine, coin_factory):
        with pytest.raises(ModelNotInitializedError):
            await engine.score(coin_factory())

    @pytest.mark.asyncio
    async def test_matches_pure_scoring(self, ready_engine, coin_factory):
        coin = coin_factory(volume_change_24h=3.0, change_24h=20.0, age=500)

        assert await ready_engine.score(coin) == score_coin(coin)

    @pytest.mark.asyncio
    async def test_malformed_input_propagates(self, ready_engine, coin_factory):
        with pytest.raises(TypeError):
            await ready_engine.score(coin_factory(price_change_1h=None))


class TestAnnotateBatch:
    """Tests for annotate_batch()."""

    @pytest.mark.asyncio
    async def test_preserves_order_and_returns_new_coins(self, ready_engine, coin_factory):
        raw = [coin_factory(s) for s in ("BTC", "ETH", "SOL")]

        batch = await ready_engine.annotate_batch(raw)

        assert [c.symbol for c in batch.coins] == ["BTC", "ETH", "SOL"]
        assert all(c.is_scored for c in batch.coins)
        assert not any(c.is_scored for c in raw)
        assert batch.failure_count == 0

    @pytest.mark.asyncio
    async def test_failing_coin_gets_neutral_scores(self, ready_engine, coin_factory):
        raw = [
            coin_factory("GOOD", volume_change_24h=3.0),
            coin_factory("BAD", change_24h=None),
        ]

        batch = await ready_engine.annotate_batch(raw)

        bad = batch.coins[1]
        assert (bad.breakout_score, bad.inflow_score, bad.fundamental_score) == (0.5, 0.5, 0.5)
        assert batch.coins[0].breakout_score == pytest.approx(0.7)
        assert len(batch.failures) == 1
        assert batch.failures[0].symbol == "BAD"
        assert batch.failures[0].error_type == "TypeError"

    @pytest.mark.asyncio
    async def test_uninitialized_engine_never_aborts(self, engine, coin_factory):
        batch = await engine.annotate_batch([coin_factory("A"), coin_factory("B")])

        assert len(batch.coins) == 2
        assert batch.failure_count == 2
        assert all(c.breakout_score == 0.5 for c in batch.coins)

    @pytest.mark.asyncio
    async def test_rescoring_ignores_previous_scores(self, ready_engine, coin_factory):
        """Scores come from raw fields only, never from a previous pass."""
        stale = coin_factory().with_scores(0.99, 0.99, 0.99)

        batch = await ready_engine.annotate_batch([stale])

        assert batch.coins[0].breakout_score == CoinScores.neutral().breakout

    @pytest.mark.asyncio
    async def test_empty_batch(self, ready_engine):
        batch = await ready_engine.annotate_batch([])

        assert batch.coins == []
        assert batch.failures == []


class TestRetrain:
    """Tests for retraining and model info."""

    @pytest.mark.asyncio
    async def test_retrain_bumps_breakout_version(self, ready_engine, coin_factory):
        assert await ready_engine.retrain_models([coin_factory()]) is True

        info = ready_engine.get_model_info()
        assert info["breakout"]["version"] == "1.3"
        assert info["inflow"]["version"] == INITIAL_VERSIONS["inflow"]
        assert ready_engine.model_version == "1.3"

    @pytest.mark.asyncio
    async def test_model_info_reports_initialized_flag(self, engine):
        info = engine.get_model_info()
        assert info["is_initialized"] is False
        assert info["breakout"] is None

        await engine.initialize()

        assert engine.get_model_info()["is_initialized"] is True

    @pytest.mark.asyncio
    async def test_hours_since_retrain(self, ready_engine):
        later = datetime.now(timezone.utc) + timedelta(hours=5, minutes=10)

        assert ready_engine.hours_since_retrain(now=later) == 5


class TestModelInfo:
    def test_bump_minor(self):
        info = ModelInfo(version="1.9", last_trained=datetime(2024, 1, 1, tzinfo=timezone.utc))

        info.bump_minor()

        assert info.version == "1.10"
        assert info.last_trained.year >= 2024
