"""
Aggregation & view pipeline.

Pure, synchronous transformations from a scored coin batch to the
read-only projections the dashboard renders:

    - filtered set (all / gainers / losers)
    - performance view (top 10 gainers + bottom 10 losers)
    - predictions view (active sort, top 10, labelled)
    - money-flow view (top 10 by inflow, paired inflow/outflow series)
    - dominance view (from the data source history)
    - summary counters and system info

Nothing in here does I/O or mutates its inputs.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Optional, Sequence

from crypto_intel.ingestion.models import COIN_WIRE_FIELDS, WIRE_TO_ATTRIBUTE, Coin, HistoricalSnapshot

from .formatting import format_currency, format_large_number, format_percentage

logger = logging.getLogger(__name__)

MAX_ROWS = 10

# Summary counter thresholds
BREAKOUT_THRESHOLD = 0.7
INFLOW_THRESHOLD = 0.7

DEFAULT_SORT_FIELD = "breakout_score"


class FilterMode(str, Enum):
    """Active coin filter."""

    ALL = "all"
    GAINERS = "gainers"
    LOSERS = "losers"


class SortDirection(str, Enum):
    """Sort direction."""

    ASC = "asc"
    DESC = "desc"

    def toggled(self) -> "SortDirection":
        return SortDirection.DESC if self is SortDirection.ASC else SortDirection.ASC


class PredictionLabel(str, Enum):
    """Categorical label shown in the predictions table."""

    STRONG_BUY = "Strong Buy"
    BUY = "Buy"
    SELL = "Sell"
    NEUTRAL = "Neutral"

    @property
    def sentiment(self) -> str:
        """CSS class for the label."""
        if self in (PredictionLabel.STRONG_BUY, PredictionLabel.BUY):
            return "positive"
        if self is PredictionLabel.SELL:
            return "negative"
        return "neutral"


def resolve_sort_field(name: str) -> str:
    """
    Map a camelCase wire name or snake_case attribute to an attribute.

    Raises:
        ValueError: If the field is not a Coin field
    """
    if name in COIN_WIRE_FIELDS:
        return name
    if name in WIRE_TO_ATTRIBUTE:
        return WIRE_TO_ATTRIBUTE[name]
    raise ValueError(f"Unknown sort field: {name}")


def filter_coins(coins: Iterable[Coin], mode: FilterMode | str) -> list[Coin]:
    """Apply the active filter. Coins with no 24h change only pass ALL."""
    mode = FilterMode(mode)
    if mode is FilterMode.GAINERS:
        return [c for c in coins if c.change_24h is not None and c.change_24h > 0]
    if mode is FilterMode.LOSERS:
        return [c for c in coins if c.change_24h is not None and c.change_24h < 0]
    return list(coins)


def sort_coins(
    coins: Iterable[Any],
    field_name: str,
    direction: SortDirection | str = SortDirection.DESC,
) -> list[Any]:
    """
    Stable sort by a field.

    Missing values (None or absent attribute) always sort last, in both
    directions. Equal keys keep their incoming order, so sorting an
    already-sorted list is a no-op.
    """
    direction = SortDirection(direction)
    attr = WIRE_TO_ATTRIBUTE.get(field_name, field_name)
    descending = direction is SortDirection.DESC

    def key(coin: Any) -> tuple:
        value = getattr(coin, attr, None)
        missing = value is None
        # reverse=True flips the flag too, so present values still lead
        if descending:
            return (0, 0) if missing else (1, value)
        return (1, 0) if missing else (0, value)

    return sorted(coins, key=key, reverse=descending)


def prediction_label(breakout: Optional[float], inflow: Optional[float]) -> PredictionLabel:
    """Label a coin from its breakout and inflow scores."""
    breakout = 0.5 if breakout is None else breakout
    inflow = 0.5 if inflow is None else inflow

    if breakout > 0.7 and inflow > 0.6:
        return PredictionLabel.STRONG_BUY
    if breakout > 0.6:
        return PredictionLabel.BUY
    if breakout < 0.4:
        return PredictionLabel.SELL
    return PredictionLabel.NEUTRAL


def breakout_color(breakout: float) -> str:
    """Progress bar colour for a breakout score."""
    if breakout > 0.7:
        return "#4cc9f0"
    if breakout > 0.5:
        return "#fca311"
    return "#f72585"


# =============================================================================
# View rows
# =============================================================================


@dataclass(frozen=True)
class PerformanceRow:
    symbol: str
    name: str
    display_name: str
    price: float
    change_24h: Optional[float]
    volume: float
    price_display: str
    change_display: str
    volume_display: str
    sentiment: str

    @classmethod
    def from_coin(cls, coin: Coin) -> "PerformanceRow":
        change = coin.change_24h
        return cls(
            symbol=coin.symbol,
            name=coin.name,
            display_name=coin.display_name,
            price=coin.price,
            change_24h=change,
            volume=coin.volume,
            price_display=format_currency(coin.price),
            change_display=format_percentage(change / 100) if change is not None else "-",
            volume_display=f"${format_large_number(coin.volume)}",
            sentiment="positive" if change is not None and change >= 0 else "negative",
        )


@dataclass(frozen=True)
class PredictionRow:
    symbol: str
    name: str
    price: float
    breakout_score: float
    inflow_score: float
    fundamental_score: float
    label: PredictionLabel
    price_display: str
    breakout_display: str
    inflow_display: str
    breakout_color: str

    @property
    def sentiment(self) -> str:
        return self.label.sentiment

    @classmethod
    def from_coin(cls, coin: Coin) -> "PredictionRow":
        breakout = coin.breakout_score if coin.breakout_score is not None else 0.5
        inflow = coin.inflow_score if coin.inflow_score is not None else 0.5
        fundamental = coin.fundamental_score if coin.fundamental_score is not None else 0.5
        return cls(
            symbol=coin.symbol,
            name=coin.name,
            price=coin.price,
            breakout_score=breakout,
            inflow_score=inflow,
            fundamental_score=fundamental,
            label=prediction_label(breakout, inflow),
            price_display=format_currency(coin.price),
            breakout_display=format_percentage(breakout),
            inflow_display=format_percentage(inflow - 0.5),
            breakout_color=breakout_color(breakout),
        )


@dataclass(frozen=True)
class MoneyFlowSeries:
    """Bar chart data: inflow vs outflow per coin (0-100)."""

    labels: tuple[str, ...] = ()
    inflow: tuple[float, ...] = ()
    outflow: tuple[float, ...] = ()


@dataclass(frozen=True)
class DominanceSeries:
    """Line chart data: BTC dominance vs altcoin share over time."""

    labels: tuple[str, ...] = ()
    btc_dominance: tuple[float, ...] = ()
    altcoin_share: tuple[float, ...] = ()


@dataclass(frozen=True)
class SummaryCounters:
    breakout_count: int = 0
    gainers_count: int = 0
    inflow_count: int = 0
    total_count: int = 0


@dataclass(frozen=True)
class SystemInfo:
    model_version: Optional[str] = None
    hours_since_retrain: Optional[int] = None


@dataclass(frozen=True)
class DashboardViews:
    """Everything the rendering layer needs for one refresh."""

    filter_mode: FilterMode
    sort_field: str
    sort_direction: SortDirection
    performance: tuple[PerformanceRow, ...]
    predictions: tuple[PredictionRow, ...]
    money_flow: MoneyFlowSeries
    dominance: DominanceSeries
    counters: SummaryCounters
    system: SystemInfo
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "filter": self.filter_mode.value,
            "sort": {
                "field": COIN_WIRE_FIELDS.get(self.sort_field, self.sort_field),
                "direction": self.sort_direction.value,
            },
            "performance": [
                {
                    "symbol": r.symbol,
                    "name": r.name,
                    "displayName": r.display_name,
                    "price": r.price,
                    "change24h": r.change_24h,
                    "volume": r.volume,
                    "priceDisplay": r.price_display,
                    "changeDisplay": r.change_display,
                    "volumeDisplay": r.volume_display,
                    "class": r.sentiment,
                }
                for r in self.performance
            ],
            "predictions": [
                {
                    "symbol": r.symbol,
                    "name": r.name,
                    "price": r.price,
                    "breakoutScore": r.breakout_score,
                    "inflowScore": r.inflow_score,
                    "fundamentalScore": r.fundamental_score,
                    "prediction": r.label.value,
                    "class": r.sentiment,
                    "priceDisplay": r.price_display,
                    "breakoutDisplay": r.breakout_display,
                    "inflowDisplay": r.inflow_display,
                    "breakoutColor": r.breakout_color,
                }
                for r in self.predictions
            ],
            "moneyFlow": {
                "labels": list(self.money_flow.labels),
                "inflow": list(self.money_flow.inflow),
                "outflow": list(self.money_flow.outflow),
            },
            "dominance": {
                "labels": list(self.dominance.labels),
                "btcDominance": list(self.dominance.btc_dominance),
                "altcoinShare": list(self.dominance.altcoin_share),
            },
            "counters": {
                "breakout": self.counters.breakout_count,
                "gainers": self.counters.gainers_count,
                "inflow": self.counters.inflow_count,
                "total": self.counters.total_count,
            },
            "system": {
                "modelVersion": self.system.model_version,
                "hoursSinceRetrain": self.system.hours_since_retrain,
            },
            "generatedAt": self.generated_at.isoformat(),
        }


# =============================================================================
# View builders
# =============================================================================


def build_performance_view(coins: Sequence[Coin], max_rows: int = MAX_ROWS) -> tuple[PerformanceRow, ...]:
    """
    Top gainers followed by the biggest losers.

    The full batch is sorted by 24h change; the display is the first
    max_rows followed by the last max_rows reversed, so the steepest
    drop leads the loser block. Small batches may show a coin twice.
    """
    ranked = sort_coins(coins, "change_24h", SortDirection.DESC)
    rows = max(max_rows, 0)
    top = ranked[:rows]
    bottom = list(reversed(ranked[-rows:])) if rows else []
    return tuple(PerformanceRow.from_coin(c) for c in top + bottom)


def build_predictions_view(
    filtered: Sequence[Coin],
    sort_field: str = DEFAULT_SORT_FIELD,
    direction: SortDirection | str = SortDirection.DESC,
    max_rows: int = MAX_ROWS,
) -> tuple[PredictionRow, ...]:
    ranked = sort_coins(filtered, sort_field, direction)
    return tuple(PredictionRow.from_coin(c) for c in ranked[:max(max_rows, 0)])


def build_money_flow_view(filtered: Sequence[Coin], max_rows: int = MAX_ROWS) -> MoneyFlowSeries:
    """Top coins by inflow score; outflow is 1 - inflow (display only)."""
    top = sort_coins(filtered, "inflow_score", SortDirection.DESC)[:max(max_rows, 0)]
    inflow = [c.inflow_score if c.inflow_score is not None else 0.0 for c in top]
    return MoneyFlowSeries(
        labels=tuple(c.symbol for c in top),
        inflow=tuple(v * 100 for v in inflow),
        outflow=tuple((1 - v) * 100 for v in inflow),
    )


def build_dominance_view(history: Sequence[HistoricalSnapshot]) -> DominanceSeries:
    return DominanceSeries(
        labels=tuple(s.timestamp.strftime("%H:%M:%S") for s in history),
        btc_dominance=tuple(round(s.btc_dominance, 2) for s in history),
        altcoin_share=tuple(round(s.altcoin_share, 2) for s in history),
    )


def build_counters(coins: Sequence[Coin], filtered: Sequence[Coin]) -> SummaryCounters:
    return SummaryCounters(
        breakout_count=sum(
            1 for c in filtered
            if c.breakout_score is not None and c.breakout_score > BREAKOUT_THRESHOLD
        ),
        gainers_count=sum(1 for c in coins if c.change_24h is not None and c.change_24h > 0),
        inflow_count=sum(
            1 for c in filtered
            if c.inflow_score is not None and c.inflow_score > INFLOW_THRESHOLD
        ),
        total_count=len(filtered),
    )


def build_views(
    coins: Sequence[Coin],
    filter_mode: FilterMode | str = FilterMode.ALL,
    sort_field: str = DEFAULT_SORT_FIELD,
    sort_direction: SortDirection | str = SortDirection.DESC,
    history: Sequence[HistoricalSnapshot] = (),
    system: Optional[SystemInfo] = None,
    max_rows: int = MAX_ROWS,
) -> DashboardViews:
    """Compute every dashboard view from one scored batch."""
    filter_mode = FilterMode(filter_mode)
    sort_direction = SortDirection(sort_direction)
    sort_field = resolve_sort_field(sort_field)

    filtered = filter_coins(coins, filter_mode)

    return DashboardViews(
        filter_mode=filter_mode,
        sort_field=sort_field,
        sort_direction=sort_direction,
        performance=build_performance_view(coins, max_rows),
        predictions=build_predictions_view(filtered, sort_field, sort_direction, max_rows),
        money_flow=build_money_flow_view(filtered, max_rows),
        dominance=build_dominance_view(history),
        counters=build_counters(coins, filtered),
        system=system or SystemInfo(),
    )
