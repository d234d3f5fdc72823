"""
Core Layer - Scoring, views and the refresh control loop.

This module provides:
    - ScoringEngine: Async scoring service (breakout / inflow / fundamental)
    - HeuristicScoreModel: Default rule-based ScoreModel
    - build_views / DashboardViews: Pure aggregation of a scored batch
    - RefreshPipeline: One fetch -> score -> views pass plus UI actions
    - RefreshScheduler: Countdown-driven pass trigger (single-flight)
    - BackgroundTasksManager: Refresh countdown and health check loops
    - StatusReporter: Status line with per-level styling
    - Clock / SystemClock / ManualClock: Time sources for the loops

Data Flow:
    1. RefreshScheduler countdown reaches zero
    2. MarketDataSource produces a raw batch
    3. ScoringEngine annotates each coin (failures get neutral scores)
    4. build_views() produces the dashboard projections
"""

# Scoring
from .scoring import (
    CoinFeatures,
    CoinScores,
    HeuristicScoreModel,
    ScoreModel,
    extract_features,
    score_coin,
)
from .score_service import ModelNotInitializedError, ScoredBatch, ScoringEngine, ScoringFailure

# Views
from .views import (
    DashboardViews,
    FilterMode,
    PredictionLabel,
    SortDirection,
    SystemInfo,
    build_views,
    filter_coins,
    prediction_label,
    sort_coins,
)
from .formatting import format_currency, format_large_number, format_percentage

# Control loop
from .clock import Clock, ManualClock, SystemClock
from .background_tasks import BackgroundTaskConfig, BackgroundTasksManager, RefreshScheduler
from .pipeline import RefreshPipeline
from .status import StatusLevel, StatusLine, StatusReporter

__all__ = [
    # Scoring
    "ScoringEngine",
    "ScoredBatch",
    "ScoringFailure",
    "ModelNotInitializedError",
    "ScoreModel",
    "HeuristicScoreModel",
    "CoinFeatures",
    "CoinScores",
    "extract_features",
    "score_coin",
    # Views
    "DashboardViews",
    "FilterMode",
    "SortDirection",
    "PredictionLabel",
    "SystemInfo",
    "build_views",
    "filter_coins",
    "sort_coins",
    "prediction_label",
    "format_currency",
    "format_percentage",
    "format_large_number",
    # Control loop
    "Clock",
    "SystemClock",
    "ManualClock",
    "RefreshScheduler",
    "BackgroundTasksManager",
    "BackgroundTaskConfig",
    "RefreshPipeline",
    "StatusReporter",
    "StatusLevel",
    "StatusLine",
]
