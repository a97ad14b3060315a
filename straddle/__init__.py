"""Event straddle backtester."""

from .atr import atr_ema, atr_series, atr_sma, atr_wilder, true_range, true_range_series
from .calibration import calibrate_config
from .candle_loader import CandleLoader, CsvCandleLoader, InMemoryCandleLoader
from .duration import (
    DecaySpeed,
    VolatilityDuration,
    analyze_event_windows,
    analyze_series,
    classify_decay_speed,
    decay_rate,
    half_life,
    peak_duration,
    recommend_timeout,
)
from .engine import BacktestEngine, run_backtest, summarize
from .models import (
    BacktestConfig,
    BacktestResult,
    CalendarEvent,
    Candle,
    Direction,
    SpreadStats,
    TradeOutcome,
    TradeResult,
)
from .parameters import StraddleParameterService, StraddleParameters, session_risk_multiplier
from .position import ExitReason, Position, StraddleState
from .reporting import build_summary, trades_frame, write_backtest_artifacts
from .run_config import AdaptiveConfig, BacktestRunConfig
from .simulator import EventSimulator, simulate
from .volatility import noise_ratio, wick_percentile_pips

__all__ = [
    "true_range",
    "true_range_series",
    "atr_sma",
    "atr_ema",
    "atr_wilder",
    "atr_series",
    "calibrate_config",
    "CandleLoader",
    "CsvCandleLoader",
    "InMemoryCandleLoader",
    "DecaySpeed",
    "VolatilityDuration",
    "peak_duration",
    "half_life",
    "decay_rate",
    "classify_decay_speed",
    "recommend_timeout",
    "analyze_series",
    "analyze_event_windows",
    "BacktestEngine",
    "run_backtest",
    "summarize",
    "BacktestConfig",
    "BacktestResult",
    "CalendarEvent",
    "Candle",
    "Direction",
    "SpreadStats",
    "TradeOutcome",
    "TradeResult",
    "StraddleParameterService",
    "StraddleParameters",
    "session_risk_multiplier",
    "ExitReason",
    "Position",
    "StraddleState",
    "build_summary",
    "trades_frame",
    "write_backtest_artifacts",
    "AdaptiveConfig",
    "BacktestRunConfig",
    "EventSimulator",
    "simulate",
    "noise_ratio",
    "wick_percentile_pips",
]
