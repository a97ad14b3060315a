"""Core utilities shared by the straddle backtesting packages."""

from .errors import (
    DataSourceError,
    InsufficientDataError,
    NoEventsError,
    StraddleError,
    ValidationError,
)
from .logging_setup import setup_logging, teardown_logging
from .market_metadata import (
    INSTRUMENT_ALIASES,
    SUPPORTED_TIMEFRAMES,
    TIMEFRAME_ALIASES,
    CostProfile,
    CostProfileRegistry,
    format_price,
    get_instrument_class,
    get_pip_unit,
    get_pip_value,
    get_price_precision,
    normalize_instrument,
    normalize_timeframe,
    resolve_instrument_alias,
    timeframe_duration,
)

__all__ = [
    "StraddleError",
    "ValidationError",
    "InsufficientDataError",
    "NoEventsError",
    "DataSourceError",
    "setup_logging",
    "teardown_logging",
    "INSTRUMENT_ALIASES",
    "TIMEFRAME_ALIASES",
    "SUPPORTED_TIMEFRAMES",
    "CostProfile",
    "CostProfileRegistry",
    "resolve_instrument_alias",
    "normalize_instrument",
    "normalize_timeframe",
    "timeframe_duration",
    "get_price_precision",
    "get_instrument_class",
    "get_pip_value",
    "get_pip_unit",
    "format_price",
]
