"""Shared candle, event and config builders for the straddle test-suite."""

from datetime import datetime, timedelta, timezone

import pytest

from core.logging_setup import teardown_logging
from straddle.models import BacktestConfig, CalendarEvent, Candle

PIP = 0.0001
EVENT_TIME = datetime(2024, 3, 8, 13, 30, tzinfo=timezone.utc)


def candle_at(minute, open_, high, low, close, base=EVENT_TIME, symbol="EURUSD", **kwargs):
    """Candle ``minute`` minutes after ``base`` (negative for pre-event bars)."""
    return Candle(
        symbol=symbol,
        time_utc=base + timedelta(minutes=minute),
        open=open_,
        high=high,
        low=low,
        close=close,
        volume=kwargs.pop("volume", 100.0),
        **kwargs,
    )


def flat_candles(start_minute, count, price=1.1000, base=EVENT_TIME, symbol="EURUSD"):
    """Quiet bars with a 0.2 pip range around ``price``."""
    return [
        candle_at(minute, price, price + 0.1 * PIP, price - 0.1 * PIP, price, base=base, symbol=symbol)
        for minute in range(start_minute, start_minute + count)
    ]


def rally_window(base, symbol="EURUSD"):
    """
    60 one-minute bars from base-5 to base+54: flat, then a breakout above
    1.1005 at the event bar followed by a steady 3 pip/minute rally.
    """
    candles = flat_candles(-5, 5, base=base, symbol=symbol)
    candles.append(candle_at(0, 1.1000, 1.1008, 1.0998, 1.1007, base=base, symbol=symbol))
    for k in range(1, 55):
        open_ = 1.1007 + (k - 1) * 0.0003
        close = open_ + 0.0003
        candles.append(candle_at(k, open_, close + 0.0001, open_ - 0.0001, close, base=base, symbol=symbol))
    return candles


@pytest.fixture
def event():
    return CalendarEvent(symbol="USD", event_time=EVENT_TIME, impact="HIGH", description="Non-Farm Payrolls")


@pytest.fixture
def base_config():
    """10 pip stop, 2:1 target, no costs, no trailing, both legs at the reference open."""
    return BacktestConfig(
        stop_loss_pips=10.0,
        tp_rr=2.0,
        trailing_atr_coef=0.0,
        atr_period=14,
        trailing_refresh_seconds=0,
        timeout_minutes=30,
        sl_recovery_pips=None,
        spread_pips=0.0,
        slippage_pips=0.0,
        point_value=PIP,
    )


@pytest.fixture
def clean_root_logger():
    yield
    teardown_logging()
