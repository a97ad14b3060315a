"""Derive a backtest config from historical candles via the parameter service."""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timedelta
from itertools import groupby
from typing import Sequence

from core.errors import InsufficientDataError
from core.market_metadata import timeframe_duration

from .atr import atr_sma
from .duration import MIN_DECAY_SAMPLES, analyze_event_windows
from .models import BacktestConfig, Candle
from .parameters import StraddleParameterService, StraddleParameters
from .volatility import noise_ratio, wick_percentile_pips

logger = logging.getLogger(__name__)

# Post-release span measured for volatility decay on each history day.
DECAY_WINDOW = timedelta(minutes=60)


def event_slot(event_times: Sequence[datetime]) -> tuple[int, int] | None:
    """Most common UTC (hour, minute) among the event times."""
    if not event_times:
        return None
    return Counter((when.hour, when.minute) for when in event_times).most_common(1)[0][0]


def decay_windows(candles: Sequence[Candle], slot: tuple[int, int] | None) -> list[list[Candle]]:
    """
    Split time-ordered candles into one window per UTC day.

    With a slot, each window keeps the candles in ``[slot, slot + DECAY_WINDOW)``
    of that day; without one, the whole day is used. Days with fewer than
    ``MIN_DECAY_SAMPLES`` candles are dropped.
    """
    windows: list[list[Candle]] = []
    for _day, group in groupby(candles, key=lambda item: item.time_utc.date()):
        day_candles = list(group)
        if slot is not None:
            start = day_candles[0].time_utc.replace(hour=slot[0], minute=slot[1], second=0, microsecond=0)
            day_candles = [c for c in day_candles if start <= c.time_utc < start + DECAY_WINDOW]
        if len(day_candles) >= MIN_DECAY_SAMPLES:
            windows.append(day_candles)
    return windows


def _half_life_minutes(
    candles: Sequence[Candle],
    slot: tuple[int, int] | None,
    max_gap: timedelta,
) -> float | None:
    windows = decay_windows(candles, slot)
    try:
        duration = analyze_event_windows(windows, period=1, max_gap=max_gap)
    except InsufficientDataError:
        logger.info("No day with %s+ candles in the decay window, timeout uses ATR and noise", MIN_DECAY_SAMPLES)
        return None
    logger.debug(
        "Half-life %s min over %s day windows (decay %s)",
        duration.volatility_half_life_minutes,
        duration.sample_size,
        duration.decay_speed.value,
    )
    return float(duration.volatility_half_life_minutes)


def calibrate_config(
    history: Sequence[Candle],
    symbol: str,
    point_value: float,
    service: StraddleParameterService | None = None,
    *,
    event_times: Sequence[datetime] | None = None,
    atr_period: int = 14,
    use_wick_percentile: bool = True,
    use_half_life: bool = True,
    trailing_refresh_seconds: int = 0,
    timeframe: str = "M1",
) -> tuple[StraddleParameters, BacktestConfig]:
    """
    Measure volatility over ``history`` and turn it into parameters and a config.

    ``event_times`` fix the hour fed to the session policy and the daily window
    the half-life is measured in. Without them no hour adjustment is made and
    the half-life is taken over whole days.

    The config is built with ``BacktestConfig.from_parameters`` so the simulator
    sees the computed values unchanged.
    """
    if not history:
        raise InsufficientDataError(f"no history candles to calibrate {symbol}")
    service = service or StraddleParameterService()
    ordered = sorted(history, key=lambda item: item.time_utc)
    max_gap = timeframe_duration(timeframe)
    slot = event_slot(event_times or [])

    atr_pips = atr_sma(ordered, atr_period, max_gap=max_gap) / point_value
    noise = noise_ratio(ordered, point_value)
    p95 = wick_percentile_pips(ordered, point_value) if use_wick_percentile else None
    half = _half_life_minutes(ordered, slot, max_gap) if use_half_life else None
    hour = slot[0] if slot is not None else None

    params = service.calculate_parameters(
        atr_pips,
        noise,
        symbol,
        half_life_minutes=half,
        p95_wick_pips=p95,
        hour_utc=hour,
    )
    profile = service.cost_profiles.get(symbol)
    config = BacktestConfig.from_parameters(
        params,
        point_value,
        spread_pips=profile.spread_pips,
        slippage_pips=profile.slippage_pips,
        atr_period=atr_period,
        trailing_refresh_seconds=trailing_refresh_seconds,
        timeframe=timeframe,
    )
    logger.info(
        "Calibrated %s from %s candles: atr=%.2f noise=%.2f p95=%s half_life=%s hour=%s",
        symbol,
        len(ordered),
        atr_pips,
        noise,
        "n/a" if p95 is None else f"{p95:.1f}",
        "n/a" if half is None else f"{half:.0f}",
        "n/a" if hour is None else hour,
    )
    return params, config
