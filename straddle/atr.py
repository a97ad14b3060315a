"""True Range and Average True Range calculations over candle sequences."""

from __future__ import annotations

from datetime import timedelta
from typing import Sequence

import numpy as np

from .models import Candle


def true_range(high: float, low: float, prev_close: float | None = None) -> float:
    """Greatest of high-low, |high-prev_close| and |low-prev_close|."""
    hl = float(high) - float(low)
    if prev_close is None:
        return hl
    return max(hl, abs(float(high) - prev_close), abs(float(low) - prev_close))


def true_range_series(candles: Sequence[Candle], max_gap: timedelta | None = None) -> np.ndarray:
    """
    Per-candle true range.

    The first candle, and any candle separated from its predecessor by more than
    ``max_gap``, has no usable previous close and falls back to high - low.
    """
    if not candles:
        return np.asarray([], dtype=np.float64)

    high = np.fromiter((c.high for c in candles), dtype=np.float64, count=len(candles))
    low = np.fromiter((c.low for c in candles), dtype=np.float64, count=len(candles))
    close = np.fromiter((c.close for c in candles), dtype=np.float64, count=len(candles))

    hl = high - low
    if len(candles) == 1:
        return hl

    prev_close = close[:-1]
    tr = hl.copy()
    tr[1:] = np.maximum.reduce([hl[1:], np.abs(high[1:] - prev_close), np.abs(low[1:] - prev_close)])

    if max_gap is not None:
        for idx in range(1, len(candles)):
            if candles[idx].time_utc - candles[idx - 1].time_utc > max_gap:
                tr[idx] = hl[idx]
    return tr


def _clamp_period(period: int, size: int) -> int:
    return max(1, min(int(period), size))


def atr_sma(candles: Sequence[Candle], period: int, max_gap: timedelta | None = None) -> float:
    """Mean of the last ``period`` true ranges (all of them when fewer exist)."""
    tr = true_range_series(candles, max_gap)
    if tr.size == 0:
        return 0.0
    window = _clamp_period(period, tr.size)
    return float(tr[-window:].mean())


def atr_ema(candles: Sequence[Candle], period: int, max_gap: timedelta | None = None) -> float:
    """EMA of true range seeded with the SMA of the first ``period`` values."""
    tr = true_range_series(candles, max_gap)
    if tr.size == 0:
        return 0.0
    window = _clamp_period(period, tr.size)
    atr = float(tr[:window].mean())
    multiplier = 2.0 / (window + 1.0)
    for value in tr[window:]:
        atr = (float(value) - atr) * multiplier + atr
    return atr


def atr_wilder(candles: Sequence[Candle], period: int, max_gap: timedelta | None = None) -> float:
    """Wilder smoothing: atr = atr*(p-1)/p + tr/p after an SMA seed."""
    tr = true_range_series(candles, max_gap)
    if tr.size == 0:
        return 0.0
    window = _clamp_period(period, tr.size)
    atr = float(tr[:window].mean())
    for value in tr[window:]:
        atr = (atr * (window - 1) + float(value)) / window
    return atr


def atr_series(candles: Sequence[Candle], period: int, max_gap: timedelta | None = None) -> np.ndarray:
    """Rolling-SMA ATR at every index; early values average what is available."""
    tr = true_range_series(candles, max_gap)
    if tr.size == 0:
        return tr
    window = max(1, int(period))
    cumulative = np.concatenate(([0.0], np.cumsum(tr)))
    idx = np.arange(tr.size)
    start = np.maximum(0, idx + 1 - window)
    return (cumulative[idx + 1] - cumulative[start]) / (idx + 1 - start)
