"""Volatility inputs consumed by the parameter service."""

from __future__ import annotations

import math
from typing import Sequence

import numpy as np

from core.errors import ValidationError

from .atr import true_range_series
from .models import Candle

NEUTRAL_NOISE_RATIO = 1.0


def wick_percentile_pips(candles: Sequence[Candle], point_value: float, percentile: float = 95.0) -> float | None:
    """Nearest-rank percentile of all non-zero upper and lower wicks, in pips."""
    if point_value <= 0:
        raise ValidationError(f"point_value must be positive, got {point_value}")
    if not 0 < percentile <= 100:
        raise ValidationError(f"percentile must be in (0, 100], got {percentile}")

    wicks: list[float] = []
    for candle in candles:
        if candle.upper_wick > 0:
            wicks.append(candle.upper_wick)
        if candle.lower_wick > 0:
            wicks.append(candle.lower_wick)
    if not wicks:
        return None

    ordered = np.sort(np.asarray(wicks, dtype=np.float64))
    rank = int(math.ceil(ordered.size * percentile / 100.0))
    index = rank if rank < ordered.size else ordered.size - 1
    return float(ordered[index]) / point_value


def noise_ratio(candles: Sequence[Candle], point_value: float) -> float:
    """
    Mean of true range over net close-to-close movement per candle.

    High values mean the market travels a lot without going anywhere. A candle
    whose net movement is below one point counts as neutral (1.0).
    """
    if point_value <= 0:
        raise ValidationError(f"point_value must be positive, got {point_value}")
    if not candles:
        return NEUTRAL_NOISE_RATIO

    tr = true_range_series(candles)
    ratios = np.empty(tr.size, dtype=np.float64)
    for idx, candle in enumerate(candles):
        if idx == 0:
            net_move = abs(candle.close - candle.open)
        else:
            net_move = abs(candle.close - candles[idx - 1].close)
        ratios[idx] = NEUTRAL_NOISE_RATIO if net_move < point_value else tr[idx] / net_move
    return float(ratios.mean())
