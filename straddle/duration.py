"""Volatility duration and decay analysis over per-minute volatility series."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import timedelta
from enum import Enum
from typing import Any, Sequence

import numpy as np

from core.errors import InsufficientDataError

from .atr import atr_series
from .models import Candle

logger = logging.getLogger(__name__)

PEAK_THRESHOLD = 0.8
HALF_LIFE_THRESHOLD = 0.5
MIN_DECAY_SAMPLES = 3


class DecaySpeed(str, Enum):
    FAST = "FAST"
    MEDIUM = "MEDIUM"
    SLOW = "SLOW"


def _as_array(values: Sequence[float]) -> np.ndarray:
    return np.asarray(list(values), dtype=np.float64)


def peak_duration(values: Sequence[float]) -> int:
    """Number of samples above 80% of the series maximum."""
    arr = _as_array(values)
    if arr.size == 0:
        return 0
    return int(np.count_nonzero(arr > PEAK_THRESHOLD * arr.max()))


def half_life(values: Sequence[float]) -> int:
    """
    Samples after the first peak until the value drops below half the peak.

    If it never does, the whole remainder after the peak is returned.
    """
    arr = _as_array(values)
    if arr.size == 0:
        return 0
    peak_idx = int(np.argmax(arr))
    post_peak = arr[peak_idx + 1:]
    below = np.flatnonzero(post_peak < HALF_LIFE_THRESHOLD * arr[peak_idx])
    if below.size == 0:
        return int(post_peak.size)
    return int(below[0]) + 1


def decay_rate(values: Sequence[float]) -> float:
    """Peak value divided by the half-life in samples (0 when the peak is last)."""
    arr = _as_array(values)
    if arr.size < MIN_DECAY_SAMPLES:
        raise InsufficientDataError(f"decay rate needs at least {MIN_DECAY_SAMPLES} values, got {arr.size}")
    peak = float(arr.max())
    if peak <= 0:
        return 0.0
    minutes_to_half = half_life(arr)
    if minutes_to_half == 0:
        return 0.0
    return peak / minutes_to_half


def classify_decay_speed(rate: float) -> DecaySpeed:
    if rate > 3.0:
        return DecaySpeed.FAST
    if rate > 1.5:
        return DecaySpeed.MEDIUM
    return DecaySpeed.SLOW


def recommend_timeout(rate: float) -> int:
    """Suggested trade timeout in minutes for a decay rate."""
    return {DecaySpeed.FAST: 18, DecaySpeed.MEDIUM: 25, DecaySpeed.SLOW: 32}[classify_decay_speed(rate)]


def confidence_score(sample_size: int) -> int:
    if sample_size >= 100:
        return 100
    if sample_size >= 50:
        return 90
    if sample_size >= 30:
        return 75
    if sample_size >= 15:
        return 60
    return 50


@dataclass(frozen=True)
class VolatilityDuration:
    peak_duration_minutes: int
    volatility_half_life_minutes: int
    recommended_trade_expiration_minutes: int
    sample_size: int
    confidence_score: int
    decay_rate: float
    decay_speed: DecaySpeed
    recommended_timeout_minutes: int

    @classmethod
    def build(cls, peak: int, half: int, sample_size: int, rate: float) -> "VolatilityDuration":
        return cls(
            peak_duration_minutes=int(peak),
            volatility_half_life_minutes=int(half),
            recommended_trade_expiration_minutes=max(int(peak), int(half) * 2),
            sample_size=int(sample_size),
            confidence_score=confidence_score(sample_size),
            decay_rate=float(rate),
            decay_speed=classify_decay_speed(rate),
            recommended_timeout_minutes=recommend_timeout(rate),
        )

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["decay_speed"] = self.decay_speed.value
        return payload


def analyze_series(values: Sequence[float], sample_size: int = 1) -> VolatilityDuration:
    arr = _as_array(values)
    if arr.size == 0:
        raise InsufficientDataError("cannot analyze an empty volatility series")
    rate = decay_rate(arr) if arr.size >= MIN_DECAY_SAMPLES else 0.0
    return VolatilityDuration.build(peak_duration(arr), half_life(arr), sample_size, rate)


def analyze_event_windows(
    windows: Sequence[Sequence[Candle]],
    period: int = 14,
    max_gap: timedelta | None = None,
) -> VolatilityDuration:
    """Average the per-minute ATR profile across event windows and analyze it."""
    profiles = [atr_series(window, period, max_gap=max_gap) for window in windows if window]
    if not profiles:
        raise InsufficientDataError("no event window contains candles")
    length = min(profile.size for profile in profiles)
    stacked = np.vstack([profile[:length] for profile in profiles])
    averaged = stacked.mean(axis=0)
    logger.debug("Averaged %s event windows over %s samples", len(profiles), length)
    return analyze_series(averaged, sample_size=len(profiles))
