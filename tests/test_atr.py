from datetime import timedelta

import numpy as np
import pytest

from straddle.atr import atr_ema, atr_series, atr_sma, atr_wilder, true_range, true_range_series

from conftest import candle_at


def _ranged(ranges, mid=10.0):
    """Candles whose true range equals their high-low range (close stays mid-bar)."""
    return [candle_at(i, mid, mid + r / 2, mid - r / 2, mid) for i, r in enumerate(ranges)]


def _random_candles(seed, count=200):
    rng = np.random.default_rng(seed)
    candles = []
    close = 1.1
    for i in range(count):
        open_ = close + rng.normal(0, 0.0003)
        close = open_ + rng.normal(0, 0.0005)
        high = max(open_, close) + abs(rng.normal(0, 0.0002))
        low = min(open_, close) - abs(rng.normal(0, 0.0002))
        candles.append(candle_at(i, open_, high, low, close))
    return candles


def test_true_range_uses_previous_close_gap():
    assert true_range(1.2, 1.1) == pytest.approx(0.1)
    assert true_range(1.2, 1.1, prev_close=1.0) == pytest.approx(0.2)
    assert true_range(1.2, 1.1, prev_close=1.4) == pytest.approx(0.3)


def test_true_range_series_first_candle_is_high_low():
    candles = [candle_at(0, 1.0, 1.1, 0.9, 1.0), candle_at(1, 1.5, 1.6, 1.5, 1.6)]
    tr = true_range_series(candles)
    assert tr[0] == pytest.approx(0.2)
    assert tr[1] == pytest.approx(0.6)


def test_true_range_series_ignores_previous_close_across_gap():
    candles = [candle_at(0, 1.0, 1.1, 0.9, 1.0), candle_at(90, 1.5, 1.6, 1.5, 1.6)]
    tr = true_range_series(candles, max_gap=timedelta(minutes=5))
    assert tr[1] == pytest.approx(0.1)


def test_atr_averages_skip_previous_close_across_gap():
    candles = [candle_at(0, 1.0, 1.1, 0.9, 1.0), candle_at(90, 1.5, 1.6, 1.5, 1.6)]
    gap = timedelta(minutes=5)

    assert atr_sma(candles, 2) == pytest.approx(0.4)
    assert atr_sma(candles, 2, max_gap=gap) == pytest.approx(0.15)
    assert atr_wilder(candles, 1, max_gap=gap) == pytest.approx(0.1)
    np.testing.assert_allclose(atr_series(candles, 2, max_gap=gap), [0.2, 0.15])


def test_empty_input_gives_zero():
    assert atr_sma([], 14) == 0.0
    assert atr_ema([], 14) == 0.0
    assert atr_wilder([], 14) == 0.0
    assert atr_series([], 14).size == 0


def test_sma_uses_last_period_values_and_clamps_period():
    candles = _ranged([1.0, 2.0, 3.0, 4.0])
    assert atr_sma(candles, 2) == pytest.approx(3.5)
    assert atr_sma(candles, 50) == pytest.approx(2.5)
    assert atr_sma(candles, 0) == pytest.approx(4.0)


def test_ema_and_wilder_seed_with_sma():
    candles = _ranged([1.0, 2.0, 3.0, 4.0])
    assert atr_ema(candles, 2) == pytest.approx(3.5)
    assert atr_wilder(candles, 2) == pytest.approx(3.125)


def test_atr_series_is_rolling_mean():
    candles = _ranged([1.0, 2.0, 3.0, 4.0])
    np.testing.assert_allclose(atr_series(candles, 2), [1.0, 1.5, 2.5, 3.5])


@pytest.mark.parametrize("seed", [1, 7, 42])
@pytest.mark.parametrize("period", [1, 5, 14, 500])
def test_atr_bounded_by_max_true_range(seed, period):
    candles = _random_candles(seed)
    max_tr = float(true_range_series(candles).max())
    for value in (atr_sma(candles, period), atr_ema(candles, period), atr_wilder(candles, period)):
        assert 0.0 <= value <= max_tr + 1e-12
