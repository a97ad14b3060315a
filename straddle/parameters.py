"""Adaptive straddle parameters derived from measured volatility."""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass
from typing import Any, Callable, Mapping, Optional

from core.errors import ValidationError
from core.market_metadata import CostProfileRegistry, normalize_instrument

logger = logging.getLogger(__name__)

OFFSET_MULTIPLIER_CAP = 4.0
STOP_LOSS_MULTIPLIER_CAP = 6.0
TRAILING_MULTIPLIER_CAP = 3.0
P95_OFFSET_BUFFER = 1.1
RECOVERY_FACTOR = 1.2
HARD_TP_FACTOR = 2.0

TIMEOUT_MIN_MINUTES = 10
TIMEOUT_MAX_MINUTES = 30
_ATR_TIMEOUT_CEILING = 25.0
_NOISE_TIMEOUT_CEILING = 5.0

CRITICAL_HOURS_UTC = frozenset({8, 9, 12, 13, 14, 16, 17})
CALM_HOURS_UTC = frozenset({2, 3, 4, 5, 6, 7, 10, 15})


def _ceil(value: float) -> int:
    # Round first so 10 * 1.1 ceils to 11, not 12.
    return math.ceil(round(value, 9))


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(value, high))


def session_risk_multiplier(hour_utc: int) -> float:
    """Stop-loss widening for the trading session an hour falls into."""
    if hour_utc in CRITICAL_HOURS_UTC:
        return 1.5
    if hour_utc in CALM_HOURS_UTC:
        return 0.7
    return 1.0


@dataclass(frozen=True)
class StraddleParameters:
    offset_pips: float
    stop_loss_pips: float
    trailing_stop_pips: float
    timeout_minutes: int
    sl_recovery_pips: float
    hard_tp_pips: float
    risk_reward_ratio: float
    spread_safety_margin_pips: float

    @classmethod
    def from_dict(cls, value: Mapping[str, Any]) -> "StraddleParameters":
        try:
            return cls(
                offset_pips=float(value["offset_pips"]),
                stop_loss_pips=float(value["stop_loss_pips"]),
                trailing_stop_pips=float(value["trailing_stop_pips"]),
                timeout_minutes=int(value["timeout_minutes"]),
                sl_recovery_pips=float(value["sl_recovery_pips"]),
                hard_tp_pips=float(value["hard_tp_pips"]),
                risk_reward_ratio=float(value["risk_reward_ratio"]),
                spread_safety_margin_pips=float(value["spread_safety_margin_pips"]),
            )
        except KeyError as exc:
            raise ValidationError(f"Missing straddle parameter: {exc.args[0]}") from exc

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class StraddleParameterService:
    """
    Derive offset, stop-loss, trailing, recovery and timeout values from ATR and noise.

    All distances are in pips. Spread and slippage come from the injected cost
    profile registry; the hour-of-day policy is injectable as well.
    """

    def __init__(
        self,
        cost_profiles: Optional[CostProfileRegistry] = None,
        hour_multiplier: Optional[Callable[[int], float]] = None,
    ):
        self.cost_profiles = cost_profiles or CostProfileRegistry()
        self.hour_multiplier = hour_multiplier or session_risk_multiplier

    def calculate_parameters(
        self,
        atr: float,
        noise_ratio: float,
        symbol: str,
        half_life_minutes: float | None = None,
        p95_wick_pips: float | None = None,
        hour_utc: int | None = None,
    ) -> StraddleParameters:
        atr = float(atr)
        noise = float(noise_ratio)
        if not math.isfinite(atr) or atr < 0:
            raise ValidationError(f"atr must be a non-negative finite number, got {atr}")
        if not math.isfinite(noise) or noise < 0:
            raise ValidationError(f"noise_ratio must be a non-negative finite number, got {noise}")
        if half_life_minutes is not None and (not math.isfinite(half_life_minutes) or half_life_minutes < 0):
            raise ValidationError(f"half_life_minutes must be non-negative, got {half_life_minutes}")
        if p95_wick_pips is not None and (not math.isfinite(p95_wick_pips) or p95_wick_pips < 0):
            raise ValidationError(f"p95_wick_pips must be non-negative, got {p95_wick_pips}")
        if hour_utc is not None and not 0 <= int(hour_utc) <= 23:
            raise ValidationError(f"hour_utc must be within 0..23, got {hour_utc}")

        profile = self.cost_profiles.get(normalize_instrument(symbol))
        spread = float(profile.spread_pips)
        slippage = float(profile.slippage_pips)

        if p95_wick_pips is not None:
            offset = _ceil(p95_wick_pips * P95_OFFSET_BUFFER) + spread + slippage
        else:
            offset_ratio = min(1.5 + noise * 0.5, OFFSET_MULTIPLIER_CAP)
            offset = _ceil(atr * offset_ratio) + spread + slippage

        sl_ratio = min(2.0 + noise * 0.8, STOP_LOSS_MULTIPLIER_CAP)
        raw_sl = _ceil(atr * sl_ratio) + slippage
        if hour_utc is not None:
            raw_sl *= float(self.hour_multiplier(int(hour_utc)))
        stop_loss = min(raw_sl, _ceil(atr * STOP_LOSS_MULTIPLIER_CAP) + slippage)

        trailing_ratio = min(0.8 + noise * 0.3, TRAILING_MULTIPLIER_CAP)
        trailing = float(_ceil(atr * trailing_ratio))

        recovery = float(_ceil(stop_loss * RECOVERY_FACTOR))
        hard_tp = float(_ceil(stop_loss * HARD_TP_FACTOR))

        timeout = self._timeout_minutes(atr, noise, half_life_minutes)
        risk_reward = hard_tp / stop_loss if stop_loss > 0 else 0.0

        params = StraddleParameters(
            offset_pips=float(offset),
            stop_loss_pips=float(stop_loss),
            trailing_stop_pips=trailing,
            timeout_minutes=timeout,
            sl_recovery_pips=recovery,
            hard_tp_pips=hard_tp,
            risk_reward_ratio=risk_reward,
            spread_safety_margin_pips=spread + slippage,
        )
        logger.debug(
            "Parameters for %s atr=%.3f noise=%.3f -> offset=%.1f sl=%.1f trail=%.1f timeout=%s",
            symbol,
            atr,
            noise,
            params.offset_pips,
            params.stop_loss_pips,
            params.trailing_stop_pips,
            params.timeout_minutes,
        )
        return params

    @staticmethod
    def _timeout_minutes(atr: float, noise: float, half_life_minutes: float | None) -> int:
        if half_life_minutes is not None:
            return int(_clamp(half_life_minutes * 2.0, TIMEOUT_MIN_MINUTES, TIMEOUT_MAX_MINUTES))
        if atr == 0:
            atr_term = _ATR_TIMEOUT_CEILING
        else:
            atr_term = _clamp(30.0 / (atr * 3.0), TIMEOUT_MIN_MINUTES, _ATR_TIMEOUT_CEILING)
        noise_term = _clamp(noise * 2.0, 0.0, _NOISE_TIMEOUT_CEILING)
        return int(_clamp(atr_term + noise_term, TIMEOUT_MIN_MINUTES, TIMEOUT_MAX_MINUTES))
