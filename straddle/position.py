"""Per-leg position state machine: excursions, take-profit, break-even, trailing, stop-loss."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from core.market_metadata import format_price

from .models import BacktestConfig, Candle, Direction, iso_utc

logger = logging.getLogger(__name__)

_PRICE_EPSILON = 1e-12


class StraddleState(str, Enum):
    NOT_TRIGGERED = "NOT_TRIGGERED"
    LONG_OPEN = "LONG_OPEN"
    SHORT_OPEN = "SHORT_OPEN"
    WHIPSAW = "WHIPSAW"
    CLOSED = "CLOSED"


class ExitReason(str, Enum):
    TAKE_PROFIT = "TAKE_PROFIT"
    STOP_LOSS = "STOP_LOSS"
    TIMEOUT = "TIMEOUT"


@dataclass
class Position:
    """
    One straddle leg. Prices are absolute; spread and slippage are already
    converted to price units.
    """

    direction: Direction
    symbol: str
    entry_price: float
    entry_time: datetime
    stop_loss: float
    take_profit: float
    point_value: float
    spread: float = 0.0
    slippage: float = 0.0
    highest: float = 0.0
    lowest: float = 0.0
    mfe: float = 0.0
    mae: float = 0.0
    last_trail_update: datetime | None = None
    break_even_active: bool = False
    exit_price: float | None = None
    exit_time: datetime | None = None
    exit_reason: ExitReason | None = None
    logs: list[str] = field(default_factory=list)

    @classmethod
    def open(
        cls,
        direction: Direction,
        symbol: str,
        entry_price: float,
        entry_time: datetime,
        config: BacktestConfig,
    ) -> "Position":
        pv = float(config.point_value)
        sl_distance = float(config.stop_loss_pips) * pv
        tp_distance = float(config.stop_loss_pips) * float(config.tp_rr) * pv
        sign = direction.sign
        position = cls(
            direction=direction,
            symbol=symbol,
            entry_price=float(entry_price),
            entry_time=entry_time,
            stop_loss=float(entry_price) - sign * sl_distance,
            take_profit=float(entry_price) + sign * tp_distance,
            point_value=pv,
            spread=float(config.spread_pips) * pv,
            slippage=float(config.slippage_pips) * pv,
            highest=float(entry_price),
            lowest=float(entry_price),
        )
        position._log(
            entry_time,
            f"{direction.value} entry at {position._price(position.entry_price)} "
            f"sl={position._price(position.stop_loss)} tp={position._price(position.take_profit)}",
        )
        return position

    @property
    def is_open(self) -> bool:
        return self.exit_price is None

    @property
    def is_long(self) -> bool:
        return self.direction is Direction.LONG

    @property
    def pips(self) -> float:
        if self.exit_price is None:
            return 0.0
        return (self.exit_price - self.entry_price) * self.direction.sign / self.point_value

    def _price(self, value: float) -> str:
        return format_price(self.symbol, value)

    def _log(self, when: datetime, message: str) -> None:
        self.logs.append(f"[{iso_utc(when)}] {message}")

    def update_excursions(self, candle: Candle) -> None:
        self.highest = max(self.highest, float(candle.high))
        self.lowest = min(self.lowest, float(candle.low))
        if self.is_long:
            favorable = float(candle.high) - self.entry_price
            adverse = self.entry_price - float(candle.low)
        else:
            favorable = self.entry_price - float(candle.low)
            adverse = float(candle.high) - self.entry_price
        self.mfe = max(self.mfe, favorable)
        self.mae = max(self.mae, adverse)

    def _target_hit(self, candle: Candle) -> bool:
        if self.is_long:
            return float(candle.high) >= self.take_profit
        return float(candle.low) <= self.take_profit

    def _stop_hit(self, candle: Candle) -> bool:
        if self.is_long:
            return float(candle.low) <= self.stop_loss
        return float(candle.high) >= self.stop_loss

    def _stop_fill_price(self, candle: Candle) -> float:
        # A bar opening beyond the stop fills at the open.
        if self.is_long:
            return min(self.stop_loss, float(candle.open)) - self.slippage
        return max(self.stop_loss, float(candle.open)) + self.slippage

    def _apply_break_even(self, candle: Candle, recovery_pips: float | None) -> None:
        if recovery_pips is None or self.break_even_active:
            return
        if self.is_long:
            favorable_move = float(candle.high) - self.entry_price
        else:
            favorable_move = self.entry_price - float(candle.low)
        if favorable_move < recovery_pips * self.point_value:
            return
        previous = self.stop_loss
        if self.is_long:
            self.stop_loss = max(self.stop_loss, self.entry_price)
        else:
            self.stop_loss = min(self.stop_loss, self.entry_price)
        self.break_even_active = True
        self._log(candle.time_utc, f"break-even activated, stop {self._price(previous)} -> {self._price(self.stop_loss)}")

    def _trailing_distance(self, atr_value: float, config: BacktestConfig) -> float:
        if config.trailing_stop_pips is not None:
            return float(config.trailing_stop_pips) * self.point_value
        return float(atr_value) * float(config.trailing_atr_coef)

    def _trail_stop(self, candle: Candle, atr_value: float, config: BacktestConfig) -> None:
        distance = self._trailing_distance(atr_value, config)
        if distance <= 0:
            return

        refresh = int(config.trailing_refresh_seconds)
        if self.last_trail_update is not None and refresh > 0:
            elapsed = (candle.time_utc - self.last_trail_update).total_seconds()
            if elapsed < refresh:
                return
        self.last_trail_update = candle.time_utc

        if self.is_long:
            candidate = float(candle.high) - distance
            if candidate <= self.stop_loss + _PRICE_EPSILON:
                return
        else:
            candidate = float(candle.low) + distance
            if candidate >= self.stop_loss - _PRICE_EPSILON:
                return
        previous = self.stop_loss
        self.stop_loss = candidate
        self._log(candle.time_utc, f"trailing stop {self._price(previous)} -> {self._price(candidate)}")

    def close(self, price: float, when: datetime, reason: ExitReason) -> None:
        self.exit_price = float(price)
        self.exit_time = when
        self.exit_reason = reason
        self._log(when, f"{self.direction.value} exit {reason.value} at {self._price(self.exit_price)} ({self.pips:+.1f} pips)")
        logger.debug("%s leg closed %s at %s pips=%.2f", self.direction.value, reason.value, iso_utc(when), self.pips)

    def close_at_market(self, candle: Candle, reason: ExitReason = ExitReason.TIMEOUT) -> None:
        """Flatten at the candle close: sell at bid for longs, buy back at ask for shorts."""
        if self.is_long:
            price = float(candle.close) - self.slippage
        else:
            price = float(candle.close) + self.spread + self.slippage
        self.close(price, candle.time_utc, reason)

    def on_candle(self, candle: Candle, atr_value: float, config: BacktestConfig) -> None:
        """Advance an open leg through one candle."""
        if not self.is_open:
            return

        self.update_excursions(candle)

        # Same bar touching both levels resolves to the stop.
        if self._target_hit(candle):
            if self._stop_hit(candle):
                self.close(self._stop_fill_price(candle), candle.time_utc, ExitReason.STOP_LOSS)
            else:
                self.close(self.take_profit, candle.time_utc, ExitReason.TAKE_PROFIT)
            return

        self._apply_break_even(candle, config.sl_recovery_pips)
        self._trail_stop(candle, atr_value, config)

        if self._stop_hit(candle):
            self.close(self._stop_fill_price(candle), candle.time_utc, ExitReason.STOP_LOSS)


def straddle_state(long_leg: Position | None, short_leg: Position | None) -> StraddleState:
    """Aggregate state of both legs."""
    legs = [leg for leg in (long_leg, short_leg) if leg is not None]
    if not legs:
        return StraddleState.NOT_TRIGGERED
    open_legs = [leg for leg in legs if leg.is_open]
    if not open_legs:
        return StraddleState.CLOSED
    if len(open_legs) == 2:
        return StraddleState.WHIPSAW
    return StraddleState.LONG_OPEN if open_legs[0].is_long else StraddleState.SHORT_OPEN
