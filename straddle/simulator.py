"""Single-event straddle simulation."""

from __future__ import annotations

import logging
from bisect import bisect_left
from datetime import datetime
from typing import Sequence

from core.market_metadata import format_price, timeframe_duration

from .atr import atr_series
from .models import BacktestConfig, CalendarEvent, Candle, Direction, TradeOutcome, TradeResult, iso_utc
from .position import ExitReason, Position, StraddleState, straddle_state

logger = logging.getLogger(__name__)


def _reference_index(candles: Sequence[Candle], event_time: datetime) -> int | None:
    times = [candle.time_utc for candle in candles]
    idx = bisect_left(times, event_time)
    if idx >= len(candles):
        return None
    return idx


class EventSimulator:
    """Run the straddle state machine for one event using fixed config values."""

    def __init__(self, config: BacktestConfig):
        self.config = config.validate()

    def simulate(self, event: CalendarEvent, candles: Sequence[Candle]) -> TradeResult:
        config = self.config
        ordered = sorted(candles, key=lambda item: item.time_utc)
        event_time = event.event_time
        logs: list[str] = [f"[{iso_utc(event_time)}] event {event.label}"]

        ref_idx = _reference_index(ordered, event_time)
        if ref_idx is None:
            logs.append(f"[{iso_utc(event_time)}] no candle at or after event time, straddle not placed")
            return self._no_entry(event, logs)

        pv = float(config.point_value)
        reference = float(ordered[ref_idx].open)
        offset = float(config.offset_pips) * pv
        spread = float(config.spread_pips) * pv
        slippage = float(config.slippage_pips) * pv
        long_trigger = reference + offset
        short_trigger = reference - offset
        long_entry = long_trigger + spread + slippage
        short_entry = short_trigger - slippage
        symbol = ordered[ref_idx].symbol
        logs.append(
            f"[{iso_utc(ordered[ref_idx].time_utc)}] reference {format_price(symbol, reference)} "
            f"buy stop {format_price(symbol, long_trigger)} sell stop {format_price(symbol, short_trigger)}"
        )

        atr_values = atr_series(ordered, config.atr_period, max_gap=timeframe_duration(config.timeframe))
        legs: dict[Direction, Position | None] = {Direction.LONG: None, Direction.SHORT: None}
        state = StraddleState.NOT_TRIGGERED
        timed_out = False
        finished = False

        for idx in range(ref_idx, len(ordered)):
            candle = ordered[idx]
            elapsed_minutes = (candle.time_utc - event_time).total_seconds() / 60.0
            if elapsed_minutes > config.timeout_minutes:
                timed_out = self._force_close(legs, candle, logs, "timeout reached")
                finished = True
                break

            if legs[Direction.LONG] is None and (offset == 0 or float(candle.high) >= long_trigger):
                legs[Direction.LONG] = Position.open(Direction.LONG, symbol, long_entry, candle.time_utc, config)
            if legs[Direction.SHORT] is None and (offset == 0 or float(candle.low) <= short_trigger):
                legs[Direction.SHORT] = Position.open(Direction.SHORT, symbol, short_entry, candle.time_utc, config)

            for leg in legs.values():
                if leg is not None:
                    leg.on_candle(candle, float(atr_values[idx]), config)

            new_state = straddle_state(legs[Direction.LONG], legs[Direction.SHORT])
            if new_state is not state:
                logs.append(f"[{iso_utc(candle.time_utc)}] state {state.value} -> {new_state.value}")
                state = new_state
            if state is StraddleState.CLOSED:
                finished = True
                break

        if not finished:
            timed_out = self._force_close(legs, ordered[-1], logs, "end of candles")

        return self._build_result(event, legs, timed_out, logs)

    @staticmethod
    def _force_close(
        legs: dict[Direction, Position | None],
        candle: Candle,
        logs: list[str],
        reason: str,
    ) -> bool:
        closed_any = False
        for direction, leg in legs.items():
            if leg is None:
                logs.append(f"[{iso_utc(candle.time_utc)}] {direction.value} order cancelled ({reason})")
            elif leg.is_open:
                leg.close_at_market(candle, ExitReason.TIMEOUT)
                closed_any = True
        if closed_any:
            logs.append(f"[{iso_utc(candle.time_utc)}] open legs closed ({reason})")
        return closed_any

    def _no_entry(self, event: CalendarEvent, logs: list[str]) -> TradeResult:
        return TradeResult(
            event_date=event.event_time,
            entry_time=None,
            exit_time=None,
            duration_minutes=0,
            pips_net=0.0,
            outcome=TradeOutcome.NO_ENTRY,
            logs=tuple(logs),
            event_description=event.description,
        )

    def _build_result(
        self,
        event: CalendarEvent,
        legs: dict[Direction, Position | None],
        timed_out: bool,
        logs: list[str],
    ) -> TradeResult:
        triggered = [leg for leg in legs.values() if leg is not None]
        if not triggered:
            logs.append(f"[{iso_utc(event.event_time)}] neither leg triggered")
            return self._no_entry(event, logs)

        long_leg = legs[Direction.LONG]
        short_leg = legs[Direction.SHORT]
        long_pips = long_leg.pips if long_leg is not None else 0.0
        short_pips = short_leg.pips if short_leg is not None else 0.0
        pips_net = long_pips + short_pips

        if timed_out:
            outcome = TradeOutcome.TIMEOUT
        elif pips_net > 0:
            outcome = TradeOutcome.TAKE_PROFIT
        else:
            outcome = TradeOutcome.STOP_LOSS

        whipsaw = long_leg is not None and short_leg is not None and long_pips < 0 and short_pips < 0
        entry_time = min(leg.entry_time for leg in triggered)
        exit_time = max(leg.exit_time for leg in triggered if leg.exit_time is not None)
        duration = int((exit_time - event.event_time).total_seconds() // 60)
        pv = float(self.config.point_value)

        trade_logs = list(logs)
        for leg in triggered:
            trade_logs.extend(leg.logs)
        trade_logs.sort(key=lambda line: line[: line.find("]") + 1])

        result = TradeResult(
            event_date=event.event_time,
            entry_time=entry_time,
            exit_time=exit_time,
            duration_minutes=max(0, duration),
            pips_net=pips_net,
            outcome=outcome,
            max_favorable_excursion=sum(leg.mfe for leg in triggered) / pv,
            max_adverse_excursion=sum(leg.mae for leg in triggered) / pv,
            logs=tuple(trade_logs),
            long_pips=long_pips,
            short_pips=short_pips,
            whipsaw=whipsaw,
            event_description=event.description,
        )
        logger.debug(
            "Event %s -> %s pips=%.2f (long=%.2f short=%.2f)",
            event.label,
            outcome.value,
            pips_net,
            long_pips,
            short_pips,
        )
        return result


def simulate(event: CalendarEvent, candles: Sequence[Candle], config: BacktestConfig) -> TradeResult:
    """Simulate one event with the given config."""
    return EventSimulator(config).simulate(event, candles)
