"""Backtest engine: load a window per event, simulate, aggregate."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import timedelta
from typing import Sequence

import pandas as pd

from core.errors import DataSourceError, InsufficientDataError, NoEventsError, ValidationError
from core.market_metadata import get_pip_unit, normalize_instrument

from .candle_loader import CandleLoader
from .models import BacktestConfig, BacktestResult, CalendarEvent, TradeOutcome, TradeResult
from .simulator import EventSimulator

logger = logging.getLogger(__name__)

PRE_EVENT_WINDOW = timedelta(minutes=5)
POST_TIMEOUT_BUFFER = timedelta(minutes=10)
PROFIT_FACTOR_SENTINEL = 999.0

_RECOVERABLE_EVENT_ERRORS = (DataSourceError, OSError, ValidationError, InsufficientDataError)


def _max_drawdown(pips: pd.Series) -> float:
    """Largest peak-to-valley drop of cumulative pips, with the peak starting at zero."""
    if pips.empty:
        return 0.0
    equity = pips.fillna(0.0).astype(float).cumsum()
    peak = equity.cummax().clip(lower=0.0)
    return float((peak - equity).max())


def _profit_factor(pips: pd.Series) -> float:
    gross_profit = float(pips[pips > 0].sum())
    gross_loss = abs(float(pips[pips < 0].sum()))
    if gross_loss == 0:
        return PROFIT_FACTOR_SENTINEL if gross_profit > 0 else 0.0
    return gross_profit / gross_loss


def summarize(
    trades: Sequence[TradeResult],
    symbol: str,
    event_name: str,
    unit: str = "pips",
    skipped_events: list[dict[str, str]] | None = None,
) -> BacktestResult:
    """Fold index-ordered trades into one result; NO_ENTRY trades never count as wins or losses."""
    entered = [trade for trade in trades if trade.outcome is not TradeOutcome.NO_ENTRY]
    pips = pd.Series([trade.pips_net for trade in entered], dtype=float)

    wins = int((pips > 0).sum())
    losses = len(entered) - wins
    decided = wins + losses
    total_pips = float(pips.sum()) if not pips.empty else 0.0
    whipsaws = sum(1 for trade in entered if trade.whipsaw)

    return BacktestResult(
        symbol=symbol,
        event_name=event_name,
        unit=unit,
        total_trades=len(trades),
        winning_trades=wins,
        losing_trades=losses,
        no_entries=len(trades) - len(entered),
        win_rate_percent=(wins / decided * 100.0) if decided > 0 else 0.0,
        total_pips=total_pips,
        average_pips_per_trade=(total_pips / decided) if decided > 0 else 0.0,
        max_drawdown_pips=_max_drawdown(pips),
        profit_factor=_profit_factor(pips),
        trades=list(trades),
        timeouts=sum(1 for trade in entered if trade.outcome is TradeOutcome.TIMEOUT),
        whipsaws=whipsaws,
        whipsaw_frequency_percent=(whipsaws / decided * 100.0) if decided > 0 else 0.0,
        skipped_events=list(skipped_events or []),
    )


class BacktestEngine:
    """Run the straddle over every event of a calendar for one symbol."""

    def __init__(self, loader: CandleLoader, max_workers: int = 1):
        self.loader = loader
        self.max_workers = max(1, int(max_workers))

    def _simulate_event(
        self,
        symbol: str,
        event: CalendarEvent,
        config: BacktestConfig,
        simulator: EventSimulator,
    ) -> tuple[TradeResult | None, str | None]:
        start = event.event_time - PRE_EVENT_WINDOW
        end = event.event_time + timedelta(minutes=int(config.timeout_minutes)) + POST_TIMEOUT_BUFFER
        try:
            candles = self.loader.load_candles_by_pair(symbol, config.timeframe, start, end)
            if not candles:
                return None, "no candles in event window"
            return simulator.simulate(event, candles), None
        except _RECOVERABLE_EVENT_ERRORS as exc:
            return None, f"{type(exc).__name__}: {exc}"

    def run(self, pair: str, events: Sequence[CalendarEvent], config: BacktestConfig) -> BacktestResult:
        if not events:
            raise NoEventsError("Backtest requires at least one calendar event")
        symbol = normalize_instrument(pair)
        config.validate()
        simulator = EventSimulator(config)

        logger.info(
            "Backtest %s: %s events timeframe=%s workers=%s",
            symbol,
            len(events),
            config.timeframe,
            self.max_workers,
        )

        ordered: list[tuple[TradeResult | None, str | None]] = [(None, None)] * len(events)
        if self.max_workers == 1:
            for idx, event in enumerate(events):
                ordered[idx] = self._simulate_event(symbol, event, config, simulator)
        else:
            workers = min(self.max_workers, len(events))
            with ThreadPoolExecutor(max_workers=workers) as pool:
                future_map = {
                    pool.submit(self._simulate_event, symbol, event, config, simulator): idx
                    for idx, event in enumerate(events)
                }
                for future in as_completed(future_map):
                    ordered[future_map[future]] = future.result()

        trades: list[TradeResult] = []
        skipped: list[dict[str, str]] = []
        for event, (trade, reason) in zip(events, ordered):
            if trade is None:
                logger.warning("Skipping event %s: %s", event.label, reason)
                skipped.append({"event": event.label, "reason": str(reason)})
                continue
            trades.append(trade)

        if not trades:
            raise NoEventsError(f"No eligible events for {symbol}: all {len(events)} events were skipped")

        event_name = events[0].description or symbol
        result = summarize(trades, symbol, event_name, unit=get_pip_unit(symbol), skipped_events=skipped)
        logger.info(
            "Backtest %s done: trades=%s wins=%s losses=%s no_entry=%s win_rate=%.1f%% total=%.1f %s",
            symbol,
            result.total_trades,
            result.winning_trades,
            result.losing_trades,
            result.no_entries,
            result.win_rate_percent,
            result.total_pips,
            result.unit,
        )
        return result


def run_backtest(
    pair: str,
    events: Sequence[CalendarEvent],
    config: BacktestConfig,
    loader: CandleLoader,
    max_workers: int = 1,
) -> BacktestResult:
    """Run a straddle backtest over ``events`` for ``pair``."""
    return BacktestEngine(loader, max_workers=max_workers).run(pair, events, config)
