"""Candle sources for the backtest engine: protocol, in-memory store and CSV feeder."""

from __future__ import annotations

import csv
import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Protocol

import numpy as np
import pandas as pd

from core.errors import DataSourceError, ValidationError
from core.market_metadata import normalize_instrument, normalize_timeframe

from .models import Candle, SpreadStats, ensure_utc

logger = logging.getLogger(__name__)

_EPOCH_UTC = datetime(1970, 1, 1, tzinfo=timezone.utc)
_CACHE_SOFT_LIMIT_BYTES = 2 * 1024**3
_PRICE_COLUMNS: tuple[str, ...] = ("open", "high", "low", "close")
_SPREAD_COLUMNS: tuple[str, ...] = ("spread_open", "spread_high", "spread_low", "spread_close", "spread_mean")
_REQUIRED_COLUMNS = {"time", *_PRICE_COLUMNS}


class CandleLoader(Protocol):
    """Source of candles for one symbol and timeframe over an inclusive UTC range."""

    def load_candles_by_pair(
        self,
        symbol: str,
        timeframe: str,
        start: datetime,
        end: datetime,
    ) -> list[Candle]:
        ...


def _datetime_to_ns(value: datetime) -> int:
    delta = ensure_utc(value) - _EPOCH_UTC
    return ((delta.days * 86400) + delta.seconds) * 1_000_000_000 + (delta.microseconds * 1_000)


def _parse_time_ns(raw_value: Any) -> int | None:
    raw = str(raw_value or "").strip()
    if not raw:
        return None
    try:
        dt_value = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None
    return _datetime_to_ns(dt_value)


def _ns_to_datetime(value: int) -> datetime:
    return pd.Timestamp(int(value), tz="UTC").to_pydatetime()


@dataclass(frozen=True)
class CandleFrame:
    """Immutable columnar candle container; spread and tick columns are optional."""

    symbol: str
    timeframe: str
    time_ns: np.ndarray
    open: np.ndarray
    high: np.ndarray
    low: np.ndarray
    close: np.ndarray
    volume: np.ndarray
    spread: np.ndarray | None = None
    tick_count: np.ndarray | None = None

    @property
    def rows(self) -> int:
        return int(self.time_ns.size)

    @property
    def estimated_size_bytes(self) -> int:
        size = sum(
            getattr(self, name).nbytes for name in ("time_ns", "open", "high", "low", "close", "volume")
        )
        if self.spread is not None:
            size += self.spread.nbytes
        if self.tick_count is not None:
            size += self.tick_count.nbytes
        return int(size)

    def take(self, index: np.ndarray | slice) -> CandleFrame:
        return CandleFrame(
            symbol=self.symbol,
            timeframe=self.timeframe,
            time_ns=self.time_ns[index],
            open=self.open[index],
            high=self.high[index],
            low=self.low[index],
            close=self.close[index],
            volume=self.volume[index],
            spread=None if self.spread is None else self.spread[index],
            tick_count=None if self.tick_count is None else self.tick_count[index],
        )

    def slice_by_time(self, start_utc: datetime | None = None, end_utc: datetime | None = None) -> CandleFrame:
        left = 0 if start_utc is None else int(np.searchsorted(self.time_ns, _datetime_to_ns(start_utc), side="left"))
        right = self.rows if end_utc is None else int(np.searchsorted(self.time_ns, _datetime_to_ns(end_utc), side="right"))
        if right < left:
            right = left
        return self.take(slice(left, right))

    def to_candles(self) -> list[Candle]:
        candles: list[Candle] = []
        for idx in range(self.rows):
            spread = None
            if self.spread is not None and not np.isnan(self.spread[idx]).any():
                spread = SpreadStats(*(float(value) for value in self.spread[idx]))
            tick_count = None
            if self.tick_count is not None and self.tick_count[idx] >= 0:
                tick_count = int(self.tick_count[idx])
            candles.append(
                Candle(
                    symbol=self.symbol,
                    time_utc=_ns_to_datetime(int(self.time_ns[idx])),
                    open=float(self.open[idx]),
                    high=float(self.high[idx]),
                    low=float(self.low[idx]),
                    close=float(self.close[idx]),
                    volume=float(self.volume[idx]),
                    spread=spread,
                    tick_count=tick_count,
                )
            )
        return candles


def _stable_sort_and_dedupe(frame: CandleFrame) -> CandleFrame:
    if frame.rows <= 1:
        return frame
    ordered = frame.take(np.argsort(frame.time_ns, kind="mergesort"))
    keep_mask = np.ones(ordered.rows, dtype=bool)
    keep_mask[:-1] = ordered.time_ns[:-1] != ordered.time_ns[1:]
    if keep_mask.all():
        return ordered
    return ordered.take(keep_mask)


def _read_frame_csv(path: Path, symbol: str, timeframe: str) -> CandleFrame:
    with path.open("r", encoding="utf-8", newline="") as handle:
        reader = csv.DictReader(handle)
        fieldnames = reader.fieldnames or []
        missing = sorted(_REQUIRED_COLUMNS.difference(fieldnames))
        if missing:
            raise ValidationError(f"Candle schema validation failed for {path}: missing columns {missing}")
        has_spread = all(column in fieldnames for column in _SPREAD_COLUMNS)
        has_ticks = "tick_count" in fieldnames

        time_values: list[int] = []
        prices: dict[str, list[float]] = {name: [] for name in (*_PRICE_COLUMNS, "volume")}
        spreads: list[list[float]] = []
        ticks: list[int] = []
        for row in reader:
            time_ns = _parse_time_ns(row.get("time"))
            if time_ns is None:
                continue
            try:
                parsed = {column: float(row[column]) for column in _PRICE_COLUMNS}
                parsed["volume"] = float(row.get("volume") or 0.0)
                spread_row = (
                    [float(row[column]) if row.get(column) not in (None, "") else np.nan for column in _SPREAD_COLUMNS]
                    if has_spread
                    else []
                )
                tick_value = int(float(row["tick_count"])) if has_ticks and row.get("tick_count") not in (None, "") else -1
            except (KeyError, TypeError, ValueError) as exc:
                raise ValidationError(f"Invalid numeric value in {path}: {exc}") from exc

            time_values.append(time_ns)
            for column, value in parsed.items():
                prices[column].append(value)
            if has_spread:
                spreads.append(spread_row)
            if has_ticks:
                ticks.append(tick_value)

    if not time_values:
        raise ValidationError(f"Candle file has no valid rows: {path}")

    frame = CandleFrame(
        symbol=symbol,
        timeframe=timeframe,
        time_ns=np.asarray(time_values, dtype=np.int64),
        open=np.asarray(prices["open"], dtype=np.float64),
        high=np.asarray(prices["high"], dtype=np.float64),
        low=np.asarray(prices["low"], dtype=np.float64),
        close=np.asarray(prices["close"], dtype=np.float64),
        volume=np.asarray(prices["volume"], dtype=np.float64),
        spread=np.asarray(spreads, dtype=np.float64) if has_spread else None,
        tick_count=np.asarray(ticks, dtype=np.int64) if has_ticks else None,
    )
    return _stable_sort_and_dedupe(frame)


class InMemoryCandleLoader:
    """Read-only loader over candles already held in memory."""

    def __init__(self, candles: Iterable[Candle], timeframe: str = "M1"):
        self.timeframe = normalize_timeframe(timeframe)
        grouped: dict[str, list[Candle]] = {}
        for candle in candles:
            grouped.setdefault(normalize_instrument(candle.symbol), []).append(candle)
        self._candles: dict[str, list[Candle]] = {}
        self._times: dict[str, np.ndarray] = {}
        for symbol, items in grouped.items():
            ordered = sorted(items, key=lambda item: item.time_utc)
            self._candles[symbol] = ordered
            self._times[symbol] = np.asarray([_datetime_to_ns(item.time_utc) for item in ordered], dtype=np.int64)

    def load_candles_by_pair(
        self,
        symbol: str,
        timeframe: str,
        start: datetime,
        end: datetime,
    ) -> list[Candle]:
        if normalize_timeframe(timeframe) != self.timeframe:
            raise DataSourceError(f"No {timeframe} candles held in memory (loaded timeframe is {self.timeframe})")
        key = normalize_instrument(symbol)
        times = self._times.get(key)
        if times is None:
            return []
        left = int(np.searchsorted(times, _datetime_to_ns(start), side="left"))
        right = int(np.searchsorted(times, _datetime_to_ns(end), side="right"))
        return list(self._candles[key][left:right])


class CsvCandleLoader:
    """
    Load candles from ``<data_root>/<SYMBOL>/candles_<SYMBOL>_<TF>.csv`` files.

    Parsed files are kept in an LRU cache bounded by ``max_ram_bytes``. Concurrent
    requests for the same file wait for the first reader instead of parsing twice.
    """

    def __init__(self, data_root: str | Path, max_ram_bytes: int = _CACHE_SOFT_LIMIT_BYTES):
        self.data_root = Path(data_root)
        self.max_ram_bytes = max(0, int(max_ram_bytes))
        self._frames: OrderedDict[tuple[str, str], CandleFrame] = OrderedDict()
        self._frame_sizes: dict[tuple[str, str], int] = {}
        self._cache_bytes = 0
        self._loading_keys: set[tuple[str, str]] = set()
        self._lock = threading.RLock()
        self._cv = threading.Condition(self._lock)

    def csv_path(self, symbol: str, timeframe: str) -> Path:
        inst = normalize_instrument(symbol)
        tf = normalize_timeframe(timeframe)
        return self.data_root / inst / f"candles_{inst}_{tf}.csv"

    def _evict_oldest_locked(self) -> bool:
        if not self._frames:
            return False
        old_key, _ = self._frames.popitem(last=False)
        released = self._frame_sizes.pop(old_key, 0)
        self._cache_bytes = max(0, self._cache_bytes - released)
        logger.debug("Evicted candles %s/%s from cache", *old_key)
        return True

    def _load_frame(self, symbol: str, timeframe: str) -> CandleFrame:
        key = (normalize_instrument(symbol), normalize_timeframe(timeframe))

        with self._cv:
            while key in self._loading_keys:
                self._cv.wait()
            cached = self._frames.get(key)
            if cached is not None:
                self._frames.move_to_end(key)
                return cached
            self._loading_keys.add(key)

        csv_path = self.csv_path(*key)
        try:
            if not csv_path.exists():
                raise DataSourceError(f"Candle file not found: {csv_path}")
            try:
                frame = _read_frame_csv(csv_path, *key)
            except OSError as exc:
                raise DataSourceError(f"Could not read {csv_path}: {exc}") from exc
            logger.debug("Loaded candles %s/%s rows=%s", key[0], key[1], frame.rows)
        except Exception:
            with self._cv:
                self._loading_keys.discard(key)
                self._cv.notify_all()
            raise

        actual_size = frame.estimated_size_bytes
        with self._cv:
            if self.max_ram_bytes > 0:
                while (self._cache_bytes + actual_size) > self.max_ram_bytes and self._evict_oldest_locked():
                    continue
            self._frames[key] = frame
            self._frame_sizes[key] = actual_size
            self._cache_bytes += actual_size
            self._loading_keys.discard(key)
            self._cv.notify_all()
            return frame

    def list_symbols(self) -> list[str]:
        """Return symbols that have at least one candle CSV."""
        if not self.data_root.exists():
            return []
        return [
            child.name.upper()
            for child in sorted(self.data_root.iterdir())
            if child.is_dir() and any(child.glob("candles_*_*.csv"))
        ]

    def load_candles_by_pair(
        self,
        symbol: str,
        timeframe: str,
        start: datetime,
        end: datetime,
    ) -> list[Candle]:
        frame = self._load_frame(symbol, timeframe)
        return frame.slice_by_time(start, end).to_candles()

    def load_frame(self, symbol: str, timeframe: str) -> pd.DataFrame:
        """Full cached dataset as a DataFrame."""
        frame = self._load_frame(symbol, timeframe)
        return pd.DataFrame(
            {
                "time": pd.to_datetime(frame.time_ns, utc=True),
                "open": frame.open,
                "high": frame.high,
                "low": frame.low,
                "close": frame.close,
                "volume": frame.volume,
            }
        )

    def evict(self, symbol: str) -> None:
        inst = normalize_instrument(symbol)
        with self._cv:
            for key in [key for key in self._frames if key[0] == inst]:
                self._frames.pop(key, None)
                self._cache_bytes = max(0, self._cache_bytes - self._frame_sizes.pop(key, 0))
            self._cv.notify_all()
