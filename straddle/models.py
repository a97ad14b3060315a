"""Data models for the event straddle backtester."""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Mapping, Optional

from core.errors import ValidationError
from core.market_metadata import normalize_timeframe

if TYPE_CHECKING:
    from .parameters import StraddleParameters


def iso_utc(value: Any) -> Optional[str]:
    """Serialize datetime-like values to ISO8601 UTC string when possible."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, datetime):
        value = ensure_utc(value)
    if hasattr(value, "isoformat"):
        try:
            return value.isoformat().replace("+00:00", "Z")
        except TypeError:
            return str(value)
    return str(value)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_datetime(value: Any | None) -> datetime | None:
    if value in (None, "", "None"):
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    normalized = str(value).strip().replace("Z", "+00:00")
    try:
        dt_value = datetime.fromisoformat(normalized)
    except ValueError as exc:
        raise ValidationError(f"Invalid timestamp: {value}") from exc
    return ensure_utc(dt_value)


def _optional_float(value: Any) -> float | None:
    if value in (None, "", "None"):
        return None
    return float(value)


class Direction(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"

    @property
    def sign(self) -> float:
        return 1.0 if self is Direction.LONG else -1.0


class TradeOutcome(str, Enum):
    NO_ENTRY = "NO_ENTRY"
    TAKE_PROFIT = "TAKE_PROFIT"
    STOP_LOSS = "STOP_LOSS"
    TIMEOUT = "TIMEOUT"

    @classmethod
    def from_value(cls, value: Any) -> "TradeOutcome":
        try:
            return cls(str(value).strip().upper())
        except ValueError as exc:
            raise ValidationError(f"Unsupported trade outcome: {value}") from exc


@dataclass(frozen=True)
class SpreadStats:
    """Per-candle spread statistics; present only when tick data was aggregated."""

    open: float
    high: float
    low: float
    close: float
    mean: float

    def to_dict(self) -> dict[str, float]:
        return {key: float(value) for key, value in asdict(self).items()}


@dataclass(frozen=True)
class Candle:
    symbol: str
    time_utc: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0
    spread: SpreadStats | None = None
    tick_count: int | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.time_utc, datetime):
            raise ValidationError(f"Candle time must be a datetime, got {type(self.time_utc).__name__}")
        object.__setattr__(self, "time_utc", ensure_utc(self.time_utc))
        prices = (self.open, self.high, self.low, self.close)
        if any(not math.isfinite(float(price)) or float(price) < 0 for price in prices):
            raise ValidationError(f"Candle at {iso_utc(self.time_utc)} has negative or non-finite prices")
        if float(self.volume) < 0:
            raise ValidationError(f"Candle at {iso_utc(self.time_utc)} has negative volume")
        if self.high < max(self.open, self.close) or self.low > min(self.open, self.close):
            raise ValidationError(
                f"Candle at {iso_utc(self.time_utc)} violates high >= max(open, close) >= min(open, close) >= low"
            )
        if self.tick_count is not None and int(self.tick_count) < 0:
            raise ValidationError(f"Candle at {iso_utc(self.time_utc)} has negative tick_count")

    @property
    def upper_wick(self) -> float:
        return float(self.high) - max(float(self.open), float(self.close))

    @property
    def lower_wick(self) -> float:
        return min(float(self.open), float(self.close)) - float(self.low)

    @property
    def hour_utc(self) -> int:
        return self.time_utc.hour

    def body_range_percent(self) -> float:
        """Body as a percentage of the full high-low range (0 for a flat candle)."""
        full_range = float(self.high) - float(self.low)
        if full_range <= 0:
            return 0.0
        return abs(float(self.close) - float(self.open)) / full_range * 100.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "time_utc": iso_utc(self.time_utc),
            "open": float(self.open),
            "high": float(self.high),
            "low": float(self.low),
            "close": float(self.close),
            "volume": float(self.volume),
            "spread": None if self.spread is None else self.spread.to_dict(),
            "tick_count": self.tick_count,
        }


@dataclass(frozen=True)
class CalendarEvent:
    symbol: str
    event_time: datetime
    impact: str = "HIGH"
    description: str = ""
    actual: float | None = None
    forecast: float | None = None
    previous: float | None = None
    event_id: int | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "event_time", ensure_utc(self.event_time))

    @property
    def label(self) -> str:
        name = self.description or self.symbol
        return f"{name} @ {iso_utc(self.event_time)}"

    @classmethod
    def from_dict(cls, value: Mapping[str, Any]) -> "CalendarEvent":
        if not isinstance(value, Mapping):
            raise ValidationError("Each event entry must be a JSON object")
        event_time = parse_datetime(value.get("event_time"))
        if event_time is None:
            raise ValidationError("event_time is required")
        symbol = str(value.get("symbol") or "").strip()
        if not symbol:
            raise ValidationError("symbol is required for calendar events")
        event_id = value.get("event_id")
        return cls(
            symbol=symbol,
            event_time=event_time,
            impact=str(value.get("impact") or "HIGH").strip().upper(),
            description=str(value.get("description") or "").strip(),
            actual=_optional_float(value.get("actual")),
            forecast=_optional_float(value.get("forecast")),
            previous=_optional_float(value.get("previous")),
            event_id=None if event_id in (None, "") else int(event_id),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "symbol": self.symbol,
            "event_time": iso_utc(self.event_time),
            "impact": self.impact,
            "description": self.description,
            "actual": self.actual,
            "forecast": self.forecast,
            "previous": self.previous,
        }


@dataclass(frozen=True)
class BacktestConfig:
    """Fixed trade parameters for one backtest run; prices are expressed in pips."""

    stop_loss_pips: float = 20.0
    tp_rr: float = 2.0
    trailing_atr_coef: float = 0.0
    atr_period: int = 14
    trailing_refresh_seconds: int = 0
    timeout_minutes: int = 30
    sl_recovery_pips: float | None = None
    spread_pips: float = 0.0
    slippage_pips: float = 0.0
    point_value: float = 0.0001
    offset_pips: float = 0.0
    trailing_stop_pips: float | None = None
    timeframe: str = "M1"

    def validate(self) -> "BacktestConfig":
        if not math.isfinite(self.point_value) or self.point_value <= 0:
            raise ValidationError(f"point_value must be positive, got {self.point_value}")
        if not math.isfinite(self.stop_loss_pips) or self.stop_loss_pips <= 0:
            raise ValidationError(f"stop_loss_pips must be positive, got {self.stop_loss_pips}")
        if not math.isfinite(self.tp_rr) or self.tp_rr <= 0:
            raise ValidationError(f"tp_rr must be positive, got {self.tp_rr}")
        if int(self.atr_period) < 1:
            raise ValidationError(f"atr_period must be >= 1, got {self.atr_period}")
        if int(self.timeout_minutes) < 1:
            raise ValidationError(f"timeout_minutes must be >= 1, got {self.timeout_minutes}")
        if int(self.trailing_refresh_seconds) < 0:
            raise ValidationError("trailing_refresh_seconds must be non-negative")
        for name in ("trailing_atr_coef", "spread_pips", "slippage_pips", "offset_pips"):
            value = float(getattr(self, name))
            if not math.isfinite(value) or value < 0:
                raise ValidationError(f"{name} must be non-negative, got {value}")
        for name in ("sl_recovery_pips", "trailing_stop_pips"):
            value = getattr(self, name)
            if value is not None and (not math.isfinite(float(value)) or float(value) <= 0):
                raise ValidationError(f"{name} must be positive when set, got {value}")
        normalize_timeframe(self.timeframe)
        return self

    @classmethod
    def from_parameters(
        cls,
        params: "StraddleParameters",
        point_value: float,
        *,
        spread_pips: float | None = None,
        slippage_pips: float = 0.0,
        atr_period: int = 14,
        trailing_refresh_seconds: int = 0,
        timeframe: str = "M1",
    ) -> "BacktestConfig":
        """
        Build a config carrying exactly the values produced by the parameter service.

        When ``spread_pips`` is omitted it is whatever part of the safety margin
        is not already slippage.
        """
        if spread_pips is None:
            spread = max(0.0, float(params.spread_safety_margin_pips) - float(slippage_pips))
        else:
            spread = float(spread_pips)
        return cls(
            stop_loss_pips=float(params.stop_loss_pips),
            tp_rr=float(params.risk_reward_ratio),
            trailing_atr_coef=0.0,
            atr_period=int(atr_period),
            trailing_refresh_seconds=int(trailing_refresh_seconds),
            timeout_minutes=int(params.timeout_minutes),
            sl_recovery_pips=float(params.sl_recovery_pips),
            spread_pips=spread,
            slippage_pips=float(slippage_pips),
            point_value=float(point_value),
            offset_pips=float(params.offset_pips),
            trailing_stop_pips=float(params.trailing_stop_pips),
            timeframe=timeframe,
        ).validate()

    @classmethod
    def from_dict(cls, value: Mapping[str, Any] | None) -> "BacktestConfig":
        payload = dict(value or {})
        known = set(cls.__dataclass_fields__)
        unknown = sorted(set(payload).difference(known))
        if unknown:
            raise ValidationError(f"Unknown backtest config keys: {unknown}")
        defaults = cls()
        config = cls(
            stop_loss_pips=float(payload.get("stop_loss_pips", defaults.stop_loss_pips)),
            tp_rr=float(payload.get("tp_rr", defaults.tp_rr)),
            trailing_atr_coef=float(payload.get("trailing_atr_coef", defaults.trailing_atr_coef)),
            atr_period=int(payload.get("atr_period", defaults.atr_period)),
            trailing_refresh_seconds=int(payload.get("trailing_refresh_seconds", defaults.trailing_refresh_seconds)),
            timeout_minutes=int(payload.get("timeout_minutes", defaults.timeout_minutes)),
            sl_recovery_pips=_optional_float(payload.get("sl_recovery_pips")),
            spread_pips=float(payload.get("spread_pips", defaults.spread_pips)),
            slippage_pips=float(payload.get("slippage_pips", defaults.slippage_pips)),
            point_value=float(payload.get("point_value", defaults.point_value)),
            offset_pips=float(payload.get("offset_pips", defaults.offset_pips)),
            trailing_stop_pips=_optional_float(payload.get("trailing_stop_pips")),
            timeframe=normalize_timeframe(str(payload.get("timeframe", defaults.timeframe))),
        )
        return config.validate()

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class TradeResult:
    event_date: datetime
    entry_time: datetime | None
    exit_time: datetime | None
    duration_minutes: int
    pips_net: float
    outcome: TradeOutcome
    max_favorable_excursion: float = 0.0
    max_adverse_excursion: float = 0.0
    logs: tuple[str, ...] = ()
    long_pips: float = 0.0
    short_pips: float = 0.0
    whipsaw: bool = False
    event_description: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_date": iso_utc(self.event_date),
            "event_description": self.event_description,
            "entry_time": iso_utc(self.entry_time),
            "exit_time": iso_utc(self.exit_time),
            "duration_minutes": int(self.duration_minutes),
            "pips_net": float(self.pips_net),
            "long_pips": float(self.long_pips),
            "short_pips": float(self.short_pips),
            "outcome": self.outcome.value,
            "whipsaw": bool(self.whipsaw),
            "max_favorable_excursion": float(self.max_favorable_excursion),
            "max_adverse_excursion": float(self.max_adverse_excursion),
            "logs": list(self.logs),
        }


@dataclass
class BacktestResult:
    symbol: str
    event_name: str
    unit: str
    total_trades: int
    winning_trades: int
    losing_trades: int
    no_entries: int
    win_rate_percent: float
    total_pips: float
    average_pips_per_trade: float
    max_drawdown_pips: float
    profit_factor: float
    trades: list[TradeResult] = field(default_factory=list)
    timeouts: int = 0
    whipsaws: int = 0
    whipsaw_frequency_percent: float = 0.0
    skipped_events: list[dict[str, str]] = field(default_factory=list)

    def to_dict(self, include_trades: bool = True) -> dict[str, Any]:
        payload = {
            "symbol": self.symbol,
            "event_name": self.event_name,
            "unit": self.unit,
            "total_trades": int(self.total_trades),
            "winning_trades": int(self.winning_trades),
            "losing_trades": int(self.losing_trades),
            "no_entries": int(self.no_entries),
            "timeouts": int(self.timeouts),
            "whipsaws": int(self.whipsaws),
            "whipsaw_frequency_percent": float(self.whipsaw_frequency_percent),
            "win_rate_percent": float(self.win_rate_percent),
            "total_pips": float(self.total_pips),
            "average_pips_per_trade": float(self.average_pips_per_trade),
            "max_drawdown_pips": float(self.max_drawdown_pips),
            "profit_factor": float(self.profit_factor),
            "skipped_events": [dict(item) for item in self.skipped_events],
        }
        if include_trades:
            payload["trades"] = [trade.to_dict() for trade in self.trades]
        return payload
