"""JSON run configuration for CLI-driven backtests."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from core.errors import ValidationError
from core.market_metadata import CostProfileRegistry, get_pip_value, normalize_instrument, normalize_timeframe

from .models import BacktestConfig, CalendarEvent, iso_utc, parse_datetime


@dataclass
class AdaptiveConfig:
    """Calibrate the backtest config from a history window instead of fixed values."""

    history_start_utc: datetime
    history_end_utc: datetime
    atr_period: int = 14
    use_wick_percentile: bool = True
    use_half_life: bool = True
    trailing_refresh_seconds: int = 0

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "AdaptiveConfig":
        if not isinstance(payload, dict):
            raise ValidationError("adaptive must be a mapping")
        start = parse_datetime(payload.get("history_start_utc"))
        end = parse_datetime(payload.get("history_end_utc"))
        if start is None or end is None:
            raise ValidationError("adaptive requires history_start_utc and history_end_utc")
        if end <= start:
            raise ValidationError("adaptive history_end_utc must be after history_start_utc")
        return cls(
            history_start_utc=start,
            history_end_utc=end,
            atr_period=int(payload.get("atr_period", 14)),
            use_wick_percentile=bool(payload.get("use_wick_percentile", True)),
            use_half_life=bool(payload.get("use_half_life", True)),
            trailing_refresh_seconds=int(payload.get("trailing_refresh_seconds", 0)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "history_start_utc": iso_utc(self.history_start_utc),
            "history_end_utc": iso_utc(self.history_end_utc),
            "atr_period": int(self.atr_period),
            "use_wick_percentile": bool(self.use_wick_percentile),
            "use_half_life": bool(self.use_half_life),
            "trailing_refresh_seconds": int(self.trailing_refresh_seconds),
        }


@dataclass
class BacktestRunConfig:
    pair: str
    data_root: Path
    report_dir: Path
    events: list[CalendarEvent]
    backtest: BacktestConfig | None = None
    adaptive: AdaptiveConfig | None = None
    timeframe: str = "M1"
    max_workers: int = 1
    cost_profiles: CostProfileRegistry = field(default_factory=CostProfileRegistry)

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "BacktestRunConfig":
        if not isinstance(payload, dict):
            raise ValidationError("Backtest config must be a JSON object")

        pair = normalize_instrument(str(payload.get("pair") or ""))
        timeframe = normalize_timeframe(str(payload.get("timeframe") or "M1"))

        events_raw = payload.get("events")
        if not isinstance(events_raw, list) or not events_raw:
            raise ValidationError("Backtest config requires a non-empty events list")
        events = [CalendarEvent.from_dict(item) for item in events_raw]

        backtest_raw = payload.get("backtest")
        adaptive_raw = payload.get("adaptive")
        if (backtest_raw is None) == (adaptive_raw is None):
            raise ValidationError("Backtest config requires exactly one of 'backtest' or 'adaptive'")
        backtest = None
        if backtest_raw is not None:
            backtest = BacktestConfig.from_dict(
                {"timeframe": timeframe, "point_value": get_pip_value(pair), **dict(backtest_raw)}
            )
        adaptive = None if adaptive_raw is None else AdaptiveConfig.from_dict(adaptive_raw)

        data_root = str(payload.get("data_root") or "").strip()
        report_dir = str(payload.get("report_dir") or "").strip()
        if not data_root:
            raise ValidationError("data_root is required")
        if not report_dir:
            raise ValidationError("report_dir is required")

        max_workers = int(payload.get("max_workers", 1))
        if max_workers < 1:
            raise ValidationError("max_workers must be >= 1")

        return cls(
            pair=pair,
            data_root=Path(data_root),
            report_dir=Path(report_dir),
            events=events,
            backtest=backtest,
            adaptive=adaptive,
            timeframe=timeframe,
            max_workers=max_workers,
            cost_profiles=CostProfileRegistry.from_dict(payload.get("cost_profiles")),
        )

    @classmethod
    def from_path(cls, path: str | Path) -> "BacktestRunConfig":
        config_path = Path(path)
        try:
            payload = json.loads(config_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ValidationError(f"Invalid JSON in {config_path}: {exc}") from exc
        config = cls.from_dict(payload)
        if not config.data_root.is_absolute():
            config.data_root = (config_path.parent / config.data_root).resolve()
        if not config.report_dir.is_absolute():
            config.report_dir = (config_path.parent / config.report_dir).resolve()
        return config

    def to_dict(self) -> dict[str, Any]:
        return {
            "pair": self.pair,
            "timeframe": self.timeframe,
            "data_root": str(self.data_root),
            "report_dir": str(self.report_dir),
            "max_workers": int(self.max_workers),
            "events": [event.to_dict() for event in self.events],
            "backtest": None if self.backtest is None else self.backtest.to_dict(),
            "adaptive": None if self.adaptive is None else self.adaptive.to_dict(),
            "cost_profiles": {symbol: profile.to_dict() for symbol, profile in self.cost_profiles.by_symbol.items()},
        }
