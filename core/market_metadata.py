"""Shared market metadata, normalization helpers and trading-cost profiles."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Mapping, Optional

from .errors import ValidationError

# User-facing aliases for common symbols.
INSTRUMENT_ALIASES: dict[str, str] = {
    "GOLD": "XAUUSD",
    "SILVER": "XAGUSD",
    "OIL": "WTICOUSD",
    "BTC": "BTCUSD",
    "ETH": "ETHUSD",
}

# Canonical timeframe aliases used across loaders and configs.
TIMEFRAME_ALIASES: dict[str, str] = {
    "1m": "M1",
    "m1": "M1",
    "5m": "M5",
    "m5": "M5",
    "15m": "M15",
    "m15": "M15",
    "30m": "M30",
    "m30": "M30",
    "1h": "H1",
    "h1": "H1",
    "4h": "H4",
    "h4": "H4",
    "1d": "D",
    "d": "D",
    "d1": "D",
    "daily": "D",
}

TIMEFRAME_DURATIONS: dict[str, timedelta] = {
    "M1": timedelta(minutes=1),
    "M5": timedelta(minutes=5),
    "M15": timedelta(minutes=15),
    "M30": timedelta(minutes=30),
    "H1": timedelta(hours=1),
    "H4": timedelta(hours=4),
    "D": timedelta(days=1),
}

SUPPORTED_TIMEFRAMES = set(TIMEFRAME_DURATIONS)

_SYMBOL_RE = re.compile(r"^[A-Z0-9]{3,20}$")

_CRYPTO_TOKENS = (
    "BTC", "ETH", "SOL", "BNB", "XRP", "ADA", "DOT", "LTC", "BCH", "DOGE",
    "LINK", "AVAX", "XLM", "TRX", "ATOM",
)
_INDEX_TOKENS = (
    "IDX", "US30", "US100", "US500", "SPX", "NAS", "NDX", "DAX", "GER", "DE40",
    "DE30", "UK100", "FRA40", "JPN225", "HK50", "USTEC", "STOXX", "FTSE",
)
_ENERGY_TOKENS = ("WTI", "OIL", "BRENT", "CRUDE", "NGAS")


def resolve_instrument_alias(raw: str) -> str:
    """Resolve user alias to canonical symbol if available."""
    key = raw.strip().upper()
    return INSTRUMENT_ALIASES.get(key, key)


def normalize_instrument(raw: str, *, allow_aliases: bool = True) -> str:
    """
    Normalize user input to the compact symbol format used by candle stores.

    Examples:
    - eur/usd -> EURUSD
    - EUR_USD -> EURUSD
    - gold -> XAUUSD
    """
    if not raw or not str(raw).strip():
        raise ValidationError("Instrument is required.")

    normalized = str(raw).strip().upper()
    for separator in ("/", "_", "-", " ", "."):
        normalized = normalized.replace(separator, "")

    if allow_aliases:
        normalized = resolve_instrument_alias(normalized)

    if not _SYMBOL_RE.match(normalized):
        raise ValidationError(f"Invalid instrument format: {raw}")

    return normalized


def normalize_timeframe(raw: str) -> str:
    """Normalize timeframe aliases to canonical form (M1/M5/M15/M30/H1/H4/D)."""
    if not raw or not str(raw).strip():
        raise ValidationError("Timeframe is required.")

    key = str(raw).strip().lower()
    if key in TIMEFRAME_ALIASES:
        return TIMEFRAME_ALIASES[key]

    normalized = str(raw).strip().upper()
    if normalized in SUPPORTED_TIMEFRAMES:
        return normalized

    raise ValidationError(
        f"Unsupported timeframe: {raw}. "
        "Supported aliases: 1m/m1, 5m/m5, 15m/m15, 30m/m30, 1h/h1, 4h/h4, 1d/d1."
    )


def timeframe_duration(timeframe: str) -> timedelta:
    """Bar duration for a timeframe alias."""
    return TIMEFRAME_DURATIONS[normalize_timeframe(timeframe)]


def get_instrument_class(instrument: str) -> str:
    """Classify instrument for pip, unit and cost policies."""
    inst = normalize_instrument(instrument, allow_aliases=True)
    if inst.startswith("XAU") or inst.startswith("XAG"):
        return "METAL"
    if any(token in inst for token in _CRYPTO_TOKENS):
        return "CRYPTO"
    if any(token in inst for token in _ENERGY_TOKENS):
        return "ENERGY"
    if any(token in inst for token in _INDEX_TOKENS):
        return "INDEX"
    if "JPY" in inst or "HUF" in inst or "CZK" in inst:
        return "JPY"
    return "FX"


def get_pip_value(instrument: str) -> float:
    """Price units per pip (or per point for indices and crypto)."""
    inst = normalize_instrument(instrument, allow_aliases=True)
    instrument_class = get_instrument_class(inst)
    if instrument_class == "METAL":
        return 0.1 if inst.startswith("XAU") else 0.01
    if instrument_class in {"CRYPTO", "INDEX"}:
        return 1.0
    if instrument_class == "ENERGY":
        return 0.001 if "NGAS" in inst else 0.01
    if instrument_class == "JPY":
        return 0.01
    return 0.0001


def get_pip_unit(instrument: str) -> str:
    """Display unit for pip-denominated results."""
    if get_instrument_class(instrument) in {"CRYPTO", "INDEX", "ENERGY"}:
        return "pts"
    return "pips"


def get_price_precision(instrument: str) -> int:
    """Get display precision by instrument class."""
    instrument_class = get_instrument_class(instrument)
    if instrument_class == "FX":
        return 5
    if instrument_class in {"JPY", "ENERGY"}:
        return 3
    if instrument_class == "METAL":
        return 2
    return 1


def format_price(instrument: str, value: float) -> str:
    """Format price string using instrument-aware precision."""
    precision = get_price_precision(instrument)
    return f"{float(value):,.{precision}f}"


@dataclass(frozen=True)
class CostProfile:
    """Spread and slippage assumptions for one instrument, in pips."""

    spread_pips: float
    slippage_pips: float

    def to_dict(self) -> dict[str, float]:
        return {
            "spread_pips": float(self.spread_pips),
            "slippage_pips": float(self.slippage_pips),
        }


DEFAULT_CLASS_COSTS: dict[str, CostProfile] = {
    "FX": CostProfile(spread_pips=2.5, slippage_pips=1.0),
    "JPY": CostProfile(spread_pips=2.5, slippage_pips=1.0),
    "METAL": CostProfile(spread_pips=4.0, slippage_pips=2.0),
    "ENERGY": CostProfile(spread_pips=4.0, slippage_pips=2.0),
    "INDEX": CostProfile(spread_pips=7.5, slippage_pips=5.0),
    "CRYPTO": CostProfile(spread_pips=40.0, slippage_pips=20.0),
}

DEFAULT_SYMBOL_COSTS: dict[str, CostProfile] = {
    "GBPUSD": CostProfile(spread_pips=4.0, slippage_pips=2.0),
    "AUDUSD": CostProfile(spread_pips=4.0, slippage_pips=2.0),
    "NZDUSD": CostProfile(spread_pips=4.5, slippage_pips=2.0),
    "USDCAD": CostProfile(spread_pips=3.5, slippage_pips=1.5),
    "USDCHF": CostProfile(spread_pips=3.0, slippage_pips=1.5),
    "GBPJPY": CostProfile(spread_pips=6.5, slippage_pips=3.0),
    "EURJPY": CostProfile(spread_pips=6.5, slippage_pips=3.0),
}


@dataclass
class CostProfileRegistry:
    """Injectable lookup of cost profiles: symbol override, then asset class, then default."""

    by_class: dict[str, CostProfile] = field(default_factory=lambda: dict(DEFAULT_CLASS_COSTS))
    by_symbol: dict[str, CostProfile] = field(default_factory=lambda: dict(DEFAULT_SYMBOL_COSTS))
    default: CostProfile = field(default_factory=lambda: CostProfile(spread_pips=2.5, slippage_pips=1.0))

    @classmethod
    def from_dict(cls, payload: Optional[Mapping[str, Mapping[str, float]]]) -> "CostProfileRegistry":
        """Build a registry whose symbol overrides come from a JSON-style mapping."""
        registry = cls()
        for raw_symbol, raw_profile in (payload or {}).items():
            if not isinstance(raw_profile, Mapping):
                raise ValidationError(f"cost profile for {raw_symbol} must be a mapping")
            registry.by_symbol[normalize_instrument(raw_symbol)] = CostProfile(
                spread_pips=float(raw_profile.get("spread_pips", 0.0)),
                slippage_pips=float(raw_profile.get("slippage_pips", 0.0)),
            )
        return registry

    def get(self, instrument: str) -> CostProfile:
        inst = normalize_instrument(instrument)
        if inst in self.by_symbol:
            return self.by_symbol[inst]
        return self.by_class.get(get_instrument_class(inst), self.default)
