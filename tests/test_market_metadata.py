import logging
import logging.handlers

import pytest

from core.errors import NoEventsError, StraddleError, ValidationError
from core.logging_setup import LOG_FILE_NAME, setup_logging
from core.market_metadata import (
    CostProfile,
    CostProfileRegistry,
    format_price,
    get_instrument_class,
    get_pip_unit,
    get_pip_value,
    normalize_instrument,
    normalize_timeframe,
    timeframe_duration,
)


@pytest.mark.parametrize(
    "raw,expected",
    [("eur/usd", "EURUSD"), ("EUR_USD", "EURUSD"), (" gbp-jpy ", "GBPJPY"), ("gold", "XAUUSD")],
)
def test_normalize_instrument(raw, expected):
    assert normalize_instrument(raw) == expected


@pytest.mark.parametrize("raw", ["", "  ", "E$", "A" * 25])
def test_normalize_instrument_rejects_bad_input(raw):
    with pytest.raises(ValidationError):
        normalize_instrument(raw)


def test_normalize_timeframe():
    assert normalize_timeframe("1m") == "M1"
    assert normalize_timeframe("h4") == "H4"
    assert normalize_timeframe("M15") == "M15"
    assert timeframe_duration("5m").total_seconds() == 300
    with pytest.raises(ValidationError):
        normalize_timeframe("W1")


@pytest.mark.parametrize(
    "symbol,klass,pip,unit",
    [
        ("EURUSD", "FX", 0.0001, "pips"),
        ("USDJPY", "JPY", 0.01, "pips"),
        ("XAUUSD", "METAL", 0.1, "pips"),
        ("XAGUSD", "METAL", 0.01, "pips"),
        ("BTCUSD", "CRYPTO", 1.0, "pts"),
        ("US30", "INDEX", 1.0, "pts"),
        ("NGASUSD", "ENERGY", 0.001, "pts"),
        ("WTICOUSD", "ENERGY", 0.01, "pts"),
    ],
)
def test_instrument_classification(symbol, klass, pip, unit):
    assert get_instrument_class(symbol) == klass
    assert get_pip_value(symbol) == pytest.approx(pip)
    assert get_pip_unit(symbol) == unit


def test_format_price_uses_class_precision():
    assert format_price("EURUSD", 1.1) == "1.10000"
    assert format_price("USDJPY", 150.1234) == "150.123"


def test_cost_profile_serializes_pips():
    assert CostProfile(spread_pips=2.5, slippage_pips=1.0).to_dict() == {"spread_pips": 2.5, "slippage_pips": 1.0}


def test_registry_prefers_symbol_then_class():
    registry = CostProfileRegistry()
    assert registry.get("GBPUSD").spread_pips == 4.0
    assert registry.get("EURUSD").spread_pips == 2.5
    assert registry.get("BTCUSD").spread_pips == 40.0


def test_registry_from_dict_overrides_symbol():
    registry = CostProfileRegistry.from_dict({"eur/usd": {"spread_pips": 0.8, "slippage_pips": 0.2}})
    profile = registry.get("EURUSD")
    assert profile.spread_pips == pytest.approx(0.8)
    assert profile.slippage_pips == pytest.approx(0.2)

    with pytest.raises(ValidationError):
        CostProfileRegistry.from_dict({"EURUSD": 3})


def test_error_hierarchy():
    assert issubclass(NoEventsError, ValidationError)
    assert issubclass(ValidationError, ValueError)
    assert issubclass(ValidationError, StraddleError)


def test_setup_logging_is_idempotent(tmp_path, clean_root_logger):
    setup_logging(log_level="DEBUG", logs_dir=tmp_path)
    root = setup_logging(log_level="DEBUG", logs_dir=tmp_path)

    rotating = [h for h in root.handlers if isinstance(h, logging.handlers.RotatingFileHandler)]
    assert len(rotating) == 1
    assert len(root.handlers) == 2

    logging.getLogger("straddle.test").debug("hello file")
    for handler in root.handlers:
        handler.flush()
    assert "hello file" in (tmp_path / LOG_FILE_NAME).read_text(encoding="utf-8")


def test_setup_logging_without_console(tmp_path, clean_root_logger):
    root = setup_logging(logs_dir=tmp_path, console_output=False)
    assert len(root.handlers) == 1


def test_setup_logging_rejects_unknown_level(tmp_path):
    with pytest.raises(ValidationError):
        setup_logging(log_level="LOUD", logs_dir=tmp_path)
