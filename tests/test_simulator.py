from dataclasses import replace
from datetime import timedelta

import pytest

from core.errors import ValidationError
from straddle.models import BacktestConfig, TradeOutcome
from straddle.parameters import StraddleParameters, StraddleParameterService
from straddle.simulator import EventSimulator, simulate

from conftest import EVENT_TIME, candle_at, flat_candles, rally_window


def test_flat_market_times_out_with_costs_on_both_legs(event, base_config):
    config = replace(base_config, stop_loss_pips=50.0, timeout_minutes=5, spread_pips=1.0, slippage_pips=0.5)
    result = simulate(event, flat_candles(-5, 15), config)

    assert result.outcome is TradeOutcome.TIMEOUT
    assert result.long_pips == pytest.approx(-2.0)
    assert result.short_pips == pytest.approx(-2.0)
    assert result.pips_net == pytest.approx(-4.0)
    assert result.whipsaw is True
    assert result.entry_time == EVENT_TIME
    assert result.exit_time == EVENT_TIME + timedelta(minutes=6)
    assert result.duration_minutes == 6


def test_candles_ending_before_timeout_close_at_last_bar(event, base_config):
    result = simulate(event, flat_candles(0, 4), base_config)

    assert result.outcome is TradeOutcome.TIMEOUT
    assert result.exit_time == EVENT_TIME + timedelta(minutes=3)
    assert any("end of candles" in line for line in result.logs)


def test_no_candle_after_event_is_no_entry(event, base_config):
    result = simulate(event, flat_candles(-5, 5), base_config)

    assert result.outcome is TradeOutcome.NO_ENTRY
    assert result.pips_net == 0.0
    assert result.entry_time is None
    assert any("straddle not placed" in line for line in result.logs)


def test_untriggered_stop_orders_are_no_entry(event, base_config):
    config = replace(base_config, offset_pips=5.0)
    result = simulate(event, flat_candles(-5, 60), config)

    assert result.outcome is TradeOutcome.NO_ENTRY
    assert result.duration_minutes == 0
    assert any("order cancelled" in line for line in result.logs)


def test_breakout_leg_takes_profit(event, base_config):
    config = replace(base_config, offset_pips=5.0)
    result = simulate(event, rally_window(EVENT_TIME), config)

    assert result.outcome is TradeOutcome.TAKE_PROFIT
    assert result.pips_net == pytest.approx(20.0)
    assert result.short_pips == 0.0
    assert result.whipsaw is False
    assert result.exit_time == EVENT_TIME + timedelta(minutes=6)
    assert result.duration_minutes == 6
    assert result.max_favorable_excursion == pytest.approx(21.0)
    assert result.max_adverse_excursion == pytest.approx(7.0)


def test_both_legs_stopped_on_one_bar_is_whipsaw(event, base_config):
    config = replace(base_config, offset_pips=5.0)
    candles = flat_candles(-5, 6) + [candle_at(1, 1.1000, 1.1010, 1.0990, 1.1000)] + flat_candles(2, 10)
    result = simulate(event, candles, config)

    assert result.outcome is TradeOutcome.STOP_LOSS
    assert result.long_pips == pytest.approx(-10.0)
    assert result.short_pips == pytest.approx(-10.0)
    assert result.whipsaw is True
    assert result.duration_minutes == 1


def test_same_bar_target_and_stop_after_trigger_is_stop_loss(event, base_config):
    config = replace(base_config, offset_pips=5.0, stop_loss_pips=4.0)
    candles = (
        flat_candles(-5, 6)
        + [
            candle_at(1, 1.1002, 1.1006, 1.1002, 1.1005),
            candle_at(2, 1.1005, 1.1015, 1.1000, 1.1008),
        ]
        + flat_candles(3, 10, price=1.1008)
    )
    result = simulate(event, candles, config)

    assert result.outcome is TradeOutcome.STOP_LOSS
    assert result.long_pips == pytest.approx(-4.0)
    assert result.short_pips == 0.0
    assert result.whipsaw is False
    assert result.exit_time == EVENT_TIME + timedelta(minutes=2)
    assert any("LONG exit STOP_LOSS at 1.10010" in line for line in result.logs)


def test_unsorted_candles_are_ordered_before_simulation(event, base_config):
    config = replace(base_config, offset_pips=5.0)
    candles = rally_window(EVENT_TIME)
    expected = simulate(event, candles, config)
    shuffled = simulate(event, list(reversed(candles)), config)

    assert shuffled.pips_net == pytest.approx(expected.pips_net)
    assert shuffled.exit_time == expected.exit_time


def test_logs_are_chronological(event, base_config):
    config = replace(base_config, offset_pips=5.0)
    result = simulate(event, rally_window(EVENT_TIME), config)

    stamps = [line[: line.find("]") + 1] for line in result.logs]
    assert stamps == sorted(stamps)
    assert any("state NOT_TRIGGERED -> LONG_OPEN" in line for line in result.logs)


def test_parameter_values_reach_simulation_unchanged(event):
    params = StraddleParameters(
        offset_pips=2.0,
        stop_loss_pips=8.0,
        trailing_stop_pips=16.0,
        timeout_minutes=15,
        sl_recovery_pips=50.0,
        hard_tp_pips=80.0,
        risk_reward_ratio=10.0,
        spread_safety_margin_pips=0.0,
    )
    config = BacktestConfig.from_parameters(params, 0.0001)
    candles = (
        flat_candles(0, 1)
        + [
            candle_at(1, 1.1000, 1.1010, 1.1000, 1.1008),
            candle_at(2, 1.1030, 1.1040, 1.1030, 1.1036),
        ]
        + flat_candles(3, 20, price=1.1036)
    )
    result = simulate(event, candles, config)
    joined = "\n".join(result.logs)

    assert "LONG entry at 1.10020 sl=1.09940 tp=1.10820" in joined
    assert "trailing stop 1.09940 -> 1.10240" in joined
    assert result.outcome is TradeOutcome.TIMEOUT
    assert result.exit_time == EVENT_TIME + timedelta(minutes=16)
    assert result.pips_net == pytest.approx(34.0)


def test_from_parameters_maps_service_output():
    params = StraddleParameterService().calculate_parameters(10.0, 2.5, "EURUSD")
    config = BacktestConfig.from_parameters(params, 0.0001, slippage_pips=1.0)

    assert config.offset_pips == params.offset_pips
    assert config.stop_loss_pips == params.stop_loss_pips
    assert config.trailing_stop_pips == params.trailing_stop_pips
    assert config.sl_recovery_pips == params.sl_recovery_pips
    assert config.timeout_minutes == params.timeout_minutes
    assert config.tp_rr == pytest.approx(2.0)
    assert config.spread_pips == pytest.approx(2.5)


def test_invalid_config_rejected_by_simulator(base_config):
    with pytest.raises(ValidationError):
        EventSimulator(replace(base_config, point_value=0.0))
