import csv
import json
from datetime import timedelta

import pytest

from core.errors import ValidationError
from run_backtest import main
from straddle.run_config import BacktestRunConfig

from conftest import EVENT_TIME, rally_window

EVENT = {"symbol": "USD", "event_time": "2024-03-08T13:30:00Z", "description": "Non-Farm Payrolls"}


def _write_candles(root, candles):
    folder = root / "EURUSD"
    folder.mkdir(parents=True, exist_ok=True)
    with (folder / "candles_EURUSD_M1.csv").open("w", encoding="utf-8", newline="") as handle:
        writer = csv.writer(handle)
        writer.writerow(["time", "open", "high", "low", "close", "volume"])
        for candle in candles:
            row = candle.to_dict()
            writer.writerow([row["time_utc"], repr(candle.open), repr(candle.high), repr(candle.low), repr(candle.close), row["volume"]])


def _write_config(tmp_path, **overrides):
    payload = {
        "pair": "EUR/USD",
        "data_root": "data",
        "report_dir": "reports",
        "events": [EVENT],
        "backtest": {"offset_pips": 5, "stop_loss_pips": 10, "tp_rr": 2, "timeout_minutes": 30},
    }
    payload.update(overrides)
    path = tmp_path / "run.json"
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def _exit_code(argv):
    with pytest.raises(SystemExit) as excinfo:
        main(argv)
    return excinfo.value.code


def test_run_config_resolves_relative_paths(tmp_path):
    config = BacktestRunConfig.from_path(_write_config(tmp_path))

    assert config.pair == "EURUSD"
    assert config.data_root == (tmp_path / "data").resolve()
    assert config.report_dir == (tmp_path / "reports").resolve()
    assert config.backtest.point_value == pytest.approx(0.0001)
    assert config.backtest.timeframe == "M1"
    assert config.events[0].description == "Non-Farm Payrolls"


def test_run_config_pip_value_follows_pair(tmp_path):
    config = BacktestRunConfig.from_path(_write_config(tmp_path, pair="USDJPY"))
    assert config.backtest.point_value == pytest.approx(0.01)


@pytest.mark.parametrize(
    "overrides",
    [
        {"events": []},
        {"adaptive": {"history_start_utc": "2024-03-07T00:00:00Z", "history_end_utc": "2024-03-08T00:00:00Z"}},
        {"backtest": None},
        {"data_root": ""},
        {"max_workers": 0},
        {"backtest": {"bogus": 1}},
    ],
)
def test_run_config_rejects_bad_payloads(tmp_path, overrides):
    with pytest.raises(ValidationError):
        BacktestRunConfig.from_path(_write_config(tmp_path, **overrides))


def test_run_config_rejects_bad_json(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(ValidationError):
        BacktestRunConfig.from_path(path)


def test_adaptive_window_must_be_ordered(tmp_path):
    adaptive = {"history_start_utc": "2024-03-08T00:00:00Z", "history_end_utc": "2024-03-07T00:00:00Z"}
    with pytest.raises(ValidationError):
        BacktestRunConfig.from_path(_write_config(tmp_path, backtest=None, adaptive=adaptive))


def test_cli_params_prints_json(tmp_path, capsys, clean_root_logger):
    code = _exit_code(
        ["--log-level", "WARNING", "--logs-dir", str(tmp_path), "params", "--symbol", "EURUSD", "--atr", "10", "--noise", "2.5"]
    )
    out = capsys.readouterr().out

    assert code == 0
    payload = json.loads(out[out.index("{"):])
    assert payload["stop_loss_pips"] == pytest.approx(41.0)
    assert payload["timeout_minutes"] == 15


def test_cli_params_invalid_input(tmp_path, clean_root_logger):
    argv = ["--logs-dir", str(tmp_path), "params", "--symbol", "EURUSD", "--atr", "-1", "--noise", "1"]
    assert _exit_code(argv) == 3


def test_cli_run_writes_report(tmp_path, clean_root_logger):
    _write_candles(tmp_path / "data", rally_window(EVENT_TIME))
    config_path = _write_config(tmp_path)

    assert _exit_code(["--logs-dir", str(tmp_path / "logs"), "run", "--config", str(config_path)]) == 0

    summary = json.loads((tmp_path / "reports" / "summary.json").read_text(encoding="utf-8"))
    assert summary["result"]["total_trades"] == 1
    assert summary["result"]["winning_trades"] == 1
    assert summary["run_config"]["pair"] == "EURUSD"
    assert (tmp_path / "reports" / "trades.csv").exists()


def test_cli_run_adaptive(tmp_path, clean_root_logger):
    history_base = EVENT_TIME - timedelta(days=1)
    _write_candles(tmp_path / "data", rally_window(history_base) + rally_window(EVENT_TIME))
    adaptive = {
        "history_start_utc": (history_base - timedelta(minutes=10)).isoformat(),
        "history_end_utc": (history_base + timedelta(hours=1)).isoformat(),
    }
    config_path = _write_config(tmp_path, backtest=None, adaptive=adaptive)

    assert _exit_code(["--logs-dir", str(tmp_path / "logs"), "run", "--config", str(config_path)]) == 0

    summary = json.loads((tmp_path / "reports" / "summary.json").read_text(encoding="utf-8"))
    assert set(summary["parameters"]) >= {"offset_pips", "stop_loss_pips", "timeout_minutes"}
    assert summary["config"]["offset_pips"] == summary["parameters"]["offset_pips"]


def test_cli_run_missing_config(tmp_path, clean_root_logger):
    assert _exit_code(["--logs-dir", str(tmp_path), "run", "--config", str(tmp_path / "missing.json")]) == 2


def test_cli_run_missing_candles(tmp_path, clean_root_logger):
    config_path = _write_config(tmp_path)
    assert _exit_code(["--logs-dir", str(tmp_path / "logs"), "run", "--config", str(config_path)]) == 3
