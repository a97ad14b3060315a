"""CLI for event straddle backtests and adaptive parameter lookups."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

_HERE = Path(__file__).parent
if str(_HERE) not in sys.path:
    sys.path.insert(0, str(_HERE))

from core.errors import StraddleError  # noqa: E402
from core.logging_setup import setup_logging  # noqa: E402
from core.market_metadata import get_pip_value  # noqa: E402
from straddle import (  # noqa: E402
    BacktestEngine,
    BacktestRunConfig,
    CsvCandleLoader,
    StraddleParameterService,
    calibrate_config,
    write_backtest_artifacts,
)


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Event straddle backtesting CLI")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity",
    )
    parser.add_argument("--logs-dir", default=None, help="Directory for the rotating log file")

    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run a straddle backtest from a JSON config")
    run_parser.add_argument("--config", required=True, help="Path to the run JSON config")

    params_parser = subparsers.add_parser("params", help="Compute adaptive straddle parameters")
    params_parser.add_argument("--symbol", required=True, help="Instrument, e.g. EURUSD")
    params_parser.add_argument("--atr", required=True, type=float, help="ATR in pips/points")
    params_parser.add_argument("--noise", required=True, type=float, help="Noise ratio")
    params_parser.add_argument("--half-life", type=float, help="Volatility half-life in minutes")
    params_parser.add_argument("--p95-wick", type=float, help="95th percentile wick in pips")
    params_parser.add_argument("--hour", type=int, help="Event hour (UTC) for session risk adjustment")

    return parser.parse_args(argv)


def _run_backtest(args: argparse.Namespace) -> int:
    logger = logging.getLogger(__name__)
    config_path = Path(args.config)
    if not config_path.exists():
        logger.error("config does not exist: %s", config_path)
        return 2

    try:
        run_config = BacktestRunConfig.from_path(config_path)
        loader = CsvCandleLoader(run_config.data_root)
        extra: dict = {"run_config": run_config.to_dict()}

        if run_config.adaptive is not None:
            adaptive = run_config.adaptive
            history = loader.load_candles_by_pair(
                run_config.pair,
                run_config.timeframe,
                adaptive.history_start_utc,
                adaptive.history_end_utc,
            )
            params, backtest_config = calibrate_config(
                history,
                run_config.pair,
                get_pip_value(run_config.pair),
                StraddleParameterService(cost_profiles=run_config.cost_profiles),
                event_times=[event.event_time for event in run_config.events],
                atr_period=adaptive.atr_period,
                use_wick_percentile=adaptive.use_wick_percentile,
                use_half_life=adaptive.use_half_life,
                trailing_refresh_seconds=adaptive.trailing_refresh_seconds,
                timeframe=run_config.timeframe,
            )
            extra["parameters"] = params.to_dict()
        else:
            backtest_config = run_config.backtest

        engine = BacktestEngine(loader, max_workers=run_config.max_workers)
        result = engine.run(run_config.pair, run_config.events, backtest_config)
        artifacts = write_backtest_artifacts(result, run_config.report_dir, config=backtest_config, extra=extra)
    except StraddleError as exc:
        logger.error(str(exc))
        return 3

    logger.info("Report dir: %s", artifacts["paths"]["report_dir"])
    logger.info("Trades: %s (no entry: %s)", result.total_trades, result.no_entries)
    logger.info("Win rate: %.1f%%  Total: %.1f %s", result.win_rate_percent, result.total_pips, result.unit)
    return 0


def _run_params(args: argparse.Namespace) -> int:
    logger = logging.getLogger(__name__)
    try:
        params = StraddleParameterService().calculate_parameters(
            args.atr,
            args.noise,
            args.symbol,
            half_life_minutes=args.half_life,
            p95_wick_pips=args.p95_wick,
            hour_utc=args.hour,
        )
    except StraddleError as exc:
        logger.error(str(exc))
        return 3
    print(json.dumps(params.to_dict(), indent=2))
    return 0


def _run(args: argparse.Namespace) -> int:
    if args.command == "run":
        return _run_backtest(args)
    if args.command == "params":
        return _run_params(args)
    raise ValueError(f"Unknown command: {args.command}")


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)
    setup_logging(log_level=args.log_level, logs_dir=args.logs_dir)
    raise SystemExit(_run(args))


if __name__ == "__main__":
    main()
