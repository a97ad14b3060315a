"""Backtest result artifacts: trades CSV, summary JSON and a Markdown report."""

from __future__ import annotations

import json
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Optional

import pandas as pd

from .models import BacktestConfig, BacktestResult, iso_utc

TRADE_COLUMNS: tuple[str, ...] = (
    "event_date",
    "event_description",
    "entry_time",
    "exit_time",
    "duration_minutes",
    "outcome",
    "pips_net",
    "long_pips",
    "short_pips",
    "whipsaw",
    "max_favorable_excursion",
    "max_adverse_excursion",
)


def _json_default(value: Any) -> Any:
    if isinstance(value, pd.Timestamp):
        return value.isoformat().replace("+00:00", "Z")
    if isinstance(value, datetime):
        return iso_utc(value)
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, (set, tuple)):
        return list(value)
    return str(value)


def _safe_float(value: Any) -> Optional[float]:
    try:
        if pd.isna(value):
            return None
        return float(value)
    except (TypeError, ValueError):
        return None


def trades_frame(result: BacktestResult) -> pd.DataFrame:
    """One row per simulated event."""
    rows = [{column: trade.to_dict()[column] for column in TRADE_COLUMNS} for trade in result.trades]
    df = pd.DataFrame(rows, columns=list(TRADE_COLUMNS))
    for column in ("event_date", "entry_time", "exit_time"):
        df[column] = pd.to_datetime(df[column], utc=True, errors="coerce")
    return df


def _breakdown(df: pd.DataFrame, group_col: str) -> list[dict[str, Any]]:
    if df.empty or group_col not in df.columns:
        return []

    rows: list[dict[str, Any]] = []
    for key, grp in df.groupby(group_col, dropna=False):
        entered = grp[grp["outcome"] != "NO_ENTRY"]
        wins = int((entered["pips_net"] > 0).sum())
        rows.append(
            {
                group_col: str(key),
                "trades": int(len(grp)),
                "entered": int(len(entered)),
                "wins": wins,
                "losses": int(len(entered)) - wins,
                "win_rate_percent": (wins / len(entered) * 100.0) if len(entered) > 0 else 0.0,
                "total_pips": _safe_float(entered["pips_net"].sum()) if len(entered) > 0 else 0.0,
                "avg_pips": _safe_float(entered["pips_net"].mean()) if len(entered) > 0 else None,
            }
        )
    rows.sort(key=lambda item: str(item[group_col]))
    return rows


def build_summary(
    result: BacktestResult,
    config: Optional[BacktestConfig] = None,
    extra: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    """Summary payload with headline metrics and outcome/hour/month breakdowns."""
    df = trades_frame(result)
    if not df.empty:
        df["event_hour_utc"] = df["event_date"].dt.hour
        df["month"] = df["event_date"].dt.strftime("%Y-%m")

    entered = df[df["outcome"] != "NO_ENTRY"] if not df.empty else df
    return {
        "result": result.to_dict(include_trades=False),
        "config": None if config is None else config.to_dict(),
        "excursions": {
            "avg_mfe": _safe_float(entered["max_favorable_excursion"].mean()) if not entered.empty else None,
            "avg_mae": _safe_float(entered["max_adverse_excursion"].mean()) if not entered.empty else None,
            "avg_duration_minutes": _safe_float(entered["duration_minutes"].mean()) if not entered.empty else None,
        },
        "breakdowns": {
            "by_outcome": _breakdown(df, "outcome"),
            "by_event_hour_utc": _breakdown(df, "event_hour_utc"),
            "by_month": _breakdown(df, "month"),
        },
        **(extra or {}),
    }


def _md_table(rows: list[dict[str, Any]], columns: list[str]) -> str:
    if not rows:
        return "_No rows_\n"
    header = "| " + " | ".join(columns) + " |"
    sep = "| " + " | ".join(["---"] * len(columns)) + " |"
    body: list[str] = []
    for row in rows:
        values: list[str] = []
        for col in columns:
            value = row.get(col)
            if isinstance(value, float):
                values.append(f"{value:.6g}")
            elif value is None:
                values.append("")
            else:
                values.append(str(value))
        body.append("| " + " | ".join(values) + " |")
    return "\n".join([header, sep, *body]) + "\n"


def render_markdown(summary: dict[str, Any]) -> str:
    result = summary.get("result", {})
    unit = result.get("unit", "pips")
    lines = [
        f"# Straddle Backtest: {result.get('symbol')}",
        "",
        f"- Event: `{result.get('event_name')}`",
        f"- Trades: `{result.get('total_trades')}` (no entry: `{result.get('no_entries')}`)",
        f"- Win rate: `{result.get('win_rate_percent', 0.0):.1f}%`",
        f"- Total: `{result.get('total_pips', 0.0):.1f} {unit}`",
        f"- Max drawdown: `{result.get('max_drawdown_pips', 0.0):.1f} {unit}`",
        f"- Profit factor: `{result.get('profit_factor', 0.0):.2f}`",
        f"- Whipsaws: `{result.get('whipsaws')}` ({result.get('whipsaw_frequency_percent', 0.0):.1f}%)",
        "",
        "## By Outcome",
        "",
        _md_table(summary["breakdowns"]["by_outcome"], ["outcome", "trades", "total_pips", "avg_pips"]),
        "## By Event Hour (UTC)",
        "",
        _md_table(
            summary["breakdowns"]["by_event_hour_utc"],
            ["event_hour_utc", "trades", "entered", "wins", "win_rate_percent", "total_pips"],
        ),
        "## By Month",
        "",
        _md_table(summary["breakdowns"]["by_month"], ["month", "trades", "entered", "wins", "total_pips"]),
    ]
    skipped = result.get("skipped_events") or []
    if skipped:
        lines.extend(["## Skipped Events", "", _md_table(skipped, ["event", "reason"])])
    return "\n".join(lines)


def write_backtest_artifacts(
    result: BacktestResult,
    report_dir: str | Path,
    config: Optional[BacktestConfig] = None,
    extra: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    """Write trades.csv, summary.json and report.md under ``report_dir``."""
    out_dir = Path(report_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    summary = build_summary(result, config=config, extra=extra)
    trades_path = out_dir / "trades.csv"
    summary_path = out_dir / "summary.json"
    report_path = out_dir / "report.md"

    trades_frame(result).to_csv(trades_path, index=False)
    summary_path.write_text(json.dumps(summary, indent=2, default=_json_default), encoding="utf-8")
    report_path.write_text(render_markdown(summary), encoding="utf-8")

    return {
        "summary": summary,
        "paths": {
            "report_dir": str(out_dir),
            "trades_csv": str(trades_path),
            "summary_json": str(summary_path),
            "report_md": str(report_path),
        },
    }
