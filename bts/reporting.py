"""Performance metrics computed from the engine event log, plus artifact writing."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Optional

import numpy as np
import pandas as pd

from .models import Event, EventType, iso_utc
from .runtime import BacktestEngine

logger = logging.getLogger(__name__)

EVENT_COLUMNS: tuple[str, ...] = (
    "event_type",
    "time_utc",
    "order_id",
    "side",
    "entry_type",
    "price",
    "quantity",
    "exit_price",
    "pnl",
    "balance",
    "locked",
    "fees",
    "unrealized_pnl",
    "free",
)


def json_default(value: Any) -> Any:
    if isinstance(value, pd.Timestamp):
        return value.isoformat().replace("+00:00", "Z")
    if isinstance(value, datetime):
        return iso_utc(value)
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, np.generic):
        return value.item()
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, (set, tuple)):
        return list(value)
    return str(value)


def events_frame(events: Sequence[Event]) -> pd.DataFrame:
    """Flatten events into one row each, in log order."""
    return pd.DataFrame([event.to_dict() for event in events], columns=list(EVENT_COLUMNS))


def _balance_series(events: Sequence[Event], initial_balance: float) -> pd.Series:
    balances = [float(initial_balance)]
    balances.extend(
        event.wallet.balance
        for event in events
        if event.event_type == EventType.WALLET_UPDATE and event.wallet is not None
    )
    return pd.Series(balances, dtype=float)


def _closed_pnl_series(events: Sequence[Event]) -> pd.Series:
    pnls = [
        event.position.pnl
        for event in events
        if event.event_type == EventType.DEL_POSITION and event.position is not None
    ]
    return pd.Series([value for value in pnls if value is not None], dtype=float)


def _profit_factor(series: pd.Series) -> float:
    wins = float(series[series > 0].sum())
    losses = float(series[series <= 0].abs().sum())
    if losses == 0:
        return float("inf")
    return wins / losses


def _max_drawdown_pct(balances: pd.Series) -> float:
    if balances.empty:
        return 0.0
    peaks = balances.cummax()
    return float(((peaks - balances) / peaks).max() * 100.0)


class Metrics:
    """Key performance indicators derived from an event log."""

    def __init__(self, events: Sequence[Event], initial_balance: float):
        self.events = tuple(events)
        self.initial_balance = float(initial_balance)

    @classmethod
    def from_engine(cls, engine: BacktestEngine) -> "Metrics":
        return cls(engine.events, engine.initial_balance)

    def max_drawdown(self) -> float:
        """Largest peak-to-trough fall of the wallet balance, in percent."""
        return _max_drawdown_pct(_balance_series(self.events, self.initial_balance))

    def profit_factor(self) -> float:
        """Gross realized gains over gross realized losses; ``inf`` without losses."""
        return _profit_factor(_closed_pnl_series(self.events))

    def sharpe_ratio(self, risk_free_rate: float = 0.0) -> float:
        """
        Mean over standard deviation of balance-to-balance returns.

        Returns 0.0 when there are no returns or they do not vary.
        """
        balances = _balance_series(self.events, self.initial_balance)
        returns = (balances.diff() / balances.shift()).dropna()
        if returns.empty:
            return 0.0
        std = float(returns.std(ddof=0))
        if std == 0 or not np.isfinite(std):
            return 0.0
        return (float(returns.mean()) - float(risk_free_rate)) / std

    def win_rate(self) -> float:
        """Share of closed positions with a positive P&L, in percent."""
        pnls = _closed_pnl_series(self.events)
        if pnls.empty:
            return 0.0
        return float((pnls > 0).sum()) / len(pnls) * 100.0

    def closed_positions(self) -> int:
        return int(len(_closed_pnl_series(self.events)))

    def summary(self, risk_free_rate: float = 0.0) -> dict[str, Any]:
        return {
            "initial_balance": self.initial_balance,
            "closed_positions": self.closed_positions(),
            "max_drawdown_pct": self.max_drawdown(),
            "profit_factor": self.profit_factor(),
            "sharpe_ratio": self.sharpe_ratio(risk_free_rate),
            "win_rate_pct": self.win_rate(),
        }


def build_summary(engine: BacktestEngine, risk_free_rate: float = 0.0) -> dict[str, Any]:
    """Wallet figures at the end of a run merged with the event-log metrics."""
    summary = Metrics.from_engine(engine).summary(risk_free_rate)
    summary.update(
        {
            "balance": engine.balance,
            "total_balance": engine.total_balance(),
            "free_balance": engine.free_balance(),
            "fees_paid": engine.fees_paid,
            "unrealized_pnl": engine.wallet.unrealized_pnl,
            "open_positions": len(engine.positions),
            "pending_orders": len(engine.orders),
            "candles": len(engine.candles),
            "first_candle_utc": iso_utc(engine.candles[0].open_time),
            "last_candle_utc": iso_utc(engine.candles[-1].close_time),
        }
    )
    return summary


def write_run_artifacts(
    engine: BacktestEngine,
    report_dir: str | Path,
    config: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    """Write the event log, closed positions, summary, and run config of a finished run."""
    out_dir = Path(report_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    events_df = events_frame(engine.events)
    positions_df = pd.DataFrame(
        [
            event.position.to_dict()
            for event in engine.events
            if event.event_type == EventType.DEL_POSITION and event.position is not None
        ]
    )
    summary = build_summary(engine)

    events_path = out_dir / "events.csv"
    positions_path = out_dir / "positions.csv"
    summary_path = out_dir / "summary.json"
    run_cfg_path = out_dir / "run_config.json"

    events_df.to_csv(events_path, index=False)
    positions_df.to_csv(positions_path, index=False)
    summary_path.write_text(json.dumps(summary, indent=2, default=json_default), encoding="utf-8")
    run_cfg_path.write_text(json.dumps(config or {}, indent=2, default=json_default), encoding="utf-8")
    logger.debug("Wrote run artifacts to %s", out_dir)

    return {
        "summary": summary,
        "paths": {
            "report_dir": str(out_dir),
            "events_csv": str(events_path),
            "positions_csv": str(positions_path),
            "summary_json": str(summary_path),
            "run_config_json": str(run_cfg_path),
        },
    }
