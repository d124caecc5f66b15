import json
import math
from datetime import datetime, timezone

import pandas as pd
import pytest

from bts import (
    BacktestEngine,
    Event,
    EventType,
    Market,
    Metrics,
    Order,
    OrderSide,
    Position,
    TakeProfitAndStopLoss,
    WalletSnapshot,
    build_summary,
    events_frame,
    write_run_artifacts,
)

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _wallet_events(balances):
    return [
        Event(EventType.WALLET_UPDATE, T0, wallet=WalletSnapshot(balance, 0.0, 0.0, 0.0, balance))
        for balance in balances
    ]


def _closed(pnl):
    position = Position(Order(Market(100.0), 1.0, OrderSide.BUY))
    position.set_exit_price(100.0 + pnl)
    return Event(EventType.DEL_POSITION, T0, position=position)


def test_max_drawdown_from_balance_path():
    metrics = Metrics(_wallet_events([12_000.0, 9_000.0, 11_000.0]), 10_000.0)
    assert metrics.max_drawdown() == pytest.approx(25.0)


def test_max_drawdown_is_zero_without_losses():
    assert Metrics(_wallet_events([101.0, 102.0]), 100.0).max_drawdown() == 0.0


def test_profit_factor_and_win_rate():
    metrics = Metrics([_closed(30.0), _closed(-10.0), _closed(20.0), _closed(-15.0)], 1_000.0)
    assert metrics.profit_factor() == pytest.approx(2.0)
    assert metrics.win_rate() == pytest.approx(50.0)
    assert metrics.closed_positions() == 4


def test_profit_factor_without_losses_is_infinite():
    assert math.isinf(Metrics([_closed(5.0)], 1_000.0).profit_factor())


def test_sharpe_ratio_of_balance_returns():
    metrics = Metrics(_wallet_events([110.0, 121.0, 108.9]), 100.0)
    assert metrics.sharpe_ratio() == pytest.approx(0.353553, rel=1e-5)


def test_metrics_without_events_are_neutral():
    metrics = Metrics([], 1_000.0)
    assert metrics.sharpe_ratio() == 0.0
    assert metrics.win_rate() == 0.0
    assert metrics.max_drawdown() == 0.0
    assert metrics.closed_positions() == 0


def _finished_engine(long_candles):
    engine = BacktestEngine(long_candles, 1_000.0, (0.1, 0.1))

    def strategy(bt, candle):
        if candle is long_candles[0]:
            bt.place_order(Order(Market(100.0), 1.0, OrderSide.BUY, TakeProfitAndStopLoss(take_profit=115.0)))

    engine.run(strategy)
    return engine


def test_events_frame_has_one_row_per_event(long_candles):
    engine = _finished_engine(long_candles)
    frame = events_frame(engine.events)
    assert len(frame) == len(engine.events)
    assert frame["event_type"].iloc[0] == "WALLET_UPDATE"
    assert frame["event_type"].iloc[1] == "ADD_ORDER"


def test_summary_reports_wallet_and_metrics(long_candles):
    summary = build_summary(_finished_engine(long_candles))
    assert summary["closed_positions"] == 1
    assert summary["open_positions"] == 0
    assert summary["pending_orders"] == 0
    assert summary["win_rate_pct"] == 100.0
    assert summary["candles"] == 3
    assert summary["first_candle_utc"] == "2024-01-01T00:00:00Z"
    # +15 pnl minus 0.1 % fees on a 100 cost at open and close
    assert summary["balance"] == pytest.approx(1_014.8)


def test_write_run_artifacts(tmp_path, long_candles):
    engine = _finished_engine(long_candles)
    artifacts = write_run_artifacts(engine, tmp_path / "report", config={"strategy": "demo"})

    paths = artifacts["paths"]
    summary = json.loads((tmp_path / "report" / "summary.json").read_text(encoding="utf-8"))
    assert summary["closed_positions"] == 1
    assert json.loads((tmp_path / "report" / "run_config.json").read_text(encoding="utf-8")) == {"strategy": "demo"}

    events = pd.read_csv(paths["events_csv"])
    assert "DEL_POSITION" in set(events["event_type"])
    positions = pd.read_csv(paths["positions_csv"])
    assert len(positions) == 1
    assert positions["pnl"].iloc[0] == pytest.approx(15.0)
