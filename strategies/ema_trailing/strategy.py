"""EMA trend filter entering at market with a trailing stop."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from bts import BacktestEngine, Candle, Market, Order, OrderSide, TrailingStop
from core.percent import how_many

# Smallest notional worth trading.
MIN_NOTIONAL = 21.0


class ExponentialMovingAverage:
    def __init__(self, period: int):
        if int(period) <= 0:
            raise ValueError("ema_period must be positive")
        self.period = int(period)
        self.alpha = 2.0 / (self.period + 1)
        self.value: float | None = None

    def next(self, price: float) -> float:
        if self.value is None:
            self.value = float(price)
        else:
            self.value = self.alpha * float(price) + (1.0 - self.alpha) * self.value
        return self.value


@dataclass
class EmaTrailingState:
    ema: ExponentialMovingAverage
    trailing_percent: float
    risk_percent: float


def setup(params: dict[str, Any]) -> EmaTrailingState:
    return EmaTrailingState(
        ema=ExponentialMovingAverage(int(params.get("ema_period", 100))),
        trailing_percent=float(params.get("trailing_percent", 2.0)),
        risk_percent=float(params.get("risk_percent", 2.0)),
    )


def on_candle(engine: BacktestEngine, state: EmaTrailingState, candle: Candle | list[Candle]) -> None:
    """Buy when price closes above the EMA while at least half the starting cash is free."""
    if isinstance(candle, list):
        candle = candle[0]
    close = candle.close
    average = state.ema.next(close)

    free = engine.free_balance()
    amount = max(how_many(free, state.risk_percent), MIN_NOTIONAL)
    if free <= engine.initial_balance / 2 or close <= average or amount > free:
        return

    engine.place_order(
        Order(
            entry=Market(close),
            quantity=amount / close,
            side=OrderSide.BUY,
            exit_rule=TrailingStop(close, state.trailing_percent),
        )
    )
