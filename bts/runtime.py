"""Candle-driven backtest engine: order matching, exit rules, and the run loop."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional, Protocol, Union

from core.percent import addpercent, subpercent

from .aggregation import Aggregator
from .errors import (
    CandleDataEmpty,
    MismatchedOrderType,
    NonPositiveFee,
    OrderNotFound,
    PositionNotFound,
    UnorderedCandles,
)
from .models import (
    Candle,
    Event,
    EventType,
    Order,
    Position,
    PositionSide,
    TakeProfitAndStopLoss,
    TrailingStop,
)
from .wallet import Wallet

logger = logging.getLogger(__name__)


class Strategy(Protocol):
    def __call__(self, engine: "BacktestEngine", candle: Candle) -> Any:
        ...


class AggregatedStrategy(Protocol):
    def __call__(self, engine: "BacktestEngine", candles: list[Candle]) -> Any:
        ...


class EngineState(str, Enum):
    IDLE = "IDLE"
    RUNNING = "RUNNING"
    FINISHED = "FINISHED"


@dataclass(frozen=True)
class MarketFees:
    """Fee rates in percent of the position cost (``0.1`` is 0.1 %)."""

    taker: float
    maker: float

    def __post_init__(self) -> None:
        object.__setattr__(self, "taker", float(self.taker))
        object.__setattr__(self, "maker", float(self.maker))
        if not (self.taker > 0 and self.maker > 0):
            raise NonPositiveFee(self.taker, self.maker)

    @classmethod
    def from_raw(cls, value: Any | None) -> "MarketFees | None":
        if value is None:
            return None
        if isinstance(value, MarketFees):
            return value
        if isinstance(value, dict):
            return cls(taker=value["taker"], maker=value["maker"])
        taker, maker = value
        return cls(taker=taker, maker=maker)

    def rate_for(self, trade: Union[Order, Position]) -> float:
        return self.taker if trade.is_market else self.maker

    def to_dict(self) -> dict[str, float]:
        return {"taker": self.taker, "maker": self.maker}


def _validate_candles(candles: Sequence[Candle]) -> tuple[Candle, ...]:
    data = tuple(candles)
    if not data:
        raise CandleDataEmpty()
    for index in range(1, len(data)):
        if data[index].open_time < data[index - 1].open_time:
            raise UnorderedCandles(index, data[index - 1].open_time, data[index].open_time)
    return data


class BacktestEngine:
    """
    Replays candles through a strategy callback and simulates the fills.

    Per tick the strategy runs first, then pending orders are matched against
    the candle range, then open positions are checked against their exit
    rules and marked to the close.
    """

    def __init__(
        self,
        candles: Sequence[Candle],
        initial_balance: float,
        market_fees: Union[MarketFees, tuple[float, float], None] = None,
    ):
        self._candles = _validate_candles(candles)
        self._market_fees = MarketFees.from_raw(market_fees)
        self._wallet = Wallet(initial_balance)
        self._orders: list[Order] = []
        self._positions: list[Position] = []
        self._events: list[Event] = []
        self._current: Optional[Candle] = None
        self.state = EngineState.IDLE

    # Read accessors

    @property
    def candles(self) -> tuple[Candle, ...]:
        return self._candles

    @property
    def market_fees(self) -> Optional[MarketFees]:
        return self._market_fees

    @property
    def wallet(self) -> Wallet:
        return self._wallet

    @property
    def orders(self) -> tuple[Order, ...]:
        return tuple(self._orders)

    @property
    def positions(self) -> tuple[Position, ...]:
        return tuple(self._positions)

    @property
    def events(self) -> tuple[Event, ...]:
        return tuple(self._events)

    @property
    def current_candle(self) -> Optional[Candle]:
        return self._current

    @property
    def initial_balance(self) -> float:
        return self._wallet.initial_balance

    @property
    def balance(self) -> float:
        return self._wallet.balance

    @property
    def fees_paid(self) -> float:
        return self._wallet.fees

    def free_balance(self) -> float:
        return self._wallet.free_balance()

    def total_balance(self) -> float:
        return self._wallet.total_balance()

    # Orders

    def place_order(self, order: Order) -> None:
        """Reserve the order's cost and queue it for matching."""
        self._wallet.lock(order.cost)
        self._orders.append(order)
        self._emit_wallet_update()
        self._emit_event(EventType.ADD_ORDER, order=order)

    def delete_order(self, order: Order, force_remove: bool = True) -> None:
        """Cancel a pending order and release its reserved cost."""
        if force_remove:
            self._orders.pop(self._order_index(order))
        self._wallet.unlock(order.cost)
        self._emit_wallet_update()
        self._emit_event(EventType.DEL_ORDER, order=order)

    def execute_orders(self, candle: Candle) -> None:
        """Fill every pending order whose price the candle traded through."""
        self._current = candle
        cancelled = 0
        for order in list(self._orders):
            if candle.contains(order.price):
                # sub(cost) leaves free balance as is, so the open fee must fit now.
                self._wallet.ensure_free(self._fee_for(order))
                self._orders.pop(self._order_index(order))
                self._open_position(order, candle)
            elif order.is_market:
                self.delete_order(order)
                cancelled += 1
        if cancelled:
            logger.debug("Cancelled %s unfilled market order(s) at %s", cancelled, candle.close_time)

    def _open_position(self, order: Order, candle: Candle) -> None:
        position = Position(order=order, opened_at=candle.close_time)
        fee = self._fee_for(order)
        self._wallet.sub(position.cost)
        if fee:
            self._wallet.sub_fees(fee)
        self._positions.append(position)
        self._emit_wallet_update()
        self._emit_event(EventType.ADD_POSITION, position=position.snapshot())
        logger.debug(
            "Opened %s position %s: qty=%s entry=%s",
            position.side.value,
            position.id,
            position.quantity,
            position.entry_price,
        )

    # Positions

    def close_position(self, position: Position, exit_price: float, force_remove: bool = True) -> float:
        """Realize ``position`` at ``exit_price`` and return its P&L."""
        index = self._position_index(position) if force_remove else None
        position.set_exit_price(exit_price)
        if index is not None:
            self._positions.pop(index)

        pnl = position.estimate_pnl(position.exit_price)
        self._wallet.add(pnl + position.cost)
        self._wallet.sub_pnl(position.unrealized_pnl)
        position.unrealized_pnl = 0.0
        fee = self._fee_for(position)
        if fee:
            self._wallet.sub_fees(fee)
        self._emit_wallet_update()
        self._emit_event(EventType.DEL_POSITION, position=position.snapshot())
        logger.debug("Closed position %s at %s: pnl=%s", position.id, position.exit_price, pnl)
        return pnl

    def close_all_positions(self, exit_price: float) -> None:
        while self._positions:
            position = self._positions[0]
            self.close_position(position, exit_price)

    def execute_positions(self, candle: Candle) -> None:
        """Apply exit rules to open positions, then mark the survivors to the close."""
        self._current = candle
        for position in list(self._positions):
            exit_price = self._resolve_exit(position, candle)
            if exit_price is not None:
                self.close_position(position, exit_price)

        total_unrealized = 0.0
        for position in self._positions:
            position.unrealized_pnl = position.estimate_pnl(candle.close)
            total_unrealized += position.unrealized_pnl
        self._wallet.set_unrealized_pnl(total_unrealized)

    def _resolve_exit(self, position: Position, candle: Candle) -> Optional[float]:
        rule = position.exit_rule
        if rule is None:
            return None
        if isinstance(rule, TakeProfitAndStopLoss):
            return self._take_profit_or_stop_loss(position.side, rule, candle)
        if isinstance(rule, TrailingStop):
            return self._trail_stop(position, rule, candle)
        raise MismatchedOrderType(rule, "TakeProfitAndStopLoss or TrailingStop exit rule")

    @staticmethod
    def _take_profit_or_stop_loss(
        side: PositionSide,
        rule: TakeProfitAndStopLoss,
        candle: Candle,
    ) -> Optional[float]:
        take_profit = rule.take_profit
        stop_loss = rule.stop_loss
        if side == PositionSide.LONG:
            if take_profit > 0 and take_profit <= candle.high:
                return take_profit
            if stop_loss > 0 and stop_loss >= candle.low:
                return stop_loss
            return None
        if take_profit > 0 and take_profit >= candle.low:
            return take_profit
        if stop_loss > 0 and stop_loss <= candle.high:
            return stop_loss
        return None

    @staticmethod
    def _trail_stop(position: Position, rule: TrailingStop, candle: Candle) -> Optional[float]:
        if position.side == PositionSide.LONG:
            trigger = subpercent(rule.price, rule.percent)
            if trigger >= candle.low:
                return trigger
            if candle.high > rule.price:
                position.ratchet_trailing_stop(candle.high)
            return None
        trigger = addpercent(rule.price, rule.percent)
        if trigger <= candle.high:
            return trigger
        if candle.low < rule.price:
            position.ratchet_trailing_stop(candle.low)
        return None

    # Run loop

    def run(self, strategy: Strategy) -> None:
        """Replay every candle through ``strategy(engine, candle)``."""
        self._run_loop(lambda candle: strategy(self, candle))

    def run_with_aggregator(self, aggregator: Aggregator, strategy: AggregatedStrategy) -> None:
        """Like :meth:`run`, but the callback sees the base candle plus completed aggregates."""
        windows = aggregator.session()
        self._run_loop(lambda candle: strategy(self, windows.push(candle)))

    def _run_loop(self, on_candle: Callable[[Candle], Any]) -> None:
        if self.state == EngineState.RUNNING:
            raise RuntimeError("Backtest is already running")
        self.state = EngineState.RUNNING
        logger.debug("Running backtest over %s candles", len(self._candles))
        try:
            for candle in self._candles:
                self._current = candle
                on_candle(candle)
                self.execute_orders(candle)
                self.execute_positions(candle)
        except Exception:
            self.state = EngineState.IDLE
            raise
        self.state = EngineState.FINISHED
        logger.debug(
            "Backtest finished: balance=%s total=%s open_positions=%s",
            self._wallet.balance,
            self._wallet.total_balance(),
            len(self._positions),
        )

    def reset(self) -> None:
        """Return to the freshly constructed state; candle data is kept."""
        self._wallet.reset()
        self._orders.clear()
        self._positions.clear()
        self._events.clear()
        self._current = None
        self.state = EngineState.IDLE

    # Internals

    def _order_index(self, order: Order) -> int:
        for index, item in enumerate(self._orders):
            if item.id == order.id:
                return index
        raise OrderNotFound(order.id)

    def _position_index(self, position: Position) -> int:
        for index, item in enumerate(self._positions):
            if item.id == position.id:
                return index
        raise PositionNotFound(position.id)

    def _fee_for(self, trade: Union[Order, Position]) -> float:
        if self._market_fees is None:
            return 0.0
        return trade.cost * self._market_fees.rate_for(trade) / 100.0

    def _now(self) -> datetime:
        if self._current is not None:
            return self._current.close_time
        return self._candles[0].open_time

    def _emit_wallet_update(self) -> None:
        self._emit_event(EventType.WALLET_UPDATE, wallet=self._wallet.snapshot())

    def _emit_event(
        self,
        event_type: EventType,
        *,
        order: Optional[Order] = None,
        position: Optional[Position] = None,
        wallet: Any = None,
    ) -> None:
        self._events.append(
            Event(
                event_type=event_type,
                time_utc=self._now(),
                order=order,
                position=position,
                wallet=wallet,
            )
        )

    def __repr__(self) -> str:
        return (
            f"BacktestEngine(candles={len(self._candles)}, state={self.state.value}, "
            f"orders={len(self._orders)}, positions={len(self._positions)}, wallet={self._wallet!r})"
        )

