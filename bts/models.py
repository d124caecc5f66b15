"""Value types for candles, orders, positions, and the engine event log."""

from __future__ import annotations

import copy
import itertools
import math
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Optional, Union

from .errors import (
    InvalidCandleTimes,
    InvalidEntryPrice,
    InvalidExitPrice,
    InvalidPriceOrder,
    InvalidTrailingStop,
    MismatchedOrderType,
    NegativeExitLevel,
    NegativeVolume,
    NonPositiveQuantity,
)

_order_ids = itertools.count(1)
_order_id_lock = threading.Lock()


def iso_utc(value: Any) -> Optional[str]:
    """Serialize datetime-like values to ISO8601 UTC string when possible."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if hasattr(value, "isoformat"):
        try:
            return value.isoformat().replace("+00:00", "Z")
        except TypeError:
            return str(value)
    return str(value)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if not isinstance(value, datetime):
        raise TypeError(f"Expected datetime, got {type(value).__name__}")
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _next_order_id() -> int:
    with _order_id_lock:
        return next(_order_ids)


def _is_positive_price(value: float) -> bool:
    return math.isfinite(value) and value > 0


@dataclass(frozen=True)
class Candle:
    """One OHLCV bar. Validated on construction and immutable afterwards."""

    open: float
    high: float
    low: float
    close: float
    volume: float
    open_time: datetime
    close_time: datetime
    bid: float = 0.0

    def __post_init__(self) -> None:
        for name in ("open", "high", "low", "close", "volume", "bid"):
            object.__setattr__(self, name, float(getattr(self, name)))
        object.__setattr__(self, "open_time", as_utc(self.open_time))
        object.__setattr__(self, "close_time", as_utc(self.close_time))

        prices = (self.open, self.high, self.low, self.close)
        if not all(math.isfinite(price) for price in prices) or not (
            self.low <= self.open <= self.high and self.low <= self.close <= self.high
        ):
            raise InvalidPriceOrder(self.open, self.high, self.low, self.close)
        if not self.volume >= 0:
            raise NegativeVolume(self.volume)
        if self.open_time > self.close_time:
            raise InvalidCandleTimes(self.open_time, self.close_time)

    @property
    def ask(self) -> float:
        return self.volume - self.bid

    def contains(self, price: float) -> bool:
        """True when ``price`` lies within the candle's inclusive low/high range."""
        return self.low <= price <= self.high

    def to_dict(self) -> dict[str, Any]:
        return {
            "open_time": iso_utc(self.open_time),
            "close_time": iso_utc(self.close_time),
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
            "bid": self.bid,
        }


class OrderSide(str, Enum):
    BUY = "BUY"
    SELL = "SELL"

    @classmethod
    def from_value(cls, value: Any) -> "OrderSide":
        if isinstance(value, cls):
            return value
        side = str(value or "").strip().upper()
        if side in {"BUY", "LONG"}:
            return cls.BUY
        if side in {"SELL", "SHORT"}:
            return cls.SELL
        raise ValueError(f"Unsupported side value: {value}")


class PositionSide(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"

    @classmethod
    def from_order_side(cls, side: OrderSide) -> "PositionSide":
        return cls.LONG if side == OrderSide.BUY else cls.SHORT


@dataclass(frozen=True)
class Market:
    """Fill at ``price`` on the next evaluated candle or cancel."""

    kind: ClassVar[str] = "MARKET"
    price: float

    def __post_init__(self) -> None:
        object.__setattr__(self, "price", float(self.price))
        if not _is_positive_price(self.price):
            raise InvalidEntryPrice(self.price)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.kind, "price": self.price}


@dataclass(frozen=True)
class Limit:
    """Rest in the queue until a candle trades through ``price``."""

    kind: ClassVar[str] = "LIMIT"
    price: float

    def __post_init__(self) -> None:
        object.__setattr__(self, "price", float(self.price))
        if not _is_positive_price(self.price):
            raise InvalidEntryPrice(self.price)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.kind, "price": self.price}


@dataclass(frozen=True)
class TakeProfitAndStopLoss:
    """Absolute exit levels; ``0`` disables a leg."""

    kind: ClassVar[str] = "TAKE_PROFIT_AND_STOP_LOSS"
    take_profit: float = 0.0
    stop_loss: float = 0.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "take_profit", float(self.take_profit))
        object.__setattr__(self, "stop_loss", float(self.stop_loss))
        if not (self.take_profit >= 0 and self.stop_loss >= 0):
            raise NegativeExitLevel(self.take_profit, self.stop_loss)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.kind, "take_profit": self.take_profit, "stop_loss": self.stop_loss}


@dataclass(frozen=True)
class TrailingStop:
    """Stop trailing ``percent`` percent behind the best price seen since entry."""

    kind: ClassVar[str] = "TRAILING_STOP"
    price: float
    percent: float

    def __post_init__(self) -> None:
        object.__setattr__(self, "price", float(self.price))
        object.__setattr__(self, "percent", float(self.percent))
        if not (_is_positive_price(self.price) and self.percent > 0):
            raise InvalidTrailingStop(self.price, self.percent)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.kind, "price": self.price, "percent": self.percent}


EntryRule = Union[Market, Limit]
ExitRule = Union[TakeProfitAndStopLoss, TrailingStop]


@dataclass(frozen=True)
class Order:
    """
    A pending intent to open a position.

    Orders compare and hash by ``id`` only, so a copy held by an event is the
    same order as the one in the engine's queue.
    """

    entry: EntryRule = field(compare=False)
    quantity: float = field(compare=False)
    side: OrderSide = field(compare=False)
    exit_rule: Optional[ExitRule] = field(default=None, compare=False)
    id: int = field(default_factory=_next_order_id)

    def __post_init__(self) -> None:
        if not isinstance(self.entry, (Market, Limit)):
            raise MismatchedOrderType(self.entry, "Market or Limit entry")
        if self.exit_rule is not None and not isinstance(self.exit_rule, (TakeProfitAndStopLoss, TrailingStop)):
            raise MismatchedOrderType(self.exit_rule, "TakeProfitAndStopLoss or TrailingStop exit rule")
        quantity = float(self.quantity)
        if not (math.isfinite(quantity) and quantity > 0):
            raise NonPositiveQuantity(quantity)
        object.__setattr__(self, "quantity", quantity)
        object.__setattr__(self, "side", OrderSide.from_value(self.side))

    @property
    def price(self) -> float:
        return self.entry.price

    @property
    def cost(self) -> float:
        return self.entry.price * self.quantity

    @property
    def is_market(self) -> bool:
        return isinstance(self.entry, Market)

    @property
    def position_side(self) -> PositionSide:
        return PositionSide.from_order_side(self.side)

    def to_dict(self) -> dict[str, Any]:
        return {
            "order_id": self.id,
            "side": self.side.value,
            "entry_type": self.entry.kind,
            "price": self.price,
            "quantity": self.quantity,
            "cost": self.cost,
            "exit_rule": None if self.exit_rule is None else self.exit_rule.to_dict(),
        }


@dataclass(eq=False)
class Position:
    """An order that has been filled. The trailing reference ratchets in place."""

    order: Order
    opened_at: Optional[datetime] = None
    exit_rule: Optional[ExitRule] = field(default=None, init=False)
    exit_price: Optional[float] = None
    unrealized_pnl: float = 0.0

    def __post_init__(self) -> None:
        self.exit_rule = self.order.exit_rule

    @property
    def id(self) -> int:
        return self.order.id

    @property
    def side(self) -> PositionSide:
        return self.order.position_side

    @property
    def entry_price(self) -> float:
        return self.order.price

    @property
    def quantity(self) -> float:
        return self.order.quantity

    @property
    def cost(self) -> float:
        return self.order.cost

    @property
    def is_market(self) -> bool:
        return self.order.is_market

    @property
    def pnl(self) -> Optional[float]:
        """Realized P&L, or None while the position is open."""
        if self.exit_price is None:
            return None
        return self.estimate_pnl(self.exit_price)

    def estimate_pnl(self, price: float) -> float:
        if self.side == PositionSide.LONG:
            return (price - self.entry_price) * self.quantity
        return (self.entry_price - price) * self.quantity

    def set_exit_price(self, price: float) -> None:
        value = float(price)
        if not _is_positive_price(value):
            raise InvalidExitPrice(value)
        self.exit_price = value

    def ratchet_trailing_stop(self, price: float) -> bool:
        """Move the trailing reference to ``price`` if that favours the position."""
        rule = self.exit_rule
        if not isinstance(rule, TrailingStop):
            raise MismatchedOrderType(rule, "TrailingStop exit rule")
        # A zero-low candle is valid, but a reference price must stay positive.
        if not _is_positive_price(price):
            return False
        if self.side == PositionSide.LONG and price <= rule.price:
            return False
        if self.side == PositionSide.SHORT and price >= rule.price:
            return False
        self.exit_rule = TrailingStop(price=price, percent=rule.percent)
        return True

    def snapshot(self) -> "Position":
        """Detached copy for the event log."""
        return copy.copy(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "position_id": self.id,
            "side": self.side.value,
            "entry_type": self.order.entry.kind,
            "entry_price": self.entry_price,
            "quantity": self.quantity,
            "cost": self.cost,
            "opened_at": iso_utc(self.opened_at),
            "exit_rule": None if self.exit_rule is None else self.exit_rule.to_dict(),
            "exit_price": self.exit_price,
            "pnl": self.pnl,
        }


@dataclass(frozen=True)
class WalletSnapshot:
    balance: float
    locked: float
    fees: float
    pnl: float
    free: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "balance": self.balance,
            "locked": self.locked,
            "fees": self.fees,
            "unrealized_pnl": self.pnl,
            "free": self.free,
        }


class EventType(str, Enum):
    ADD_ORDER = "ADD_ORDER"
    DEL_ORDER = "DEL_ORDER"
    ADD_POSITION = "ADD_POSITION"
    DEL_POSITION = "DEL_POSITION"
    WALLET_UPDATE = "WALLET_UPDATE"


@dataclass(frozen=True)
class Event:
    event_type: EventType
    time_utc: datetime
    order: Optional[Order] = None
    position: Optional[Position] = None
    wallet: Optional[WalletSnapshot] = None

    def to_dict(self) -> dict[str, Any]:
        record: dict[str, Any] = {
            "event_type": self.event_type.value,
            "time_utc": iso_utc(self.time_utc),
            "order_id": None,
            "side": None,
            "entry_type": None,
            "price": None,
            "quantity": None,
            "exit_price": None,
            "pnl": None,
            "balance": None,
            "locked": None,
            "fees": None,
            "unrealized_pnl": None,
            "free": None,
        }
        order = self.position.order if self.position is not None else self.order
        if order is not None:
            record.update(
                order_id=order.id,
                side=order.side.value,
                entry_type=order.entry.kind,
                price=order.price,
                quantity=order.quantity,
            )
        if self.position is not None:
            record.update(exit_price=self.position.exit_price, pnl=self.position.pnl)
        if self.wallet is not None:
            record.update(self.wallet.to_dict())
        return record
