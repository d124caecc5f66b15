"""Exception taxonomy for the backtest engine, wallet, and optimizer."""

from __future__ import annotations

from typing import Any


class BacktestError(Exception):
    """Base class for every error raised by the ``bts`` package."""


class InputValidationError(BacktestError, ValueError):
    """Raised when candle data or engine parameters are malformed."""


class LedgerError(BacktestError):
    """Raised when a wallet operation would break the accounting invariants."""


class LookupFailure(BacktestError, LookupError):
    """Raised when an order or position is not tracked by the engine."""


class ConfigurationError(BacktestError, ValueError):
    """Raised for invalid exit rules or aggregation factors."""


class InvalidPriceOrder(InputValidationError):
    def __init__(self, open: float, high: float, low: float, close: float):
        self.open = open
        self.high = high
        self.low = low
        self.close = close
        super().__init__(
            f"Invalid candle prices: open={open}, high={high}, low={low}, close={close} "
            "(expected finite values with low <= open, close <= high)"
        )


class NegativeVolume(InputValidationError):
    def __init__(self, volume: float):
        self.volume = volume
        super().__init__(f"Candle volume must be non-negative, got {volume}")


class InvalidCandleTimes(InputValidationError):
    def __init__(self, open_time: Any, close_time: Any):
        self.open_time = open_time
        self.close_time = close_time
        super().__init__(f"Candle open_time {open_time} is after close_time {close_time}")


class CandleDataEmpty(InputValidationError):
    def __init__(self, message: str = "Candle data is empty"):
        super().__init__(message)


class UnorderedCandles(InputValidationError):
    def __init__(self, index: int, previous: Any, current: Any):
        self.index = index
        self.previous = previous
        self.current = current
        super().__init__(f"Candle {index} opens at {current}, before the previous candle ({previous})")


class NonPositiveBalance(InputValidationError):
    def __init__(self, balance: float):
        self.balance = balance
        super().__init__(f"Initial balance must be positive, got {balance}")


class NonPositiveFee(InputValidationError):
    def __init__(self, taker: float, maker: float):
        self.taker = taker
        self.maker = maker
        super().__init__(f"Market fees must be positive, got taker={taker}, maker={maker}")


class NonPositiveQuantity(InputValidationError):
    def __init__(self, quantity: float):
        self.quantity = quantity
        super().__init__(f"Order quantity must be positive, got {quantity}")


class InvalidEntryPrice(InputValidationError):
    def __init__(self, price: float):
        self.price = price
        super().__init__(f"Entry price must be positive and finite, got {price}")


class InsufficientFunds(LedgerError):
    def __init__(self, amount: float, free_balance: float):
        self.amount = amount
        self.free_balance = free_balance
        super().__init__(f"Insufficient funds: requested {amount}, free balance {free_balance}")


class UnlockUnderflow(LedgerError):
    def __init__(self, amount: float, locked: float):
        self.amount = amount
        self.locked = locked
        super().__init__(f"Cannot release {amount}: only {locked} is locked")


class NonPositiveAmount(LedgerError):
    def __init__(self, amount: float):
        self.amount = amount
        super().__init__(f"Amount must be positive, got {amount}")


class NegativeFreeBalance(LedgerError):
    def __init__(self, balance: float, locked: float):
        self.balance = balance
        self.locked = locked
        super().__init__(f"Free balance would be negative: balance={balance}, locked={locked}")


class InvalidExitPrice(LedgerError):
    def __init__(self, price: float):
        self.price = price
        super().__init__(f"Exit price must be positive and finite, got {price}")


class OrderNotFound(LookupFailure):
    def __init__(self, order_id: int):
        self.order_id = order_id
        super().__init__(f"Order {order_id} is not pending")


class PositionNotFound(LookupFailure):
    def __init__(self, position_id: int):
        self.position_id = position_id
        super().__init__(f"Position {position_id} is not open")


class NegativeExitLevel(ConfigurationError):
    def __init__(self, take_profit: float, stop_loss: float):
        self.take_profit = take_profit
        self.stop_loss = stop_loss
        super().__init__(
            f"Take-profit and stop-loss must be non-negative, got take_profit={take_profit}, stop_loss={stop_loss}"
        )


class InvalidTrailingStop(ConfigurationError):
    def __init__(self, price: float, percent: float):
        self.price = price
        self.percent = percent
        super().__init__(f"Trailing stop needs a positive price and percent, got price={price}, percent={percent}")


class InvalidFactor(ConfigurationError):
    def __init__(self, factors: Any):
        self.factors = factors
        super().__init__(f"Aggregation factors must be a non-empty set of positive integers, got {factors!r}")


class MismatchedOrderType(BacktestError, TypeError):
    def __init__(self, value: Any, expected: str):
        self.value = value
        self.expected = expected
        super().__init__(f"Expected {expected}, got {type(value).__name__}: {value!r}")


class OptimizationError(BacktestError):
    """Raised after an optimizer pass in which at least one chunk failed."""

    def __init__(self, failures: list[Any], partial_results: list[tuple[Any, Any]]):
        self.failures = list(failures)
        self.partial_results = list(partial_results)
        first = self.failures[0] if self.failures else None
        detail = f"; first failure: {first.error!r} on {first.parameters!r}" if first is not None else ""
        super().__init__(
            f"{len(self.failures)} optimizer chunk(s) failed, "
            f"{len(self.partial_results)} combination(s) completed{detail}"
        )
