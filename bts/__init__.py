"""Candle-driven strategy backtester with a threaded parameter optimizer."""

from .aggregation import AggregationWindows, Aggregator
from .config import BacktestRunConfig, OptimizerConfig, StrategyHooks, load_strategy
from .errors import (
    BacktestError,
    CandleDataEmpty,
    ConfigurationError,
    InputValidationError,
    InsufficientFunds,
    InvalidCandleTimes,
    InvalidEntryPrice,
    InvalidExitPrice,
    InvalidFactor,
    InvalidPriceOrder,
    InvalidTrailingStop,
    LedgerError,
    LookupFailure,
    MismatchedOrderType,
    NegativeExitLevel,
    NegativeFreeBalance,
    NegativeVolume,
    NonPositiveAmount,
    NonPositiveBalance,
    NonPositiveFee,
    NonPositiveQuantity,
    OptimizationError,
    OrderNotFound,
    PositionNotFound,
    UnlockUnderflow,
    UnorderedCandles,
)
from .feed import candles_from_frame, candles_to_frame, generate_sample_candles, load_candles
from .models import (
    Candle,
    Event,
    EventType,
    Limit,
    Market,
    Order,
    OrderSide,
    Position,
    PositionSide,
    TakeProfitAndStopLoss,
    TrailingStop,
    WalletSnapshot,
)
from .optimizer import ChunkFailure, Optimizer, ParameterGrid, ParameterSpace, results_frame
from .pipeline import run_backtest, run_optimization
from .reporting import Metrics, build_summary, events_frame, write_run_artifacts
from .runtime import BacktestEngine, EngineState, MarketFees
from .wallet import Wallet

__all__ = [
    "Aggregator",
    "AggregationWindows",
    "BacktestEngine",
    "BacktestRunConfig",
    "Candle",
    "ChunkFailure",
    "EngineState",
    "Event",
    "EventType",
    "Limit",
    "Market",
    "MarketFees",
    "Metrics",
    "Optimizer",
    "OptimizerConfig",
    "Order",
    "OrderSide",
    "ParameterGrid",
    "ParameterSpace",
    "Position",
    "PositionSide",
    "StrategyHooks",
    "TakeProfitAndStopLoss",
    "TrailingStop",
    "Wallet",
    "WalletSnapshot",
    "build_summary",
    "candles_from_frame",
    "candles_to_frame",
    "events_frame",
    "generate_sample_candles",
    "load_candles",
    "load_strategy",
    "results_frame",
    "run_backtest",
    "run_optimization",
    "write_run_artifacts",
    "BacktestError",
    "InputValidationError",
    "LedgerError",
    "LookupFailure",
    "ConfigurationError",
    "CandleDataEmpty",
    "InvalidCandleTimes",
    "InvalidEntryPrice",
    "InvalidExitPrice",
    "InvalidFactor",
    "InvalidPriceOrder",
    "InvalidTrailingStop",
    "InsufficientFunds",
    "MismatchedOrderType",
    "NegativeExitLevel",
    "NegativeFreeBalance",
    "NegativeVolume",
    "NonPositiveAmount",
    "NonPositiveBalance",
    "NonPositiveFee",
    "NonPositiveQuantity",
    "OptimizationError",
    "OrderNotFound",
    "PositionNotFound",
    "UnlockUnderflow",
    "UnorderedCandles",
]
