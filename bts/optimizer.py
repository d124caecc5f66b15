"""Brute-force parameter search running independent engines on a thread pool."""

from __future__ import annotations

import itertools
import logging
import math
import os
from collections.abc import Iterable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol, Union

import pandas as pd

from core.logging_setup import run_logger

from .aggregation import Aggregator
from .errors import OptimizationError
from .models import Candle
from .runtime import BacktestEngine, MarketFees

logger = logging.getLogger(__name__)

WORKER_THREAD_PREFIX = "bts-optimizer"

SetupFn = Callable[[Any], Any]
StrategyFn = Callable[[BacktestEngine, Any, Any], Any]
ResultFn = Callable[[BacktestEngine], Any]


class ParameterSpace(Protocol):
    def generate(self) -> list[Any]:
        ...


class ParameterGrid:
    """Cartesian product of named parameter axes; combinations are tuples in key order."""

    def __init__(self, axes: Mapping[str, Iterable[Any]]):
        if not axes:
            raise ValueError("ParameterGrid requires at least one axis")
        self._axes: dict[str, list[Any]] = {}
        for name, values in axes.items():
            items = list(values)
            if not items:
                raise ValueError(f"Parameter axis {name!r} has no values")
            self._axes[str(name)] = items

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(self._axes)

    def generate(self) -> list[tuple[Any, ...]]:
        return list(itertools.product(*self._axes.values()))

    def as_dict(self, combination: Sequence[Any]) -> dict[str, Any]:
        return dict(zip(self.names, combination))

    def __len__(self) -> int:
        return math.prod(len(values) for values in self._axes.values())


@dataclass(frozen=True)
class ChunkFailure:
    chunk_index: int
    parameters: Any
    error: BaseException


@dataclass
class _ChunkOutcome:
    results: list[tuple[Any, Any]] = field(default_factory=list)
    failure: Optional[ChunkFailure] = None


def _total_balance(engine: BacktestEngine) -> float:
    return engine.total_balance()


class Optimizer:
    """
    Run one backtest per parameter combination across worker threads.

    Combinations are split into contiguous chunks, one per worker. Each worker
    owns a single engine over the shared candle tuple and resets it between
    combinations, so strategy state must come from ``setup`` rather than from
    the strategy callable itself.
    """

    def __init__(
        self,
        candles: Sequence[Candle],
        initial_balance: float,
        market_fees: Union[MarketFees, tuple[float, float], None] = None,
        *,
        max_workers: int | None = None,
        aggregator: Aggregator | None = None,
    ):
        probe = BacktestEngine(candles, initial_balance, market_fees)
        self._candles = probe.candles
        self._initial_balance = probe.initial_balance
        self._market_fees = probe.market_fees
        self.max_workers = max(1, int(max_workers or os.cpu_count() or 1))
        self.aggregator = aggregator

    @property
    def candles(self) -> tuple[Candle, ...]:
        return self._candles

    def optimize(
        self,
        parameters: ParameterSpace,
        setup: SetupFn,
        strategy: StrategyFn,
        result: ResultFn | None = None,
    ) -> list[tuple[Any, Any]]:
        """
        Evaluate every combination from ``parameters.generate()``.

        Args:
            parameters: Object exposing ``generate()``.
            setup: Builds per-combination strategy state from a combination.
            strategy: ``strategy(engine, state, candle)``; receives the
                aggregated candle list instead when an aggregator is set.
            result: Maps a finished engine to the recorded value. Defaults to
                ``engine.total_balance()``.

        Returns:
            ``(combination, value)`` pairs in ``generate()`` order.

        Raises:
            OptimizationError: if any chunk failed. Completed pairs from every
                chunk are kept on ``partial_results``.
        """
        combinations = list(parameters.generate())
        if not combinations:
            return []

        measure = result or _total_balance
        chunk_size = math.ceil(len(combinations) / self.max_workers)
        chunks = [combinations[start:start + chunk_size] for start in range(0, len(combinations), chunk_size)]
        logger.info(
            "Optimizing %s combination(s) over %s candles in %s chunk(s)",
            len(combinations),
            len(self._candles),
            len(chunks),
        )

        ordered_outcomes: list[_ChunkOutcome | None] = [None] * len(chunks)
        with ThreadPoolExecutor(max_workers=len(chunks), thread_name_prefix=WORKER_THREAD_PREFIX) as pool:
            future_map = {
                pool.submit(self._run_chunk, chunk_index, chunk, setup, strategy, measure): chunk_index
                for chunk_index, chunk in enumerate(chunks)
            }
            for future in as_completed(future_map):
                ordered_outcomes[future_map[future]] = future.result()

        results: list[tuple[Any, Any]] = []
        failures: list[ChunkFailure] = []
        for outcome in ordered_outcomes:
            if outcome is None:
                continue
            results.extend(outcome.results)
            if outcome.failure is not None:
                failures.append(outcome.failure)

        if failures:
            for failure in failures:
                logger.warning(
                    "Optimizer chunk %s failed on %r: %s",
                    failure.chunk_index,
                    failure.parameters,
                    failure.error,
                )
            raise OptimizationError(failures, results) from failures[0].error

        logger.info("Optimization finished: %s result(s)", len(results))
        return results

    def _run_chunk(
        self,
        chunk_index: int,
        chunk: list[Any],
        setup: SetupFn,
        strategy: StrategyFn,
        measure: ResultFn,
    ) -> _ChunkOutcome:
        engine = BacktestEngine(self._candles, self._initial_balance, self._market_fees)
        outcome = _ChunkOutcome()
        chunk_log = run_logger(__name__, chunk=chunk_index)
        chunk_log.debug("Evaluating %s combination(s)", len(chunk))
        for parameters in chunk:
            try:
                state = setup(parameters)
                if self.aggregator is None:
                    engine.run(lambda bt, candle: strategy(bt, state, candle))
                else:
                    engine.run_with_aggregator(self.aggregator, lambda bt, candles: strategy(bt, state, candles))
                value = measure(engine)
                outcome.results.append((parameters, value))
                chunk_log.debug("%r -> %s", parameters, value)
            except Exception as exc:  # reported through OptimizationError once every chunk is done
                outcome.failure = ChunkFailure(chunk_index=chunk_index, parameters=parameters, error=exc)
                return outcome
            finally:
                engine.reset()
        return outcome


def results_frame(results: Sequence[tuple[Any, Any]], names: Sequence[str] | None = None) -> pd.DataFrame:
    """Tabulate optimizer results, best value first."""
    rows: list[dict[str, Any]] = []
    for parameters, value in results:
        if names is not None:
            row = dict(zip(names, parameters))
        else:
            row = {"parameters": parameters}
        row["result"] = value
        rows.append(row)
    columns = [*(names or ["parameters"]), "result"]
    frame = pd.DataFrame(rows, columns=columns)
    if frame.empty:
        return frame
    return frame.sort_values("result", ascending=False, kind="mergesort").reset_index(drop=True)
