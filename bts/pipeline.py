"""Config-driven entry points used by the CLI: a single run and an optimizer pass."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from .config import BacktestRunConfig, StrategyHooks, load_strategy
from .feed import load_candles
from .optimizer import Optimizer, ParameterGrid, results_frame
from .reporting import json_default, write_run_artifacts
from .runtime import BacktestEngine

logger = logging.getLogger(__name__)


def _run_engine(engine: BacktestEngine, hooks: StrategyHooks, state: Any, config: BacktestRunConfig) -> None:
    aggregator = config.build_aggregator()
    if aggregator is None:
        engine.run(lambda bt, candle: hooks.on_candle(bt, state, candle))
    else:
        engine.run_with_aggregator(aggregator, lambda bt, candles: hooks.on_candle(bt, state, candles))


def run_backtest(config: BacktestRunConfig) -> dict[str, Any]:
    """Run one backtest from ``config`` and write its artifacts to ``config.report_dir``."""
    candles = load_candles(config.data_path)
    hooks = load_strategy(config.strategy, base_dir=config._config_dir)
    engine = BacktestEngine(candles, config.initial_balance, config.market_fees)
    logger.info("Running %s over %s candles", config.strategy, len(candles))
    _run_engine(engine, hooks, hooks.setup(dict(config.params)), config)
    return write_run_artifacts(engine, config.report_dir, config.to_dict())


def run_optimization(config: BacktestRunConfig) -> dict[str, Any]:
    """Evaluate ``config.optimizer.grid`` and write the ranked results."""
    if config.optimizer is None:
        raise ValueError("optimizer section is required for an optimization run")

    candles = load_candles(config.data_path)
    hooks = load_strategy(config.strategy, base_dir=config._config_dir)
    grid = ParameterGrid(config.optimizer.grid)
    optimizer = Optimizer(
        candles,
        config.initial_balance,
        config.market_fees,
        max_workers=config.optimizer.max_workers,
        aggregator=config.build_aggregator(),
    )

    def setup(combination: tuple[Any, ...]) -> Any:
        return hooks.setup({**config.params, **grid.as_dict(combination)})

    results = optimizer.optimize(grid, setup, hooks.on_candle)
    frame = results_frame(results, grid.names)

    out_dir = Path(config.report_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    results_path = out_dir / "optimization.csv"
    run_cfg_path = out_dir / "run_config.json"
    frame.to_csv(results_path, index=False)
    run_cfg_path.write_text(json.dumps(config.to_dict(), indent=2, default=json_default), encoding="utf-8")

    return {
        "results": results,
        "best": frame.head(config.optimizer.top).to_dict(orient="records"),
        "paths": {
            "report_dir": str(out_dir),
            "optimization_csv": str(results_path),
            "run_config_json": str(run_cfg_path),
        },
    }
