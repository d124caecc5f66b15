"""JSON run configuration and strategy module loading for the CLI."""

from __future__ import annotations

import hashlib
import importlib
import importlib.util
import json
import sys
from dataclasses import dataclass, field
from pathlib import Path
from types import ModuleType
from typing import Any, Callable

from .aggregation import Aggregator
from .runtime import MarketFees


@dataclass
class OptimizerConfig:
    grid: dict[str, list[Any]] = field(default_factory=dict)
    max_workers: int | None = None
    top: int = 10

    @classmethod
    def from_raw(cls, value: Any | None) -> "OptimizerConfig | None":
        if value in (None, "", "None"):
            return None
        if not isinstance(value, dict):
            raise ValueError("optimizer must be a mapping with a grid of parameter values")
        grid_raw = value.get("grid")
        if not isinstance(grid_raw, dict) or not grid_raw:
            raise ValueError("optimizer.grid must be a non-empty mapping of parameter -> values")
        grid: dict[str, list[Any]] = {}
        for name, values in grid_raw.items():
            if not isinstance(values, list) or not values:
                raise ValueError(f"optimizer.grid.{name} must be a non-empty list")
            grid[str(name)] = list(values)
        max_workers = value.get("max_workers")
        if max_workers is not None and int(max_workers) <= 0:
            raise ValueError("optimizer.max_workers must be positive")
        top = int(value.get("top", 10))
        if top <= 0:
            raise ValueError("optimizer.top must be positive")
        return cls(grid=grid, max_workers=None if max_workers is None else int(max_workers), top=top)

    def to_dict(self) -> dict[str, Any]:
        return {"grid": dict(self.grid), "max_workers": self.max_workers, "top": self.top}


@dataclass
class BacktestRunConfig:
    data_path: Path
    report_dir: Path
    strategy: str
    initial_balance: float = 1_000.0
    market_fees: MarketFees | None = None
    params: dict[str, Any] = field(default_factory=dict)
    aggregator_factors: list[int] = field(default_factory=list)
    optimizer: OptimizerConfig | None = None
    _config_dir: Path | None = None

    @classmethod
    def from_dict(
        cls,
        payload: dict[str, Any],
        *,
        config_dir: Path | None = None,
    ) -> "BacktestRunConfig":
        if not isinstance(payload, dict):
            raise ValueError("Backtest config must be a JSON object")

        data_path = str(payload.get("data_path") or "").strip()
        report_dir = str(payload.get("report_dir") or "").strip()
        strategy = str(payload.get("strategy") or "").strip()
        if not data_path:
            raise ValueError("data_path is required")
        if not report_dir:
            raise ValueError("report_dir is required")
        if not strategy:
            raise ValueError("strategy is required")

        initial_balance = float(payload.get("initial_balance", 1_000.0))
        if initial_balance <= 0:
            raise ValueError("initial_balance must be positive")

        params = payload.get("params") or {}
        if not isinstance(params, dict):
            raise ValueError("params must be a JSON object")

        factors_raw = payload.get("aggregator_factors") or []
        if not isinstance(factors_raw, list):
            raise ValueError("aggregator_factors must be a list of positive integers")

        return cls(
            data_path=Path(data_path),
            report_dir=Path(report_dir),
            strategy=strategy,
            initial_balance=initial_balance,
            market_fees=MarketFees.from_raw(payload.get("market_fees")),
            params=dict(params),
            aggregator_factors=[int(item) for item in factors_raw],
            optimizer=OptimizerConfig.from_raw(payload.get("optimizer")),
            _config_dir=config_dir,
        )

    @classmethod
    def from_path(cls, path: str | Path) -> "BacktestRunConfig":
        config_path = Path(path)
        payload = json.loads(config_path.read_text(encoding="utf-8"))
        config = cls.from_dict(payload, config_dir=config_path.parent)
        if not config.data_path.is_absolute():
            config.data_path = (config_path.parent / config.data_path).resolve()
        if not config.report_dir.is_absolute():
            config.report_dir = (config_path.parent / config.report_dir).resolve()
        return config

    def build_aggregator(self) -> Aggregator | None:
        if not self.aggregator_factors:
            return None
        return Aggregator(self.aggregator_factors)

    def to_dict(self) -> dict[str, Any]:
        return {
            "data_path": str(self.data_path),
            "report_dir": str(self.report_dir),
            "strategy": self.strategy,
            "initial_balance": self.initial_balance,
            "market_fees": None if self.market_fees is None else self.market_fees.to_dict(),
            "params": dict(self.params),
            "aggregator_factors": list(self.aggregator_factors),
            "optimizer": None if self.optimizer is None else self.optimizer.to_dict(),
        }


@dataclass(frozen=True)
class StrategyHooks:
    """The two entry points every strategy module exposes."""

    setup: Callable[[Any], Any]
    on_candle: Callable[..., Any]


def _sanitize_module_name(path: Path) -> str:
    digest = hashlib.sha1(str(path).encode("utf-8")).hexdigest()
    return f"_bts_strategy_{digest}"


def _import_strategy_module(spec: str, base_dir: Path | None = None) -> ModuleType:
    target = str(spec or "").strip()
    if not target:
        raise ValueError("strategy is required")

    is_file_ref = target.endswith(".py") or "\\" in target or "/" in target
    if not is_file_ref:
        return importlib.import_module(target)

    file_path = Path(target)
    if not file_path.is_absolute():
        file_path = ((base_dir or Path.cwd()) / file_path).resolve()
    if not file_path.exists():
        raise FileNotFoundError(f"Strategy module file not found: {file_path}")
    module_spec = importlib.util.spec_from_file_location(_sanitize_module_name(file_path), file_path)
    if module_spec is None or module_spec.loader is None:
        raise ImportError(f"Unable to import strategy module from {file_path}")
    module = importlib.util.module_from_spec(module_spec)
    sys.modules[module_spec.name] = module
    module_spec.loader.exec_module(module)
    return module


def load_strategy(spec: str, base_dir: Path | None = None) -> StrategyHooks:
    """Import a strategy from a dotted module name or a ``.py`` file path."""
    module = _import_strategy_module(spec, base_dir=base_dir)
    setup = getattr(module, "setup", None)
    on_candle = getattr(module, "on_candle", None)
    if not callable(setup) or not callable(on_candle):
        raise TypeError(f"Strategy {spec} must define setup(params) and on_candle(engine, state, candle)")
    return StrategyHooks(setup=setup, on_candle=on_candle)
