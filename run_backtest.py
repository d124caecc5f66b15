"""CLI for single backtest runs, parameter optimization, and sample data."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

_HERE = Path(__file__).parent
if str(_HERE) not in sys.path:
    sys.path.insert(0, str(_HERE))

from bts import (  # noqa: E402
    BacktestError,
    BacktestRunConfig,
    OptimizationError,
    candles_to_frame,
    generate_sample_candles,
    run_backtest,
    run_optimization,
)
from core.logging_setup import setup_logging  # noqa: E402


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Candle backtester and parameter optimizer CLI")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run one backtest from a JSON config")
    run_parser.add_argument("--config", required=True, help="Path to the run JSON config")

    optimize_parser = subparsers.add_parser("optimize", help="Grid-search strategy parameters from a JSON config")
    optimize_parser.add_argument("--config", required=True, help="Path to a run JSON config with an optimizer section")

    sample_parser = subparsers.add_parser("sample-data", help="Write a deterministic random-walk candle CSV")
    sample_parser.add_argument("--out", required=True, help="Output CSV path")
    sample_parser.add_argument("--count", type=int, default=1_000, help="Number of candles")
    sample_parser.add_argument("--seed", type=int, default=7, help="Random seed")
    sample_parser.add_argument("--base-price", type=float, default=100.0, help="Opening price of the first candle")

    return parser.parse_args()


def _load_config(config_arg: str) -> BacktestRunConfig | None:
    logger = logging.getLogger(__name__)
    config_path = Path(config_arg)
    if not config_path.exists():
        logger.error("config does not exist: %s", config_path)
        return None
    return BacktestRunConfig.from_path(config_path)


def _run_single(args: argparse.Namespace) -> int:
    logger = logging.getLogger(__name__)
    try:
        config = _load_config(args.config)
        if config is None:
            return 2
        artifacts = run_backtest(config)
    except (BacktestError, ValueError, TypeError, ImportError, OSError) as exc:
        logger.error(str(exc))
        return 3

    summary = artifacts["summary"]
    logger.info("Report dir: %s", artifacts["paths"]["report_dir"])
    logger.info("Balance: %.2f (total %.2f)", summary["balance"], summary["total_balance"])
    logger.info("Fees paid: %.2f", summary["fees_paid"])
    logger.info("Closed positions: %s", summary["closed_positions"])
    logger.info("Max drawdown: %.2f%%", summary["max_drawdown_pct"])
    logger.info("Profit factor: %.2f", summary["profit_factor"])
    logger.info("Sharpe ratio: %.2f", summary["sharpe_ratio"])
    logger.info("Win rate: %.2f%%", summary["win_rate_pct"])
    return 0


def _run_optimize(args: argparse.Namespace) -> int:
    logger = logging.getLogger(__name__)
    try:
        config = _load_config(args.config)
        if config is None:
            return 2
        artifacts = run_optimization(config)
    except OptimizationError as exc:
        logger.error(str(exc))
        return 4
    except (BacktestError, ValueError, TypeError, ImportError, OSError) as exc:
        logger.error(str(exc))
        return 3

    logger.info("Report dir: %s", artifacts["paths"]["report_dir"])
    logger.info("Combinations evaluated: %s", len(artifacts["results"]))
    for rank, row in enumerate(artifacts["best"], start=1):
        logger.info("#%s %s", rank, row)
    return 0


def _run_sample_data(args: argparse.Namespace) -> int:
    logger = logging.getLogger(__name__)
    try:
        candles = generate_sample_candles(args.count, seed=args.seed, base_price=args.base_price)
    except ValueError as exc:
        logger.error(str(exc))
        return 3

    out_path = Path(args.out)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    candles_to_frame(candles).to_csv(out_path, index=False)
    logger.info("Wrote %s candles to %s", len(candles), out_path)
    return 0


def _run(args: argparse.Namespace) -> int:
    if args.command == "run":
        return _run_single(args)
    if args.command == "optimize":
        return _run_optimize(args)
    if args.command == "sample-data":
        return _run_sample_data(args)
    raise ValueError(f"Unknown command: {args.command}")


def main() -> None:
    args = _parse_args()
    setup_logging(log_level=args.log_level)
    raise SystemExit(_run(args))


if __name__ == "__main__":
    main()
