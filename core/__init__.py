"""Core utilities shared by the backtester, the CLI, and strategies."""

from .logging_setup import RunContextAdapter, get_logger, run_logger, setup_logging, teardown_logging
from .percent import addpercent, change, how_many, subpercent

__all__ = [
    "setup_logging",
    "teardown_logging",
    "get_logger",
    "run_logger",
    "RunContextAdapter",
    "addpercent",
    "subpercent",
    "how_many",
    "change",
]
