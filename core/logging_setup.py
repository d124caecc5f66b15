"""Centralized logging configuration with rotation."""
import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Any, MutableMapping, Optional

LOG_FORMAT = '%(asctime)s | %(levelname)-8s | %(threadName)s | %(name)s | %(message)s'
LOG_FILE_NAME = 'backtest.log'


def teardown_logging(logger: Optional[logging.Logger] = None) -> None:
    """Flush, detach, and close all handlers from the provided logger."""
    target = logger or logging.getLogger()
    for handler in list(target.handlers):
        target.removeHandler(handler)
        try:
            handler.flush()
            handler.close()
        except (OSError, ValueError):
            # Closing an already-closed stream must not crash the CLI.
            pass


def setup_logging(
    log_level: str = 'INFO',
    logs_dir: Optional[Path] = None,
    console_output: bool = True
) -> logging.Logger:
    """
    Configure the root logger for backtest and optimizer runs.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        logs_dir: Directory for the rotating log file. Defaults to 'logs/' in the working directory.
        console_output: Whether to mirror INFO and above to stdout

    Returns:
        Configured root logger
    """
    if logs_dir is None:
        logs_dir = Path.cwd() / 'logs'
    logs_dir = Path(logs_dir)
    logs_dir.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger()
    logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    # Release descriptors held by a previous configuration.
    teardown_logging(logger)

    formatter = logging.Formatter(LOG_FORMAT, datefmt='%Y-%m-%d %H:%M:%S')

    log_file = logs_dir / LOG_FILE_NAME
    file_handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=5 * 1024 * 1024,  # 5 MB
        backupCount=3,
        encoding='utf-8',
        delay=True
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(logging.INFO)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    logger.info("Logging initialized at %s level", log_level)
    logger.debug("Log file: %s", log_file)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Return the logger for a module (typically ``__name__``)."""
    return logging.getLogger(name)


class RunContextAdapter(logging.LoggerAdapter):
    """Prefix every message with the ``key=value`` pairs of the run it belongs to."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        context = ' '.join(f'{key}={value}' for key, value in self.extra.items())
        return f'[{context}] {msg}', kwargs


def run_logger(name: str, **context: Any) -> RunContextAdapter:
    """Logger for one backtest run or optimizer chunk, e.g. ``run_logger(__name__, chunk=2)``."""
    return RunContextAdapter(logging.getLogger(name), context)
