import logging
import logging.handlers

import pytest

from core.logging_setup import LOG_FILE_NAME, get_logger, run_logger, setup_logging, teardown_logging


@pytest.fixture
def root_logger():
    root = logging.getLogger()
    saved_handlers = list(root.handlers)
    saved_level = root.level
    yield root
    teardown_logging(root)
    for handler in saved_handlers:
        root.addHandler(handler)
    root.setLevel(saved_level)


def test_setup_logging_writes_rotating_file(tmp_path, root_logger):
    logger = setup_logging(log_level="DEBUG", logs_dir=tmp_path, console_output=False)

    assert logger is root_logger
    assert logger.level == logging.DEBUG
    assert len(logger.handlers) == 1
    assert isinstance(logger.handlers[0], logging.handlers.RotatingFileHandler)

    get_logger("bts.runtime").debug("filled order %s", 7)
    for handler in logger.handlers:
        handler.flush()

    content = (tmp_path / LOG_FILE_NAME).read_text(encoding="utf-8")
    assert "| DEBUG    | MainThread | bts.runtime | filled order 7" in content


def test_setup_logging_replaces_previous_handlers(tmp_path, root_logger):
    setup_logging(logs_dir=tmp_path)
    setup_logging(logs_dir=tmp_path)
    assert len(root_logger.handlers) == 2
    assert root_logger.level == logging.INFO

    teardown_logging(root_logger)
    assert root_logger.handlers == []


def test_run_logger_prefixes_context(caplog):
    log = run_logger("bts.optimizer", chunk=3, seed=7)
    with caplog.at_level(logging.DEBUG, logger="bts.optimizer"):
        log.debug("%r -> %s", (20, 1.5), 1012.5)
    assert caplog.records[-1].getMessage() == "[chunk=3 seed=7] (20, 1.5) -> 1012.5"
    assert caplog.records[-1].name == "bts.optimizer"
