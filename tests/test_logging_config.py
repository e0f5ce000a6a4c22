"""
Brief: Tests for signalbuoy.config.logging_config.init_logging and formatters.

Inputs:
  - None

Outputs:
  - None
"""

import logging
from pathlib import Path

import pytest

from signalbuoy.config.logging_config import (
    BracketLevelFormatter,
    init_logging,
    level_from_name,
)


@pytest.fixture(autouse=True)
def restore_signalbuoy_logger():
    """
    Brief: Undo init_logging() changes to the package logger after each test.

    Inputs:
      - None

    Outputs:
      - None
    """
    logger = logging.getLogger("signalbuoy")
    handlers = list(logger.handlers)
    level = logger.level
    yield
    for h in list(logger.handlers):
        if h not in handlers:
            logger.removeHandler(h)
            h.close()
    logger.setLevel(level)
    logging.captureWarnings(False)


def test_init_logging_adds_stderr_handler():
    """
    Brief: init_logging configures the package logger with a stderr handler.

    Inputs:
      - cfg: minimal dict with level

    Outputs:
      - None: Asserts StreamHandler present and level applied
    """
    logger = init_logging({"level": "debug"})
    assert logger.name == "signalbuoy"
    assert logger.level == logging.DEBUG
    assert any(isinstance(h, logging.StreamHandler) for h in logger.handlers)


def test_init_logging_is_repeatable():
    """
    Brief: Calling init_logging twice replaces its own handlers only.

    Inputs:
      - None

    Outputs:
      - None: Asserts host handler kept and one signalbuoy handler present
    """
    logger = logging.getLogger("signalbuoy")
    host_handler = logging.NullHandler()
    logger.addHandler(host_handler)
    try:
        init_logging({"level": "info"})
        init_logging({"level": "warn"})
        ours = [h for h in logger.handlers if getattr(h, "_signalbuoy_handler", False)]
        assert len(ours) == 1
        assert host_handler in logger.handlers
        assert logger.level == logging.WARNING
    finally:
        logger.removeHandler(host_handler)


def test_init_logging_file_handler_writes(tmp_path):
    """
    Brief: init_logging creates file handler and writes formatted entries.

    Inputs:
      - cfg: file path and level

    Outputs:
      - None: Asserts file created and contains message
    """
    log_path = tmp_path / "logs" / "signalbuoy.log"
    init_logging({"level": "info", "stderr": False, "file": str(log_path)})
    logging.getLogger("signalbuoy.test").info("file message")
    for h in logging.getLogger("signalbuoy").handlers:
        h.flush()
    content = Path(log_path).read_text()
    assert "file message" in content
    assert "[info]" in content
    assert "signalbuoy.test" in content


def test_bracket_formatter_tags_and_utc_time():
    fmt = BracketLevelFormatter(fmt="%(asctime)s %(level_tag)s %(message)s")
    record = logging.LogRecord("x", logging.WARNING, __file__, 1, "careful", None, None)
    record.created = 0
    assert fmt.format(record) == "1970-01-01T00:00:00Z [warn] careful"

    record = logging.LogRecord("x", 5, __file__, 1, "custom", None, None)
    assert "[lvl5]" in fmt.format(record)


@pytest.mark.parametrize(
    "name, level",
    [
        ("debug", logging.DEBUG),
        ("WARN", logging.WARNING),
        ("crit", logging.CRITICAL),
        (None, logging.INFO),
        ("bogus", logging.INFO),
    ],
)
def test_level_from_name(name, level):
    assert level_from_name(name) == level
