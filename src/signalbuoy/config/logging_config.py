from __future__ import annotations

import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from .config_model import LoggingConfig

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "crit": logging.CRITICAL,
    "critical": logging.CRITICAL,
}

_HANDLER_MARK = "_signalbuoy_handler"


class BracketLevelFormatter(logging.Formatter):
    """Formatter with bracketed lowercase level tags and UTC timestamps."""

    _TAGS = {
        logging.DEBUG: "[debug]",
        logging.INFO: "[info]",
        logging.WARNING: "[warn]",
        logging.ERROR: "[error]",
        logging.CRITICAL: "[crit]",
    }

    def formatTime(self, record, datefmt=None):
        """Format the record's creation time as UTC ISO-8601 with Z suffix."""
        return datetime.fromtimestamp(record.created, timezone.utc).strftime(
            "%Y-%m-%dT%H:%M:%SZ"
        )

    def format(self, record):
        record.level_tag = self._TAGS.get(record.levelno, f"[lvl{record.levelno}]")
        return super().format(record)


def level_from_name(name: Optional[str]) -> int:
    """Brief: Map a config level name (debug/info/warn/error/crit) to logging.

    Inputs:
      - name: Level name, case-insensitive. Unknown names map to INFO.

    Outputs:
      - int: logging level constant.
    """

    return _LEVELS.get(str(name or "info").lower(), logging.INFO)


def init_logging(
    cfg: Union[LoggingConfig, Dict[str, Any], None],
    logger_name: str = "signalbuoy",
) -> logging.Logger:
    """Brief: Attach signalbuoy's handlers to the package logger.

    Inputs:
      - cfg: LoggingConfig or mapping with optional keys:
          - level: debug, info, warn, error, crit (default: info)
          - stderr: log to stderr (default: True)
          - file: path of a log file to append to (optional)
      - logger_name: Logger to configure. Pass "" to configure the root logger
        when the host application wants signalbuoy to own logging entirely.

    Outputs:
      - logging.Logger that was configured.

    Notes:
      - Handlers previously installed by init_logging() are replaced, so the
        call is safe to repeat. Handlers installed by the host are left alone.

    Example:
      >>> init_logging({"level": "debug", "stderr": True})  # doctest: +SKIP
    """

    if cfg is None:
        model = LoggingConfig()
    elif isinstance(cfg, LoggingConfig):
        model = cfg
    else:
        model = LoggingConfig(**cfg)

    fmt = "%(asctime)s %(level_tag)s %(name)s: %(message)s"
    formatter = BracketLevelFormatter(fmt=fmt)

    target = logging.getLogger(logger_name or None)
    target.setLevel(level_from_name(model.level))

    for h in list(target.handlers):
        if getattr(h, _HANDLER_MARK, False):
            target.removeHandler(h)
            h.close()

    if model.stderr:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(formatter)
        setattr(stderr_handler, _HANDLER_MARK, True)
        target.addHandler(stderr_handler)

    file_path = model.file
    if isinstance(file_path, str) and file_path.strip():
        path = os.path.abspath(os.path.expanduser(file_path.strip()))
        os.makedirs(os.path.dirname(path), exist_ok=True)
        file_handler = logging.FileHandler(path, mode="a", encoding="utf-8")
        file_handler.setFormatter(formatter)
        setattr(file_handler, _HANDLER_MARK, True)
        target.addHandler(file_handler)

    logging.captureWarnings(True)
    return target
