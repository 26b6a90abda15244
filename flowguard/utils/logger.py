# flowguard/utils/logger.py
from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from logging.handlers import RotatingFileHandler
from typing import Union


ROOT_LOGGER = "flowguard"

_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d - %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"

# handlers installed by init_logger carry this attribute so a second call replaces only them
_OWNED = "_flowguard_handler"

_LEVEL_MAP = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARN": logging.WARN,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}

# silent as a library until init_logger() runs
logging.getLogger(ROOT_LOGGER).addHandler(logging.NullHandler())


def resolve_level(level: Union[int, str, None] = None, default: str = "INFO") -> int:
    """
    Explicit level (name or number), then FLOWGUARD_LOG_LEVEL, then LOG_LEVEL, then default.
    Unknown names fall back to the default.
    """
    if isinstance(level, int):
        return level
    name = level or os.getenv("FLOWGUARD_LOG_LEVEL") or os.getenv("LOG_LEVEL") or default
    return _LEVEL_MAP.get(str(name).upper(), _LEVEL_MAP[default.upper()])


class _ColorFormatter(logging.Formatter):
    """Colours by level, only when the handler's stream is a terminal."""

    _COLORS = {logging.ERROR: "91", logging.WARNING: "93", logging.INFO: "92"}

    def __init__(self, stream, **kwargs):
        super().__init__(**kwargs)
        self._tty = bool(getattr(stream, "isatty", None) and stream.isatty())

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        if not self._tty:
            return base
        for threshold in (logging.ERROR, logging.WARNING, logging.INFO):
            if record.levelno >= threshold:
                return f"\033[{self._COLORS[threshold]}m{base}\033[0m"
        return base


def init_logger(
    level: Union[int, str, None] = None,
    log_file: Union[str, Path, None] = None,
    file_max_mb: int = 5,
    file_backup: int = 3,
    stream=None,
) -> logging.Logger:
    """
    Configure the flowguard logger for command-line use:
      - coloured handler on stderr (stdout carries CLI output)
      - optional rotating file handler at log_file
    Safe to call repeatedly; earlier flowguard handlers are replaced, foreign ones kept.
    """
    logger = logging.getLogger(ROOT_LOGGER)
    for h in [h for h in logger.handlers if getattr(h, _OWNED, False)]:
        logger.removeHandler(h)
        h.close()
    logger.propagate = False
    logger.setLevel(resolve_level(level))

    stream = stream if stream is not None else sys.stderr
    sh = logging.StreamHandler(stream)
    sh.setFormatter(_ColorFormatter(stream, fmt=_FORMAT, datefmt=_DATEFMT))
    setattr(sh, _OWNED, True)
    logger.addHandler(sh)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        fh = RotatingFileHandler(
            filename=str(path),
            maxBytes=file_max_mb * 1024 * 1024,
            backupCount=file_backup,
            encoding="utf-8",
        )
        fh.setFormatter(logging.Formatter(fmt=_FORMAT, datefmt=_DATEFMT))
        setattr(fh, _OWNED, True)
        logger.addHandler(fh)

    return logger


def get_logger(child: str) -> logging.Logger:
    """Child logger under the project logger, e.g. flowguard.patch"""
    return logging.getLogger(ROOT_LOGGER).getChild(child)
