"""Logging setup for nodecxx.

Every module logs through ``logging.getLogger(__name__)`` under the
``nodecxx`` hierarchy. ``configure_logging`` installs a single stream handler
that tags each record the way the CLI has always printed status lines::

    [INFO nodecxx] Building configuration linux-x64-node-20.11.0
"""

import logging
import sys
from typing import Optional, Union

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

LEVELS = {
    "trace": TRACE,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
    "off": logging.CRITICAL + 10,
}

_ROOT = "nodecxx"
_TAGS = {
    TRACE: "TRACE",
    logging.DEBUG: "DEBUG",
    logging.INFO: "INFO",
    logging.WARNING: "WARN",
    logging.ERROR: "ERROR",
    logging.CRITICAL: "ERROR",
}


class TagFormatter(logging.Formatter):
    """Formats records as ``[LEVEL nodecxx] message``."""

    def format(self, record: logging.LogRecord) -> str:
        tag = _TAGS.get(record.levelno, record.levelname)
        message = record.getMessage()
        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)
        return f"[{tag} {_ROOT}] {message}"


def parse_level(level: Union[str, int]) -> int:
    if isinstance(level, int):
        return level
    try:
        return LEVELS[level.lower()]
    except KeyError:
        raise ValueError(f"Unknown log level: {level} (expected one of {', '.join(LEVELS)})") from None


def configure_logging(level: Union[str, int] = "info", stream=None) -> logging.Logger:
    """Install the nodecxx handler on the package logger and set its level.

    Calling this again replaces the previous handler, so the CLI can
    reconfigure after parsing ``--logger``.
    """
    logger = logging.getLogger(_ROOT)
    for handler in list(logger.handlers):
        if getattr(handler, "_nodecxx", False):
            logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(TagFormatter())
    handler._nodecxx = True
    logger.addHandler(handler)
    logger.setLevel(parse_level(level))
    logger.propagate = False
    return logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    if not name:
        return logging.getLogger(_ROOT)
    if name == _ROOT or name.startswith(_ROOT + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{_ROOT}.{name}")


def trace(logger: logging.Logger, msg: str, *args) -> None:
    logger.log(TRACE, msg, *args)
