"""Logging setup for the chat relay: one named logger, rotating file, optional colour."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from typing import TYPE_CHECKING, Optional

import colorlog

if TYPE_CHECKING:
    from config import AppConfig

LOGGER_NAME = "chat_relay"

LOG_MAX_BYTES = 1_048_576
LOG_BACKUP_COUNT = 3

PLAIN_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(module)s] %(message)s"
COLOR_FORMAT = "%(log_color)s%(asctime)s %(levelname)-8s%(reset)s %(name)s [%(module)s] %(message)s"

LEVEL_COLORS = {
    "DEBUG": "blue",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "bold_red",
}


def setup_logging(config: AppConfig) -> logging.Logger:
    """
    Configure the `chat_relay` logger from `config`.

    Records go to a rotating file at `config.log_path` (1 MB, 3 backups). When
    the file cannot be opened the logger writes to stderr instead and says so.
    LOG_LEVEL=DISABLE silences everything. Calling this again replaces the
    previous handlers.
    """
    logger = logging.getLogger(LOGGER_NAME)
    for old in list(logger.handlers):
        logger.removeHandler(old)
        old.close()
    logger.propagate = False

    if config.log_level == "DISABLE":
        logging.disable(logging.CRITICAL)
        logger.addHandler(logging.NullHandler())
        return logger

    logging.disable(logging.NOTSET)
    level = logging.getLevelName(config.log_level)
    logger.setLevel(level if isinstance(level, int) else logging.INFO)

    handler: logging.Handler
    open_error: Optional[OSError] = None
    try:
        handler = RotatingFileHandler(
            config.log_path,
            maxBytes=LOG_MAX_BYTES,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
    except OSError as e:
        handler, open_error = logging.StreamHandler(), e

    handler.setFormatter(_formatter(config.log_color))
    logger.addHandler(handler)

    if open_error is not None:
        logger.warning("Cannot write log file %r (%s); logging to stderr", config.log_path, open_error)
    return logger


def _formatter(color: bool) -> logging.Formatter:
    if not color:
        return logging.Formatter(PLAIN_FORMAT)
    return colorlog.ColoredFormatter(COLOR_FORMAT, log_colors=LEVEL_COLORS, reset=True)


def mask_secret(secret: str, head: int = 6, tail: int = 4) -> str:
    """`sk-abc...wxyz` style masking; short secrets are fully starred."""
    secret = (secret or "").strip()
    if len(secret) <= head + tail:
        return "*" * len(secret)
    return f"{secret[:head]}...{secret[-tail:]}"
