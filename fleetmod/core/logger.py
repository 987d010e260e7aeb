from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler


LOGGER_NAME = "fleetmod"
LOG_FILE = "fleetmod.log"
FILE_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def _level(level: str) -> int:
    return getattr(logging, str(level or "INFO").upper(), logging.INFO)


def setup_logging(
    log_dir: str = "logs",
    level: str = "INFO",
    *,
    max_bytes: int = 1_000_000,
    backup_count: int = 5,
    console: bool = True,
) -> logging.Logger:
    """
    Configure the "fleetmod" logger: a rotating text log under log_dir plus an
    optional console handler.

    Safe to call again (scripts reload config); handlers are added once and
    only the level is updated afterwards.
    """
    os.makedirs(log_dir, exist_ok=True)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(_level(level))
    logger.propagate = False

    if not any(isinstance(h, RotatingFileHandler) for h in logger.handlers):
        fh = RotatingFileHandler(
            os.path.join(log_dir, LOG_FILE),
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        fh.setFormatter(logging.Formatter(FILE_FORMAT))
        logger.addHandler(fh)

    has_console = any(type(h) is logging.StreamHandler for h in logger.handlers)
    if console and not has_console:
        sh = logging.StreamHandler()
        sh.setFormatter(logging.Formatter("%(levelname)s %(message)s"))
        logger.addHandler(sh)

    return logger


def get_logger(component: str) -> logging.Logger:
    """
    Child of the fleetmod logger, e.g. get_logger("reconcile") -> "fleetmod.reconcile".
    """
    return logging.getLogger(f"{LOGGER_NAME}.{component}")
