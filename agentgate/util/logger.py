"""Unified logger for the whole project."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from agentgate.config.settings import Settings


MAX_BYTES = 10 * 1024 * 1024
BACKUP_COUNT = 10

logger = logging.getLogger("agentgate")


def _normalize_level(raw: str) -> int:
    candidate = str(raw or "INFO").strip().upper()
    return {
        "CRITICAL": logging.CRITICAL,
        "ERROR": logging.ERROR,
        "WARNING": logging.WARNING,
        "INFO": logging.INFO,
        "DEBUG": logging.DEBUG,
    }.get(candidate, logging.INFO)


def configure_logging(settings: Settings) -> logging.Logger:
    if logger.handlers:
        return logger

    resolved_level = _normalize_level("debug" if settings.debug else settings.log_level)
    logger.setLevel(resolved_level)

    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(resolved_level)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if settings.log_file:
        log_file = Path(settings.log_file)
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            rotating_handler = RotatingFileHandler(
                log_file,
                maxBytes=MAX_BYTES,
                backupCount=BACKUP_COUNT,
                encoding="utf-8",
            )
            rotating_handler.setLevel(resolved_level)
            rotating_handler.setFormatter(formatter)
            logger.addHandler(rotating_handler)
        except (OSError, PermissionError):
            # log directory not writable: stderr only
            pass

    logger.propagate = False
    return logger


def get_logger(name: str) -> logging.Logger:
    """Return a child logger under agentgate namespace."""

    return logger.getChild(name)
