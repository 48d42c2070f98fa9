"""
Structured logging for the query gateway.

Every module logs through ``get_logger(__name__)``.  Client libraries that
log each request or connection at INFO (httpx, snowflake, google-auth) are held at
WARNING so query traffic does not drown out gateway state transitions.
"""
from __future__ import annotations

import logging
import sys

from querygate.core.config import get_settings

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

_NOISY_LIBRARIES = ("httpx", "httpcore", "snowflake.connector", "google.auth", "urllib3")
_quieted = False


def _quiet_libraries() -> None:
    global _quieted
    if _quieted:
        return
    for name in _NOISY_LIBRARIES:
        logging.getLogger(name).setLevel(logging.WARNING)
    _quieted = True


def get_logger(name: str) -> logging.Logger:
    settings = get_settings()
    _quiet_libraries()
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        logger.addHandler(handler)
        # querygate.* loggers each own a handler; stop records doubling up at the root
        logger.propagate = False
    logger.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
    return logger
