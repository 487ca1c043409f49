from __future__ import annotations

import logging
import os

LOG_FORMAT = "[%(levelname)s] %(name)s: %(message)s"


def get_logger(name: str) -> logging.Logger:
    """Return a module logger with a single stream handler.

    The level comes from ``ITINERARY_ENGINE_LOG_LEVEL`` (default INFO) and
    records do not propagate to the root logger, so uvicorn's own handlers
    never double-print pipeline messages.
    """
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    level = os.getenv("ITINERARY_ENGINE_LOG_LEVEL", "INFO").upper()
    logger.setLevel(getattr(logging, level, logging.INFO))
    logger.propagate = False
    return logger
