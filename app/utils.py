"""
Shared helpers: logger factory and clock.
"""
import logging
from datetime import datetime, timezone

from app.core import config


_configured = False


def get_logger(name: str) -> logging.Logger:
    """Return a module logger, configuring the root handler on first use."""
    global _configured
    if not _configured:
        logging.basicConfig(
            level=config.LOG_LEVEL,
            format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        )
        _configured = True
    return logging.getLogger(name)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
