"""Process-wide logging for the drying engine."""

from __future__ import annotations

import logging
import sys
import time
from typing import Optional

from mite_engine.utils.config import get_settings


LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

# Outbound clients log one INFO line per request; ticks would drown in them.
_NOISY_LOGGERS = ("httpx", "httpcore")

_configured = False


def configure_logging(level: Optional[str] = None) -> None:
    """Install a single stdout handler with UTC timestamps.

    Ticks run on a UTC clock, so log times use the same zone as the
    transitions they describe.
    """
    global _configured
    if _configured:
        return

    resolved_level = (level or get_settings().log_level).upper()
    formatter = logging.Formatter(LOG_FORMAT)
    formatter.converter = time.gmtime

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(resolved_level)
    root.addHandler(handler)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    _configured = True


def get_logger(name: str) -> logging.Logger:
    configure_logging()
    return logging.getLogger(name)
