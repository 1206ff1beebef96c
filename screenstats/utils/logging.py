# =============================================
# File: screenstats/utils/logging.py
# Purpose: Logging configuration (loguru file sink for diagnostics)
# =============================================
from __future__ import annotations
import os

from loguru import logger

_configured = False

def configure_logging() -> None:
    """Attach the rotating file sink once per process."""
    global _configured
    if _configured:
        return
    path = os.getenv("LOG_FILE", "logs/app.log")
    logger.add(path, rotation="10 MB", level=os.getenv("LOG_LEVEL", "INFO").upper())
    _configured = True

__all__ = ["logger", "configure_logging"]
