# forkpool/server/__init__.py
from __future__ import annotations

import logging

from ..config import configure_logging

configure_logging()
logger = logging.getLogger(__name__)
logger.debug("Logger inicializado con nivel %s", logging.getLevelName(logging.getLogger().level))

from .api import app

__all__ = [
    "app",
]
