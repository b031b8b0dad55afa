"""
Shared service logger.

Every module logs through the single ``logger`` object exported here::

    from logger import logger
    logger.info("[RUN] %d documents", len(docs))
"""

import logging
import os
from typing import Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: Optional[str] = None) -> None:
    """Configure the root handler once; safe to call repeatedly."""
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(level=getattr(logging, level, logging.INFO), format=LOG_FORMAT)
    logger.setLevel(getattr(logging, level, logging.INFO))


logger = logging.getLogger("nlq_service")
