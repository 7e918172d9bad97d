import logging
import sys
from typing import Optional

from utilitysign.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

logger = logging.getLogger("utilitysign")


def configure_logging(level: Optional[str] = None) -> logging.Logger:
    """Attach a stdout handler to the package logger.

    Debug mode wins over the configured level. Safe to call more than once.
    """
    if level is None:
        level = "DEBUG" if settings.debug else settings.log_level
    logger.setLevel(level.upper())

    if not any(getattr(h, "_utilitysign", False) for h in logger.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._utilitysign = True
        logger.addHandler(handler)
    return logger
