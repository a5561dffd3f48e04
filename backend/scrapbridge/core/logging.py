# scrapbridge/core/logging.py
import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
CONSOLE_HANDLER = "scrapbridge-console"


def configure_logging(level: str = "INFO", log_file: Optional[str] = None) -> logging.Logger:
    """Attach handlers to the package logger once; safe to call on every startup."""
    logger = logging.getLogger("scrapbridge")
    logger.setLevel(level.upper())
    fmt = logging.Formatter(LOG_FORMAT)

    if not any(h.get_name() == CONSOLE_HANDLER for h in logger.handlers):
        stream = logging.StreamHandler()
        stream.set_name(CONSOLE_HANDLER)
        stream.setFormatter(fmt)
        logger.addHandler(stream)

    if log_file and not any(isinstance(h, RotatingFileHandler) for h in logger.handlers):
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handler = RotatingFileHandler(
            log_file,
            maxBytes=5 * 1024 * 1024,   # 5 MB
            backupCount=5,
        )
        handler.setFormatter(fmt)
        logger.addHandler(handler)

    return logger
