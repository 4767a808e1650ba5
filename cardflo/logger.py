"""Logging setup for the cardflo package logger.

Module loggers (``logging.getLogger(__name__)``) propagate to the ``cardflo``
logger, which writes to the console and to ``<log_dir>/cardflo.log``.
"""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
LOG_FILE = "cardflo.log"


def setup_logging(log_dir: str | Path = "logs", level: str = "INFO") -> logging.Logger:
    """Attach console and rotating file handlers to the package logger.

    Calling it again only updates the level of the logger and its handlers.
    """
    logger = logging.getLogger("cardflo")
    log_level = getattr(logging, str(level).upper(), logging.INFO)
    logger.setLevel(log_level)
    if logger.handlers:
        for handler in logger.handlers:
            handler.setLevel(log_level)
        return logger

    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    file_handler = RotatingFileHandler(log_dir / LOG_FILE, maxBytes=2_000_000, backupCount=5)
    stream_handler = logging.StreamHandler()
    for handler in (file_handler, stream_handler):
        handler.setLevel(log_level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger
