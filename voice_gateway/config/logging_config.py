"""
Configure logging for the voice gateway.

Every module logs through the single ``voice_gateway`` logger. Console output is
always enabled; a rotating file under ``logs/`` is added when the directory can
be created. Chatty third-party loggers (websocket frames, Twilio's HTTP client)
are held at WARNING so per-frame debug output does not drown the call log.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from voice_gateway.config.constants import LOGGER_NAME

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

LOG_DIR = Path("logs")
LOG_FILE = LOG_DIR / "voice_gateway.log"
MAX_LOG_SIZE = 10 * 1024 * 1024  # 10 MB
BACKUP_COUNT = 5

QUIET_LOGGERS = ("websockets", "twilio.http_client", "urllib3")


def configure_logging(level: Optional[str] = None) -> logging.Logger:
    """
    Configure the gateway logger with console and file handlers.

    Args:
        level: Optional level name overriding the LOG_LEVEL environment variable

    Returns:
        logging.Logger: The configured logger instance
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, (level or LOG_LEVEL).upper(), logging.INFO))

    # Reconfiguring (e.g. uvicorn reload) must not duplicate handlers
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    try:
        LOG_DIR.mkdir(exist_ok=True)
        file_handler = RotatingFileHandler(
            LOG_FILE,
            maxBytes=MAX_LOG_SIZE,
            backupCount=BACKUP_COUNT
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    except OSError as e:
        logger.warning(f"Could not set up file logging: {e}")

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.propagate = False

    logger.info("Logging configured")
    return logger
