"""Logging configuration for the application"""
import logging
from typing import Optional

from app.core.config import settings

# Named channels. A level here is a floor that holds regardless of LOG_LEVEL:
# operator alerts and ledger failures must never be filtered out.
CHANNELS = {
    "webhooks": None,
    "ledger": logging.WARNING,
    "alerts": logging.WARNING,
    "security": None,
    "api_access": None,
    "cleanup": None,
}

NOISY_LIBRARIES = ("stripe", "urllib3", "urllib3.connectionpool", "httpx")


def setup_logging(level: Optional[str] = None):
    """Configure logging for the application"""
    log_level = getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        force=True
    )

    # Silence noisy third-party libraries
    for name in NOISY_LIBRARIES:
        logging.getLogger(name).setLevel(logging.WARNING)

    for name, floor in CHANNELS.items():
        if floor is not None:
            logging.getLogger(name).setLevel(min(floor, log_level))
