"""
Logging configuration

Everything logs through the loguru `log` exported here. Sync runs log one
line per page and per resource, so the console sink stays at the configured
level while the file sinks keep INFO and ERROR history for later review.
"""
from loguru import logger
import os
import sys
from storesync.config import get_settings

settings = get_settings()

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)


def _add_file_sinks(log_dir: str):
    os.makedirs(log_dir, exist_ok=True)

    # Sync history, one file per day
    logger.add(
        os.path.join(log_dir, "storesync_{time:YYYY-MM-DD}.log"),
        rotation="00:00",
        retention="30 days",
        compression="zip",
        level="INFO",
        enqueue=True,
    )

    # Failed pages, rejected records, scheduler errors
    logger.add(
        os.path.join(log_dir, "storesync_errors_{time:YYYY-MM-DD}.log"),
        rotation="00:00",
        retention="90 days",
        level="ERROR",
        enqueue=True,
    )


def setup_logger(level: str = None, log_to_file: bool = None, log_dir: str = None):
    """Reset loguru's sinks for this service and return the logger"""
    logger.remove()

    logger.add(
        sys.stdout,
        colorize=True,
        format=CONSOLE_FORMAT,
        level=level or settings.log_level,
    )

    if settings.log_to_file if log_to_file is None else log_to_file:
        _add_file_sinks(log_dir or settings.log_dir)

    return logger


log = setup_logger()
