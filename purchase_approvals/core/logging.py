"""loguru sink configuration for the API process."""

import sys

from loguru import logger

from .config import settings

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DDTHH:mm:ss.SSSZ}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> | "
    "{message} | {extra}"
)


def setup_logging(level: str | None = None):
    """
    Replace loguru's default sink with one driven by settings.

    Args:
        level: Override for LOG_LEVEL (mostly useful in tests)

    Returns:
        The configured loguru logger
    """
    logger.remove()
    logger.add(
        sys.stderr,
        level=(level or settings.log_level).upper(),
        format=LOG_FORMAT,
        serialize=settings.log_json,
        backtrace=False,
        diagnose=False,
    )
    return logger
