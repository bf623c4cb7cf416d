import sys
from loguru import logger

from config.constants import API_KEY_VISIBLE_CHARS
from config.settings import settings


def setup_logger():
    """
    Configures the Loguru logger for the application.

    Removes any default handlers and adds a single colourised stderr sink.
    The log level is determined by the 'LOG_LEVEL' setting.
    """
    logger.remove()

    logger.add(
        sys.stderr,
        level=settings.LOG_LEVEL.upper(),
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
            "<level>{message}</level>"
        ),
        colorize=True,
        backtrace=True,
        # Variable values in tracebacks could include credentials.
        diagnose=False,
    )

    return logger


def mask_key(api_key) -> str:
    """Shortens a credential to the prefix that is safe to log or return."""
    if not api_key:
        return "No key"
    return f"{api_key[:API_KEY_VISIBLE_CHARS]}..."


# Other modules import this 'app_logger' to log messages.
app_logger = setup_logger()
