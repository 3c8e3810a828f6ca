import sys
from loguru import logger
from .config import settings


def setup_logging():
    """Configure the loguru sink once for the API process and return the logger."""
    logger.remove()
    if settings.app_env == "dev":
        logger.add(
            sys.stderr,
            level=settings.log_level,
            format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | "
                   "<cyan>{name}</cyan> - <level>{message}</level> {extra}",
        )
    else:
        # Structured JSON lines for log shipping outside local development
        logger.add(sys.stderr, level=settings.log_level, serialize=True)
    return logger
