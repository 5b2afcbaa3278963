import sys

from loguru import logger

from .config import settings

HUMAN_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - "
    "<level>{message}</level> {extra}"
)


def setup_logging(level: str | None = None, json_logs: bool | None = None):
    """
    Configure the process-wide loguru sink.

    Library modules only call ``logger``; sinks are installed once by the
    entry point (CLI or host application).

    Args:
        level: Minimum level, defaults to LOG_LEVEL
        json_logs: Emit one JSON object per record, defaults to LOG_JSON

    Returns:
        The configured loguru logger
    """
    level = (level or settings.log_level).upper()
    json_logs = settings.log_json if json_logs is None else json_logs

    logger.remove()
    if json_logs:
        logger.add(sys.stderr, level=level, serialize=True)
    else:
        logger.add(sys.stderr, level=level, format=HUMAN_FORMAT)
    return logger
