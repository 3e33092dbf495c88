import logging
import os

LOGGER_NAME = "pyragraph"


def get_logger(level_name: str = None) -> logging.Logger:
    """Return the package logger, attaching a stream handler on first use.

    The level is taken from ``level_name`` when given, otherwise from the
    ``PYRAGRAPH_LOG_LEVEL`` environment variable (default ``WARNING``).
    """
    logger = logging.getLogger(LOGGER_NAME)
    if not logger.hasHandlers():
        handler = logging.StreamHandler()
        formatter = logging.Formatter('[%(asctime)s][%(levelname)s][%(name)s] %(message)s')
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    if level_name is None:
        level_name = os.getenv("PYRAGRAPH_LOG_LEVEL", "WARNING")
    level = getattr(logging, level_name.upper(), logging.WARNING)
    logger.setLevel(level)
    return logger
