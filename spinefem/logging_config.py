"""
Logging Configuration
Sets up the 'spinefem' logger namespace.
"""
import logging
import os
import sys
from typing import Optional, Union

LOG_LEVEL_ENV = "SPINEFEM_LOG_LEVEL"


def default_level() -> int:
    """Level named by ``$SPINEFEM_LOG_LEVEL`` (INFO if unset or unknown)."""
    name = os.environ.get(LOG_LEVEL_ENV, "INFO").upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def setup_logging(level: Union[int, str, None] = None, log_file: Optional[str] = None) -> logging.Logger:
    """
    Configures the logger of the 'spinefem' namespace.

    Args:
        level: Logging level (e.g. logging.DEBUG or "DEBUG"); defaults to
            ``$SPINEFEM_LOG_LEVEL``.
        log_file: Optional path to save logs to a file.
    """
    if level is None:
        level = default_level()
    elif isinstance(level, str):
        level = logging.getLevelName(level.upper())

    logger = logging.getLogger("spinefem")
    logger.setLevel(level)

    # avoid duplicate output when called twice
    for handler in logger.handlers:
        handler.close()
    logger.handlers.clear()

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%H:%M:%S'
    )
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, mode='w', encoding='utf-8')
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.debug("Logging initialized.")
    return logger
