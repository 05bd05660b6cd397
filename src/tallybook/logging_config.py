"""Console logging configuration.

Environment variables:
- TALLYBOOK_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: WARNING)
"""

import logging
import os
import sys
from typing import Optional

LOG_LEVEL_ENV = "TALLYBOOK_LOG_LEVEL"
DEFAULT_LOG_LEVEL = "WARNING"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")
LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s %(message)s"
HANDLER_NAME = "tallybook-console"


class ConsoleHandler(logging.StreamHandler):
    """Stream handler that always writes to the current ``sys.stderr``."""

    def __init__(self, level=logging.NOTSET):
        logging.Handler.__init__(self, level)

    @property
    def stream(self):
        return sys.stderr


def resolve_level(level: Optional[str] = None) -> int:
    """Return the numeric log level from the argument or the environment."""
    name = (level or os.environ.get(LOG_LEVEL_ENV) or DEFAULT_LOG_LEVEL).upper()
    if name not in LOG_LEVELS:
        name = DEFAULT_LOG_LEVEL
    return getattr(logging, name)


def configure_logging(level: Optional[str] = None) -> logging.Logger:
    """Install the console handler on the package logger.

    Calling this again replaces the handler installed before.

    Args:
        level: Level name; falls back to TALLYBOOK_LOG_LEVEL, then WARNING

    Returns:
        The configured ``tallybook`` logger
    """
    logger = logging.getLogger("tallybook")
    for handler in list(logger.handlers):
        if handler.get_name() == HANDLER_NAME:
            logger.removeHandler(handler)

    handler = ConsoleHandler()
    handler.set_name(HANDLER_NAME)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)
    logger.setLevel(resolve_level(level))
    return logger
