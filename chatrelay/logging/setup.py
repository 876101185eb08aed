"""Logging configuration for the relay."""

import logging
import sys


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Set up the ``chatrelay`` logger with a stdout handler.

    Unknown level names fall back to INFO. Calling this again replaces the
    handler instead of adding a second one.
    """
    resolved = logging.getLevelName(str(level).upper())
    if not isinstance(resolved, int):
        resolved = logging.INFO

    logger = logging.getLogger("chatrelay")
    logger.setLevel(resolved)

    # Clear any existing handlers
    logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(resolved)
    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    logger.propagate = True

    return logger
