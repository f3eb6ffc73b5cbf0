"""Logger utility for command-line use."""

import logging

FORMAT = '[%(asctime)s] [%(name)s] %(levelname)s: %(message)s'


def get_logger(name=None, level=logging.INFO):
    """Retrieve a logger with a stream handler attached once."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(FORMAT))
        logger.addHandler(handler)
    logger.setLevel(level)
    return logger
