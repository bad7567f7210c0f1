"""
Logging helper shared by the CLI and batch workers.
"""

from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s: %(message)s"


def get_logger(name: str, level: str = "INFO") -> logging.Logger:
    """Create a logger with the package-wide format.

    Params:
        name: logger name, usually __name__ of the caller module or 'simp_topopt'
            to configure the whole package.
        level: logging level string (e.g., 'DEBUG', 'INFO').

    Returns:
        Configured logging.Logger instance. A handler is attached only once;
        later calls just update the level.
    """
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    return logger
