"""
Logger setup shared by the model, optimizer and job manager.
"""

from __future__ import annotations

import logging
from typing import Optional


LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def setup_logger(
    name: str,
    level: str = "INFO",
    log_file: Optional[str] = None,
) -> logging.Logger:
    """
    Configure a named logger.

    Handlers are attached once per logger name, so building many models or
    optimizers does not duplicate output lines.

    Args:
        name: logger name, e.g. "orplan.ga"
        level: level name ("DEBUG", "INFO", ...)
        log_file: optional file that receives the same records

    Returns:
        the configured logger
    """
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, level.upper()))

    if not logger.handlers:
        formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT)

        # console
        ch = logging.StreamHandler()
        ch.setFormatter(formatter)
        logger.addHandler(ch)

        # file
        if log_file:
            fh = logging.FileHandler(log_file, encoding="utf-8")
            fh.setFormatter(formatter)
            logger.addHandler(fh)

    return logger
