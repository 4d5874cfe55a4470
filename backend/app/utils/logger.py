"""
ErgoPulse Structured Logger
"""

import logging
import sys


def setup_logging(level: str = "INFO"):
    """Configure structured logging for the ergo logger hierarchy"""
    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)-8s | %(name)-25s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    # Root ergo logger (engine + service)
    logger = logging.getLogger("ergo")
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    if not logger.handlers:
        logger.addHandler(handler)

    # Suppress noisy loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("absl").setLevel(logging.WARNING)

    return logger
