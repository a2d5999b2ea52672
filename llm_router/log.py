"""
Logging setup with loguru.
"""

from __future__ import annotations

import sys

from loguru import logger


def setup_logger(level: str = "INFO"):
    """
    Replace loguru's default sink with a single formatted stderr sink.
    """
    logger.remove()
    logger.add(
        sys.stderr,
        colorize=True,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
        level=level,
    )
    return logger


def mask(value: str | None) -> str:
    """Masked form of a credential, safe to log."""
    if not value:
        return "<empty>"
    if len(value) <= 12:
        return "***"
    return value[:4] + "..." + value[-4:]
