"""Repo Context - repository-grounded question answering and agentic code review."""

import sys

from loguru import logger

__version__ = "0.6.2"
__author__ = "RepoContext Contributors"

from .core.exceptions import RepoContextError


def configure_logging(level: str = "INFO") -> None:
    """Replace loguru's default sink with a single stderr sink at ``level``."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
    )


__all__ = ["RepoContextError", "__version__", "configure_logging"]
