"""Core utilities for the gateway application."""

from discogate.app.core.config import settings
from discogate.app.core.logging import get_logger, setup_logging

__all__ = [
    "settings",
    "get_logger",
    "setup_logging",
]
