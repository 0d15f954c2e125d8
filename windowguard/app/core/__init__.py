"""Core utilities for windowguard."""

from windowguard.app.core.config import settings
from windowguard.app.core.logging import get_logger, setup_logging
from windowguard.app.core.redis_client import (
    close_redis_client,
    get_redis_client,
    reset_redis_client,
)

__all__ = [
    "settings",
    "get_logger",
    "setup_logging",
    "get_redis_client",
    "close_redis_client",
    "reset_redis_client",
]
