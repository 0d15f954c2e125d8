"""Shared Redis client for the rate limiter.

All replicas of the service point at the same Redis instance; it is the only
place rate limit state lives. The client is created lazily and reused for the
lifetime of the process.
"""

from typing import Any, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from windowguard.app.core.config import settings
from windowguard.app.core.logging import get_logger

logger = get_logger(__name__)

# Global client instance (singleton pattern)
_redis_client: Optional[aioredis.Redis] = None


def create_redis_client(
    redis_url: Optional[str] = None,
    socket_timeout: Optional[float] = None,
    connect_timeout: Optional[float] = None,
) -> aioredis.Redis:
    """Create a new Redis client with short socket timeouts.

    A slow or unreachable Redis must surface as an error quickly so the
    limiter can fail open instead of stalling request handling.

    Args:
        redis_url: Redis connection URL. Defaults to settings.redis_url.
        socket_timeout: Per-command timeout in seconds.
        connect_timeout: Connection establishment timeout in seconds.

    Returns:
        A redis.asyncio.Redis client (connections are opened on first use).
    """
    return aioredis.from_url(
        redis_url or settings.redis_url,
        socket_timeout=socket_timeout or settings.redis_socket_timeout,
        socket_connect_timeout=connect_timeout or settings.redis_connect_timeout,
        decode_responses=True,
    )


def get_redis_client(force_new: bool = False) -> aioredis.Redis:
    """Get or create the global Redis client.

    Args:
        force_new: If True, create a new client even if one exists.

    Returns:
        The process-wide Redis client.
    """
    global _redis_client

    if _redis_client is None or force_new:
        _redis_client = create_redis_client()
        logger.debug(f"Created Redis client for {_safe_url(settings.redis_url)}")
    return _redis_client


async def close_redis_client() -> None:
    """Close the global Redis client, if one was created."""
    global _redis_client

    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None


def reset_redis_client() -> None:
    """Forget the global Redis client without closing it.

    This is primarily useful for testing.
    """
    global _redis_client
    _redis_client = None


async def ping_redis(client: Any) -> dict[str, Any]:
    """Check Redis reachability for health reporting.

    Args:
        client: Redis client to probe

    Returns:
        Component status dict: {"status": "ok"} or {"status": "error", "error": ...}
    """
    try:
        await client.ping()
        return {"status": "ok"}
    except (RedisError, OSError) as e:
        logger.warning(f"Redis health check failed: {e}")
        # Truncate for security
        return {"status": "error", "error": str(e)[:100]}


def _safe_url(url: str) -> str:
    """Strip credentials from a Redis URL before logging it."""
    if "@" not in url:
        return url
    scheme, _, rest = url.partition("://")
    return f"{scheme}://***@{rest.split('@', 1)[1]}"
