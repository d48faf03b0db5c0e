"""
Redis access.

Redis is optional. When REDIS_URL is unset or the server is unreachable,
callers get None and degrade gracefully to in-process behaviour.
"""
import logging
from contextlib import contextmanager
from typing import Iterator, Optional

import redis
from redis.exceptions import ConnectionError, TimeoutError, RedisError, LockError

from core.config import settings

logger = logging.getLogger(__name__)

# Redis connection pool (singleton)
_redis_client: Optional[redis.Redis] = None


def get_redis_client() -> Optional[redis.Redis]:
    """Get Redis client with connection pooling. Returns None if Redis unavailable."""
    global _redis_client

    if _redis_client is not None:
        return _redis_client
    if not settings.REDIS_URL:
        return None

    try:
        client = redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
            retry_on_timeout=True,
            health_check_interval=30
        )
        client.ping()
        logger.info("Redis connection established")
        _redis_client = client
        return _redis_client
    except (ConnectionError, TimeoutError, RedisError) as e:
        logger.warning(f"Redis unavailable: {e}. Distributed locks disabled.")
        return None


def reset_redis_client() -> None:
    global _redis_client
    _redis_client = None


@contextmanager
def distributed_lock(name: str, ttl_s: int = 30, wait_s: float = 30.0) -> Iterator[bool]:
    """
    Hold a Redis lock named `name` for the duration of the block.

    Yields True when the lock is held, False when Redis is unavailable
    (the caller still proceeds; in-process locking remains its job).
    Raises TimeoutError if the lock could not be acquired within `wait_s`.
    """
    client = get_redis_client()
    if client is None:
        yield False
        return

    lock = client.lock(f"lock:{name}", timeout=ttl_s, blocking_timeout=wait_s)
    try:
        acquired = lock.acquire()
    except (ConnectionError, TimeoutError, RedisError) as e:
        logger.warning(f"Redis lock {name} unavailable: {e}")
        yield False
        return

    if not acquired:
        raise TimeoutError(f"Timed out waiting for lock {name}")
    try:
        yield True
    finally:
        try:
            lock.release()
        except (LockError, RedisError) as e:
            # Expired under us; the TTL already released it.
            logger.warning(f"Redis lock {name} release failed: {e}")
