"""
Redis caching utilities for the MealMart orders service.

Holds short-lived values that are expensive to fetch, such as the payment
gateway's access token. A cache outage never fails a request: reads miss
and writes are dropped.
"""
import os
import json
import logging
from typing import Optional, Any
import redis

logger = logging.getLogger(__name__)

# Initialize Redis client
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
redis_client = redis.from_url(
    REDIS_URL,
    decode_responses=True,
    socket_connect_timeout=1,
    socket_timeout=1,
)

# Cache TTLs (in seconds)
TOKEN_CACHE_TTL = int(os.getenv("PAYMENT_TOKEN_TTL", "3000"))  # gateway tokens live 1 hour


def get_cache(key: str) -> Optional[Any]:
    """
    Get a value from Redis cache.

    Args:
        key: Cache key

    Returns:
        Cached value or None if not found
    """
    try:
        value = redis_client.get(key)
        if value:
            return json.loads(value)
        return None
    except (redis.RedisError, ValueError) as e:
        logger.warning(f"Cache get error for '{key}': {e}")
        return None

def set_cache(key: str, value: Any, ttl: int = 300) -> bool:
    """
    Set a value in Redis cache with TTL.

    Args:
        key: Cache key
        value: Value to cache (will be JSON serialized)
        ttl: Time to live in seconds

    Returns:
        True if successful, False otherwise
    """
    try:
        redis_client.setex(key, ttl, json.dumps(value))
        return True
    except (redis.RedisError, TypeError) as e:
        logger.warning(f"Cache set error for '{key}': {e}")
        return False

def delete_cache(key: str) -> bool:
    """
    Delete a key from Redis cache.

    Args:
        key: Cache key to delete

    Returns:
        True if successful, False otherwise
    """
    try:
        redis_client.delete(key)
        return True
    except redis.RedisError as e:
        logger.warning(f"Cache delete error for '{key}': {e}")
        return False
