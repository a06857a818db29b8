"""
Session layer - Redis-backed session lookup.

Sessions are written by the auth service under ``session:<token>``; this
service only reads them.
"""
from typing import Optional, Dict, Any
import logging
import json
import redis

logger = logging.getLogger(__name__)

SESSION_KEY_PREFIX = "session:"

# Redis connection pool and client
_redis_pool: Optional[redis.ConnectionPool] = None
_redis_client: Optional[redis.Redis] = None


def init_redis(host: str, port: int, db: int, max_connections: int = 20) -> None:
    """Initialize Redis connection pool. Call once at app startup."""
    global _redis_pool, _redis_client
    _redis_pool = redis.ConnectionPool(
        host=host,
        port=port,
        db=db,
        decode_responses=True,
        max_connections=max_connections,
    )
    _redis_client = redis.Redis(connection_pool=_redis_pool)
    logger.info(f"Redis initialized: {host}:{port}/{db}")


def close_redis() -> None:
    """Release the pool at shutdown."""
    global _redis_pool, _redis_client
    if _redis_pool is not None:
        _redis_pool.disconnect()
    _redis_pool = None
    _redis_client = None


def _get_redis_client() -> redis.Redis:
    """Get Redis client. Raises if not initialized."""
    if _redis_client is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis_client


def get_session(token: str) -> Optional[Dict[str, Any]]:
    """
    Get user data from the Redis session for this token.

    Returns None for unknown tokens, inactive users and when Redis is
    unreachable; callers treat all three as an expired session.
    """
    client = _get_redis_client()
    try:
        data = client.get(f"{SESSION_KEY_PREFIX}{token}")
    except redis.RedisError as e:
        logger.error(f"Session lookup failed: {e}")
        return None
    if not data:
        return None
    session = json.loads(data)
    if session.get("is_active") is False:
        return None
    return session


def extract_token(auth_header: Optional[str]) -> Optional[str]:
    """Extract bearer token from Authorization header."""
    if not auth_header:
        return None

    parts = auth_header.split(" ")
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None

    return parts[1]
