"""Redis-backed token revocation list.

Only used when TOKEN_REVOCATION_ENABLED is set. Without it, logout is a
client-side token discard and an issued access token stays valid until it
expires.

For deployments with Redis:
- Set REDIS_HOST / REDIS_PORT to the instance
- Set REDIS_PASSWORD if authentication is enabled
"""
import threading
from datetime import datetime, timedelta
from typing import Dict, Optional

import redis

from healthportal.core.exceptions import TransientStoreFailure
from healthportal.core.logging import get_logger
from healthportal.utils.time import ensure_utc, utcnow

logger = get_logger(__name__)

# Redis connection pool (lazy initialization)
_redis_pool: Optional[redis.ConnectionPool] = None
_redis_client: Optional[redis.Redis] = None


def get_redis_client(
    host: str = "localhost",
    port: int = 6379,
    db: int = 0,
    password: Optional[str] = None,
    timeout_seconds: float = 5.0,
) -> Optional[redis.Redis]:
    """Get or create Redis client with connection pooling.

    Returns None if Redis is not available (graceful fallback).

    Args:
        host: Redis host
        port: Redis port
        db: Redis database number
        password: Redis password
        timeout_seconds: Connect and socket timeout

    Returns:
        Redis client instance or None if unavailable
    """
    global _redis_pool, _redis_client

    if _redis_client is None:
        logger.info(f"Initializing Redis connection pool: {host}:{port}")

        try:
            _redis_pool = redis.ConnectionPool(
                host=host,
                port=port,
                db=db,
                password=password,
                decode_responses=True,
                max_connections=50,
                socket_connect_timeout=timeout_seconds,
                socket_timeout=timeout_seconds,
            )

            _redis_client = redis.Redis(connection_pool=_redis_pool)

            # Test connection
            _redis_client.ping()
            logger.info("Redis connection established successfully")

        except redis.RedisError as e:
            logger.error(f"Failed to connect to Redis: {e}", exc_info=True)
            _redis_client = None
            return None

    return _redis_client


class RevocationList:
    """Set of revoked token IDs (``jti``), each kept until its token would expire.

    Falls back to an in-process dict when no Redis client is available; that
    fallback is per-process and only suitable for single-worker deployments.

    Example:
        >>> revoked = RevocationList(redis_client=None)
        >>> revoked.revoke("abc", expires_at)
        >>> revoked.is_revoked("abc")
        True
    """

    def __init__(
        self,
        redis_client: Optional[redis.Redis] = None,
        key_prefix: str = "revoked_jti:"
    ):
        self.redis = redis_client
        self.key_prefix = key_prefix
        self._local: Dict[str, datetime] = {}
        self._lock = threading.Lock()

        backend = "redis" if redis_client is not None else "memory"
        logger.info(f"RevocationList initialized with {backend} backend")

    def _make_key(self, jti: str) -> str:
        return f"{self.key_prefix}{jti}"

    def revoke(self, jti: str, expires_at: datetime) -> bool:
        """Revoke a token until ``expires_at``.

        Check-and-set is atomic (``SET NX`` on Redis, a lock in memory), so of
        several concurrent callers for the same ``jti`` exactly one gets True.
        Already-expired tokens are not recorded.

        Returns:
            True if this call revoked the token, False if it was already revoked
        """
        expires_at = ensure_utc(expires_at)
        ttl = expires_at - utcnow()
        if ttl <= timedelta(0):
            return True

        if self.redis is None:
            with self._lock:
                current = self._local.get(jti)
                if current is not None and current > utcnow():
                    return False
                self._local[jti] = expires_at
            logger.debug(f"Token revoked in memory: {jti}")
            return True

        try:
            created = self.redis.set(self._make_key(jti), "1", ex=max(1, int(ttl.total_seconds())), nx=True)
        except redis.RedisError as e:
            logger.error(f"Error revoking token {jti}: {e}", exc_info=True)
            raise TransientStoreFailure() from e
        logger.debug(f"Token revoked: {jti}" if created else f"Token already revoked: {jti}")
        return bool(created)

    def is_revoked(self, jti: str) -> bool:
        """Check a token ID. Redis errors fail closed as TransientStoreFailure."""
        if self.redis is None:
            now = utcnow()
            with self._lock:
                # Drop entries whose tokens have expired anyway
                for stale in [key for key, exp in self._local.items() if exp <= now]:
                    del self._local[stale]
                return jti in self._local

        try:
            return bool(self.redis.exists(self._make_key(jti)))
        except redis.RedisError as e:
            logger.error(f"Error checking revocation for {jti}: {e}", exc_info=True)
            raise TransientStoreFailure() from e
