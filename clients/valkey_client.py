"""
Valkey (Redis-compatible) client for per-tenant billing locks.

Simple wrapper around redis-py. Connection URL from Vault.
Fail-fast: raises on connection failure, never returns fallback values.
"""

import logging

import redis
from redis.lock import Lock

logger = logging.getLogger(__name__)


class ValkeyClient:
    """
    Redis-compatible client for Valkey.

    Usage:
        client = ValkeyClient("redis://localhost:6379/0")
        lock = client.lock("billing:lock:<business_id>", timeout=30, blocking_timeout=10)
        if lock.acquire():
            try:
                ...
            finally:
                lock.release()
    """

    def __init__(self, url: str):
        """
        Initialize Valkey connection.

        Args:
            url: Redis-compatible connection URL (e.g., redis://localhost:6379/0)

        Raises:
            redis.ConnectionError: If connection fails
        """
        self._client = redis.from_url(url, decode_responses=True)
        # Verify connectivity immediately (fail-fast)
        self._client.ping()
        logger.info("ValkeyClient connected")

    def ping(self) -> bool:
        """Health check. Raises redis.ConnectionError if unreachable."""
        self._client.ping()
        return True

    def get(self, key: str) -> str | None:
        """Get value by key. None if the key doesn't exist."""
        return self._client.get(key)

    def set(self, key: str, value: str, expire_seconds: int | None = None) -> None:
        if expire_seconds is not None:
            self._client.setex(key, expire_seconds, value)
        else:
            self._client.set(key, value)

    def delete(self, key: str) -> bool:
        """True if the key existed and was deleted."""
        return self._client.delete(key) > 0

    def lock(self, key: str, timeout: float, blocking_timeout: float) -> Lock:
        """
        Distributed lock on key (SET NX PX under the hood).

        Args:
            key: Lock key
            timeout: Seconds before the lock expires if never released
            blocking_timeout: Seconds acquire() waits before giving up
        """
        return self._client.lock(key, timeout=timeout, blocking_timeout=blocking_timeout)

    def close(self) -> None:
        """Close the connection."""
        self._client.close()
        logger.info("ValkeyClient closed")
