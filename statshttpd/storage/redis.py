"""Redis connection holder for the cache / pub-sub backend.

The connection pool is sized by the descriptor's concurrency, so at most that
many commands are outstanding against Redis at once; callers beyond that block
until a connection is returned.
"""

import logging

import redis

from statshttpd.core.types import CacheDescriptor

_SOCKET_TIMEOUT_S = 5.0
_POOL_WAIT_TIMEOUT_S = 20.0


class RedisStore:
    """Pooled Redis client with explicit open/close."""

    def __init__(self, descriptor: CacheDescriptor) -> None:
        self.descriptor = descriptor
        self.logger = logging.getLogger(__name__)
        self.client: redis.Redis | None = None
        self._pool: redis.BlockingConnectionPool | None = None

    def open(self) -> None:
        """Create the pool and verify the server answers; raises ``redis.RedisError``."""

        if self.client is not None:
            return

        self._pool = redis.BlockingConnectionPool(
            host=self.descriptor.host,
            port=self.descriptor.port,
            password=self.descriptor.password or None,
            max_connections=self.descriptor.concurrency,
            timeout=_POOL_WAIT_TIMEOUT_S,
            socket_timeout=_SOCKET_TIMEOUT_S,
            socket_connect_timeout=_SOCKET_TIMEOUT_S,
            decode_responses=True,
        )
        client = redis.Redis(connection_pool=self._pool)
        try:
            client.ping()
        except redis.RedisError:
            self._pool.disconnect()
            self._pool = None
            raise

        self.client = client
        self.logger.info(
            "redis_connected",
            extra={
                "host": self.descriptor.host,
                "port": self.descriptor.port,
                "max_connections": self.descriptor.concurrency,
            },
        )

    def ping(self) -> bool:
        if self.client is None:
            return False
        try:
            return bool(self.client.ping())
        except redis.RedisError as exc:
            self.logger.warning("redis_ping_failed", extra={"error": str(exc)})
            return False

    def close(self) -> None:
        if self._pool is None:
            return
        pool, self._pool = self._pool, None
        self.client = None
        pool.disconnect()
        self.logger.info("redis_disconnected", extra={"host": self.descriptor.host})
