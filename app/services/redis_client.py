# app/services/redis_client.py
"""
Pooled async Redis client. Backs the proposal rate limiter; readiness probes
ping it through the same pool.
"""

from urllib.parse import urlsplit

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


def _redacted(url: str) -> str:
    """host:port/db without credentials, for logs."""
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.hostname}:{parts.port or 6379}{parts.path}"


class FastRedisClient:
    def __init__(self, url: str | None = None, max_connections: int | None = None):
        self.url = url or settings.REDIS_URL
        self.max_connections = max_connections or settings.REDIS_MAX_CONNECTIONS
        self.pool: ConnectionPool | None = None
        self.client: redis.Redis | None = None
        self._initialized = False

    async def initialize(self) -> None:
        if self._initialized:
            return

        timeout = settings.REDIS_SOCKET_TIMEOUT_SECONDS
        self.pool = ConnectionPool.from_url(
            self.url,
            max_connections=self.max_connections,
            retry_on_timeout=True,
            socket_connect_timeout=timeout,
            socket_timeout=timeout,
            health_check_interval=30,
            decode_responses=True,
        )
        self.client = redis.Redis(connection_pool=self.pool)

        try:
            await self.client.ping()
        except Exception as e:
            logger.error("Failed to initialize Redis client", url=_redacted(self.url), error=str(e))
            await self.close()
            raise RuntimeError("Redis initialization failed") from e

        self._initialized = True
        logger.info(
            "Redis client initialized",
            url=_redacted(self.url),
            max_connections=self.max_connections,
        )

    async def close(self) -> None:
        try:
            if self.client:
                await self.client.aclose()
            if self.pool:
                await self.pool.disconnect()
            logger.info("Redis client closed")
        except Exception as e:
            logger.error("Error closing Redis client", error=str(e))
        finally:
            self._initialized = False
            self.client = None
            self.pool = None

    async def ping(self) -> bool:
        if not self._initialized or not self.client:
            return False
        try:
            return bool(await self.client.ping())
        except Exception as e:
            logger.error("Redis ping failed", error=str(e))
            return False


# Global instance
fast_redis = FastRedisClient()
