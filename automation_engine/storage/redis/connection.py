"""
Redis client lifecycle for the workflow cache.
"""

import logging
from typing import Optional

import redis.asyncio as redis

from automation_engine.config.settings import RedisSettings

logger = logging.getLogger(__name__)


class RedisConnection:
    """Builds a pooled client from RedisSettings and checks it is reachable."""

    def __init__(self, settings: Optional[RedisSettings] = None):
        self.settings = settings or RedisSettings()
        self._client: Optional[redis.Redis] = None

    async def init(self) -> None:
        """
        Create the client and verify the server answers.

        Raises:
            redis.ConnectionError: If Redis cannot be reached
        """
        client = redis.from_url(
            self.settings.url,
            max_connections=self.settings.max_connections,
            socket_timeout=self.settings.socket_timeout,
            socket_connect_timeout=self.settings.socket_connect_timeout,
            decode_responses=True,
        )
        try:
            await client.ping()
        except redis.RedisError:
            await client.aclose()
            raise
        self._client = client
        logger.info(f"Redis cache reachable at {self.settings.host}:{self.settings.port}/{self.settings.db}")

    async def close(self) -> None:
        if self._client is not None:
            # Also disconnects the pool created by from_url
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            raise RuntimeError("RedisConnection.init() has not been awaited")
        return self._client

    async def health_check(self) -> bool:
        if self._client is None:
            return False
        try:
            return bool(await self._client.ping())
        except redis.RedisError as e:
            logger.warning(f"Redis ping failed: {e}")
            return False
