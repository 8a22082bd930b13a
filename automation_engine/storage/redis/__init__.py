"""Redis storage layer for caching."""

from automation_engine.storage.redis.cache import WorkflowCache
from automation_engine.storage.redis.connection import RedisConnection

__all__ = ["WorkflowCache", "RedisConnection"]
