"""Record cache layer: Redis for deployments, in-memory LRU for single processes."""

from batchops.cache.memory_cache import InMemoryCache
from batchops.cache.redis_cache import RedisCache

__all__ = [
    "InMemoryCache",
    "RedisCache",
]
