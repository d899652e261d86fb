"""缓存层对外暴露的接口"""
from .redis_client import (
    RedisClient,
    init_redis_client,
    get_redis_client,
    shutdown_redis_client,
)
from .stores import CacheStore, MemoryCacheStore, RedisCacheStore


__all__ = [
    "RedisClient",
    "init_redis_client",
    "get_redis_client",
    "shutdown_redis_client",
    "CacheStore",
    "MemoryCacheStore",
    "RedisCacheStore",
]
