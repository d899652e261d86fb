"""
Redis 客户端

网关令牌/预览缓存与回调分布式锁共用一个连接池。读写失败只记录日志并按未命中处理，
缓存不可用不应让支付流程失败；锁获取失败则抛出 TimeoutError，由调用方决定如何应答。
"""
from __future__ import annotations

import asyncio
import json
import socket
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, List, Optional

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from core.config import settings
from core.logging_config import get_logger

logger = get_logger(__name__)


def _encode(value: Any) -> str:
    if isinstance(value, (str, int, float)):
        return str(value)
    return json.dumps(value, default=str, ensure_ascii=False)


def _decode(raw: Optional[str]) -> Any:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        return raw


class RedisClient:
    """带命名空间前缀的 JSON 键值访问 + 分布式锁"""

    def __init__(self, client: aioredis.Redis, namespace: str = "", default_ttl: Optional[int] = None):
        self._client = client
        self._prefix = f"{namespace.strip(':')}:" if namespace.strip(":") else ""
        self._default_ttl = default_ttl

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def get(self, key: str, default: Any = None) -> Any:
        full_key = self._key(key)
        try:
            raw = await self._client.get(full_key)
        except RedisError as e:
            logger.error("redis_get_failed", key=full_key, error=str(e))
            return default
        return default if raw is None else _decode(raw)

    async def set(self, key: str, value: Any, ttl: Optional[int] = None, nx: bool = False) -> bool:
        """ttl 为空时使用默认 TTL，<=0 表示不过期"""
        full_key = self._key(key)
        expire = self._default_ttl if ttl is None else ttl
        try:
            ok = await self._client.set(
                full_key,
                _encode(value),
                ex=expire if expire and expire > 0 else None,
                nx=nx,
            )
        except RedisError as e:
            logger.error("redis_set_failed", key=full_key, error=str(e))
            return False
        return bool(ok)

    async def delete(self, *keys: str) -> int:
        full_keys = [self._key(k) for k in keys]
        try:
            return await self._client.delete(*full_keys)
        except RedisError as e:
            logger.error("redis_delete_failed", keys=full_keys, error=str(e))
            return 0

    async def keys(self, pattern: str = "*") -> List[str]:
        """SCAN 匹配的键，返回去掉命名空间前缀后的键名"""
        found: List[str] = []
        try:
            async for full_key in self._client.scan_iter(match=self._key(pattern)):
                found.append(full_key[len(self._prefix):] if full_key.startswith(self._prefix) else full_key)
        except RedisError as e:
            logger.error("redis_scan_failed", pattern=pattern, error=str(e))
        return found

    @asynccontextmanager
    async def lock(self, key: str, timeout: float = 10, blocking_timeout: float = 5) -> AsyncIterator[None]:
        """
        Args:
            timeout: 持有者崩溃后锁自动过期的秒数
            blocking_timeout: 等待获取锁的秒数，超时抛出 TimeoutError
        """
        lock_key = f"lock:{self._key(key)}"
        redis_lock = self._client.lock(
            lock_key,
            timeout=timeout,
            blocking_timeout=blocking_timeout,
            thread_local=False,
        )
        if not await redis_lock.acquire():
            raise TimeoutError(f"获取锁失败: {lock_key}")
        try:
            yield
        finally:
            try:
                await redis_lock.release()
            except RedisError as e:
                # 锁可能已过期被他人持有
                logger.error("redis_lock_release_failed", key=lock_key, error=str(e))


_connection: Optional[aioredis.Redis] = None
_instance: Optional[RedisClient] = None
_init_lock = asyncio.Lock()


def _keepalive_options() -> dict:
    names = ("TCP_KEEPIDLE", "TCP_KEEPINTVL", "TCP_KEEPCNT")
    if not all(hasattr(socket, name) for name in names):
        return {}
    return {socket.TCP_KEEPIDLE: 1, socket.TCP_KEEPINTVL: 1, socket.TCP_KEEPCNT: 3}


async def init_redis_client(namespace: Optional[str] = None, **kwargs) -> RedisClient:
    """初始化全局 Redis 客户端（幂等）"""
    global _connection, _instance

    async with _init_lock:
        if _instance is not None:
            return _instance
        if not settings.redis.url:
            raise RuntimeError("REDIS__URL 未配置，无法初始化Redis客户端")

        connection = aioredis.from_url(
            settings.redis.url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=settings.redis.max_connections,
            socket_keepalive=True,
            socket_keepalive_options=_keepalive_options(),
            **kwargs,
        )
        await connection.ping()

        namespace = namespace or settings.redis.namespace
        _connection = connection
        _instance = RedisClient(connection, namespace=namespace, default_ttl=settings.redis.default_ttl)
        logger.info("redis_client_initialized", namespace=namespace)
        return _instance


async def get_redis_client() -> RedisClient:
    return _instance if _instance is not None else await init_redis_client()


async def shutdown_redis_client() -> None:
    global _connection, _instance

    if _connection is None:
        return
    try:
        await _connection.aclose()
        logger.info("redis_client_closed")
    except RedisError as e:
        logger.error("redis_client_close_failed", error=str(e))
    finally:
        _connection = None
        _instance = None
