"""
@description Redis 键值缓存封装
@responsibility 提供带 TTL 的 set/get/delete、按模式删除、key 枚举与缓存统计
"""

from datetime import timedelta
from typing import Any, Optional, Union

import redis.asyncio as aioredis
from loguru import logger
from redis.exceptions import RedisError

from winkr.utils.helpers import dumps, loads

TTL = Union[int, float, timedelta]


def _ttl_seconds(ttl: TTL) -> int:
    if isinstance(ttl, timedelta):
        ttl = ttl.total_seconds()
    return max(int(ttl), 1)


class RedisCache:
    """Redis 键值缓存（值以 JSON 编码）"""

    def __init__(self, client: aioredis.Redis, prefix: str = ""):
        self._redis = client
        self._prefix = prefix
        self._hits = 0
        self._misses = 0

    @classmethod
    def from_url(cls, url: str, prefix: str = "") -> "RedisCache":
        client = aioredis.from_url(url, decode_responses=True)
        logger.info(f"Redis 缓存客户端已创建: {url}")
        return cls(client, prefix=prefix)

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def _strip(self, key: str) -> str:
        if self._prefix and key.startswith(self._prefix):
            return key[len(self._prefix) :]
        return key

    async def set(self, key: str, value: Any, ttl: TTL) -> None:
        await self._redis.set(self._key(key), dumps(value), ex=_ttl_seconds(ttl))

    async def get(self, key: str) -> Optional[Any]:
        """读取缓存，未命中返回 None"""
        raw = await self._redis.get(self._key(key))
        if raw is None:
            self._misses += 1
            return None
        self._hits += 1
        return loads(raw)

    async def delete(self, key: str) -> None:
        await self._redis.delete(self._key(key))

    async def keys(self, pattern: str) -> list[str]:
        """按模式枚举 key（SCAN，避免阻塞 Redis）"""
        found = []
        async for key in self._redis.scan_iter(match=self._key(pattern), count=500):
            found.append(self._strip(key))
        return found

    async def delete_by_pattern(self, pattern: str) -> int:
        keys = await self.keys(pattern)
        if not keys:
            return 0
        return await self._redis.delete(*[self._key(k) for k in keys])

    async def ttl(self, key: str) -> int:
        return await self._redis.ttl(self._key(key))

    async def info(self) -> dict:
        """缓存统计信息"""
        total_keys = await self._redis.dbsize()
        memory_usage = None
        try:
            memory = await self._redis.info("memory")
            memory_usage = memory.get("used_memory")
        except RedisError as e:
            logger.debug(f"读取 Redis 内存信息失败: {e}")

        lookups = self._hits + self._misses
        return {
            "total_keys": total_keys,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": self._hits / lookups if lookups else 0.0,
            "miss_rate": self._misses / lookups if lookups else 0.0,
            "memory_usage": memory_usage,
        }

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except RedisError as e:
            logger.error(f"Redis 连接检查失败: {e}")
            return False

    async def close(self) -> None:
        await self._redis.aclose()
