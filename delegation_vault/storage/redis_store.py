"""
Redis-backed key-value store.

Local development:
- Start Redis: `redis-server`
- No env vars needed; the default URL is redis://localhost:6379
- Or set KV_URL to any redis:// or rediss:// URL (e.g. Upstash)
"""

from __future__ import annotations

import logging
from typing import Optional, Set

from redis.asyncio import Redis
from redis.exceptions import RedisError

from ..exceptions import StorageUnavailableError
from .base import KeyValueStore

logger = logging.getLogger(__name__)


class RedisKeyValueStore(KeyValueStore):
    def __init__(
        self,
        url: str,
        *,
        connect_timeout_seconds: float = 5.0,
        socket_timeout_seconds: float = 5.0,
        client: Optional[Redis] = None,
    ) -> None:
        self.client = client or Redis.from_url(
            url,
            socket_connect_timeout=connect_timeout_seconds,
            socket_timeout=socket_timeout_seconds,
            decode_responses=True,
            encoding="utf-8",
        )

    async def _call(self, operation: str, key: str, coro):
        try:
            return await coro
        except (RedisError, OSError) as exc:
            logger.warning("Redis %s failed for %s: %s", operation, key, type(exc).__name__)
            raise StorageUnavailableError("Key-value store unavailable", operation=operation, key=key) from exc

    async def get(self, key: str) -> Optional[str]:
        return await self._call("get", key, self.client.get(key))

    async def set(self, key: str, value: str) -> None:
        await self._call("set", key, self.client.set(key, value))

    async def delete(self, key: str) -> bool:
        removed = await self._call("delete", key, self.client.delete(key))
        return bool(removed)

    async def sadd(self, key: str, member: str) -> None:
        await self._call("sadd", key, self.client.sadd(key, member))

    async def srem(self, key: str, member: str) -> None:
        await self._call("srem", key, self.client.srem(key, member))

    async def smembers(self, key: str) -> Set[str]:
        members = await self._call("smembers", key, self.client.smembers(key))
        return set(members or ())

    async def close(self) -> None:
        await self.client.aclose()
