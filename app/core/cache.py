# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Key/value cache wrapper over redis.asyncio.

Values are stored as JSON under `settings.CACHE_KEY_PREFIX`. Every Redis error
is re-raised as UpstreamUnavailable so that callers decide whether a cache
failure is fatal; nothing in this module swallows errors.
"""

import json
import logging
import time
import uuid
from typing import Any, Callable, Optional

import redis.asyncio as aioredis

from app.core.config import settings
from app.core.exceptions import UpstreamUnavailable
from app.core.redis_factory import RedisClientFactory

logger = logging.getLogger(__name__)


class CacheManager:
    """Async JSON cache with TTL, SETNX locks and sliding-window counters."""

    def __init__(
        self,
        client_factory: Optional[Callable[[], Optional[aioredis.Redis]]] = None,
        key_prefix: Optional[str] = None,
    ):
        self._client_factory = client_factory or RedisClientFactory.get_async_client
        self.key_prefix = (
            key_prefix if key_prefix is not None else settings.CACHE_KEY_PREFIX
        )

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    def _client(self) -> aioredis.Redis:
        client = self._client_factory()
        if client is None:
            raise UpstreamUnavailable("Cache is not configured")
        return client

    async def get(self, key: str) -> Any:
        """Return the decoded value for key, or None on a miss."""
        try:
            raw = await self._client().get(self._key(key))
        except UpstreamUnavailable:
            raise
        except Exception as e:
            raise UpstreamUnavailable(f"Cache get failed for {key}: {e}") from e
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            logger.warning(f"[Cache] Dropping undecodable value for {key}")
            return None

    async def set(self, key: str, value: Any, expire: Optional[int] = None) -> bool:
        """Store value as JSON; `expire` is a TTL in seconds."""
        try:
            payload = json.dumps(value, default=str)
            return bool(await self._client().set(self._key(key), payload, ex=expire))
        except UpstreamUnavailable:
            raise
        except Exception as e:
            raise UpstreamUnavailable(f"Cache set failed for {key}: {e}") from e

    async def setnx(self, key: str, value: Any, expire: Optional[int] = None) -> bool:
        """Set key only if it does not exist. Used for distributed locks."""
        try:
            payload = json.dumps(value, default=str)
            result = await self._client().set(
                self._key(key), payload, ex=expire, nx=True
            )
            return bool(result)
        except UpstreamUnavailable:
            raise
        except Exception as e:
            raise UpstreamUnavailable(f"Cache setnx failed for {key}: {e}") from e

    async def delete(self, *keys: str) -> bool:
        if not keys:
            return True
        try:
            await self._client().delete(*[self._key(k) for k in keys])
            return True
        except UpstreamUnavailable:
            raise
        except Exception as e:
            raise UpstreamUnavailable(f"Cache delete failed for {keys}: {e}") from e

    async def hit_sliding_window(
        self, key: str, window_seconds: int, limit: Optional[int] = None
    ) -> int:
        """
        Record one hit in a sliding window and return the number of hits
        (including this one) within the last `window_seconds`.

        With `limit`, a hit that pushes the count past it is removed again so
        rejected attempts do not occupy the window.
        """
        full_key = self._key(key)
        now = time.time()
        member = f"{now}:{uuid.uuid4().hex[:8]}"
        try:
            async with self._client().pipeline(transaction=True) as pipe:
                pipe.zremrangebyscore(full_key, 0, now - window_seconds)
                pipe.zadd(full_key, {member: now})
                pipe.zcard(full_key)
                pipe.expire(full_key, window_seconds)
                results = await pipe.execute()
            hits = int(results[2])
            if limit is not None and hits > limit:
                await self._client().zrem(full_key, member)
            return hits
        except UpstreamUnavailable:
            raise
        except Exception as e:
            raise UpstreamUnavailable(f"Cache counter failed for {key}: {e}") from e


# Global cache instance
cache_manager = CacheManager()
