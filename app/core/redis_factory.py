# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""Redis client factory for centralized connection management.

The cache layer and the change-feed watcher use the async client; the
change-feed publisher runs inside SQLAlchemy session events and uses the
sync client.
"""

import logging
import threading
from typing import Optional

import redis
import redis.asyncio as aioredis

from app.core.config import settings

logger = logging.getLogger(__name__)


class RedisClientFactory:
    """Factory for creating and managing Redis clients."""

    _sync_client: Optional[redis.Redis] = None
    _async_client: Optional[aioredis.Redis] = None
    _lock = threading.Lock()

    @classmethod
    def get_sync_client(cls) -> Optional[redis.Redis]:
        """Get or create a synchronous Redis client.

        Returns:
            Redis client if successful, None if connection failed
        """
        if cls._sync_client is not None:
            return cls._sync_client

        with cls._lock:
            if cls._sync_client is not None:
                return cls._sync_client
            try:
                cls._sync_client = redis.from_url(
                    settings.REDIS_URL,
                    decode_responses=True,
                    socket_timeout=5,
                    socket_connect_timeout=5,
                )
                logger.info("[Redis] Sync Redis client created")
            except Exception as e:
                logger.error(f"[Redis] Failed to create sync Redis client: {e}")
                return None
        return cls._sync_client

    @classmethod
    def get_async_client(cls) -> Optional[aioredis.Redis]:
        """Get or create an async Redis client.

        The client connects lazily, so creation itself does not touch the
        network; callers handle connection errors per operation.
        """
        if cls._async_client is not None:
            return cls._async_client
        try:
            cls._async_client = aioredis.from_url(
                settings.REDIS_URL,
                decode_responses=True,
                socket_timeout=5,
                socket_connect_timeout=5,
            )
            logger.info("[Redis] Async Redis client created")
        except Exception as e:
            logger.error(f"[Redis] Failed to create async Redis client: {e}")
            return None
        return cls._async_client

    @classmethod
    async def close(cls) -> None:
        if cls._async_client is not None:
            try:
                await cls._async_client.aclose()
            except Exception as e:
                logger.warning(f"[Redis] Error closing async client: {e}")
        if cls._sync_client is not None:
            try:
                cls._sync_client.close()
            except Exception as e:
                logger.warning(f"[Redis] Error closing sync client: {e}")
        cls.reset()

    @classmethod
    def reset(cls) -> None:
        """Reset all cached clients.

        This is primarily useful for testing purposes.
        """
        with cls._lock:
            cls._sync_client = None
            cls._async_client = None
