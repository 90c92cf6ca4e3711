# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Redis pub/sub change feed consumed by the watcher.
"""

import logging
from typing import Callable, Optional

import redis.asyncio as aioredis
from redis.asyncio.client import PubSub

from app.core.config import settings
from app.core.exceptions import StreamFailure
from app.core.redis_factory import RedisClientFactory
from app.services.change_feed.events import ChangeEvent

logger = logging.getLogger(__name__)

POLL_TIMEOUT_SECONDS = 1.0


class ChangeStream:
    """Async iterator of ChangeEvents for one subscribed channel."""

    def __init__(self, pubsub: PubSub, collection: str):
        self._pubsub = pubsub
        self.collection = collection
        self._closed = False

    def __aiter__(self) -> "ChangeStream":
        return self

    async def __anext__(self) -> ChangeEvent:
        while not self._closed:
            message = await self._pubsub.get_message(
                ignore_subscribe_messages=True, timeout=POLL_TIMEOUT_SECONDS
            )
            if message is None or message.get("type") != "message":
                continue
            try:
                return ChangeEvent.from_json(message["data"])
            except ValueError as e:
                logger.warning(f"[ChangeFeed] Skipping {self.collection} event: {e}")
        raise StopAsyncIteration

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._pubsub.unsubscribe()
        finally:
            await self._pubsub.aclose()


class RedisChangeFeed:
    def __init__(
        self,
        client_factory: Callable[[], Optional[aioredis.Redis]] = RedisClientFactory.get_async_client,
        channel_prefix: Optional[str] = None,
        min_version: Optional[int] = None,
    ):
        self._client_factory = client_factory
        self.channel_prefix = (
            channel_prefix
            if channel_prefix is not None
            else settings.CHANGE_FEED_CHANNEL_PREFIX
        )
        self.min_version = (
            min_version
            if min_version is not None
            else settings.CHANGE_FEED_MIN_REDIS_VERSION
        )

    def _client(self) -> aioredis.Redis:
        client = self._client_factory()
        if client is None:
            raise StreamFailure("Redis is not configured")
        return client

    async def supports_change_feed(self) -> bool:
        """
        Check the server version. Returns False for an unsupported server;
        connection errors propagate so the caller can retry.
        """
        client = self._client()
        await client.ping()
        info = await client.info("server")
        version = str(info.get("redis_version", "0"))
        try:
            major = int(version.split(".")[0])
        except ValueError:
            logger.error(f"[ChangeFeed] Unrecognised Redis version {version}")
            return False
        if major < self.min_version:
            logger.error(
                f"[ChangeFeed] Redis {version} is older than required "
                f"{self.min_version}.x"
            )
            return False
        return True

    async def open(self, collection: str) -> ChangeStream:
        pubsub = self._client().pubsub()
        await pubsub.subscribe(f"{self.channel_prefix}{collection}")
        logger.info(f"[ChangeFeed] Subscribed to {collection}")
        return ChangeStream(pubsub, collection)
