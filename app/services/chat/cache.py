# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Chat cache: memoized rooms, recent messages and per-user room lists.

Every method returns a Result. Reads that fail are treated as misses by the
callers; failed invalidations are logged and never block the write that
triggered them.
"""

import logging
from typing import Any, Iterable, Optional

from app.core.cache import CacheManager
from app.core.config import settings
from app.core.result import Result

logger = logging.getLogger(__name__)

CHAT_PREFIX = "chat:"


def room_cache_key(room_id: str) -> str:
    return f"{CHAT_PREFIX}room:{room_id}"


def messages_cache_key(room_id: str) -> str:
    return f"{CHAT_PREFIX}messages:{room_id}"


def user_rooms_cache_key(user_id: Any) -> str:
    return f"{CHAT_PREFIX}user:{user_id}:rooms"


class ChatCacheService:
    def __init__(self, cache: CacheManager, ttl: Optional[int] = None):
        self.cache = cache
        self.ttl = ttl if ttl is not None else settings.CHAT_CACHE_TTL_SECONDS

    async def _get(self, key: str) -> Result[Any]:
        try:
            return Result.success(await self.cache.get(key))
        except Exception as e:
            logger.warning(f"[Cache] get {key} failed: {e}")
            return Result.failure(e)

    async def _set(self, key: str, value: Any) -> Result[bool]:
        try:
            return Result.success(await self.cache.set(key, value, expire=self.ttl))
        except Exception as e:
            logger.warning(f"[Cache] set {key} failed: {e}")
            return Result.failure(e)

    async def _delete(self, *keys: str) -> Result[bool]:
        try:
            return Result.success(await self.cache.delete(*keys))
        except Exception as e:
            logger.warning(f"[Cache] delete {keys} failed: {e}")
            return Result.failure(e)

    async def get_chat_room(self, room_id: str) -> Result[Optional[dict]]:
        return await self._get(room_cache_key(room_id))

    async def set_chat_room(self, room_id: str, room: dict) -> Result[bool]:
        return await self._set(room_cache_key(room_id), room)

    async def get_recent_messages(self, room_id: str) -> Result[Optional[list]]:
        return await self._get(messages_cache_key(room_id))

    async def set_recent_messages(self, room_id: str, messages: list) -> Result[bool]:
        return await self._set(messages_cache_key(room_id), messages)

    async def get_user_chat_rooms(self, user_id: Any) -> Result[Optional[list]]:
        return await self._get(user_rooms_cache_key(user_id))

    async def set_user_chat_rooms(self, user_id: Any, rooms: list) -> Result[bool]:
        return await self._set(user_rooms_cache_key(user_id), rooms)

    async def invalidate_chat_room(self, room_id: str) -> Result[bool]:
        """Drop the cached room and its recent-message page."""
        return await self._delete(room_cache_key(room_id), messages_cache_key(room_id))

    async def invalidate_user_chat_rooms(self, user_ids: Iterable[Any]) -> Result[bool]:
        keys = [user_rooms_cache_key(uid) for uid in user_ids]
        if not keys:
            return Result.success(True)
        return await self._delete(*keys)

    async def invalidate_after_write(
        self, room_id: str, participant_ids: Iterable[Any]
    ) -> None:
        """Coarse invalidation after a message write: the room plus every participant's list."""
        await self.invalidate_chat_room(room_id)
        await self.invalidate_user_chat_rooms(participant_ids)
