# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Presence registry: which users are online, and on which connection.

One entry per user, last write wins on reconnect. Entries are removed on
disconnect by reverse lookup of the connection handle, so a late disconnect
of a superseded connection never evicts the newer one.
"""

import asyncio
import logging
from typing import Iterable, Optional

from app.api.ws.events import ServerEvents
from app.db.base import utcnow
from app.services.room_router import RoomRouter, user_room

logger = logging.getLogger(__name__)


class PresenceRegistry:
    """Process-local userId <-> connection map guarded by an asyncio lock."""

    def __init__(self, router: Optional[RoomRouter] = None):
        self._router = router
        self._by_user: dict[int, str] = {}
        self._lock = asyncio.Lock()

    async def register(self, user_id: int, sid: str) -> Optional[str]:
        """
        Attach user_id to sid, replacing any previous handle.

        Joins the personal room and announces `user:online` to every other
        connection. Returns the handle that was replaced, if any.
        """
        async with self._lock:
            previous = self._by_user.get(user_id)
            self._by_user[user_id] = sid

        logger.info(
            f"[Presence] user={user_id} online sid={sid}"
            + (f" (replaced {previous})" if previous and previous != sid else "")
        )
        if self._router is not None:
            await self._router.join(sid, user_room(user_id))
            await self._router.broadcast_all(
                ServerEvents.USER_ONLINE,
                {"userId": user_id, "timestamp": utcnow().isoformat()},
                exclude=sid,
            )
        return previous

    async def unregister(self, sid: str) -> Optional[int]:
        """
        Remove every entry whose handle is sid.

        Returns the freed user id, or None when sid was never registered or
        has already been superseded. Never raises.
        """
        freed: Optional[int] = None
        async with self._lock:
            for user_id, handle in list(self._by_user.items()):
                if handle == sid:
                    del self._by_user[user_id]
                    freed = user_id

        if freed is None:
            return None

        logger.info(f"[Presence] user={freed} offline sid={sid}")
        if self._router is not None:
            try:
                await self._router.broadcast_all(
                    ServerEvents.USER_OFFLINE,
                    {"userId": freed, "timestamp": utcnow().isoformat()},
                    exclude=sid,
                )
            except Exception as e:
                logger.warning(f"[Presence] Failed to broadcast offline for {freed}: {e}")
        return freed

    def is_online(self, user_id: int) -> bool:
        return user_id in self._by_user

    def lookup(self, user_id: int) -> Optional[str]:
        return self._by_user.get(user_id)

    def online_users(self) -> list[int]:
        return list(self._by_user.keys())

    def filter_online(self, user_ids: Iterable[int]) -> list[int]:
        return [uid for uid in user_ids if uid in self._by_user]

    def user_for(self, sid: str) -> Optional[int]:
        for user_id, handle in self._by_user.items():
            if handle == sid:
                return user_id
        return None
