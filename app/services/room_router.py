# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Room routing over the Socket.IO room primitive.

Rooms are broadcast groups keyed "<kind>:<id>". Membership lives entirely in
the Socket.IO server; joining twice is a no-op, leaving a room the connection
is not in is a no-op, and broadcasting to an empty room delivers nothing.
Delivery is at-most-once: events addressed to a user without a live
connection are dropped here and persisted by the notification dispatcher.
"""

import logging
from enum import Enum
from typing import Any, Optional, Union

import socketio

logger = logging.getLogger(__name__)


class RoomKind(str, Enum):
    CHAT = "chat"
    TASK = "task"
    PROJECT = "project"
    USER = "user"
    NOTIFICATION = "notification"


def room_key(kind: Union[RoomKind, str], entity_id: Any) -> str:
    """Deterministic room key, namespaced by entity kind."""
    kind_value = kind.value if isinstance(kind, RoomKind) else str(kind)
    return f"{kind_value}:{entity_id}"


def chat_room(room_id: str) -> str:
    return room_key(RoomKind.CHAT, room_id)


def task_room(task_id: Any) -> str:
    return room_key(RoomKind.TASK, task_id)


def project_room(project_id: Any) -> str:
    return room_key(RoomKind.PROJECT, project_id)


def user_room(user_id: Any) -> str:
    return room_key(RoomKind.USER, user_id)


def notification_room(channel: str) -> str:
    return room_key(RoomKind.NOTIFICATION, channel)


class RoomRouter:
    """Join/leave/broadcast facade for one Socket.IO namespace."""

    def __init__(self, sio: socketio.AsyncServer, namespace: str = "/"):
        self.sio = sio
        self.namespace = namespace

    async def join(self, sid: str, room: str) -> None:
        await self.sio.enter_room(sid, room, namespace=self.namespace)
        logger.debug(f"[WS] sid={sid} joined {room}")

    async def leave(self, sid: str, room: str) -> None:
        await self.sio.leave_room(sid, room, namespace=self.namespace)
        logger.debug(f"[WS] sid={sid} left {room}")

    def rooms_of(self, sid: str) -> list[str]:
        """Rooms the connection currently belongs to (excluding its own sid room)."""
        return [r for r in self.sio.rooms(sid, namespace=self.namespace) if r != sid]

    async def broadcast(
        self,
        room: str,
        event: str,
        payload: Any,
        exclude: Optional[str] = None,
    ) -> None:
        """Emit to every connection in room, optionally skipping one sid."""
        await self.sio.emit(
            event,
            payload,
            room=room,
            skip_sid=exclude,
            namespace=self.namespace,
        )
        logger.debug(f"[WS] emit {event} to room={room} exclude={exclude}")

    async def broadcast_all(
        self, event: str, payload: Any, exclude: Optional[str] = None
    ) -> None:
        """Emit to every connection in the namespace."""
        await self.sio.emit(
            event, payload, skip_sid=exclude, namespace=self.namespace
        )
        logger.debug(f"[WS] emit {event} globally exclude={exclude}")

    async def send_to_user(self, user_id: Any, event: str, payload: Any) -> None:
        """Directed delivery through the user's personal room."""
        await self.broadcast(user_room(user_id), event, payload)

    async def reply(self, sid: str, event: str, payload: Any) -> None:
        """Emit to a single connection."""
        await self.sio.emit(event, payload, to=sid, namespace=self.namespace)
