# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

import pytest
import socketio

from app.services.room_router import (
    RoomKind,
    RoomRouter,
    chat_room,
    notification_room,
    project_room,
    room_key,
    task_room,
    user_room,
)


@pytest.mark.unit
class TestRoomKeys:
    def test_keys_are_namespaced_by_kind(self):
        assert chat_room("direct_1_2") == "chat:direct_1_2"
        assert task_room(7) == "task:7"
        assert project_room(3) == "project:3"
        assert user_room(42) == "user:42"
        assert notification_room("deploys") == "notification:deploys"

    def test_same_id_different_kinds_do_not_collide(self):
        assert task_room(1) != project_room(1)

    def test_room_key_accepts_plain_strings(self):
        assert room_key("custom", 5) == "custom:5"
        assert room_key(RoomKind.TASK, 5) == "task:5"


@pytest.mark.asyncio
@pytest.mark.unit
class TestRoomRouter:
    async def test_join_and_leave_use_namespace(self, router, sio):
        await router.join("sid1", "task:1")
        await router.leave("sid1", "task:1")

        sio.enter_room.assert_awaited_once_with("sid1", "task:1", namespace="/")
        sio.leave_room.assert_awaited_once_with("sid1", "task:1", namespace="/")

    async def test_broadcast_can_exclude_sender(self, router, sio):
        await router.broadcast("chat:r1", "chat:typing", {"isTyping": True}, exclude="sid1")

        sio.emit.assert_awaited_once_with(
            "chat:typing",
            {"isTyping": True},
            room="chat:r1",
            skip_sid="sid1",
            namespace="/",
        )

    async def test_broadcast_all_has_no_room(self, router, sio):
        await router.broadcast_all("task:deleted", {"id": 1})

        assert "room" not in sio.emit.await_args.kwargs

    async def test_send_to_user_targets_personal_room(self, router, emitted):
        await router.send_to_user(9, "notification:new", {"id": 1})

        [(payload, kwargs)] = emitted("notification:new")
        assert kwargs["room"] == "user:9"

    async def test_reply_targets_single_connection(self, router, sio):
        await router.reply("sid1", "chat:error", {"error": "x"})

        assert sio.emit.await_args.kwargs["to"] == "sid1"

    def test_rooms_of_excludes_own_sid(self, router, sio):
        sio.rooms.return_value = ["sid1", "chat:r1", "user:3"]

        assert router.rooms_of("sid1") == ["chat:r1", "user:3"]


@pytest.mark.asyncio
@pytest.mark.unit
class TestRoomMembership:
    """Membership against a real in-memory Socket.IO manager."""

    @pytest.fixture
    def server(self):
        return socketio.AsyncServer(async_mode="asgi")

    async def _connect(self, server):
        sid = await server.manager.connect("eio-1", "/")
        return RoomRouter(server, "/"), sid

    async def test_join_twice_then_leave_once_removes_membership(self, server):
        router, sid = await self._connect(server)

        await router.join(sid, "task:1")
        await router.join(sid, "task:1")
        assert router.rooms_of(sid) == ["task:1"]

        await router.leave(sid, "task:1")
        assert "task:1" not in router.rooms_of(sid)

    async def test_last_operation_decides_membership(self, server):
        router, sid = await self._connect(server)

        await router.join(sid, "project:3")
        await router.leave(sid, "project:3")
        await router.join(sid, "project:3")

        assert router.rooms_of(sid) == ["project:3"]

    async def test_leaving_a_room_not_joined_is_a_noop(self, server):
        router, sid = await self._connect(server)

        await router.leave(sid, "chat:r1")
        await router.leave(sid, "chat:r1")

        assert router.rooms_of(sid) == []

    async def test_broadcast_to_empty_room_delivers_nothing(self, server, mocker):
        router, _ = await self._connect(server)
        send = mocker.patch.object(server, "_send_packet")

        await router.broadcast("chat:nobody", "chat:message", {"content": "hi"})

        send.assert_not_called()
