# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

import asyncio

import pytest

from app.services.presence import PresenceRegistry


@pytest.mark.asyncio
@pytest.mark.unit
class TestPresenceRegistry:
    async def test_register_joins_personal_room_and_announces(self, presence, sio, emitted):
        await presence.register(1, "sid1")

        assert presence.is_online(1)
        assert presence.lookup(1) == "sid1"
        sio.enter_room.assert_awaited_once_with("sid1", "user:1", namespace="/")
        [(payload, kwargs)] = emitted("user:online")
        assert payload["userId"] == 1
        assert kwargs["skip_sid"] == "sid1"

    async def test_reconnect_replaces_handle(self, presence):
        await presence.register(1, "old")
        previous = await presence.register(1, "new")

        assert previous == "old"
        assert presence.lookup(1) == "new"

    async def test_late_disconnect_of_superseded_handle_keeps_user(self, presence, emitted):
        await presence.register(1, "old")
        await presence.register(1, "new")

        freed = await presence.unregister("old")

        assert freed is None
        assert presence.is_online(1)
        assert emitted("user:offline") == []

    async def test_unregister_frees_user_and_announces(self, presence, emitted):
        await presence.register(1, "sid1")

        assert await presence.unregister("sid1") == 1
        assert not presence.is_online(1)
        [(payload, _)] = emitted("user:offline")
        assert payload["userId"] == 1

    async def test_unregister_unknown_handle_is_noop(self, presence):
        assert await presence.unregister("ghost") is None

    async def test_unregister_survives_broadcast_failure(self, presence, sio):
        await presence.register(1, "sid1")
        sio.emit.side_effect = RuntimeError("transport closed")

        assert await presence.unregister("sid1") == 1

    async def test_filter_online_preserves_order(self, presence):
        await presence.register(3, "a")
        await presence.register(1, "b")

        assert presence.filter_online([1, 2, 3]) == [1, 3]
        assert sorted(presence.online_users()) == [1, 3]
        assert presence.user_for("b") == 1

    async def test_concurrent_registrations(self):
        registry = PresenceRegistry()

        await asyncio.gather(*(registry.register(uid, f"sid{uid}") for uid in range(50)))

        assert len(registry.online_users()) == 50
