# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

from unittest.mock import AsyncMock, MagicMock

import pytest
import redis

from app.core.cache import CacheManager
from app.core.exceptions import UpstreamUnavailable


def _manager(client):
    return CacheManager(client_factory=lambda: client, key_prefix="t:")


@pytest.mark.asyncio
@pytest.mark.unit
class TestCacheManager:
    """Test the JSON cache wrapper over redis.asyncio"""

    async def test_get_decodes_json(self):
        client = AsyncMock()
        client.get.return_value = '{"roomId": "r1"}'

        assert await _manager(client).get("room") == {"roomId": "r1"}
        client.get.assert_awaited_once_with("t:room")

    async def test_get_miss_returns_none(self):
        client = AsyncMock()
        client.get.return_value = None

        assert await _manager(client).get("room") is None

    async def test_get_undecodable_value_is_a_miss(self):
        client = AsyncMock()
        client.get.return_value = "{not json"

        assert await _manager(client).get("room") is None

    async def test_set_uses_ttl(self):
        client = AsyncMock()
        client.set.return_value = True

        assert await _manager(client).set("k", [1, 2], expire=60) is True
        client.set.assert_awaited_once_with("t:k", "[1, 2]", ex=60)

    async def test_setnx_reports_held_lock(self):
        client = AsyncMock()
        client.set.return_value = None

        assert await _manager(client).setnx("lock", True, expire=10) is False
        assert client.set.await_args.kwargs["nx"] is True

    async def test_redis_error_becomes_upstream_unavailable(self):
        client = AsyncMock()
        client.get.side_effect = redis.ConnectionError("refused")

        with pytest.raises(UpstreamUnavailable):
            await _manager(client).get("room")

    async def test_missing_client_is_upstream_unavailable(self):
        manager = CacheManager(client_factory=lambda: None)

        with pytest.raises(UpstreamUnavailable):
            await manager.set("k", 1)

    async def test_delete_without_keys_is_noop(self):
        client = AsyncMock()

        assert await _manager(client).delete() is True
        client.delete.assert_not_called()

    async def test_hit_sliding_window_returns_count(self):
        pipe = MagicMock()
        pipe.execute = AsyncMock(return_value=[0, 1, 3, True])
        client = MagicMock()
        client.pipeline.return_value.__aenter__ = AsyncMock(return_value=pipe)
        client.pipeline.return_value.__aexit__ = AsyncMock(return_value=False)

        hits = await _manager(client).hit_sliding_window("ai:ratelimit", 3600)

        assert hits == 3
        pipe.zremrangebyscore.assert_called_once()
        pipe.expire.assert_called_once_with("t:ai:ratelimit", 3600)

    async def test_hit_over_limit_is_removed_from_window(self):
        pipe = MagicMock()
        pipe.execute = AsyncMock(return_value=[0, 1, 3, True])
        client = MagicMock()
        client.pipeline.return_value.__aenter__ = AsyncMock(return_value=pipe)
        client.pipeline.return_value.__aexit__ = AsyncMock(return_value=False)
        client.zrem = AsyncMock()

        hits = await _manager(client).hit_sliding_window("ai:ratelimit", 3600, limit=2)

        assert hits == 3
        [member] = pipe.zadd.call_args.args[1].keys()
        client.zrem.assert_awaited_once_with("t:ai:ratelimit", member)

    async def test_hit_within_limit_is_kept(self):
        pipe = MagicMock()
        pipe.execute = AsyncMock(return_value=[0, 1, 2, True])
        client = MagicMock()
        client.pipeline.return_value.__aenter__ = AsyncMock(return_value=pipe)
        client.pipeline.return_value.__aexit__ = AsyncMock(return_value=False)
        client.zrem = AsyncMock()

        assert await _manager(client).hit_sliding_window("ai:ratelimit", 3600, limit=2) == 2
        client.zrem.assert_not_awaited()
