# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

from typing import Optional
from unittest.mock import AsyncMock

import pytest
from pydantic import BaseModel

from app.api.ws.decorators import trace_websocket_event, ws_handler
from app.core.config import settings
from app.core.context import get_request_id, get_user_id
from app.core.exceptions import PermissionDenied


class RoomIn(BaseModel):
    room_id: str
    note: Optional[str] = None


class FakeNamespace:
    namespace = "/"

    def __init__(self, session=None):
        self.get_session = AsyncMock(return_value=session or {})
        self.emit = AsyncMock()
        self.seen = []

    @trace_websocket_event(exclude_events={"connect"})
    async def trigger_event(self, event, sid, *args):
        self.seen.append((event, get_request_id(), get_user_id()))
        if event == "explode":
            raise RuntimeError("boom")
        return "handled"

    @ws_handler(RoomIn, scope="chat")
    async def on_room(self, sid, payload):
        return {"roomId": payload.room_id}

    @ws_handler(None, scope="chat")
    async def on_raw(self, sid, payload):
        return payload

    @ws_handler(RoomIn, scope="project")
    async def on_forbidden(self, sid, payload):
        raise PermissionDenied("Not a member")


@pytest.mark.unit
class TestTraceWebsocketEvent:
    @pytest.mark.asyncio
    async def test_sets_request_and_user_context(self):
        ns = FakeNamespace(session={"user_id": 12})

        assert await ns.trigger_event("chat:message", "sid-1", {}) == "handled"

        event, request_id, user_id = ns.seen[0]
        assert event == "chat:message"
        assert request_id
        assert user_id == "12"

    @pytest.mark.asyncio
    async def test_excluded_events_skip_context(self):
        ns = FakeNamespace()

        await ns.trigger_event("connect", "sid-1")

        ns.get_session.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_session_lookup_failure_is_tolerated(self):
        ns = FakeNamespace()
        ns.get_session.side_effect = KeyError("sid-1")

        assert await ns.trigger_event("chat:message", "sid-1") == "handled"

    @pytest.mark.asyncio
    async def test_traced_errors_propagate(self, mocker):
        mocker.patch.object(settings, "OTEL_ENABLED", True)
        ns = FakeNamespace()

        assert await ns.trigger_event("chat:join", "sid-1", {"roomId": "r1"}) == "handled"
        with pytest.raises(RuntimeError):
            await ns.trigger_event("explode", "sid-1")

    @pytest.mark.asyncio
    async def test_span_carries_event_metadata(self, mocker):
        mocker.patch.object(settings, "OTEL_ENABLED", True)
        tracer = mocker.patch("app.api.ws.decorators.trace.get_tracer").return_value
        span = tracer.start_as_current_span.return_value.__enter__.return_value
        span.is_recording.return_value = True
        ns = FakeNamespace()

        await ns.trigger_event("chat:join", "sid-1", {"roomId": "r1", "taskId": 4})

        tracer.start_as_current_span.assert_called_once_with("websocket.chat:join")
        span.set_attribute.assert_any_call("websocket.event", "chat:join")
        span.set_attribute.assert_any_call("room.id", "r1")
        span.set_attribute.assert_any_call("task.id", 4)


@pytest.mark.unit
class TestWsHandler:
    @pytest.mark.asyncio
    async def test_validated_payload_reaches_handler(self):
        ns = FakeNamespace()

        assert await ns.on_room("sid-1", {"room_id": "r1"}) == {"roomId": "r1"}
        ns.emit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invalid_payload(self):
        ns = FakeNamespace()

        ack = await ns.on_room("sid-1", {"note": "no room"})

        assert ack["code"] == "VALIDATION_FAILED"
        assert ack["error"].startswith("Invalid payload")
        ns.emit.assert_awaited_once_with("chat:error", ack, to="sid-1")

    @pytest.mark.asyncio
    async def test_missing_payload_is_validated_as_empty(self):
        ns = FakeNamespace()

        ack = await ns.on_room("sid-1")

        assert ack["code"] == "VALIDATION_FAILED"

    @pytest.mark.asyncio
    async def test_raw_payload_passes_through(self):
        ns = FakeNamespace()

        assert await ns.on_raw("sid-1", [1, 2]) == [1, 2]

    @pytest.mark.asyncio
    async def test_service_error_uses_its_code(self):
        ns = FakeNamespace()

        ack = await ns.on_forbidden("sid-1", {"room_id": "r1"})

        assert ack == {"error": "Not a member", "code": "PERMISSION_DENIED"}
        ns.emit.assert_awaited_once_with("project:error", ack, to="sid-1")
