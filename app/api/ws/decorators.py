# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
WebSocket event decorators for tracing, payload validation and error mapping.
"""

import logging
from functools import wraps
from typing import Any, Callable, Optional, Type

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from pydantic import BaseModel, ValidationError

from app.api.ws.events import ServerEvents, scoped
from app.core.config import settings
from app.core.context import (
    new_request_id,
    set_request_context,
    set_room_context,
    set_user_context,
)
from app.core.exceptions import RealtimeError, ValidationFailed

logger = logging.getLogger(__name__)

SPAN_NAME = "websocket.{event}"


def trace_websocket_event(
    exclude_events: Optional[set] = None,
    extract_event_data: bool = True,
):
    """
    Decorator to add request context and OpenTelemetry tracing to
    `trigger_event`.

    This decorator:
    1. Generates a unique request_id for each event (except 'connect')
    2. Restores user context from the Socket.IO session
    3. Creates a span with event metadata when OTEL_ENABLED is set
    4. Marks the span status from the handler outcome

    Usage:
        class RealtimeNamespace(socketio.AsyncNamespace):
            @trace_websocket_event(exclude_events={"connect"})
            async def trigger_event(self, event: str, sid: str, *args):
                return await self._execute_handler(event, sid, *args)
    """
    if exclude_events is None:
        exclude_events = set()

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(self, event: str, sid: str, *args):
            if event in exclude_events:
                return await func(self, event, sid, *args)

            set_request_context(new_request_id())
            try:
                session = await self.get_session(sid)
                user_id = session.get("user_id")
                if user_id:
                    set_user_context(str(user_id))
            except Exception as e:
                logger.debug(f"Failed to restore user context: {e}")

            if not settings.OTEL_ENABLED:
                return await func(self, event, sid, *args)

            tracer = trace.get_tracer(__name__)
            with tracer.start_as_current_span(SPAN_NAME.format(event=event)) as span:
                span.set_attribute("websocket.event", event)
                span.set_attribute("websocket.sid", sid)
                span.set_attribute("websocket.namespace", self.namespace)
                if extract_event_data and args and isinstance(args[0], dict):
                    _set_event_data_attributes(span, args[0])
                try:
                    result = await func(self, event, sid, *args)
                    if span.is_recording():
                        span.set_status(Status(StatusCode.OK))
                    return result
                except Exception as e:
                    if span.is_recording():
                        span.record_exception(e)
                        span.set_status(Status(StatusCode.ERROR, description=str(e)))
                    raise

        return wrapper

    return decorator


def _set_event_data_attributes(span, event_data: dict) -> None:
    _safe_set_attribute(span, "room.id", event_data.get("roomId"))
    _safe_set_attribute(span, "task.id", event_data.get("taskId"))
    _safe_set_attribute(span, "project.id", event_data.get("projectId"))


def _safe_set_attribute(span, key: str, value: Any) -> None:
    if value is not None:
        try:
            span.set_attribute(key, value)
        except Exception as e:
            logger.debug(f"Failed to set span attribute {key}={value}: {e}")


def ws_handler(payload_class: Optional[Type[BaseModel]], scope: str):
    """
    Validate the payload and turn service errors into `<scope>:error`.

    The wrapped handler receives the validated payload object. Validation,
    not-found and permission errors go back to the calling connection only
    as {"error", "code"}; anything unexpected is logged with its traceback
    and reported as a generic error. The handler's return value is passed
    through as the Socket.IO acknowledgement; on error the error payload is
    returned instead.

    Usage:
        @ws_handler(ChatMessagePayload, scope="chat")
        async def on_chat_message(self, sid: str, payload: ChatMessagePayload):
            ...
    """
    error_event = scoped(scope, ServerEvents.ERROR)

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(self, sid: str, data: Any = None, *args):
            try:
                if payload_class is None:
                    payload = data
                else:
                    try:
                        payload = payload_class.model_validate(data or {})
                    except ValidationError as e:
                        raise ValidationFailed(
                            f"Invalid payload: {e.errors()[0].get('msg', 'invalid')}"
                        ) from e
                    set_room_context(getattr(payload, "room_id", None))
                return await func(self, sid, payload)
            except RealtimeError as e:
                logger.info(f"[WS] {func.__name__} rejected: {e.message}")
                error = e.to_payload()
            except Exception as e:
                logger.error(f"[WS] {func.__name__} failed: {e}", exc_info=True)
                error = {"error": "Internal server error", "code": "INTERNAL_ERROR"}

            await self.emit(error_event, error, to=sid)
            return error

        return wrapper

    return decorator
