# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Request-scoped context for logging and tracing.

Every Socket.IO event and HTTP request runs with its own request id and
(optionally) user identity. They are kept in ContextVars so that the logging
filter and OpenTelemetry spans can read them without threading arguments
through every call.
"""

import uuid
from contextvars import ContextVar
from typing import Any, Optional

from opentelemetry import trace

_request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
_user_id_var: ContextVar[Optional[str]] = ContextVar("user_id", default=None)
_room_id_var: ContextVar[Optional[str]] = ContextVar("room_id", default=None)


def new_request_id() -> str:
    """Return a short request id (first 8 characters of a UUID4)."""
    return str(uuid.uuid4())[:8]


def get_request_id() -> Optional[str]:
    """
    Get the current request ID from ContextVar.

    This is used by the logging filter to add request_id to log records.
    """
    return _request_id_var.get()


def get_user_id() -> Optional[str]:
    return _user_id_var.get()


def set_request_context(request_id: Optional[str] = None) -> None:
    """Store the request id for logging and tag the current span with it."""
    if request_id is not None:
        _request_id_var.set(request_id)
        _set_span_attribute("request.id", request_id)


def set_user_context(user_id: Optional[str] = None) -> None:
    """Store the acting user id for logging and tag the current span with it."""
    if user_id is not None:
        _user_id_var.set(user_id)
        _set_span_attribute("user.id", user_id)


def set_room_context(room_id: Optional[str] = None) -> None:
    if room_id is not None:
        _room_id_var.set(room_id)
        _set_span_attribute("room.id", room_id)


def _set_span_attribute(key: str, value: Any) -> None:
    span = trace.get_current_span()
    if span is not None and span.is_recording():
        span.set_attribute(key, value)
