# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Socket.IO server factory.

The server is created once per process. When SOCKETIO_REDIS_MANAGER_ENABLED
is set, rooms are shared between processes through AsyncRedisManager so that
directed delivery reaches users connected to other workers.
"""

import logging
from typing import Optional

import socketio

from app.core.config import settings

logger = logging.getLogger(__name__)

_sio: Optional[socketio.AsyncServer] = None


def create_sio() -> socketio.AsyncServer:
    """Create a configured AsyncServer instance."""
    client_manager = None
    if settings.SOCKETIO_REDIS_MANAGER_ENABLED:
        client_manager = socketio.AsyncRedisManager(settings.REDIS_URL)
        logger.info("[WS] Using Redis client manager for cross-process rooms")

    return socketio.AsyncServer(
        async_mode="asgi",
        cors_allowed_origins="*",
        client_manager=client_manager,
        ping_timeout=settings.SOCKETIO_PING_TIMEOUT,
        ping_interval=settings.SOCKETIO_PING_INTERVAL,
        logger=False,
        engineio_logger=False,
    )


def get_sio() -> socketio.AsyncServer:
    """Return the process-wide AsyncServer, creating it on first use."""
    global _sio
    if _sio is None:
        _sio = create_sio()
    return _sio


def create_socketio_app(sio: socketio.AsyncServer, other_asgi_app=None):
    return socketio.ASGIApp(
        sio,
        other_asgi_app=other_asgi_app,
        socketio_path="/socket.io",
    )
