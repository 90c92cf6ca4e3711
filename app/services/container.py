# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Service wiring.

Every realtime service is built once at startup and handed to the socket
namespace, the REST endpoints and the background jobs, so handlers never
import or construct services themselves.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

import socketio
from sqlalchemy.orm import Session

from app.core.cache import CacheManager
from app.core.config import settings
from app.db.session import SessionLocal
from app.services.change_feed.feed import RedisChangeFeed
from app.services.change_feed.handlers import ChangeEventHandler
from app.services.change_feed.watcher import ChangeFeed, ChangeFeedWatcher
from app.services.chat.ai.responder import AIResponder
from app.services.chat.cache import ChatCacheService
from app.services.chat.chat_service import ChatService
from app.services.chat.pipeline import MessagePipeline
from app.services.jobs import DeadlineSweep
from app.services.notification.dispatcher import NotificationDispatcher
from app.services.presence import PresenceRegistry
from app.services.room_router import RoomRouter
from app.services.time_tracking import TimeTracker

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    router: RoomRouter
    presence: PresenceRegistry
    dispatcher: NotificationDispatcher
    pipeline: MessagePipeline
    time_tracker: TimeTracker
    sweep: DeadlineSweep
    watcher: ChangeFeedWatcher


def build_container(
    sio: socketio.AsyncServer,
    cache: Optional[CacheManager],
    namespace: Optional[str] = None,
    session_factory: Callable[[], Session] = SessionLocal,
    responder: Optional[AIResponder] = None,
    feed: Optional[ChangeFeed] = None,
) -> ServiceContainer:
    router = RoomRouter(sio, namespace or settings.SOCKETIO_NAMESPACE)
    presence = PresenceRegistry(router)
    dispatcher = NotificationDispatcher(
        router,
        presence,
        session_factory=session_factory,
        cross_process=settings.SOCKETIO_REDIS_MANAGER_ENABLED,
    )
    chat_cache = ChatCacheService(cache)
    pipeline = MessagePipeline(
        router,
        presence,
        ChatService(),
        chat_cache,
        responder if responder is not None else AIResponder(cache),
        dispatcher,
        session_factory=session_factory,
    )
    watcher = ChangeFeedWatcher(
        feed if feed is not None else RedisChangeFeed(),
        ChangeEventHandler(router, dispatcher, session_factory=session_factory),
    )
    logger.info("[WS] Realtime services wired")
    return ServiceContainer(
        router=router,
        presence=presence,
        dispatcher=dispatcher,
        pipeline=pipeline,
        time_tracker=TimeTracker(router, session_factory=session_factory),
        sweep=DeadlineSweep(router, cache, session_factory=session_factory),
        watcher=watcher,
    )
