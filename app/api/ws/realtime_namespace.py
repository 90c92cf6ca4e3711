# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Realtime namespace for Socket.IO.

Serves presence, chat, assistant chat, task chat, entity rooms,
notifications and time tracking on one namespace. Handlers only translate
between the wire and the services wired in ServiceContainer; all business
rules live in the services.

Note: Event names with colons (e.g., 'chat:message') are handled by
overriding trigger_event to map them to their handler methods.
"""

import logging
from typing import Any, Dict, Optional

import socketio

from app.api.ws.decorators import trace_websocket_event, ws_handler
from app.api.ws.events import (
    ChatMessagePayload,
    ClientEvents,
    CreateChatPayload,
    DirectChatPayload,
    HistoryPayload,
    MarkReadPayload,
    NotificationChannelsPayload,
    NotificationMarkReadPayload,
    NotificationSendPayload,
    NotificationUserPayload,
    ProjectRoomPayload,
    RoomPayload,
    ServerEvents,
    SuggestPayload,
    TaskChatMarkReadPayload,
    TaskChatMessagePayload,
    TaskChatTypingPayload,
    TaskRoomPayload,
    TimeTrackingActivePayload,
    TimeTrackingSessionPayload,
    TimeTrackingStartPayload,
    TypingPayload,
    UserChatsPayload,
    UserLoginPayload,
    scoped,
)
from app.core.context import set_user_context
from app.core.exceptions import ValidationFailed
from app.models.notification import NotificationType
from app.services.chat.pipeline import CHAT_SCOPE, CHATBOT_SCOPE, TASK_CHAT_SCOPE
from app.services.container import ServiceContainer
from app.services.notification import builders
from app.services.room_router import (
    chat_room,
    notification_room,
    project_room,
    task_room,
)

logger = logging.getLogger(__name__)

NOTIFICATION_SCOPE = "notification"
TIME_TRACKING_SCOPE = "timeTracking"
PRESENCE_SCOPE = "user"


class RealtimeNamespace(socketio.AsyncNamespace):
    """
    Socket.IO namespace for the realtime layer.

    Identity comes from `user:login`; handlers that need the acting user
    read it from the Socket.IO session and fall back to the userId carried
    in the payload.
    """

    def __init__(self, container: ServiceContainer, namespace: str = "/"):
        super().__init__(namespace)
        self.services = container

        self._event_handlers: Dict[str, str] = {
            ClientEvents.USER_LOGIN: "on_user_login",
            ClientEvents.CHAT_JOIN: "on_chat_join",
            ClientEvents.CHAT_LEAVE: "on_chat_leave",
            ClientEvents.CHAT_MESSAGE: "on_chat_message",
            ClientEvents.CHAT_MARK_READ: "on_chat_mark_read",
            ClientEvents.CHAT_TYPING: "on_chat_typing",
            ClientEvents.CHAT_GET_HISTORY: "on_chat_get_history",
            ClientEvents.CHAT_GET_USER_CHATS: "on_chat_get_user_chats",
            ClientEvents.CHAT_DIRECT: "on_chat_direct",
            ClientEvents.CHAT_CREATE: "on_chat_create",
            ClientEvents.CHATBOT_JOIN: "on_chatbot_join",
            ClientEvents.CHATBOT_LEAVE: "on_chatbot_leave",
            ClientEvents.CHATBOT_MESSAGE: "on_chatbot_message",
            ClientEvents.CHATBOT_MARK_READ: "on_chatbot_mark_read",
            ClientEvents.CHATBOT_TYPING: "on_chatbot_typing",
            ClientEvents.CHATBOT_GET_ONLINE_USERS: "on_chatbot_get_online_users",
            ClientEvents.CHATBOT_SUGGEST: "on_chatbot_suggest",
            ClientEvents.TASK_CHAT_JOIN: "on_task_chat_join",
            ClientEvents.TASK_CHAT_LEAVE: "on_task_chat_leave",
            ClientEvents.TASK_CHAT_MESSAGE: "on_task_chat_message",
            ClientEvents.TASK_CHAT_MARK_READ: "on_task_chat_mark_read",
            ClientEvents.TASK_CHAT_TYPING: "on_task_chat_typing",
            ClientEvents.TASK_JOIN: "on_task_join",
            ClientEvents.TASK_LEAVE: "on_task_leave",
            ClientEvents.PROJECT_JOIN: "on_project_join",
            ClientEvents.PROJECT_LEAVE: "on_project_leave",
            ClientEvents.NOTIFICATION_SUBSCRIBE: "on_notification_subscribe",
            ClientEvents.NOTIFICATION_UNSUBSCRIBE: "on_notification_unsubscribe",
            ClientEvents.NOTIFICATION_MARK_READ: "on_notification_mark_read",
            ClientEvents.NOTIFICATION_MARK_ALL_READ: "on_notification_mark_all_read",
            ClientEvents.NOTIFICATION_SEND: "on_notification_send",
            ClientEvents.NOTIFICATION_GET_UNREAD_COUNT: "on_notification_get_unread_count",
            ClientEvents.TIME_TRACKING_START: "on_time_tracking_start",
            ClientEvents.TIME_TRACKING_STOP: "on_time_tracking_stop",
            ClientEvents.TIME_TRACKING_HEARTBEAT: "on_time_tracking_heartbeat",
            ClientEvents.TIME_TRACKING_GET_ACTIVE: "on_time_tracking_get_active",
        }

    @trace_websocket_event(exclude_events={"connect"}, extract_event_data=True)
    async def trigger_event(self, event: str, sid: str, *args):
        """Route colon-separated event names; fall back to on_<event>."""
        return await self._execute_handler(event, sid, *args)

    async def _execute_handler(self, event: str, sid: str, *args):
        if event in self._event_handlers:
            handler_name = self._event_handlers[event]
            handler = getattr(self, handler_name, None)
            if handler:
                logger.debug(f"[WS] Routing event '{event}' to handler '{handler_name}'")
                return await handler(sid, *args)

        return await super().trigger_event(event, sid, *args)

    # ------------------------------------------------------------------
    # Connection and presence
    # ------------------------------------------------------------------

    async def on_connect(self, sid: str, environ: dict, auth: Optional[dict] = None):
        await self.save_session(sid, {})
        logger.info(f"[WS] Connected sid={sid}")
        if auth and auth.get("userId") is not None:
            await self._login(sid, int(auth["userId"]))

    async def on_disconnect(self, sid: str, *args):
        freed = await self.services.presence.unregister(sid)
        logger.info(f"[WS] Disconnected sid={sid} user={freed}")

    async def _login(self, sid: str, user_id: int) -> None:
        async with self.session(sid) as session:
            session["user_id"] = user_id
        set_user_context(str(user_id))
        await self.services.presence.register(user_id, sid)

    @ws_handler(UserLoginPayload, scope=PRESENCE_SCOPE)
    async def on_user_login(self, sid: str, payload: UserLoginPayload):
        await self._login(sid, payload.user_id)
        return {"success": True, "userId": payload.user_id}

    async def _acting_user(self, sid: str, fallback: Optional[int] = None) -> int:
        session = await self.get_session(sid)
        user_id = session.get("user_id") if session else None
        if user_id is None:
            user_id = fallback
        if user_id is None:
            raise ValidationFailed("userId is required; send user:login first")
        return int(user_id)

    # ------------------------------------------------------------------
    # Chat rooms (chat and chatbot scopes)
    # ------------------------------------------------------------------

    async def _join_chat(self, sid: str, scope: str, payload: RoomPayload) -> dict:
        await self.services.router.join(sid, chat_room(payload.room_id))
        if scope == CHATBOT_SCOPE:
            user_id = await self._acting_user(sid, payload.user_id)
            await self.services.router.broadcast(
                chat_room(payload.room_id),
                scoped(scope, ServerEvents.USER_JOINED),
                {"roomId": payload.room_id, "userId": user_id},
                exclude=sid,
            )
        return {"success": True, "roomId": payload.room_id}

    async def _leave_chat(self, sid: str, scope: str, payload: RoomPayload) -> dict:
        await self.services.router.leave(sid, chat_room(payload.room_id))
        if scope == CHATBOT_SCOPE:
            user_id = await self._acting_user(sid, payload.user_id)
            await self.services.router.broadcast(
                chat_room(payload.room_id),
                scoped(scope, ServerEvents.USER_LEFT),
                {"roomId": payload.room_id, "userId": user_id},
                exclude=sid,
            )
        return {"success": True, "roomId": payload.room_id}

    async def _send(self, sid: str, scope: str, payload: ChatMessagePayload) -> dict:
        sender = await self._acting_user(sid, payload.sender)
        message = await self.services.pipeline.send_message(
            payload.room_id,
            sender,
            payload.content,
            scope=scope,
            notify_offline=scope == CHATBOT_SCOPE,
        )
        return {"success": True, "message": message}

    async def _mark_read(self, sid: str, scope: str, payload: MarkReadPayload) -> dict:
        user_id = await self._acting_user(sid, payload.user_id)
        marked = await self.services.pipeline.mark_read(
            payload.room_id, payload.message_ids, user_id, scope=scope, exclude_sid=sid
        )
        return {"success": True, "marked": marked}

    async def _typing(self, sid: str, scope: str, payload: TypingPayload) -> None:
        user_id = await self._acting_user(sid, payload.user_id)
        await self.services.pipeline.typing(
            payload.room_id, user_id, payload.is_typing, scope=scope, exclude_sid=sid
        )

    @ws_handler(RoomPayload, scope=CHAT_SCOPE)
    async def on_chat_join(self, sid: str, payload: RoomPayload):
        return await self._join_chat(sid, CHAT_SCOPE, payload)

    @ws_handler(RoomPayload, scope=CHAT_SCOPE)
    async def on_chat_leave(self, sid: str, payload: RoomPayload):
        return await self._leave_chat(sid, CHAT_SCOPE, payload)

    @ws_handler(ChatMessagePayload, scope=CHAT_SCOPE)
    async def on_chat_message(self, sid: str, payload: ChatMessagePayload):
        return await self._send(sid, CHAT_SCOPE, payload)

    @ws_handler(MarkReadPayload, scope=CHAT_SCOPE)
    async def on_chat_mark_read(self, sid: str, payload: MarkReadPayload):
        return await self._mark_read(sid, CHAT_SCOPE, payload)

    @ws_handler(TypingPayload, scope=CHAT_SCOPE)
    async def on_chat_typing(self, sid: str, payload: TypingPayload):
        await self._typing(sid, CHAT_SCOPE, payload)

    @ws_handler(HistoryPayload, scope=CHAT_SCOPE)
    async def on_chat_get_history(self, sid: str, payload: HistoryPayload):
        history = await self.services.pipeline.get_chat_history(
            payload.room_id, payload.limit, payload.skip
        )
        await self.emit(scoped(CHAT_SCOPE, ServerEvents.HISTORY), history, to=sid)
        return history

    @ws_handler(UserChatsPayload, scope=CHAT_SCOPE)
    async def on_chat_get_user_chats(self, sid: str, payload: UserChatsPayload):
        user_id = await self._acting_user(sid, payload.user_id)
        rooms = await self.services.pipeline.get_user_chats(user_id)
        await self.emit(ServerEvents.CHAT_USER_CHATS, rooms, to=sid)
        return rooms

    @ws_handler(DirectChatPayload, scope=CHAT_SCOPE)
    async def on_chat_direct(self, sid: str, payload: DirectChatPayload):
        user_id = await self._acting_user(sid)
        room = await self.services.pipeline.get_or_create_direct_chat(
            user_id, payload.user_id
        )
        await self.services.router.join(sid, chat_room(room["roomId"]))
        await self.emit(ServerEvents.CHAT_ROOM, room, to=sid)
        return room

    @ws_handler(CreateChatPayload, scope=CHAT_SCOPE)
    async def on_chat_create(self, sid: str, payload: CreateChatPayload):
        user_id = await self._acting_user(sid)
        room = await self.services.pipeline.create_chat(
            user_id, payload.participants, payload.type, payload.name, payload.metadata
        )
        await self.services.router.join(sid, chat_room(room["roomId"]))
        await self.emit(ServerEvents.CHAT_ROOM, room, to=sid)
        return room

    @ws_handler(RoomPayload, scope=CHATBOT_SCOPE)
    async def on_chatbot_join(self, sid: str, payload: RoomPayload):
        return await self._join_chat(sid, CHATBOT_SCOPE, payload)

    @ws_handler(RoomPayload, scope=CHATBOT_SCOPE)
    async def on_chatbot_leave(self, sid: str, payload: RoomPayload):
        return await self._leave_chat(sid, CHATBOT_SCOPE, payload)

    @ws_handler(ChatMessagePayload, scope=CHATBOT_SCOPE)
    async def on_chatbot_message(self, sid: str, payload: ChatMessagePayload):
        return await self._send(sid, CHATBOT_SCOPE, payload)

    @ws_handler(MarkReadPayload, scope=CHATBOT_SCOPE)
    async def on_chatbot_mark_read(self, sid: str, payload: MarkReadPayload):
        return await self._mark_read(sid, CHATBOT_SCOPE, payload)

    @ws_handler(TypingPayload, scope=CHATBOT_SCOPE)
    async def on_chatbot_typing(self, sid: str, payload: TypingPayload):
        await self._typing(sid, CHATBOT_SCOPE, payload)

    @ws_handler(RoomPayload, scope=CHATBOT_SCOPE)
    async def on_chatbot_get_online_users(self, sid: str, payload: RoomPayload):
        users = await self.services.pipeline.online_participants(payload.room_id)
        data = {"roomId": payload.room_id, "users": users}
        await self.emit(ServerEvents.CHATBOT_ONLINE_USERS, data, to=sid)
        return data

    @ws_handler(SuggestPayload, scope=CHATBOT_SCOPE)
    async def on_chatbot_suggest(self, sid: str, payload: SuggestPayload):
        suggestion = await self.services.pipeline.suggest(payload.room_id, payload.draft)
        data = {"roomId": payload.room_id, "suggestion": suggestion}
        await self.emit(ServerEvents.CHATBOT_SUGGESTION, data, to=sid)
        return data

    # ------------------------------------------------------------------
    # Task chat
    # ------------------------------------------------------------------

    @ws_handler(TaskRoomPayload, scope=TASK_CHAT_SCOPE)
    async def on_task_chat_join(self, sid: str, payload: TaskRoomPayload):
        room, _ = await self.services.pipeline.get_task_room(payload.task_id)
        await self.services.router.join(sid, chat_room(room["roomId"]))
        history = await self.services.pipeline.get_chat_history(room["roomId"])
        data = {"taskId": payload.task_id, **history}
        await self.emit(scoped(TASK_CHAT_SCOPE, ServerEvents.HISTORY), data, to=sid)
        return data

    @ws_handler(TaskRoomPayload, scope=TASK_CHAT_SCOPE)
    async def on_task_chat_leave(self, sid: str, payload: TaskRoomPayload):
        room, _ = await self.services.pipeline.get_task_room(payload.task_id)
        await self.services.router.leave(sid, chat_room(room["roomId"]))
        return {"success": True, "taskId": payload.task_id}

    @ws_handler(TaskChatMessagePayload, scope=TASK_CHAT_SCOPE)
    async def on_task_chat_message(self, sid: str, payload: TaskChatMessagePayload):
        sender = await self._acting_user(sid, payload.sender)
        message = await self.services.pipeline.send_task_message(
            payload.task_id, sender, payload.content
        )
        return {"success": True, "message": message}

    @ws_handler(TaskChatMarkReadPayload, scope=TASK_CHAT_SCOPE)
    async def on_task_chat_mark_read(self, sid: str, payload: TaskChatMarkReadPayload):
        user_id = await self._acting_user(sid, payload.user_id)
        room, _ = await self.services.pipeline.get_task_room(payload.task_id)
        marked = await self.services.pipeline.mark_read(
            room["roomId"], payload.message_ids, user_id,
            scope=TASK_CHAT_SCOPE, exclude_sid=sid,
        )
        return {"success": True, "marked": marked}

    @ws_handler(TaskChatTypingPayload, scope=TASK_CHAT_SCOPE)
    async def on_task_chat_typing(self, sid: str, payload: TaskChatTypingPayload):
        user_id = await self._acting_user(sid, payload.user_id)
        room, _ = await self.services.pipeline.get_task_room(payload.task_id)
        await self.services.pipeline.typing(
            room["roomId"], user_id, payload.is_typing,
            scope=TASK_CHAT_SCOPE, exclude_sid=sid,
        )

    # ------------------------------------------------------------------
    # Entity rooms
    # ------------------------------------------------------------------

    @ws_handler(TaskRoomPayload, scope="task")
    async def on_task_join(self, sid: str, payload: TaskRoomPayload):
        await self.services.router.join(sid, task_room(payload.task_id))
        return {"success": True, "taskId": payload.task_id}

    @ws_handler(TaskRoomPayload, scope="task")
    async def on_task_leave(self, sid: str, payload: TaskRoomPayload):
        await self.services.router.leave(sid, task_room(payload.task_id))
        return {"success": True, "taskId": payload.task_id}

    @ws_handler(ProjectRoomPayload, scope="project")
    async def on_project_join(self, sid: str, payload: ProjectRoomPayload):
        room = project_room(payload.project_id)
        await self.services.router.join(sid, room)
        user_id = await self._acting_user(sid, payload.user_id)
        await self.services.router.broadcast(
            room,
            ServerEvents.PROJECT_USER_JOINED,
            {"projectId": payload.project_id, "userId": user_id},
            exclude=sid,
        )
        return {"success": True, "projectId": payload.project_id}

    @ws_handler(ProjectRoomPayload, scope="project")
    async def on_project_leave(self, sid: str, payload: ProjectRoomPayload):
        room = project_room(payload.project_id)
        await self.services.router.leave(sid, room)
        user_id = await self._acting_user(sid, payload.user_id)
        await self.services.router.broadcast(
            room,
            ServerEvents.PROJECT_USER_LEFT,
            {"projectId": payload.project_id, "userId": user_id},
            exclude=sid,
        )
        return {"success": True, "projectId": payload.project_id}

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    @ws_handler(NotificationChannelsPayload, scope=NOTIFICATION_SCOPE)
    async def on_notification_subscribe(self, sid: str, payload: NotificationChannelsPayload):
        for channel in payload.channels:
            await self.services.router.join(sid, notification_room(channel))
        data = {"channels": payload.channels}
        await self.emit(ServerEvents.NOTIFICATION_SUBSCRIBED, data, to=sid)
        return data

    @ws_handler(NotificationChannelsPayload, scope=NOTIFICATION_SCOPE)
    async def on_notification_unsubscribe(self, sid: str, payload: NotificationChannelsPayload):
        for channel in payload.channels:
            await self.services.router.leave(sid, notification_room(channel))
        data = {"channels": payload.channels}
        await self.emit(ServerEvents.NOTIFICATION_UNSUBSCRIBED, data, to=sid)
        return data

    @ws_handler(NotificationMarkReadPayload, scope=NOTIFICATION_SCOPE)
    async def on_notification_mark_read(self, sid: str, payload: NotificationMarkReadPayload):
        user_id = await self._acting_user(sid, payload.user_id)
        notification = await self.services.dispatcher.mark_read(
            payload.notification_id, user_id
        )
        data = {"notificationId": payload.notification_id, "notification": notification}
        await self.emit(ServerEvents.NOTIFICATION_MARKED, data, to=sid)
        return data

    @ws_handler(NotificationUserPayload, scope=NOTIFICATION_SCOPE)
    async def on_notification_mark_all_read(self, sid: str, payload: NotificationUserPayload):
        user_id = await self._acting_user(sid, payload.user_id)
        count = await self.services.dispatcher.mark_all_read(user_id)
        data = {"userId": user_id, "count": count}
        await self.emit(ServerEvents.NOTIFICATION_ALL_MARKED, data, to=sid)
        return data

    @ws_handler(NotificationSendPayload, scope=NOTIFICATION_SCOPE)
    async def on_notification_send(self, sid: str, payload: NotificationSendPayload):
        sender = await self._acting_user(sid)
        try:
            notification_type = NotificationType(payload.type)
        except ValueError as e:
            raise ValidationFailed(f"Invalid notification type: {payload.type}") from e

        draft = builders.custom_notification(
            sender,
            payload.content,
            recipients=payload.recipients.users,
            project_id=payload.related_project,
            notification_type=notification_type,
            channels=payload.recipients.channels,
            metadata=payload.metadata,
        )
        notification = None
        if draft is not None:
            draft.related_task_id = payload.related_task
            if draft.recipients:
                notification = await self.services.dispatcher.create(draft)
            else:
                # Channel-only broadcast: nothing to persist
                await self.services.dispatcher.deliver(
                    {
                        "type": draft.type,
                        "sender": sender,
                        "content": draft.content,
                        "recipients": [],
                        "metadata": draft.metadata,
                    },
                    draft.channels,
                )
        data = {"success": True, "notification": notification}
        await self.emit(ServerEvents.NOTIFICATION_SENT, data, to=sid)
        return data

    @ws_handler(NotificationUserPayload, scope=NOTIFICATION_SCOPE)
    async def on_notification_get_unread_count(self, sid: str, payload: NotificationUserPayload):
        user_id = await self._acting_user(sid, payload.user_id)
        count = await self.services.dispatcher.unread_count(user_id)
        data = {"userId": user_id, "count": count}
        await self.emit(ServerEvents.NOTIFICATION_UNREAD_COUNT, data, to=sid)
        return data

    # ------------------------------------------------------------------
    # Time tracking
    # ------------------------------------------------------------------

    @ws_handler(TimeTrackingStartPayload, scope=TIME_TRACKING_SCOPE)
    async def on_time_tracking_start(self, sid: str, payload: TimeTrackingStartPayload):
        user_id = await self._acting_user(sid)
        session = await self.services.time_tracker.start(
            user_id, payload.task_id, payload.project_id, payload.description,
            exclude_sid=sid,
        )
        await self.emit(ServerEvents.TIME_TRACKING_STARTED, session, to=sid)
        return session

    @ws_handler(TimeTrackingSessionPayload, scope=TIME_TRACKING_SCOPE)
    async def on_time_tracking_stop(self, sid: str, payload: TimeTrackingSessionPayload):
        user_id = await self._acting_user(sid)
        session = await self.services.time_tracker.stop(
            user_id, payload.session_id, exclude_sid=sid
        )
        await self.emit(ServerEvents.TIME_TRACKING_STOPPED, session, to=sid)
        return session

    async def on_time_tracking_heartbeat(self, sid: str, data: Any = None):
        """Heartbeats are fire-and-forget; failures are never reported to the client."""
        try:
            payload = TimeTrackingSessionPayload.model_validate(data or {})
            user_id = await self._acting_user(sid)
            await self.services.time_tracker.heartbeat(user_id, payload.session_id)
        except Exception as e:
            logger.debug(f"[TimeTracking] Heartbeat from sid={sid} ignored: {e}")

    @ws_handler(TimeTrackingActivePayload, scope=TIME_TRACKING_SCOPE)
    async def on_time_tracking_get_active(self, sid: str, payload: TimeTrackingActivePayload):
        sessions = await self.services.time_tracker.active_sessions(payload.project_id)
        await self.emit(ServerEvents.TIME_TRACKING_ACTIVE_SESSIONS, sessions, to=sid)
        return sessions


def register_realtime_namespace(
    sio: socketio.AsyncServer, container: ServiceContainer, namespace: str = "/"
) -> RealtimeNamespace:
    """Register the realtime namespace with the Socket.IO server."""
    realtime_ns = RealtimeNamespace(container, namespace)
    sio.register_namespace(realtime_ns)
    logger.info(f"[WS] Realtime namespace registered at {namespace}")
    return realtime_ns
