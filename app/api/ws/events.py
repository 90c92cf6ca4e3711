# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Socket.IO event definitions and payload schemas.

This module defines all event names and Pydantic models for
Socket.IO message payloads. Clients speak camelCase (roomId, messageIds);
models accept both camelCase and snake_case keys.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

# ============================================================
# Event Names
# ============================================================


class ClientEvents:
    """Client -> Server event names."""

    # Presence
    USER_LOGIN = "user:login"

    # Generic chat rooms
    CHAT_JOIN = "chat:join"
    CHAT_LEAVE = "chat:leave"
    CHAT_MESSAGE = "chat:message"
    CHAT_MARK_READ = "chat:markRead"
    CHAT_TYPING = "chat:typing"
    CHAT_GET_HISTORY = "chat:getHistory"
    CHAT_GET_USER_CHATS = "chat:getUserChats"
    CHAT_DIRECT = "chat:direct"
    CHAT_CREATE = "chat:create"

    # Assistant-enabled chat rooms
    CHATBOT_JOIN = "chatbot:join"
    CHATBOT_LEAVE = "chatbot:leave"
    CHATBOT_MESSAGE = "chatbot:message"
    CHATBOT_MARK_READ = "chatbot:markRead"
    CHATBOT_TYPING = "chatbot:typing"
    CHATBOT_GET_ONLINE_USERS = "chatbot:getOnlineUsers"
    CHATBOT_SUGGEST = "chatbot:suggest"

    # Task-scoped chat
    TASK_CHAT_JOIN = "taskChat:join"
    TASK_CHAT_LEAVE = "taskChat:leave"
    TASK_CHAT_MESSAGE = "taskChat:message"
    TASK_CHAT_MARK_READ = "taskChat:markRead"
    TASK_CHAT_TYPING = "taskChat:typing"

    # Entity rooms
    TASK_JOIN = "task:join"
    TASK_LEAVE = "task:leave"
    PROJECT_JOIN = "project:join"
    PROJECT_LEAVE = "project:leave"

    # Notifications
    NOTIFICATION_SUBSCRIBE = "notification:subscribe"
    NOTIFICATION_UNSUBSCRIBE = "notification:unsubscribe"
    NOTIFICATION_MARK_READ = "notification:markRead"
    NOTIFICATION_MARK_ALL_READ = "notification:markAllRead"
    NOTIFICATION_SEND = "notification:send"
    NOTIFICATION_GET_UNREAD_COUNT = "notification:getUnreadCount"

    # Time tracking
    TIME_TRACKING_START = "timeTracking:start"
    TIME_TRACKING_STOP = "timeTracking:stop"
    TIME_TRACKING_HEARTBEAT = "timeTracking:heartbeat"
    TIME_TRACKING_GET_ACTIVE = "timeTracking:getActive"


class ServerEvents:
    """Server -> Client event names."""

    # Presence
    USER_ONLINE = "user:online"
    USER_OFFLINE = "user:offline"

    # Chat (prefixed per scope: chat, chatbot, taskChat)
    MESSAGE = "message"
    MESSAGE_READ = "messageRead"
    TYPING = "typing"
    HISTORY = "history"
    USER_JOINED = "userJoined"
    USER_LEFT = "userLeft"
    ERROR = "error"
    CHAT_ROOM = "chat:room"
    CHAT_USER_CHATS = "chat:userChats"
    CHATBOT_ONLINE_USERS = "chatbot:onlineUsers"
    CHATBOT_SUGGESTION = "chatbot:suggestion"

    # Entity change events
    TASK_CREATED = "task:created"
    TASK_UPDATED = "task:updated"
    TASK_DELETED = "task:deleted"
    PROJECT_CREATED = "project:created"
    PROJECT_UPDATED = "project:updated"
    PROJECT_DELETED = "project:deleted"
    PROJECT_USER_JOINED = "project:userJoined"
    PROJECT_USER_LEFT = "project:userLeft"

    # Deadline sweep (global)
    DEADLINE_WARNING = "deadlineWarning"

    # Notifications
    NOTIFICATION_NEW = "notification:new"
    NOTIFICATION_MARKED = "notification:marked"
    NOTIFICATION_ALL_MARKED = "notification:allMarked"
    NOTIFICATION_SENT = "notification:sent"
    NOTIFICATION_UNREAD_COUNT = "notification:unreadCount"
    NOTIFICATION_SUBSCRIBED = "notification:subscribed"
    NOTIFICATION_UNSUBSCRIBED = "notification:unsubscribed"
    NOTIFICATION_ERROR = "notification:error"

    # Time tracking
    TIME_TRACKING_STARTED = "timeTracking:started"
    TIME_TRACKING_STOPPED = "timeTracking:stopped"
    TIME_TRACKING_ACTIVE_SESSIONS = "timeTracking:activeSessions"
    TIME_TRACKING_MEMBER_STARTED = "timeTracking:memberStarted"
    TIME_TRACKING_MEMBER_STOPPED = "timeTracking:memberStopped"
    TIME_TRACKING_ERROR = "timeTracking:error"


def scoped(scope: str, event: str) -> str:
    """Build a scoped event name, e.g. scoped("taskChat", "message")."""
    return f"{scope}:{event}"


# ============================================================
# Client -> Server Payloads
# ============================================================


class WSPayload(BaseModel):
    """Base payload: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore"
    )


class UserLoginPayload(WSPayload):
    user_id: int = Field(..., description="Authenticated user ID")


class RoomPayload(WSPayload):
    """Payload for chat:join / chat:leave and their chatbot variants."""

    room_id: str = Field(..., min_length=1, description="Chat room ID")
    user_id: Optional[int] = Field(None, description="Acting user ID")


class ChatMessagePayload(WSPayload):
    """Payload for chat:message and chatbot:message."""

    room_id: str = Field(..., min_length=1, description="Chat room ID")
    content: str = Field("", description="Message body")
    sender: Optional[int] = Field(None, description="Sender user ID")
    timestamp: Optional[str] = Field(None, description="Client-side timestamp")


class MarkReadPayload(WSPayload):
    room_id: str = Field(..., min_length=1, description="Chat room ID")
    message_ids: List[int] = Field(default_factory=list, description="Message IDs")
    user_id: Optional[int] = Field(None, description="Reader user ID")


class TypingPayload(WSPayload):
    room_id: str = Field(..., min_length=1, description="Chat room ID")
    user_id: Optional[int] = Field(None, description="Typing user ID")
    is_typing: bool = Field(True, description="Typing indicator state")


class HistoryPayload(WSPayload):
    room_id: str = Field(..., min_length=1, description="Chat room ID")
    limit: int = Field(50, ge=1, le=200, description="Page size")
    skip: int = Field(0, ge=0, description="Messages to skip from the newest")


class UserChatsPayload(WSPayload):
    user_id: Optional[int] = Field(None, description="User whose rooms to list")


class DirectChatPayload(WSPayload):
    user_id: int = Field(..., description="The other participant")


class CreateChatPayload(WSPayload):
    name: Optional[str] = Field(None, description="Room display name")
    type: str = Field("group", description="group or project")
    participants: List[int] = Field(default_factory=list, description="User IDs")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Metadata")


class SuggestPayload(WSPayload):
    room_id: str = Field(..., min_length=1, description="Chat room ID")
    draft: str = Field("", description="Draft text to complete")


class TaskRoomPayload(WSPayload):
    """Payload for task:join / taskChat:join and their leave events."""

    task_id: int = Field(..., description="Task ID")
    user_id: Optional[int] = Field(None, description="Acting user ID")


class TaskChatMessagePayload(WSPayload):
    task_id: int = Field(..., description="Task ID")
    content: str = Field("", description="Message body")
    sender: Optional[int] = Field(None, description="Sender user ID")


class TaskChatMarkReadPayload(WSPayload):
    task_id: int = Field(..., description="Task ID")
    message_ids: List[int] = Field(default_factory=list, description="Message IDs")
    user_id: Optional[int] = Field(None, description="Reader user ID")


class TaskChatTypingPayload(WSPayload):
    task_id: int = Field(..., description="Task ID")
    user_id: Optional[int] = Field(None, description="Typing user ID")
    is_typing: bool = Field(True, description="Typing indicator state")


class ProjectRoomPayload(WSPayload):
    project_id: int = Field(..., description="Project ID")
    user_id: Optional[int] = Field(None, description="Acting user ID")


class NotificationChannelsPayload(WSPayload):
    channels: List[str] = Field(default_factory=list, description="Channel names")

    @field_validator("channels")
    @classmethod
    def strip_empty(cls, v: List[str]) -> List[str]:
        return [c for c in (s.strip() for s in v) if c]


class NotificationMarkReadPayload(WSPayload):
    notification_id: int = Field(..., description="Notification ID")
    user_id: Optional[int] = Field(None, description="Reader user ID")


class NotificationUserPayload(WSPayload):
    user_id: Optional[int] = Field(None, description="User ID")


class NotificationRecipientsSpec(WSPayload):
    users: List[int] = Field(default_factory=list, description="Recipient user IDs")
    channels: List[str] = Field(default_factory=list, description="Channel names")


class NotificationSendPayload(WSPayload):
    type: str = Field("system", description="Notification type")
    recipients: NotificationRecipientsSpec = Field(
        default_factory=NotificationRecipientsSpec, description="Recipients"
    )
    content: str = Field(..., min_length=1, description="Notification text")
    related_project: Optional[int] = Field(None, description="Related project ID")
    related_task: Optional[int] = Field(None, description="Related task ID")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Metadata")


class TimeTrackingStartPayload(WSPayload):
    task_id: int = Field(..., description="Task ID")
    project_id: Optional[int] = Field(None, description="Project ID")
    description: Optional[str] = Field(None, description="Work description")


class TimeTrackingSessionPayload(WSPayload):
    session_id: Optional[int] = Field(None, description="Session ID")


class TimeTrackingActivePayload(WSPayload):
    project_id: Optional[int] = Field(None, description="Project ID filter")
