# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Models package

Note: Import order matters for SQLAlchemy relationship resolution.
"""
from app.models.user import User
from app.models.project import Project, ProjectMember
from app.models.task import Task
from app.models.chat import ChatMessage, ChatParticipant, ChatRoom, MessageRead
from app.models.notification import Notification, NotificationRecipient
from app.models.time_tracking import TimeTrackingSession

__all__ = [
    "User",
    "Project",
    "ProjectMember",
    "Task",
    "ChatRoom",
    "ChatParticipant",
    "ChatMessage",
    "MessageRead",
    "Notification",
    "NotificationRecipient",
    "TimeTrackingSession",
]
