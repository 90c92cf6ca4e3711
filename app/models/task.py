# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Task model.
"""

from enum import Enum

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from app.db.base import Base, utcnow


class TaskStatus(str, Enum):
    NEW = "new"
    ASSIGNED = "assigned"
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    REVIEWING = "reviewing"
    COMPLETED = "completed"


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


# Statuses that end a task's lifecycle; no deadline reminders are sent for them
TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED.value})


class Task(Base):
    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, index=True, comment="Primary key")
    title = Column(String(200), nullable=False, comment="Task title")
    description = Column(Text, nullable=True, comment="Task description")
    status = Column(
        String(20),
        nullable=False,
        default=TaskStatus.NEW.value,
        index=True,
        comment="Task status",
    )
    priority = Column(
        String(20),
        nullable=False,
        default=TaskPriority.MEDIUM.value,
        comment="Task priority",
    )
    project_id = Column(
        Integer,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
        comment="Owning project ID",
    )
    created_by = Column(
        Integer, ForeignKey("users.id"), nullable=False, comment="Creator user ID"
    )
    assigned_to = Column(
        Integer,
        ForeignKey("users.id"),
        nullable=True,
        index=True,
        comment="Assignee user ID",
    )
    updated_by = Column(
        Integer, ForeignKey("users.id"), nullable=True, comment="Last actor user ID"
    )
    due_date = Column(DateTime, nullable=True, index=True, comment="Due date (UTC)")
    chat_room_id = Column(
        String(100), nullable=True, comment="Room ID of the task chat, if created"
    )
    created_at = Column(
        DateTime, nullable=False, default=utcnow, comment="Creation timestamp"
    )
    updated_at = Column(
        DateTime,
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
        comment="Last update timestamp",
    )

    project = relationship("Project", lazy="joined")
    assignee = relationship("User", foreign_keys=[assigned_to], lazy="joined")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "priority": self.priority,
            "project": self.project_id,
            "createdBy": self.created_by,
            "updatedBy": self.updated_by,
            "assignedTo": self.assigned_to,
            "dueDate": self.due_date.isoformat() if self.due_date else None,
            "chatRoomId": self.chat_room_id,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }

    __table_args__ = ({"comment": "Tasks table"},)
