# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Notification and recipient models.

A notification is immutable after creation except for per-recipient read
flags, which live in notification_recipients.
"""

from enum import Enum

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from app.db.base import Base, utcnow


class NotificationType(str, Enum):
    TASK = "task"
    PROJECT = "project"
    CHAT = "chat"
    DEADLINE = "deadline"
    MENTION = "mention"
    SYSTEM = "system"


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True, comment="Primary key")
    type = Column(String(20), nullable=False, index=True, comment="Notification type")
    sender_id = Column(
        Integer, ForeignKey("users.id"), nullable=True, comment="Acting user ID"
    )
    content = Column(Text, nullable=False, comment="Human-readable content")
    related_project_id = Column(
        Integer, nullable=True, index=True, comment="Related project ID"
    )
    related_task_id = Column(
        Integer, nullable=True, index=True, comment="Related task ID"
    )
    meta = Column("metadata", JSON, nullable=True, comment="Free-form metadata")
    expires_at = Column(DateTime, nullable=True, comment="Expiry time")
    created_at = Column(
        DateTime, nullable=False, default=utcnow, index=True, comment="Creation time"
    )

    recipients = relationship(
        "NotificationRecipient",
        back_populates="notification",
        cascade="all, delete-orphan",
        order_by="NotificationRecipient.id",
        lazy="selectin",
    )

    @property
    def recipient_ids(self) -> list[int]:
        return [r.user_id for r in self.recipients]

    @property
    def read_by(self) -> list[int]:
        return [r.user_id for r in self.recipients if r.is_read]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "sender": self.sender_id,
            "content": self.content,
            "recipients": self.recipient_ids,
            "read": self.read_by,
            "relatedProject": self.related_project_id,
            "relatedTask": self.related_task_id,
            "metadata": self.meta or {},
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }

    __table_args__ = ({"comment": "Notifications"},)


class NotificationRecipient(Base):
    __tablename__ = "notification_recipients"

    id = Column(Integer, primary_key=True, index=True, comment="Primary key")
    notification_id = Column(
        Integer,
        ForeignKey("notifications.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Notification ID",
    )
    user_id = Column(Integer, nullable=False, index=True, comment="Recipient user ID")
    is_read = Column(Boolean, nullable=False, default=False, comment="Read flag")
    read_at = Column(DateTime, nullable=True, comment="Read time")

    notification = relationship("Notification", back_populates="recipients")

    __table_args__ = (
        UniqueConstraint("notification_id", "user_id", name="uq_notification_recipient"),
        {"comment": "Notification recipients and read flags"},
    )
