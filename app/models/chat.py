# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Chat room, participant, message and read-receipt models.

Messages form one append-only sequence per room ordered by primary key.
Read receipts are rows in chat_message_reads; the unique (message, user)
constraint keeps marking idempotent under concurrent requests.
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

# Reserved sender identity for assistant replies
AI_SENDER_ID = "ai-assistant"


class ChatRoomType(str, Enum):
    DIRECT = "direct"
    GROUP = "group"
    PROJECT = "project"
    TASK = "task"


class ChatRoom(Base):
    __tablename__ = "chat_rooms"

    id = Column(Integer, primary_key=True, index=True, comment="Primary key")
    room_id = Column(
        String(100), nullable=False, unique=True, comment="Stable public room ID"
    )
    name = Column(String(200), nullable=True, comment="Display name")
    type = Column(String(20), nullable=False, comment="direct, group, project or task")
    direct_key = Column(
        String(64),
        nullable=True,
        unique=True,
        comment="Sorted participant pair for direct rooms",
    )
    last_activity = Column(
        DateTime, nullable=False, default=utcnow, index=True, comment="Last message time"
    )
    meta = Column("metadata", JSON, nullable=True, comment="Free-form metadata")
    created_at = Column(
        DateTime, nullable=False, default=utcnow, comment="Creation timestamp"
    )

    participants = relationship(
        "ChatParticipant",
        back_populates="room",
        cascade="all, delete-orphan",
        order_by="ChatParticipant.id",
        lazy="selectin",
    )

    @property
    def participant_ids(self) -> list[int]:
        return [p.user_id for p in self.participants]

    def to_dict(self) -> dict:
        return {
            "roomId": self.room_id,
            "name": self.name,
            "type": self.type,
            "participants": self.participant_ids,
            "lastActivity": self.last_activity.isoformat()
            if self.last_activity
            else None,
            "metadata": self.meta or {},
        }

    __table_args__ = ({"comment": "Chat rooms"},)


class ChatParticipant(Base):
    __tablename__ = "chat_participants"

    id = Column(Integer, primary_key=True, index=True, comment="Primary key")
    chat_room_id = Column(
        Integer,
        ForeignKey("chat_rooms.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Chat room primary key",
    )
    user_id = Column(
        Integer, ForeignKey("users.id"), nullable=False, index=True, comment="User ID"
    )

    room = relationship("ChatRoom", back_populates="participants")

    __table_args__ = (
        UniqueConstraint("chat_room_id", "user_id", name="uq_chat_participant"),
        {"comment": "Chat room participants"},
    )


class ChatMessage(Base):
    __tablename__ = "chat_messages"

    id = Column(Integer, primary_key=True, index=True, comment="Primary key")
    chat_room_id = Column(
        Integer,
        ForeignKey("chat_rooms.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Chat room primary key",
    )
    sender_id = Column(
        Integer,
        ForeignKey("users.id"),
        nullable=True,
        comment="Sender user ID, NULL for assistant replies",
    )
    is_ai = Column(
        Boolean, nullable=False, default=False, comment="Assistant-generated message"
    )
    content = Column(Text, nullable=False, comment="Message body")
    created_at = Column(
        DateTime, nullable=False, default=utcnow, comment="Message timestamp"
    )

    reads = relationship(
        "MessageRead",
        cascade="all, delete-orphan",
        order_by="MessageRead.id",
        lazy="selectin",
    )

    @property
    def sender(self):
        return AI_SENDER_ID if self.is_ai else self.sender_id

    def to_dict(self, room_id: str | None = None) -> dict:
        data = {
            "id": self.id,
            "sender": self.sender,
            "content": self.content,
            "timestamp": self.created_at.isoformat() if self.created_at else None,
            "read": [r.user_id for r in self.reads],
            "isAI": bool(self.is_ai),
        }
        if room_id is not None:
            data["roomId"] = room_id
        return data

    __table_args__ = ({"comment": "Chat messages, append-only per room"},)


class MessageRead(Base):
    __tablename__ = "chat_message_reads"

    id = Column(Integer, primary_key=True, index=True, comment="Primary key")
    message_id = Column(
        Integer,
        ForeignKey("chat_messages.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Message ID",
    )
    user_id = Column(Integer, nullable=False, index=True, comment="Reader user ID")
    read_at = Column(DateTime, nullable=False, default=utcnow, comment="Read time")

    __table_args__ = (
        UniqueConstraint("message_id", "user_id", name="uq_message_read"),
        {"comment": "Chat read receipts"},
    )
