# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String

from app.db.base import Base, utcnow


class TimeTrackingSession(Base):
    """A user's working session on a task, kept alive by client heartbeats."""

    __tablename__ = "time_tracking_sessions"

    id = Column(Integer, primary_key=True, index=True, comment="Primary key")
    user_id = Column(
        Integer, ForeignKey("users.id"), nullable=False, index=True, comment="User ID"
    )
    task_id = Column(
        Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, comment="Task ID"
    )
    project_id = Column(Integer, nullable=True, index=True, comment="Project ID")
    description = Column(String(500), nullable=True, comment="What is being worked on")
    started_at = Column(DateTime, nullable=False, default=utcnow, comment="Start time")
    last_heartbeat_at = Column(
        DateTime, nullable=False, default=utcnow, comment="Last client heartbeat"
    )
    ended_at = Column(DateTime, nullable=True, comment="Stop time, NULL while active")
    duration_seconds = Column(Integer, nullable=True, comment="Total tracked seconds")
    active_user_id = Column(
        Integer,
        nullable=True,
        unique=True,
        comment="User ID while active, NULL once stopped",
    )

    @property
    def is_active(self) -> bool:
        return self.ended_at is None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "taskId": self.task_id,
            "projectId": self.project_id,
            "description": self.description,
            "startTime": self.started_at.isoformat() if self.started_at else None,
            "lastHeartbeat": self.last_heartbeat_at.isoformat()
            if self.last_heartbeat_at
            else None,
            "endTime": self.ended_at.isoformat() if self.ended_at else None,
            "duration": self.duration_seconds,
            "isActive": self.is_active,
        }

    __table_args__ = ({"comment": "Time tracking sessions"},)
