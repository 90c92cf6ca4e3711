# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Project and project membership models.

Projects group tasks; their members receive task notifications and are
participants of every task chat room created inside the project.
"""

from sqlalchemy import (
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


class Project(Base):
    __tablename__ = "projects"

    id = Column(Integer, primary_key=True, index=True, comment="Primary key")
    name = Column(String(100), nullable=False, comment="Project name")
    description = Column(Text, nullable=True, comment="Project description")
    owner_id = Column(
        Integer,
        ForeignKey("users.id"),
        nullable=False,
        index=True,
        comment="Project owner user ID",
    )
    updated_by = Column(
        Integer, ForeignKey("users.id"), nullable=True, comment="Last actor user ID"
    )
    status = Column(
        String(20), nullable=False, default="active", comment="Project status"
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

    members = relationship(
        "ProjectMember",
        back_populates="project",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def member_ids(self) -> list[int]:
        return [m.user_id for m in self.members]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "owner": self.owner_id,
            "status": self.status,
            "members": [{"user": m.user_id, "role": m.role} for m in self.members],
            "updatedBy": self.updated_by,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }

    __table_args__ = ({"comment": "Projects table"},)


class ProjectMember(Base):
    __tablename__ = "project_members"

    id = Column(Integer, primary_key=True, index=True, comment="Primary key")
    project_id = Column(
        Integer,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Project ID",
    )
    user_id = Column(
        Integer, ForeignKey("users.id"), nullable=False, index=True, comment="Member user ID"
    )
    role = Column(String(20), nullable=False, default="member", comment="Member role")

    project = relationship("Project", back_populates="members")

    __table_args__ = (
        UniqueConstraint("project_id", "user_id", name="uq_project_member"),
        {"comment": "Project membership table"},
    )
