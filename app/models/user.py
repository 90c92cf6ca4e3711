# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
User model.

Only the columns the realtime layer reads (identity and display name) are
modelled here; account management lives in the CRUD backend.
"""

from sqlalchemy import Column, DateTime, Integer, String

from app.db.base import Base, utcnow


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True, comment="Primary key")
    user_name = Column(
        String(100), nullable=False, unique=True, comment="Login name"
    )
    display_name = Column(String(200), nullable=True, comment="Display name")
    email = Column(String(255), nullable=True, comment="Email address")
    created_at = Column(
        DateTime, nullable=False, default=utcnow, comment="Creation timestamp"
    )

    @property
    def name(self) -> str:
        return self.display_name or self.user_name

    __table_args__ = ({"comment": "Users table"},)
