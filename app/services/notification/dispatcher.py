# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Notification dispatcher.

`create` persists a notification and pushes `notification:new` to every
recipient that is online right now. Offline recipients get nothing pushed;
they read the persisted record through the REST endpoints on next login.
A draft with no recipients is dropped without persisting anything.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from app.api.ws.events import ServerEvents
from app.core.exceptions import NotFound, ValidationFailed
from app.db.base import utcnow
from app.db.session import SessionLocal
from app.models.notification import (
    Notification,
    NotificationRecipient,
    NotificationType,
)
from app.services.presence import PresenceRegistry
from app.services.room_router import RoomRouter, notification_room

logger = logging.getLogger(__name__)

DEFAULT_UNREAD_LIMIT = 20
DEFAULT_LIST_LIMIT = 50


@dataclass
class NotificationDraft:
    type: str
    recipients: list[int]
    content: str
    sender_id: Optional[int] = None
    related_project_id: Optional[int] = None
    related_task_id: Optional[int] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    expires_at: Optional[datetime] = None
    # Extra notification:<channel> rooms to push to
    channels: list[str] = field(default_factory=list)


class NotificationService:
    """Synchronous persistence for notifications and read flags."""

    def create_notification(self, db: Session, draft: NotificationDraft) -> Optional[dict]:
        if draft.type not in {t.value for t in NotificationType}:
            raise ValidationFailed(f"Invalid notification type: {draft.type}")
        if not (draft.content or "").strip():
            raise ValidationFailed("Notification content cannot be empty")

        recipients = _unique_ids(draft.recipients)
        if not recipients:
            return None

        notification = Notification(
            type=draft.type,
            sender_id=draft.sender_id,
            content=draft.content.strip(),
            related_project_id=draft.related_project_id,
            related_task_id=draft.related_task_id,
            meta=draft.metadata or {},
            expires_at=draft.expires_at,
            created_at=utcnow(),
        )
        notification.recipients = [NotificationRecipient(user_id=uid) for uid in recipients]
        db.add(notification)
        db.commit()
        db.refresh(notification)
        return notification.to_dict()

    def mark_as_read(self, db: Session, notification_id: int, user_id: int) -> dict:
        """Idempotently mark one notification read for user_id."""
        notification = db.get(Notification, int(notification_id))
        if notification is None:
            raise NotFound("Notification not found")
        db.execute(
            update(NotificationRecipient)
            .where(
                NotificationRecipient.notification_id == notification.id,
                NotificationRecipient.user_id == int(user_id),
                NotificationRecipient.is_read.is_(False),
            )
            .values(is_read=True, read_at=utcnow())
        )
        db.commit()
        db.refresh(notification)
        return notification.to_dict()

    def mark_all_as_read(self, db: Session, user_id: int) -> int:
        """Mark every unread notification addressed to user_id. Returns rows changed."""
        result = db.execute(
            update(NotificationRecipient)
            .where(
                NotificationRecipient.user_id == int(user_id),
                NotificationRecipient.is_read.is_(False),
            )
            .values(is_read=True, read_at=utcnow())
        )
        db.commit()
        return result.rowcount or 0

    def get_unread_notifications(
        self, db: Session, user_id: int, limit: int = DEFAULT_UNREAD_LIMIT
    ) -> list[dict]:
        rows = (
            db.execute(
                select(Notification)
                .join(NotificationRecipient)
                .where(
                    NotificationRecipient.user_id == int(user_id),
                    NotificationRecipient.is_read.is_(False),
                )
                .order_by(Notification.created_at.desc(), Notification.id.desc())
                .limit(limit)
            )
            .scalars()
            .all()
        )
        return [n.to_dict() for n in rows]

    def get_unread_count(self, db: Session, user_id: int) -> int:
        return db.execute(
            select(func.count(NotificationRecipient.id)).where(
                NotificationRecipient.user_id == int(user_id),
                NotificationRecipient.is_read.is_(False),
            )
        ).scalar_one()

    def get_user_notifications(
        self,
        db: Session,
        user_id: int,
        limit: int = DEFAULT_LIST_LIMIT,
        skip: int = 0,
    ) -> list[dict]:
        rows = (
            db.execute(
                select(Notification)
                .join(NotificationRecipient)
                .where(NotificationRecipient.user_id == int(user_id))
                .order_by(Notification.created_at.desc(), Notification.id.desc())
                .offset(skip)
                .limit(limit)
            )
            .scalars()
            .all()
        )
        return [n.to_dict() for n in rows]

    def delete_notification(self, db: Session, notification_id: int) -> bool:
        result = db.execute(
            delete(Notification).where(Notification.id == int(notification_id))
        )
        db.commit()
        return bool(result.rowcount)

    def exists_recent(
        self,
        db: Session,
        notification_type: str,
        task_id: int,
        user_id: int,
        since: datetime,
    ) -> bool:
        """True when user_id already got a `notification_type` for task_id since `since`."""
        return (
            db.execute(
                select(Notification.id)
                .join(NotificationRecipient)
                .where(
                    Notification.type == notification_type,
                    Notification.related_task_id == int(task_id),
                    NotificationRecipient.user_id == int(user_id),
                    Notification.created_at >= since,
                )
                .limit(1)
            ).first()
            is not None
        )


class NotificationDispatcher:
    """Async facade: persist in a worker thread, then push to online recipients."""

    def __init__(
        self,
        router: RoomRouter,
        presence: PresenceRegistry,
        service: Optional[NotificationService] = None,
        session_factory: Callable[[], Session] = SessionLocal,
        cross_process: bool = False,
    ):
        self.router = router
        self.presence = presence
        self.service = service or NotificationService()
        self.session_factory = session_factory
        self.cross_process = cross_process

    async def _run(self, fn: Callable[..., Any], *args) -> Any:
        def work():
            db = self.session_factory()
            try:
                return fn(db, *args)
            finally:
                db.close()

        return await asyncio.to_thread(work)

    async def create(self, draft: Optional[NotificationDraft]) -> Optional[dict]:
        """Persist the draft and deliver it live. Returns None for empty fan-out."""
        if draft is None:
            return None
        notification = await self._run(self.service.create_notification, draft)
        if notification is None:
            logger.debug(f"[Notification] Skipped {draft.type} notification with no recipients")
            return None

        await self.deliver(notification, draft.channels)
        logger.info(
            f"[Notification] Created {notification['type']} notification "
            f"id={notification['id']} for {len(notification['recipients'])} recipients"
        )
        return notification

    async def deliver(self, notification: dict, channels: Iterable[str] = ()) -> list[int]:
        """Push to online recipients and channel rooms. Returns the users pushed to."""
        recipients = notification.get("recipients", [])
        targets = recipients if self.cross_process else self.presence.filter_online(recipients)
        for user_id in targets:
            try:
                await self.router.send_to_user(user_id, ServerEvents.NOTIFICATION_NEW, notification)
            except Exception as e:
                logger.warning(f"[Notification] Push to user {user_id} failed: {e}")
        for channel in channels:
            try:
                await self.router.broadcast(
                    notification_room(channel), ServerEvents.NOTIFICATION_NEW, notification
                )
            except Exception as e:
                logger.warning(f"[Notification] Push to channel {channel} failed: {e}")
        return list(targets)

    async def mark_read(self, notification_id: int, user_id: int) -> dict:
        return await self._run(self.service.mark_as_read, notification_id, user_id)

    async def mark_all_read(self, user_id: int) -> int:
        return await self._run(self.service.mark_all_as_read, user_id)

    async def unread_count(self, user_id: int) -> int:
        return await self._run(self.service.get_unread_count, user_id)

    async def unread(self, user_id: int, limit: int = DEFAULT_UNREAD_LIMIT) -> list[dict]:
        return await self._run(self.service.get_unread_notifications, user_id, limit)

    async def list_for_user(
        self, user_id: int, limit: int = DEFAULT_LIST_LIMIT, skip: int = 0
    ) -> list[dict]:
        return await self._run(self.service.get_user_notifications, user_id, limit, skip)


def _unique_ids(ids: Iterable[Any]) -> list[int]:
    seen: list[int] = []
    for uid in ids:
        if uid is None:
            continue
        value = int(uid)
        if value not in seen:
            seen.append(value)
    return seen
