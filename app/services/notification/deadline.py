# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Due-date reminders.

Scans open tasks due within the horizon and creates one deadline
notification per task owner. A reminder is suppressed when the same owner
already got a deadline notification for the task within the dedup window.
The window is clock-driven: a task can be reminded again once it elapses.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.base import utcnow
from app.models.notification import NotificationType
from app.models.task import TERMINAL_STATUSES, Task
from app.services.notification import builders
from app.services.notification.dispatcher import (
    NotificationDispatcher,
    NotificationDraft,
    NotificationService,
)

logger = logging.getLogger(__name__)


def collect_due_date_drafts(
    db: Session,
    service: NotificationService,
    now: Optional[datetime] = None,
    horizon_days: Optional[int] = None,
    dedup_hours: Optional[int] = None,
) -> list[NotificationDraft]:
    now = now or utcnow()
    horizon = now + timedelta(
        days=horizon_days if horizon_days is not None else settings.DUE_DATE_HORIZON_DAYS
    )
    since = now - timedelta(
        hours=dedup_hours if dedup_hours is not None else settings.DUE_DATE_DEDUP_HOURS
    )

    tasks = (
        db.execute(
            select(Task)
            .where(
                Task.due_date.is_not(None),
                Task.due_date >= now,
                Task.due_date <= horizon,
                Task.status.not_in(TERMINAL_STATUSES),
            )
            .order_by(Task.due_date)
        )
        .unique()
        .scalars()
        .all()
    )

    drafts: list[NotificationDraft] = []
    for task in tasks:
        hours_remaining = (task.due_date - now).total_seconds() / 3600
        draft = builders.deadline_approaching(task.to_dict(), hours_remaining)
        if draft is None:
            continue
        draft.recipients = [
            uid
            for uid in draft.recipients
            if not service.exists_recent(
                db, NotificationType.DEADLINE.value, task.id, uid, since
            )
        ]
        if draft.recipients:
            drafts.append(draft)
    return drafts


async def check_due_date_notifications(
    dispatcher: NotificationDispatcher,
    now: Optional[datetime] = None,
    horizon_days: Optional[int] = None,
    dedup_hours: Optional[int] = None,
) -> list[dict]:
    """Create the due-date reminders that are not suppressed. Returns them."""

    def scan():
        db = dispatcher.session_factory()
        try:
            return collect_due_date_drafts(
                db, dispatcher.service, now, horizon_days, dedup_hours
            )
        finally:
            db.close()

    drafts = await asyncio.to_thread(scan)
    created = []
    for draft in drafts:
        try:
            notification = await dispatcher.create(draft)
        except Exception as e:
            logger.error(
                f"[Notification] Deadline reminder for task {draft.related_task_id} failed: {e}",
                exc_info=True,
            )
            continue
        if notification is not None:
            created.append(notification)

    logger.info(f"[Notification] Due-date check created {len(created)} reminders")
    return created
