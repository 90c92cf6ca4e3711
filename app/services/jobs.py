# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Background jobs for the realtime layer.

- deadline sweep: every 5 minutes, warn everyone about assigned open tasks
  due within the look-ahead window (global `deadlineWarning` broadcast)
- due-date check: hourly deadline notifications with a 12 hour dedup window

The sweep does not remember what it already warned about; overlapping runs
re-emit warnings for the same task and clients treat them idempotently.
The distributed lock only keeps two instances from sweeping at once.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.api.ws.events import ServerEvents
from app.core.cache import CacheManager
from app.core.config import settings
from app.core.scheduler import RealtimeScheduler
from app.db.base import utcnow
from app.db.session import SessionLocal
from app.models.task import TERMINAL_STATUSES, Task
from app.models.user import User
from app.services.notification.deadline import check_due_date_notifications
from app.services.notification.dispatcher import NotificationDispatcher
from app.services.room_router import RoomRouter

logger = logging.getLogger(__name__)

# Redis lock key name and expiration time for the deadline sweep
DEADLINE_SWEEP_LOCK_KEY = "deadline_sweep_lock"
DEADLINE_SWEEP_LOCK_EXPIRE = max(settings.DEADLINE_SWEEP_INTERVAL_SECONDS - 10, 10)

DEADLINE_SWEEP_JOB_ID = "deadline_sweep"
DUE_DATE_CHECK_JOB_ID = "due_date_check"


def find_upcoming_deadlines(
    db: Session, window_minutes: int, now: Optional[datetime] = None
) -> list[dict]:
    """Assigned, non-completed tasks due within [now, now + window]."""
    now = now or utcnow()
    until = now + timedelta(minutes=window_minutes)
    rows = db.execute(
        select(Task, User)
        .join(User, User.id == Task.assigned_to)
        .where(
            Task.due_date.is_not(None),
            Task.due_date >= now,
            Task.due_date <= until,
            Task.status.not_in(TERMINAL_STATUSES),
        )
        .order_by(Task.due_date)
    ).unique().all()
    return [
        {
            "taskId": task.id,
            "title": task.title,
            "dueDate": task.due_date.isoformat(),
            "assignedTo": task.assigned_to,
            "assignedToName": user.name,
        }
        for task, user in rows
    ]


class DeadlineSweep:
    def __init__(
        self,
        router: RoomRouter,
        cache: Optional[CacheManager],
        window_minutes: Optional[int] = None,
        session_factory: Callable[[], Session] = SessionLocal,
    ):
        self.router = router
        self.cache = cache
        self.window_minutes = (
            window_minutes
            if window_minutes is not None
            else settings.DEADLINE_SWEEP_WINDOW_MINUTES
        )
        self.session_factory = session_factory

    async def acquire_lock(self) -> bool:
        """
        Try to acquire the distributed sweep lock.

        Without a reachable cache there is nothing to coordinate with, so the
        sweep runs.
        """
        if self.cache is None:
            return True
        try:
            acquired = await self.cache.setnx(
                DEADLINE_SWEEP_LOCK_KEY, True, expire=DEADLINE_SWEEP_LOCK_EXPIRE
            )
            if not acquired:
                logger.info(
                    f"[job] Lock is held by another instance: {DEADLINE_SWEEP_LOCK_KEY}"
                )
            return acquired
        except Exception as e:
            logger.warning(f"[job] Error acquiring lock, sweeping anyway: {e}")
            return True

    async def release_lock(self) -> None:
        if self.cache is None:
            return
        try:
            await self.cache.delete(DEADLINE_SWEEP_LOCK_KEY)
        except Exception as e:
            logger.error(f"[job] Error releasing lock: {e}")

    async def run(self, now: Optional[datetime] = None) -> list[dict]:
        """Emit one `deadlineWarning` per upcoming task. Returns the warnings sent."""
        if not await self.acquire_lock():
            return []
        try:

            def scan():
                db = self.session_factory()
                try:
                    return find_upcoming_deadlines(db, self.window_minutes, now)
                finally:
                    db.close()

            warnings = await asyncio.to_thread(scan)
            for warning in warnings:
                await self.router.broadcast_all(ServerEvents.DEADLINE_WARNING, warning)
            if warnings:
                logger.info(f"[job] Deadline sweep emitted {len(warnings)} warnings")
            return warnings
        except Exception as e:
            logger.error(f"[job] Deadline sweep failed: {e}", exc_info=True)
            return []
        finally:
            await self.release_lock()


def register_jobs(
    scheduler: RealtimeScheduler,
    sweep: DeadlineSweep,
    dispatcher: NotificationDispatcher,
) -> None:
    scheduler.add_interval_job(
        DEADLINE_SWEEP_JOB_ID,
        sweep.run,
        seconds=settings.DEADLINE_SWEEP_INTERVAL_SECONDS,
        name="Deadline warning sweep",
    )

    async def due_date_check() -> None:
        try:
            await check_due_date_notifications(dispatcher)
        except Exception as e:
            logger.error(f"[job] Due-date check failed: {e}", exc_info=True)

    scheduler.add_interval_job(
        DUE_DATE_CHECK_JOB_ID,
        due_date_check,
        seconds=settings.DUE_DATE_CHECK_INTERVAL_SECONDS,
        name="Due-date notifications",
    )
