# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Live time tracking: one active session per user, shared with the project.
"""

import asyncio
import logging
from typing import Any, Callable, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.api.ws.events import ServerEvents
from app.core.exceptions import NotFound
from app.db.base import utcnow
from app.db.session import SessionLocal
from app.models.task import Task
from app.models.time_tracking import TimeTrackingSession
from app.services.room_router import RoomRouter, project_room

logger = logging.getLogger(__name__)


class TimeTrackingService:
    def _close(self, session: TimeTrackingSession) -> None:
        now = utcnow()
        session.ended_at = now
        session.active_user_id = None
        session.last_heartbeat_at = now
        session.duration_seconds = int((now - session.started_at).total_seconds())

    def _active_for_user(self, db: Session, user_id: int) -> list[TimeTrackingSession]:
        return list(
            db.execute(
                select(TimeTrackingSession).where(
                    TimeTrackingSession.user_id == int(user_id),
                    TimeTrackingSession.ended_at.is_(None),
                )
            ).scalars()
        )

    def start(
        self,
        db: Session,
        user_id: int,
        task_id: int,
        project_id: Optional[int] = None,
        description: Optional[str] = None,
    ) -> tuple[dict, list[dict]]:
        """
        Start tracking task_id. Any session the user still has open is stopped
        first. Returns (new session, stopped sessions).

        At most one open session per user is enforced by the unique
        `active_user_id`; a concurrent start that commits first makes this
        INSERT fail, in which case the winner's session is stopped and the
        insert retried once.
        """
        task = db.get(Task, int(task_id))
        if task is None:
            raise NotFound("Task not found")

        stopped: list[dict] = []
        for attempt in range(2):
            previous_sessions = self._active_for_user(db, user_id)
            for previous in previous_sessions:
                self._close(previous)
            db.flush()

            now = utcnow()
            session = TimeTrackingSession(
                user_id=int(user_id),
                active_user_id=int(user_id),
                task_id=task.id,
                project_id=project_id if project_id is not None else task.project_id,
                description=description,
                started_at=now,
                last_heartbeat_at=now,
            )
            db.add(session)
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                if attempt:
                    raise
                logger.info(f"[TimeTracking] user={user_id} started concurrently, retrying")
                continue
            stopped.extend(s.to_dict() for s in previous_sessions)
            break

        db.refresh(session)
        return session.to_dict(), stopped

    def stop(self, db: Session, user_id: int, session_id: Optional[int] = None) -> dict:
        query = select(TimeTrackingSession).where(
            TimeTrackingSession.user_id == int(user_id),
            TimeTrackingSession.ended_at.is_(None),
        )
        if session_id is not None:
            query = query.where(TimeTrackingSession.id == int(session_id))
        session = db.execute(
            query.order_by(TimeTrackingSession.started_at.desc()).limit(1)
        ).scalar_one_or_none()
        if session is None:
            raise NotFound("No active time tracking session")

        self._close(session)
        db.commit()
        db.refresh(session)
        return session.to_dict()

    def heartbeat(self, db: Session, user_id: int, session_id: Optional[int] = None) -> int:
        query = update(TimeTrackingSession).where(
            TimeTrackingSession.user_id == int(user_id),
            TimeTrackingSession.ended_at.is_(None),
        )
        if session_id is not None:
            query = query.where(TimeTrackingSession.id == int(session_id))
        result = db.execute(query.values(last_heartbeat_at=utcnow()))
        db.commit()
        return result.rowcount or 0

    def get_active(self, db: Session, project_id: Optional[int] = None) -> list[dict]:
        query = select(TimeTrackingSession).where(TimeTrackingSession.ended_at.is_(None))
        if project_id is not None:
            query = query.where(TimeTrackingSession.project_id == int(project_id))
        rows = db.execute(query.order_by(TimeTrackingSession.started_at)).scalars().all()
        return [s.to_dict() for s in rows]


class TimeTracker:
    """Async facade that also tells the project room who is working."""

    def __init__(
        self,
        router: RoomRouter,
        service: Optional[TimeTrackingService] = None,
        session_factory: Callable[[], Session] = SessionLocal,
    ):
        self.router = router
        self.service = service or TimeTrackingService()
        self.session_factory = session_factory

    async def _run(self, fn: Callable[..., Any], *args) -> Any:
        def work():
            db = self.session_factory()
            try:
                return fn(db, *args)
            finally:
                db.close()

        return await asyncio.to_thread(work)

    async def _announce(self, event: str, session: dict, exclude_sid: Optional[str]) -> None:
        if session.get("projectId") is None:
            return
        await self.router.broadcast(
            project_room(session["projectId"]), event, session, exclude=exclude_sid
        )

    async def start(
        self,
        user_id: int,
        task_id: int,
        project_id: Optional[int] = None,
        description: Optional[str] = None,
        exclude_sid: Optional[str] = None,
    ) -> dict:
        session, stopped = await self._run(
            self.service.start, user_id, task_id, project_id, description
        )
        for previous in stopped:
            await self._announce(ServerEvents.TIME_TRACKING_MEMBER_STOPPED, previous, exclude_sid)
        await self._announce(ServerEvents.TIME_TRACKING_MEMBER_STARTED, session, exclude_sid)
        logger.info(f"[TimeTracking] user={user_id} started session {session['id']} on task {task_id}")
        return session

    async def stop(
        self, user_id: int, session_id: Optional[int] = None, exclude_sid: Optional[str] = None
    ) -> dict:
        session = await self._run(self.service.stop, user_id, session_id)
        await self._announce(ServerEvents.TIME_TRACKING_MEMBER_STOPPED, session, exclude_sid)
        logger.info(
            f"[TimeTracking] user={user_id} stopped session {session['id']} "
            f"after {session['duration']}s"
        )
        return session

    async def heartbeat(self, user_id: int, session_id: Optional[int] = None) -> bool:
        return bool(await self._run(self.service.heartbeat, user_id, session_id))

    async def active_sessions(self, project_id: Optional[int] = None) -> list[dict]:
        return await self._run(self.service.get_active, project_id)
