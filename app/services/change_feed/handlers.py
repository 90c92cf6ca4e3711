# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Turns change events into room broadcasts and derived notifications.

insert  -> <entity>:created to the owning room, plus the "created" notification
update  -> <entity>:updated to the entity room and its project room, plus
           status, assignment and field notifications by changed field
delete  -> <entity>:deleted with only the id, broadcast globally since the
           owning room is unknown; no notification
"""

import asyncio
import logging
from typing import Callable, Optional

from sqlalchemy.orm import Session

from app.api.ws.events import ServerEvents
from app.db.session import SessionLocal
from app.services.change_feed.events import PROJECTS, TASKS, ChangeEvent, OperationType
from app.services.notification import builders
from app.services.notification.dispatcher import NotificationDispatcher, NotificationDraft
from app.services.room_router import RoomRouter, project_room, task_room

logger = logging.getLogger(__name__)

FIELD_NOTIFICATION_FIELDS = {"dueDate", "priority", "title", "description"}


class ChangeEventHandler:
    def __init__(
        self,
        router: RoomRouter,
        dispatcher: Optional[NotificationDispatcher],
        session_factory: Callable[[], Session] = SessionLocal,
    ):
        self.router = router
        self.dispatcher = dispatcher
        self.session_factory = session_factory

    async def __call__(self, change: ChangeEvent) -> None:
        await self.handle(change)

    async def handle(self, change: ChangeEvent) -> list[dict]:
        """Broadcast and notify for one event. Returns the notifications created."""
        logger.debug(
            f"[ChangeFeed] {change.collection} {change.operation_type.value} "
            f"{change.document_id}"
        )
        if change.collection == TASKS:
            drafts = await self._handle_task(change)
        elif change.collection == PROJECTS:
            drafts = await self._handle_project(change)
        else:
            logger.warning(f"[ChangeFeed] Ignoring unknown collection {change.collection}")
            return []
        return await self._create_all(drafts)

    async def _member_ids(self, project_id: Optional[int]) -> list[int]:
        if project_id is None:
            return []

        def work():
            db = self.session_factory()
            try:
                return builders.load_project_member_ids(db, project_id)
            finally:
                db.close()

        return await asyncio.to_thread(work)

    async def _handle_task(self, change: ChangeEvent) -> list[Optional[NotificationDraft]]:
        if change.operation_type == OperationType.DELETE:
            await self.router.broadcast_all(
                ServerEvents.TASK_DELETED, {"id": change.document_id}
            )
            return []

        task = change.full_document or {}
        project_id = task.get("project")

        if change.operation_type == OperationType.INSERT:
            if project_id is not None:
                await self.router.broadcast(
                    project_room(project_id), ServerEvents.TASK_CREATED, task
                )
            else:
                for user_id in {task.get("createdBy"), task.get("assignedTo")} - {None}:
                    await self.router.send_to_user(user_id, ServerEvents.TASK_CREATED, task)
            return [builders.task_created(task, await self._member_ids(project_id))]

        payload = {"task": task, "updatedFields": change.updated_fields}
        await self.router.broadcast(
            task_room(change.document_id), ServerEvents.TASK_UPDATED, payload
        )
        if project_id is not None:
            await self.router.broadcast(
                project_room(project_id), ServerEvents.TASK_UPDATED, payload
            )

        fields = set(change.updated_fields)
        if not fields:
            return []
        member_ids = await self._member_ids(project_id)
        drafts: list[Optional[NotificationDraft]] = []
        if "status" in fields:
            drafts.append(
                builders.status_changed(
                    task, member_ids, change.previous_values.get("status")
                )
            )
        if "assignedTo" in fields:
            drafts.append(
                builders.assignment_changed(
                    task, member_ids, change.previous_values.get("assignedTo")
                )
            )
        if fields & FIELD_NOTIFICATION_FIELDS:
            drafts.append(builders.task_field_updated(task, member_ids, fields))
        return drafts

    async def _handle_project(
        self, change: ChangeEvent
    ) -> list[Optional[NotificationDraft]]:
        if change.operation_type == OperationType.DELETE:
            await self.router.broadcast_all(
                ServerEvents.PROJECT_DELETED, {"id": change.document_id}
            )
            return []

        project = change.full_document or {}
        if change.operation_type == OperationType.INSERT:
            audience = builders.resolve_recipients(
                [project.get("owner")],
                [m.get("user") for m in project.get("members") or []],
            )
            for user_id in audience:
                await self.router.send_to_user(
                    user_id, ServerEvents.PROJECT_CREATED, project
                )
            return [builders.project_created(project)]

        await self.router.broadcast(
            project_room(change.document_id),
            ServerEvents.PROJECT_UPDATED,
            {"project": project, "updatedFields": change.updated_fields},
        )
        return [builders.project_updated(project, change.updated_fields)]

    async def _create_all(self, drafts: list[Optional[NotificationDraft]]) -> list[dict]:
        if self.dispatcher is None:
            return []
        created = []
        for draft in drafts:
            if draft is None:
                continue
            notification = await self.dispatcher.create(draft)
            if notification is not None:
                created.append(notification)
        return created
