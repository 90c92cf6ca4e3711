# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
Task-scoped chat rooms.

A task gets its room on first use. The room id is derived from the task id
plus the creation time in milliseconds, and the task row is claimed with a
conditional UPDATE so that only one room is ever linked to a task; a caller
that loses the claim drops its room and uses the winner's.
"""

import logging
import time

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.core.exceptions import NotFound
from app.db.base import utcnow
from app.models.chat import ChatParticipant, ChatRoom, ChatRoomType
from app.models.task import Task
from app.services.chat.chat_service import ChatService
from app.services.notification.builders import (
    load_project_member_ids,
    resolve_recipients,
)

logger = logging.getLogger(__name__)


def task_chat_room_id(task_id: int, created_ms: int | None = None) -> str:
    if created_ms is None:
        created_ms = int(time.time() * 1000)
    return f"task_{task_id}_{created_ms}"


class TaskChatService:
    def __init__(self, chat_service: ChatService):
        self.chat_service = chat_service

    def get_task(self, db: Session, task_id: int) -> Task:
        task = db.get(Task, int(task_id))
        if task is None:
            raise NotFound("Task not found")
        return task

    def get_or_create_task_room(self, db: Session, task_id: int) -> tuple[ChatRoom, dict]:
        """Return (room, task dict), creating and linking the room if needed."""
        task = self.get_task(db, task_id)
        if task.chat_room_id:
            room = self.chat_service.find_room(db, task.chat_room_id)
            if room is not None:
                return room, task.to_dict()

        participants = resolve_recipients(
            [task.created_by, task.assigned_to],
            load_project_member_ids(db, task.project_id),
        )
        room = ChatRoom(
            room_id=task_chat_room_id(task.id),
            name=f"Task: {task.title}",
            type=ChatRoomType.TASK.value,
            meta={
                "taskId": task.id,
                "taskTitle": task.title,
                "taskStatus": task.status,
                "taskPriority": task.priority,
            },
            last_activity=utcnow(),
        )
        room.participants = [ChatParticipant(user_id=uid) for uid in participants]
        db.add(room)
        db.flush()

        previous = task.chat_room_id
        claim = db.execute(
            update(Task)
            .where(Task.id == task.id)
            .where(
                Task.chat_room_id.is_(None)
                if previous is None
                else Task.chat_room_id == previous
            )
            .values(chat_room_id=room.room_id)
            .execution_options(synchronize_session=False)
        )
        if claim.rowcount == 0:
            db.rollback()
            task = self.get_task(db, task_id)
            winner = self.chat_service.find_room(db, task.chat_room_id or "")
            if winner is None:
                raise NotFound("Task chat room not found")
            logger.info(f"[ChatService] Task {task_id} room created concurrently, reusing")
            return winner, task.to_dict()

        db.commit()
        db.refresh(room)
        db.refresh(task)
        logger.info(
            f"[ChatService] Created task room {room.room_id} for task {task_id} "
            f"with {len(participants)} participants"
        )
        return room, task.to_dict()
