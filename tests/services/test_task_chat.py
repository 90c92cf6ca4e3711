# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import func, select, update

from app.core.exceptions import NotFound
from app.models.chat import ChatRoom
from app.models.task import Task
from app.services.chat.cache import ChatCacheService
from app.services.chat.chat_service import ChatService
from app.services.chat.pipeline import MessagePipeline
from app.services.chat.task_chat import TaskChatService, task_chat_room_id
from app.services.notification.dispatcher import NotificationDispatcher


@pytest.fixture
def service():
    return TaskChatService(ChatService())


@pytest.fixture
def team(factory):
    owner = factory.user("owner")
    member = factory.user("member")
    assignee = factory.user("assignee")
    project = factory.project(owner, members=(owner, member))
    task = factory.task(owner, "Ship v2", project=project, assignee=assignee)
    return owner, member, assignee, project, task


@pytest.mark.unit
class TestTaskChatRooms:
    def test_room_id_format(self):
        assert task_chat_room_id(7, 1700000000000) == "task_7_1700000000000"

    def test_room_created_on_first_use(self, db, service, team):
        owner, member, assignee, project, task = team

        room, task_doc = service.get_or_create_task_room(db, task.id)

        assert room.type == "task"
        assert room.room_id.startswith(f"task_{task.id}_")
        assert room.participant_ids == [owner.id, assignee.id, member.id]
        assert room.meta["taskTitle"] == "Ship v2"
        assert task_doc["chatRoomId"] == room.room_id

    def test_second_call_reuses_room(self, db, service, team):
        task = team[-1]

        first, _ = service.get_or_create_task_room(db, task.id)
        second, _ = service.get_or_create_task_room(db, task.id)

        assert first.room_id == second.room_id
        assert db.execute(select(func.count(ChatRoom.id))).scalar_one() == 1

    def test_losing_the_claim_returns_winner(self, session_factory, service, team):
        task = team[-1]
        db = session_factory()
        try:
            winner = ChatService().create_chat_room(
                db, [team[0].id], "task", room_id="task_winner"
            )
            original_get_task = service.get_task
            calls = []

            def get_task(session, task_id):
                loaded = original_get_task(session, task_id)
                calls.append(task_id)
                if len(calls) == 1:
                    # Another worker links its room between our read and our claim
                    other = session_factory()
                    other.execute(
                        update(Task)
                        .where(Task.id == task_id)
                        .values(chat_room_id=winner.room_id)
                    )
                    other.commit()
                    other.close()
                return loaded

            service.get_task = get_task
            room, task_doc = service.get_or_create_task_room(db, task.id)

            assert room.room_id == "task_winner"
            assert task_doc["chatRoomId"] == "task_winner"
            assert db.execute(select(func.count(ChatRoom.id))).scalar_one() == 1
        finally:
            db.close()

    def test_missing_task(self, db, service):
        with pytest.raises(NotFound):
            service.get_or_create_task_room(db, 404)


@pytest.mark.asyncio
@pytest.mark.unit
class TestTaskChatMessages:
    async def test_message_notifies_other_participants(
        self, router, presence, cache, session_factory, team, emitted, db
    ):
        owner, member, assignee, project, task = team
        dispatcher = NotificationDispatcher(router, presence, session_factory=session_factory)
        responder = MagicMock()
        responder.enabled = False
        pipeline = MessagePipeline(
            router,
            presence,
            ChatService(),
            ChatCacheService(cache),
            responder,
            dispatcher,
            session_factory=session_factory,
        )
        await presence.register(member.id, "sid-member")

        message = await pipeline.send_task_message(task.id, assignee.id, "Done with QA")

        [(payload, kwargs)] = emitted("taskChat:message")
        assert payload["id"] == message["id"]
        assert kwargs["room"].startswith(f"chat:task_{task.id}_")
        [(notification, target)] = emitted("notification:new")
        assert target["room"] == f"user:{member.id}"
        assert notification["content"] == "assignee commented on task: Ship v2"
        assert sorted(notification["recipients"]) == sorted([owner.id, member.id])
        assert notification["relatedTask"] == task.id
