# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

from datetime import timedelta

import pytest

from app.core.exceptions import NotFound, ValidationFailed
from app.db.base import utcnow
from app.services.notification.dispatcher import (
    NotificationDispatcher,
    NotificationDraft,
    NotificationService,
)


@pytest.fixture
def service():
    return NotificationService()


@pytest.fixture
def dispatcher(router, presence, session_factory, service):
    return NotificationDispatcher(
        router, presence, service=service, session_factory=session_factory
    )


def _draft(recipients, content="Task updated", **kwargs):
    return NotificationDraft(type="task", recipients=recipients, content=content, **kwargs)


@pytest.mark.unit
class TestNotificationService:
    def test_create_deduplicates_recipients(self, db, service):
        notification = service.create_notification(db, _draft([1, 2, 1, None]))

        assert notification["recipients"] == [1, 2]
        assert notification["read"] == []
        assert notification["type"] == "task"

    def test_no_recipients_persists_nothing(self, db, service):
        assert service.create_notification(db, _draft([])) is None
        assert service.get_user_notifications(db, 1) == []

    def test_invalid_type_is_rejected(self, db, service):
        with pytest.raises(ValidationFailed):
            service.create_notification(
                db, NotificationDraft(type="spam", recipients=[1], content="x")
            )

    def test_empty_content_is_rejected(self, db, service):
        with pytest.raises(ValidationFailed):
            service.create_notification(db, _draft([1], content="  "))

    def test_mark_as_read_is_idempotent(self, db, service):
        created = service.create_notification(db, _draft([1, 2]))

        once = service.mark_as_read(db, created["id"], 1)
        twice = service.mark_as_read(db, created["id"], 1)

        assert once["read"] == [1]
        assert twice["read"] == [1]
        assert service.get_unread_count(db, 1) == 0
        assert service.get_unread_count(db, 2) == 1

    def test_mark_missing_notification(self, db, service):
        with pytest.raises(NotFound):
            service.mark_as_read(db, 999, 1)

    def test_mark_all_as_read(self, db, service):
        service.create_notification(db, _draft([1]))
        service.create_notification(db, _draft([1, 2]))

        assert service.mark_all_as_read(db, 1) == 2
        assert service.mark_all_as_read(db, 1) == 0
        assert service.get_unread_count(db, 2) == 1

    def test_listing_is_newest_first(self, db, service):
        service.create_notification(db, _draft([1], content="old"))
        service.create_notification(db, _draft([1], content="new"))

        assert [n["content"] for n in service.get_user_notifications(db, 1)] == ["new", "old"]
        assert [n["content"] for n in service.get_user_notifications(db, 1, skip=1)] == ["old"]
        assert len(service.get_unread_notifications(db, 1, limit=1)) == 1

    def test_exists_recent(self, db, service):
        service.create_notification(
            db,
            NotificationDraft(
                type="deadline", recipients=[1], content="due", related_task_id=5
            ),
        )
        since = utcnow() - timedelta(hours=12)

        assert service.exists_recent(db, "deadline", 5, 1, since)
        assert not service.exists_recent(db, "deadline", 5, 2, since)
        assert not service.exists_recent(db, "deadline", 6, 1, since)
        assert not service.exists_recent(db, "deadline", 5, 1, utcnow() + timedelta(minutes=1))

    def test_delete(self, db, service):
        created = service.create_notification(db, _draft([1]))

        assert service.delete_notification(db, created["id"]) is True
        assert service.delete_notification(db, created["id"]) is False


@pytest.mark.asyncio
@pytest.mark.unit
class TestNotificationDispatcher:
    async def test_online_recipients_get_push_offline_get_record(
        self, dispatcher, presence, emitted, db, service
    ):
        await presence.register(1, "sid-1")

        notification = await dispatcher.create(_draft([1, 2]))

        [(payload, kwargs)] = emitted("notification:new")
        assert payload == notification
        assert kwargs["room"] == "user:1"
        assert [n["id"] for n in service.get_unread_notifications(db, 2)] == [
            notification["id"]
        ]

    async def test_empty_draft_is_dropped(self, dispatcher, emitted):
        assert await dispatcher.create(None) is None
        assert await dispatcher.create(_draft([])) is None
        assert emitted("notification:new") == []

    async def test_channels_are_pushed(self, dispatcher, emitted):
        await dispatcher.create(_draft([3], channels=["deploys"]))

        [(_, kwargs)] = emitted("notification:new")
        assert kwargs["room"] == "notification:deploys"

    async def test_cross_process_pushes_to_every_recipient(
        self, router, presence, session_factory, emitted
    ):
        dispatcher = NotificationDispatcher(
            router, presence, session_factory=session_factory, cross_process=True
        )

        await dispatcher.create(_draft([1, 2]))

        rooms = sorted(kwargs["room"] for _, kwargs in emitted("notification:new"))
        assert rooms == ["user:1", "user:2"]

    async def test_push_failure_does_not_fail_create(self, dispatcher, presence, sio):
        await presence.register(1, "sid-1")
        sio.emit.side_effect = RuntimeError("transport closed")

        notification = await dispatcher.create(_draft([1]))

        assert notification is not None

    async def test_async_read_operations(self, dispatcher):
        created = await dispatcher.create(_draft([1]))

        assert await dispatcher.unread_count(1) == 1
        assert [n["id"] for n in await dispatcher.unread(1)] == [created["id"]]
        marked = await dispatcher.mark_read(created["id"], 1)
        assert marked["read"] == [1]
        assert await dispatcher.mark_all_read(1) == 0
        assert len(await dispatcher.list_for_user(1)) == 1
